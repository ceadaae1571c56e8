"""SealVault configuration.

Defines the validated settings model consumed by the orchestrator and
the HTTP collaborators.  Values are read from ``SEALVAULT_*`` environment
variables (and an optional ``.env`` file) so that a deployment only has to
provide the builder key; every other field has a working default.
"""
from __future__ import annotations

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CustodyConfig(BaseSettings):
    """Configuration for a custody pipeline run.

    Constructed once at startup and passed explicitly to
    :class:`~sealvault.orchestrator.CustodyOrchestrator`; nothing reads
    it through module-level state.
    """

    model_config = SettingsConfigDict(
        env_prefix="SEALVAULT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    auth_url: str = Field(
        default="https://nilauth.sandbox.app-cluster.sandbox.nilogy.xyz",
        description="Authority that issues builder root tokens.",
    )
    custody_nodes: list[str] = Field(
        default=[
            "https://nildb-stg-n1.nillion.network",
            "https://nildb-stg-n2.nillion.network",
            "https://nildb-stg-n3.nillion.network",
        ],
        min_length=1,
        description="Base URLs of the key-custody nodes; one share per node.",
    )
    storage_gateway_url: str = Field(
        default="https://arweave.net",
        description="Gateway used to download stored envelopes.",
    )
    storage_upload_url: str = Field(
        default="https://upload.ardrive.io/v1",
        description="Endpoint used to upload envelopes.",
    )
    storage_credential: SecretStr | None = Field(
        default=None,
        description="Optional bearer credential for the upload endpoint.",
    )
    builder_private_key: SecretStr = Field(
        description="Hex-encoded 32-byte Ed25519 private key of the builder.",
    )
    namespace_id: str | None = Field(
        default=None,
        description=(
            "Registered namespace for user key shares.  When unset, the "
            "first run creates one and stops for operator setup."
        ),
    )
    namespace_name: str = Field(default="SealVault User Keys")
    root_command: str = Field(
        default="/nil/db",
        description="Command path granted by the builder's root token.",
    )
    root_token_ttl_seconds: int = Field(default=7200, gt=0)
    root_token_refresh_margin_seconds: int = Field(default=300, ge=0)
    delegation_ttl_seconds: int = Field(
        default=3600,
        gt=0,
        description="Lifetime of per-session delegations (1 hour).",
    )
    request_timeout: float = Field(
        default=20.0,
        gt=0,
        description="Timeout in seconds for custody and storage requests.",
    )

    @field_validator("builder_private_key")
    @classmethod
    def _check_builder_key(cls, value: SecretStr) -> SecretStr:
        raw = value.get_secret_value()
        try:
            key = bytes.fromhex(raw)
        except ValueError:
            raise ValueError("builder_private_key must be hex-encoded") from None
        if len(key) != 32:
            raise ValueError("builder_private_key must encode exactly 32 bytes")
        return value

    @field_validator("root_command")
    @classmethod
    def _check_root_command(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("root_command must start with '/'")
        return value

    @model_validator(mode="after")
    def _check_ttls(self) -> CustodyConfig:
        if self.delegation_ttl_seconds > self.root_token_ttl_seconds:
            raise ValueError(
                "delegation_ttl_seconds cannot exceed root_token_ttl_seconds"
            )
        if self.root_token_refresh_margin_seconds >= self.root_token_ttl_seconds:
            raise ValueError(
                "root_token_refresh_margin_seconds must be shorter than "
                "root_token_ttl_seconds"
            )
        return self
