"""SealVault shared domain types.

This module defines the value types, enums and Pydantic models shared
across the custody pipeline.

Key design decisions:
* ``Secret`` is a plain Python class (not Pydantic) that prevents
  accidental serialisation of key material via ``str()`` or ``repr()``.
* ``Did`` is a ``NewType`` wrapper around ``str`` for static type-safety
  while remaining JSON-serialisable.
* ``CapabilityToken`` owns an immutable reference to its parent, so a
  token chain is an append-only linked structure with no cycles.
* Enums use *string* values so they serialise cleanly to JSON.
"""
from __future__ import annotations

import enum
import hashlib
import secrets
from collections.abc import Iterable
from typing import Any, Literal, NewType

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sealvault.core.errors import MalformedSecret

# ---------------------------------------------------------------------------
# Value types (NewType wrappers)
# ---------------------------------------------------------------------------

Did = NewType("Did", str)
"""Decentralised identifier in the form ``did:nil:<hex public key>``."""


# ---------------------------------------------------------------------------
# Secret -- opaque wrapper that prevents accidental exposure
# ---------------------------------------------------------------------------

class Secret:
    """Root key material that prevents accidental exposure.

    The underlying bytes are *only* accessible via :meth:`expose` or
    :meth:`hex`.  ``str()``, ``repr()``, ``format()`` and ``logging``
    all return a redacted placeholder.
    """

    __slots__ = ("_value",)

    def __init__(self, value: bytes) -> None:
        self._value = bytes(value)

    @classmethod
    def generate(cls, size: int = 32) -> Secret:
        """Create a fresh secret from the operating system CSPRNG."""
        return cls(secrets.token_bytes(size))

    @classmethod
    def from_hex(cls, text: str) -> Secret:
        """Decode a hex-encoded secret.

        Raises :class:`MalformedSecret` if *text* is empty or not hex.
        """
        if not text:
            raise MalformedSecret("Secret material is empty")
        try:
            return cls(bytes.fromhex(text))
        except ValueError as exc:
            raise MalformedSecret(
                details={"length": len(text)},
            ) from exc

    def expose(self) -> bytes:
        """Explicitly reveal the secret bytes.  Use with caution."""
        return self._value

    def hex(self) -> str:
        """Explicitly reveal the secret as lowercase hex."""
        return self._value.hex()

    def __str__(self) -> str:
        return "[SV-REDACTED]"

    def __repr__(self) -> str:
        return "Secret([SV-REDACTED])"

    def __format__(self, format_spec: str) -> str:
        return "[SV-REDACTED]"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Secret):
            return secrets.compare_digest(self._value, other._value)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __len__(self) -> int:
        return len(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TokenKind(enum.StrEnum):
    """Position of a token in its chain.

    Transitions: ROOT -> DELEGATION (repeatable) -> INVOCATION (terminal).
    """

    ROOT = "root"
    DELEGATION = "delegation"
    INVOCATION = "invocation"


class NamespaceKind(enum.StrEnum):
    """Ownership model of a custody namespace."""

    OWNED = "owned"
    STANDARD = "standard"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

class Command(BaseModel):
    """An ordered capability path such as ``/nil/db/data/create``.

    The empty command (``/``) is unconstrained.  A command *attenuates*
    another when the other is a prefix of it.
    """

    model_config = ConfigDict(strict=True, frozen=True)

    segments: tuple[str, ...] = ()

    @field_validator("segments")
    @classmethod
    def _check_segments(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for segment in value:
            if not segment or "/" in segment:
                raise ValueError(f"Invalid command segment: {segment!r}")
        return value

    @classmethod
    def parse(cls, text: str) -> Command:
        """Parse the slash-separated textual form."""
        if not text.startswith("/"):
            raise ValueError(f"Command must start with '/': {text!r}")
        return cls(segments=tuple(s for s in text.split("/") if s))

    @classmethod
    def coerce(cls, value: Command | str | Iterable[str]) -> Command:
        """Accept a :class:`Command`, its textual form, or a segment list."""
        if isinstance(value, Command):
            return value
        if isinstance(value, str):
            return cls.parse(value)
        return cls(segments=tuple(value))

    def is_attenuation_of(self, other: Command) -> bool:
        """Return ``True`` if *other* is a prefix of this command."""
        n = len(other.segments)
        return self.segments[:n] == other.segments

    def __str__(self) -> str:
        return "/" + "/".join(self.segments)


NAMESPACE_CREATE = Command(segments=("nil", "db", "collections", "create"))
DATA_CREATE = Command(segments=("nil", "db", "data", "create"))
DATA_READ = Command(segments=("nil", "db", "data", "read"))


# ---------------------------------------------------------------------------
# Capability tokens
# ---------------------------------------------------------------------------

class CapabilityToken(BaseModel):
    """A signed link in a capability chain.

    ``raw`` is the signed compact form of *this* link only; the parent
    chain is reachable through ``parent``.  A token's authority is the
    intersection of its own constraints and every ancestor's.
    """

    model_config = ConfigDict(strict=True, frozen=True)

    kind: TokenKind
    issuer: Did
    audience: Did
    subject: Did
    command: Command
    expires_at: int = Field(description="Absolute UNIX timestamp in seconds.")
    nonce: str
    body: dict[str, Any] = Field(
        default_factory=dict,
        description="Delegation policies or invocation arguments.",
    )
    proofs: tuple[str, ...] = Field(
        default=(),
        description="SHA-256 hex digests of the parent link.",
    )
    parent: CapabilityToken | None = None
    raw: str = Field(repr=False)

    @property
    def link_hash(self) -> str:
        """SHA-256 hex digest of the signed link."""
        return hashlib.sha256(self.raw.encode("ascii")).hexdigest()

    @property
    def chain(self) -> list[CapabilityToken]:
        """Return the chain from this token up to its root (leaf first)."""
        links: list[CapabilityToken] = []
        current: CapabilityToken | None = self
        while current is not None:
            links.append(current)
            current = current.parent
        return links

    @property
    def root(self) -> CapabilityToken:
        """The root token of the chain."""
        return self.chain[-1]

    def is_expired(self, now: float) -> bool:
        """``True`` once *now* has reached ``expires_at`` (strict less-than validity)."""
        return now >= self.expires_at


# ---------------------------------------------------------------------------
# Custody models
# ---------------------------------------------------------------------------

def _default_share_schema() -> dict[str, Any]:
    return {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "array",
        "items": {
            "type": "object",
            "properties": {
                "_id": {"type": "string", "format": "uuid"},
                "private_key": {
                    "type": "object",
                    "properties": {"%share": {"type": "string"}},
                    "required": ["%share"],
                },
            },
            "required": ["_id", "private_key"],
        },
    }


class AccessControl(BaseModel):
    """Access-control entry attached to a stored share."""

    model_config = ConfigDict(strict=True, frozen=True)

    grantee: Did
    read: bool = False
    write: bool = False
    execute: bool = False


class NamespaceSpec(BaseModel):
    """Definition of a custody namespace (collection)."""

    model_config = ConfigDict(strict=True, populate_by_name=True)

    namespace_id: str = Field(description="UUID v4 identifying this namespace.")
    name: str
    kind: NamespaceKind = NamespaceKind.OWNED
    schema_: dict[str, Any] = Field(
        default_factory=_default_share_schema,
        alias="schema",
    )


class BuilderProfile(BaseModel):
    """What the custody service knows about a builder."""

    model_config = ConfigDict(strict=True)

    did: Did
    namespaces: list[str] = Field(default_factory=list)


class StoreAck(BaseModel):
    """Acknowledgement returned after a share is stored."""

    model_config = ConfigDict(strict=True)

    namespace_id: str
    document_id: str
    nodes: int = 1


class CustodyReceipt(BaseModel):
    """Everything a caller needs to recover an encrypted file later.

    ``token`` is the serialized read delegation; it is a bearer
    credential and should be handled like one.
    """

    model_config = ConfigDict(strict=True)

    content_id: str
    namespace_id: str
    document_id: str
    user_did: Did
    token: str = Field(repr=False)
    size: int = Field(ge=0, description="Envelope size in bytes.")


class ErrorInfo(BaseModel):
    """Structured error returned inside a :class:`CustodyResult`."""

    model_config = ConfigDict(strict=True)

    code: str = Field(description="SealVault error code (SV-EXXX).")
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class CustodyResult(BaseModel):
    """Tagged outcome of an orchestrator entry point.

    Exactly one of ``receipt``/``plaintext``/``namespace_id`` or ``error``
    is meaningful, depending on ``status`` and the entry point.
    """

    model_config = ConfigDict(strict=True)

    status: Literal["success", "error", "setup_required"]
    receipt: CustodyReceipt | None = None
    plaintext: bytes | None = Field(default=None, repr=False)
    namespace_id: str | None = None
    error: ErrorInfo | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"
