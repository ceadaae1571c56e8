"""SealVault custody orchestrator -- the main entry point.

This module implements :class:`CustodyOrchestrator`, which composes key
derivation, the AEAD envelope, capability tokens and the external
custody/storage collaborators into one custody run.

Pipeline
--------

1. **Identities** -- builder keypair and root token from configuration;
   a fresh user identity per file.
2. **Namespace** -- verify the configured namespace is registered to the
   builder, or create one and stop for operator setup.
3. **Share** -- delegate ``/nil/db/data/create`` to the user, have the
   user invoke it, and store the user's secret as a key share (builder
   gets execute-only access).
4. **Read delegation** -- delegate ``/nil/db/data/read`` to the user; this
   token is handed back to the caller.
5. **Round-trip** -- read the share back and compare.
6. **Seal** -- ``derive_key`` + ``seal``.
7. **Store** -- upload the envelope and record its content id.
8. **Recover** -- verify the token, download the envelope, read the
   share, derive, open.

Each step depends on the previous one and runs in this order.  Any
failure aborts the run; nothing is retried or rolled back.

Usage
-----
::

    from sealvault import CustodyConfig, CustodyOrchestrator

    orchestrator = CustodyOrchestrator.from_config(CustodyConfig())
    result = await orchestrator.run("documents/report.pdf", output_dir="out")
"""
from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from sealvault.core.clock import Clock, SystemClock
from sealvault.core.errors import (
    ChainInvalid,
    NamespaceNotRegistered,
    SealVaultError,
    ShareMismatch,
)
from sealvault.core.types import (
    DATA_CREATE,
    DATA_READ,
    AccessControl,
    CapabilityToken,
    Command,
    CustodyReceipt,
    CustodyResult,
    Did,
    ErrorInfo,
    NamespaceSpec,
    Secret,
)
from sealvault.crypto.envelope import open_envelope, open_to_file, seal_file
from sealvault.crypto.identity import Keypair
from sealvault.crypto.kdf import derive_key
from sealvault.custody.cluster import ShardedCustodyService
from sealvault.tokens.codec import serialize_token
from sealvault.tokens.issuer import TokenIssuer
from sealvault.tokens.verification import TokenVerifier
from sealvault.transport.http import HTTPContentStore, HTTPCustodyNode

if TYPE_CHECKING:
    from sealvault.core.config import CustodyConfig
    from sealvault.core.interfaces import ContentStore, CustodyService

logger = logging.getLogger(__name__)


class BuilderContext:
    """The long-lived builder identity and its root token.

    The root token is re-issued lazily whenever it is missing or within
    ``refresh_margin`` seconds of expiry.
    """

    def __init__(
        self,
        keypair: Keypair,
        issuer: TokenIssuer,
        *,
        root_command: Command,
        root_ttl: int,
        refresh_margin: int,
        clock: Clock,
    ) -> None:
        self._keypair = keypair
        self._issuer = issuer
        self._root_command = root_command
        self._root_ttl = root_ttl
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._root_token: CapabilityToken | None = None

    @classmethod
    def from_config(
        cls, config: CustodyConfig, issuer: TokenIssuer, clock: Clock
    ) -> BuilderContext:
        return cls(
            Keypair.from_hex(config.builder_private_key.get_secret_value()),
            issuer,
            root_command=Command.parse(config.root_command),
            root_ttl=config.root_token_ttl_seconds,
            refresh_margin=config.root_token_refresh_margin_seconds,
            clock=clock,
        )

    @property
    def keypair(self) -> Keypair:
        return self._keypair

    @property
    def did(self) -> Did:
        return self._keypair.did

    def refresh_root_token(self) -> CapabilityToken:
        """Unconditionally issue a new root token."""
        self._root_token = self._issuer.issue_root(
            self._keypair,
            command=self._root_command,
            ttl_seconds=self._root_ttl,
        )
        logger.info(
            "Refreshed builder root token for %s (expires at %d)",
            self.did,
            self._root_token.expires_at,
        )
        return self._root_token

    def root_token(self, *, covering: int = 0) -> CapabilityToken:
        """Return a root token valid for at least the refresh margin.

        *covering* raises that floor, so a delegation of that many seconds
        can still be derived from the returned token.
        """
        token = self._root_token
        floor = max(self._refresh_margin, covering)
        if token is None or token.expires_at - self._clock.now() < floor:
            token = self.refresh_root_token()
        return token


class CustodyOrchestrator:
    """Runs the encrypted-content custody pipeline.

    Parameters
    ----------
    config:
        Explicit configuration; holds the builder key and TTL policy.
    custody:
        Key-custody backend (a single node or a
        :class:`~sealvault.custody.cluster.ShardedCustodyService`).
    storage:
        Content-addressed storage for envelopes.
    clock:
        Time source for token issuance and verification.
    """

    def __init__(
        self,
        config: CustodyConfig,
        custody: CustodyService,
        storage: ContentStore,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._config = config
        self._custody = custody
        self._storage = storage
        self._clock: Clock = clock or SystemClock()
        self._issuer = TokenIssuer(self._clock)
        self._builder = BuilderContext.from_config(config, self._issuer, self._clock)
        self._verifier = TokenVerifier([self._builder.did], clock=self._clock)
        self._namespace_id: str | None = config.namespace_id

    @classmethod
    def from_config(
        cls,
        config: CustodyConfig,
        *,
        clock: Clock | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> CustodyOrchestrator:
        """Wire the HTTP collaborators described by *config*."""
        nodes = [
            HTTPCustodyNode(url, timeout=config.request_timeout, transport=transport)
            for url in config.custody_nodes
        ]
        credential = config.storage_credential
        storage = HTTPContentStore(
            config.storage_gateway_url,
            config.storage_upload_url,
            credential=credential.get_secret_value() if credential else None,
            timeout=config.request_timeout,
            transport=transport,
        )
        return cls(config, ShardedCustodyService(nodes), storage, clock=clock)

    # ------------------------------------------------------------------
    # Properties for introspection
    # ------------------------------------------------------------------

    @property
    def config(self) -> CustodyConfig:
        return self._config

    @property
    def builder(self) -> BuilderContext:
        return self._builder

    @property
    def issuer(self) -> TokenIssuer:
        return self._issuer

    @property
    def verifier(self) -> TokenVerifier:
        """Verifier trusting only the builder's root tokens."""
        return self._verifier

    # ------------------------------------------------------------------
    # Namespace bootstrap
    # ------------------------------------------------------------------

    async def ensure_namespace(self) -> tuple[str, bool]:
        """Return ``(namespace_id, created)``.

        With a configured namespace id, verify it is registered to the
        builder.  Without one, create a namespace; ``created`` is then
        ``True`` and the operator must persist the id before running
        again.

        Raises
        ------
        NamespaceNotRegistered
            If the configured namespace is not in the builder's profile.
        """
        if self._namespace_id is not None:
            profile = await self._custody.read_profile(self._builder.did)
            if self._namespace_id not in profile.namespaces:
                raise NamespaceNotRegistered(
                    f"Builder does not have namespace {self._namespace_id} registered",
                    details={
                        "namespace_id": self._namespace_id,
                        "builder": str(self._builder.did),
                    },
                )
            logger.info("Builder %s is set up correctly", self._builder.did)
            logger.info("Using namespace %s", self._namespace_id)
            return self._namespace_id, False

        spec = NamespaceSpec(
            namespace_id=str(uuid.uuid4()),
            name=self._config.namespace_name,
        )
        namespace_id = await self._custody.create_namespace(
            spec, self._builder.root_token()
        )
        logger.info("Created owned namespace %s", namespace_id)
        logger.info(
            "Set SEALVAULT_NAMESPACE_ID=%s in your environment to proceed.",
            namespace_id,
        )
        return namespace_id, True

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def encrypt_and_store(self, plaintext_path: Path | str) -> CustodyResult:
        """Seal a file under a fresh custody-held key and store it.

        Returns
        -------
        CustodyResult
            ``success`` with a :class:`CustodyReceipt`,
            ``setup_required`` with the new namespace id on first run,
            or ``error``.
        """
        try:
            namespace_id, created = await self.ensure_namespace()
            if created:
                return CustodyResult(status="setup_required", namespace_id=namespace_id)
            receipt = await self._encrypt_and_store(Path(plaintext_path), namespace_id)
            return CustodyResult(status="success", receipt=receipt)
        except Exception as exc:
            return self._error_result(exc, "encrypt_and_store")

    async def fetch_and_decrypt(
        self,
        content_id: str,
        token: CapabilityToken | str,
        *,
        output_path: Path | str | None = None,
        envelope_path: Path | str | None = None,
    ) -> CustodyResult:
        """Recover the plaintext stored under *content_id*.

        *token* is the read delegation from the receipt (object or
        serialized form).  When *output_path* is given the plaintext is
        also written there; *envelope_path* keeps a copy of the
        downloaded ciphertext.
        """
        try:
            plaintext = await self._fetch_and_decrypt(
                content_id,
                token,
                output_path=Path(output_path) if output_path else None,
                envelope_path=Path(envelope_path) if envelope_path else None,
            )
            return CustodyResult(status="success", plaintext=plaintext)
        except Exception as exc:
            return self._error_result(exc, "fetch_and_decrypt")

    async def run(
        self,
        plaintext_path: Path | str,
        *,
        output_dir: Path | str | None = None,
    ) -> CustodyResult:
        """End-to-end custody run: store, then recover and decrypt.

        With *output_dir*, the downloaded envelope and the decrypted file
        are written there as ``encrypted_<name>_<ts>`` and
        ``decrypted_<name>_<ts>``.
        """
        source = Path(plaintext_path)
        stored = await self.encrypt_and_store(source)
        if stored.status != "success" or stored.receipt is None:
            return stored

        receipt = stored.receipt
        output_path = envelope_path = None
        if output_dir is not None:
            stamp = int(self._clock.now() * 1000)
            target = Path(output_dir)
            envelope_path = target / f"encrypted_{source.stem}_{stamp}{source.suffix}"
            output_path = target / f"decrypted_{source.stem}_{stamp}{source.suffix}"

        recovered = await self.fetch_and_decrypt(
            receipt.content_id,
            receipt.token,
            output_path=output_path,
            envelope_path=envelope_path,
        )
        if not recovered.ok:
            return recovered.model_copy(update={"receipt": receipt})
        return CustodyResult(
            status="success",
            receipt=receipt,
            plaintext=recovered.plaintext,
        )

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    async def _encrypt_and_store(
        self, path: Path, namespace_id: str
    ) -> CustodyReceipt:
        builder = self._builder
        ttl = self._config.delegation_ttl_seconds

        # -- Step 1: User identity from a fresh secret ---------------------
        secret = Secret.generate()
        user = Keypair.from_secret(secret)
        document_id = str(uuid.uuid4())

        # -- Step 3: Store the secret as a share owned by the user ---------
        root = builder.root_token(covering=ttl)
        create_token = self._issuer.delegate(
            root, DATA_CREATE, user.did, ttl, builder.keypair
        )
        logger.info("Delegation token created for %s", user.did)
        # The user consumes its delegation; custody sees the user as requester.
        invocation = self._issuer.invoke(
            create_token,
            DATA_CREATE,
            builder.did,
            create_token.expires_at - int(self._clock.now()),
            user,
            args={"namespace_id": namespace_id, "document_id": document_id},
        )
        await self._custody.store_share(
            owner=user.did,
            acl=AccessControl(
                grantee=builder.did,
                read=False,
                write=False,
                execute=True,
            ),
            namespace_id=namespace_id,
            document_id=document_id,
            share=secret.hex(),
            token=invocation,
        )
        logger.info("User key share stored for %s", user.did)

        # -- Step 4: Read delegation handed back to the caller -------------
        read_token = self._issuer.delegate(
            root,
            DATA_READ,
            user.did,
            ttl,
            builder.keypair,
            body={"namespace_id": namespace_id, "document_id": document_id},
        )

        # -- Step 5: Sanity round-trip through custody ---------------------
        retrieved = Secret.from_hex(
            await self._custody.read_share(namespace_id, document_id, read_token)
        )
        if retrieved != secret:
            raise ShareMismatch(details={"document_id": document_id})

        # -- Step 6: Seal ---------------------------------------------------
        envelope = seal_file(path, derive_key(retrieved))

        # -- Step 7: Store the envelope ------------------------------------
        content_id = await self._storage.put(envelope)
        logger.info("Envelope stored with content id %s (%d bytes)", content_id, len(envelope))

        return CustodyReceipt(
            content_id=content_id,
            namespace_id=namespace_id,
            document_id=document_id,
            user_did=user.did,
            token=serialize_token(read_token),
            size=len(envelope),
        )

    async def _fetch_and_decrypt(
        self,
        content_id: str,
        token: CapabilityToken | str,
        *,
        output_path: Path | None,
        envelope_path: Path | None,
    ) -> bytes:
        leaf = self._verifier.verify_or_raise(token, required_command=DATA_READ)
        namespace_id = leaf.body.get("namespace_id")
        document_id = leaf.body.get("document_id")
        if not isinstance(namespace_id, str) or not isinstance(document_id, str):
            raise ChainInvalid(
                "Read token does not name a key share",
                details={"body_keys": sorted(leaf.body)},
            )

        logger.info("Downloading envelope %s", content_id)
        envelope = await self._storage.get(content_id)
        if envelope_path is not None:
            envelope_path.parent.mkdir(parents=True, exist_ok=True)
            envelope_path.write_bytes(envelope)
            logger.info("Downloaded envelope saved to %s", envelope_path)

        secret = Secret.from_hex(
            await self._custody.read_share(namespace_id, document_id, leaf)
        )
        key = derive_key(secret)
        if output_path is not None:
            plaintext = open_to_file(envelope, key, output_path)
            logger.info("Decrypted file saved to %s", output_path)
        else:
            plaintext = open_envelope(envelope, key)
        logger.info("Successfully decrypted %d bytes", len(plaintext))
        return plaintext

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------

    @staticmethod
    def _error_result(exc: Exception, operation: str) -> CustodyResult:
        if not isinstance(exc, SealVaultError):
            # Unexpected errors are wrapped so callers always get a result.
            exc = SealVaultError(
                f"Internal error: {type(exc).__name__}: {exc}",
                details={"exception_type": type(exc).__name__},
            )
        logger.error("%s failed: %s %s", operation, exc.code, exc.message)
        return CustodyResult(
            status="error",
            error=ErrorInfo(code=exc.code, message=exc.message, details=exc.details),
        )
