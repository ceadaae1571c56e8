"""SealVault abstract interfaces and in-memory implementations.

This module defines the *structural* interfaces (``typing.Protocol``) for
the external collaborators the custody pipeline consumes, plus
lightweight in-memory implementations suitable for testing and local
development.

Every Protocol class is decorated with ``@runtime_checkable`` so that
``isinstance`` checks work at run-time in addition to static analysis.

In-memory implementations are **not** thread-safe.  Production deployments
MUST substitute the HTTP clients in :mod:`sealvault.transport.http`.
"""
from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sealvault.core.errors import (
    ContentNotFound,
    CustodyPermissionDenied,
    NamespaceNotFound,
    ShareNotFound,
)
from sealvault.core.types import (
    DATA_CREATE,
    DATA_READ,
    NAMESPACE_CREATE,
    AccessControl,
    BuilderProfile,
    CapabilityToken,
    Did,
    NamespaceSpec,
    StoreAck,
    TokenKind,
)

if TYPE_CHECKING:
    from sealvault.tokens.verification import TokenVerifier

# ===================================================================
# Protocol (interface) definitions
# ===================================================================

@runtime_checkable
class CustodyService(Protocol):
    """Key-custody backend holding key shares on behalf of users.

    Every mutating or reading call is authorised by a capability token.
    The requesting identity is the signer of a leaf invocation, or else
    the leaf token's audience (see :func:`requester_of`).
    """

    async def read_profile(self, builder: Did) -> BuilderProfile:
        """Return the namespaces registered to *builder*."""
        ...

    async def create_namespace(
        self, spec: NamespaceSpec, token: CapabilityToken
    ) -> str:
        """Create a namespace and return its id.

        Requires a token covering ``/nil/db/collections/create``.
        """
        ...

    async def store_share(
        self,
        *,
        owner: Did,
        acl: AccessControl,
        namespace_id: str,
        document_id: str,
        share: str,
        token: CapabilityToken,
    ) -> StoreAck:
        """Store a hex-encoded key share owned by *owner*.

        Requires a token covering ``/nil/db/data/create`` exercised by
        *owner*, normally the owner's invocation of its delegation.
        """
        ...

    async def read_share(
        self,
        namespace_id: str,
        document_id: str,
        token: CapabilityToken,
    ) -> str:
        """Return the hex-encoded key share.

        Requires a token covering ``/nil/db/data/read`` exercised by
        the share owner or a grantee with read access.
        """
        ...


@runtime_checkable
class ContentStore(Protocol):
    """Content-addressed storage for sealed envelopes.

    Stored content is immutable once written.
    """

    async def put(self, data: bytes) -> str:
        """Store *data* and return its content identifier."""
        ...

    async def get(self, content_id: str) -> bytes:
        """Return the bytes stored under *content_id*.

        Raises :class:`ContentNotFound` if nothing is stored there.
        """
        ...


# ===================================================================
# In-memory implementations (testing / development)
# ===================================================================

@dataclass(slots=True)
class _StoredShare:
    owner: Did
    acl: AccessControl
    share: str


class InMemoryCustodyService:
    """In-memory custody node for testing and development.

    Tokens are checked with the supplied :class:`TokenVerifier`, so the
    builder's DID must be one of its trusted roots.  Token failures
    propagate unchanged; ownership and ACL failures raise
    :class:`CustodyPermissionDenied`.
    """

    def __init__(self, verifier: TokenVerifier) -> None:
        self._verifier = verifier
        self._namespaces: dict[str, NamespaceSpec] = {}
        self._namespace_owner: dict[str, Did] = {}
        self._shares: dict[tuple[str, str], _StoredShare] = {}

    # -- mutation helpers (not part of the Protocol) --------------------

    def register_namespace(self, spec: NamespaceSpec, builder: Did) -> None:
        """Register a namespace without a token (test helper)."""
        self._namespaces[spec.namespace_id] = spec
        self._namespace_owner[spec.namespace_id] = builder

    def raw_share(self, namespace_id: str, document_id: str) -> str | None:
        """Peek at a stored share (test helper)."""
        stored = self._shares.get((namespace_id, document_id))
        return stored.share if stored is not None else None

    # -- Protocol implementation ---------------------------------------

    async def read_profile(self, builder: Did) -> BuilderProfile:
        namespaces = sorted(
            ns for ns, owner in self._namespace_owner.items() if owner == builder
        )
        return BuilderProfile(did=builder, namespaces=namespaces)

    async def create_namespace(
        self, spec: NamespaceSpec, token: CapabilityToken
    ) -> str:
        leaf = self._verifier.verify_or_raise(token, required_command=NAMESPACE_CREATE)
        if spec.namespace_id in self._namespaces:
            raise CustodyPermissionDenied(
                f"Namespace already exists: {spec.namespace_id}",
                details={"namespace_id": spec.namespace_id},
            )
        self.register_namespace(spec, requester_of(leaf))
        return spec.namespace_id

    async def store_share(
        self,
        *,
        owner: Did,
        acl: AccessControl,
        namespace_id: str,
        document_id: str,
        share: str,
        token: CapabilityToken,
    ) -> StoreAck:
        leaf = self._verifier.verify_or_raise(token, required_command=DATA_CREATE)
        requester = requester_of(leaf)
        if requester != owner:
            raise CustodyPermissionDenied(
                "Only the owner may store its share",
                details={"owner": str(owner), "requester": str(requester)},
            )
        if leaf.kind == TokenKind.INVOCATION and any(
            leaf.body.get(name, value) != value
            for name, value in (("namespace_id", namespace_id), ("document_id", document_id))
        ):
            raise CustodyPermissionDenied(
                "Invocation arguments do not match the request",
                details={"namespace_id": namespace_id, "document_id": document_id},
            )
        self._require_namespace(namespace_id)
        key = (namespace_id, document_id)
        if key in self._shares:
            raise CustodyPermissionDenied(
                f"Document already exists: {document_id}",
                details={"namespace_id": namespace_id, "document_id": document_id},
            )
        self._shares[key] = _StoredShare(owner=owner, acl=acl, share=share)
        return StoreAck(namespace_id=namespace_id, document_id=document_id)

    async def read_share(
        self,
        namespace_id: str,
        document_id: str,
        token: CapabilityToken,
    ) -> str:
        leaf = self._verifier.verify_or_raise(token, required_command=DATA_READ)
        self._require_namespace(namespace_id)
        stored = self._shares.get((namespace_id, document_id))
        if stored is None:
            raise ShareNotFound(
                details={"namespace_id": namespace_id, "document_id": document_id},
            )
        requester = requester_of(leaf)
        granted = stored.acl.grantee == requester and stored.acl.read
        if requester != stored.owner and not granted:
            raise CustodyPermissionDenied(
                "Requester may not read this share",
                details={"document_id": document_id, "requester": str(requester)},
            )
        return stored.share

    def _require_namespace(self, namespace_id: str) -> None:
        if namespace_id not in self._namespaces:
            raise NamespaceNotFound(details={"namespace_id": namespace_id})


def requester_of(token: CapabilityToken) -> Did:
    """The identity exercising *token*.

    An invocation is exercised by its signer; any other token by its
    audience.
    """
    if token.kind == TokenKind.INVOCATION:
        return token.issuer
    return token.audience


def content_id_for(data: bytes) -> str:
    """Unpadded base64url SHA-256 of *data* (43 characters)."""
    digest = hashlib.sha256(data).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class InMemoryContentStore:
    """In-memory content-addressed store for testing and development."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    # -- mutation helpers (not part of the Protocol) --------------------

    def tamper(self, content_id: str, data: bytes) -> None:
        """Overwrite stored content (test helper)."""
        self._blobs[content_id] = data

    # -- Protocol implementation ---------------------------------------

    async def put(self, data: bytes) -> str:
        content_id = content_id_for(data)
        self._blobs[content_id] = bytes(data)
        return content_id

    async def get(self, content_id: str) -> bytes:
        try:
            return self._blobs[content_id]
        except KeyError:
            raise ContentNotFound(details={"content_id": content_id}) from None
