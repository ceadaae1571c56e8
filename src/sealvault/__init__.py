"""SealVault -- encrypted content custody.

Files are sealed under a per-user key whose only copy lives with a set
of key-custody nodes; the ciphertext goes to content-addressed storage.
Access to the key is granted through signed, attenuating capability
tokens.

Layers
------
1. Cryptography (:mod:`sealvault.crypto`) -- key derivation, envelopes,
   identities and secret sharing.
2. Capability tokens (:mod:`sealvault.tokens`) -- issuance and chain
   verification.
3. Custody and storage (:mod:`sealvault.custody`,
   :mod:`sealvault.transport`) -- collaborators behind the interfaces in
   :mod:`sealvault.core.interfaces`.
4. Orchestration (:mod:`sealvault.orchestrator`) -- the end-to-end run.
"""
from __future__ import annotations

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Core types, errors, config, interfaces
# ---------------------------------------------------------------------------
from sealvault.core.clock import Clock, ManualClock, SystemClock
from sealvault.core.config import CustodyConfig
from sealvault.core.errors import (
    # Category bases
    CustodyError,
    EnvelopeError,
    KeyDerivationError,
    SealVaultError,
    TokenError,
    TransportError,
    error_from_code,
)
from sealvault.core.interfaces import (
    ContentStore,
    CustodyService,
    InMemoryContentStore,
    InMemoryCustodyService,
)
from sealvault.core.types import (
    DATA_CREATE,
    DATA_READ,
    NAMESPACE_CREATE,
    AccessControl,
    BuilderProfile,
    CapabilityToken,
    Command,
    CustodyReceipt,
    CustodyResult,
    Did,
    ErrorInfo,
    NamespaceKind,
    NamespaceSpec,
    Secret,
    StoreAck,
    TokenKind,
)

# ---------------------------------------------------------------------------
# Cryptography
# ---------------------------------------------------------------------------
from sealvault.crypto import (
    Keypair,
    combine,
    derive_key,
    derive_key_from_hex,
    open_envelope,
    seal,
    split,
)

# ---------------------------------------------------------------------------
# Custody and transport
# ---------------------------------------------------------------------------
from sealvault.custody import ShardedCustodyService

# ---------------------------------------------------------------------------
# Main orchestrator
# ---------------------------------------------------------------------------
from sealvault.orchestrator import BuilderContext, CustodyOrchestrator

# ---------------------------------------------------------------------------
# Capability tokens
# ---------------------------------------------------------------------------
from sealvault.tokens import (
    TokenIssuer,
    TokenVerificationResult,
    TokenVerifier,
    parse_token,
    serialize_token,
)
from sealvault.transport import HTTPContentStore, HTTPCustodyNode

__all__ = [
    # Meta
    "__version__",
    # Core types & enums
    "Did",
    "Secret",
    "TokenKind",
    "NamespaceKind",
    "Command",
    "NAMESPACE_CREATE",
    "DATA_CREATE",
    "DATA_READ",
    "CapabilityToken",
    "AccessControl",
    "NamespaceSpec",
    "BuilderProfile",
    "StoreAck",
    "CustodyReceipt",
    "CustodyResult",
    "ErrorInfo",
    # Config & clock
    "CustodyConfig",
    "Clock",
    "SystemClock",
    "ManualClock",
    # Error hierarchy
    "SealVaultError",
    "KeyDerivationError",
    "EnvelopeError",
    "TokenError",
    "CustodyError",
    "TransportError",
    "error_from_code",
    # Interfaces
    "CustodyService",
    "ContentStore",
    "InMemoryCustodyService",
    "InMemoryContentStore",
    # Cryptography
    "derive_key",
    "derive_key_from_hex",
    "seal",
    "open_envelope",
    "Keypair",
    "split",
    "combine",
    # Tokens
    "TokenIssuer",
    "TokenVerifier",
    "TokenVerificationResult",
    "serialize_token",
    "parse_token",
    # Custody & transport
    "ShardedCustodyService",
    "HTTPCustodyNode",
    "HTTPContentStore",
    # Orchestrator
    "BuilderContext",
    "CustodyOrchestrator",
]
