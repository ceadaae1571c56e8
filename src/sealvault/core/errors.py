"""SealVault error-code hierarchy.

Every failure the custody pipeline can report is a concrete exception
class carrying a stable error code.

Hierarchy
---------
::

    SealVaultError
    +-- KeyDerivationError   (SV-E1xx)
    +-- EnvelopeError        (SV-E2xx)
    +-- TokenError           (SV-E3xx)
    +-- CustodyError         (SV-E4xx)
    +-- TransportError       (SV-E5xx)

Usage
-----
Raise concrete subclasses directly::

    raise EnvelopeTooShort(details={"length": 12})

Catch by category::

    try:
        ...
    except TokenError:
        # handles ChainInvalid, Expired, UntrustedRoot, etc.
        ...

Messages and details MUST NOT contain key material, secrets or tokens.
"""
from __future__ import annotations

from typing import Any

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class SealVaultError(Exception):
    """Base exception for all SealVault errors.

    Attributes
    ----------
    code : str
        SealVault error code, e.g. ``"SV-E201"``.
    message : str
        Human-readable description (MUST NOT contain secret values).
    details : dict[str, Any]
        Machine-readable context specific to the error instance.
    resolution : str
        Suggested action for the caller.
    """

    code: str = "SV-E000"
    message: str = "Unknown SealVault error"
    resolution: str = ""

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
        resolution: str | None = None,
    ) -> None:
        self.details: dict[str, Any] = details or {}
        if message is not None:
            self.message = message
        if resolution is not None:
            self.resolution = resolution
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialise the error into a JSON-friendly mapping."""
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["detail"] = self.details
        if self.resolution:
            payload["resolution"] = self.resolution
        return {"error": payload}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# ===================================================================
# Category base classes
# ===================================================================

class KeyDerivationError(SealVaultError):
    """SV-E1xx -- Malformed secret material or derived key."""

    code = "SV-E1XX"


class EnvelopeError(SealVaultError):
    """SV-E2xx -- Sealed envelope could not be opened."""

    code = "SV-E2XX"


class TokenError(SealVaultError):
    """SV-E3xx -- Capability token issuance or verification errors."""

    code = "SV-E3XX"


class CustodyError(SealVaultError):
    """SV-E4xx -- The key-custody service rejected or failed a request."""

    code = "SV-E4XX"


class TransportError(SealVaultError):
    """SV-E5xx -- Content storage unreachable or returned invalid data."""

    code = "SV-E5XX"


# ===================================================================
# SV-E1xx  Key derivation
# ===================================================================

class MalformedSecret(KeyDerivationError):
    """SV-E100 -- Secret is empty or not valid hex."""

    code = "SV-E100"
    message = "Secret material is empty or not valid hex"
    resolution = "Provide the secret as a non-empty, even-length hex string."


class InvalidKeyLength(KeyDerivationError):
    """SV-E101 -- Derived key is not exactly 32 bytes."""

    code = "SV-E101"
    message = "Encryption key must be exactly 32 bytes for AES-256"
    resolution = "Derive the key with derive_key() before sealing or opening."


# ===================================================================
# SV-E2xx  Envelope
# ===================================================================

class EnvelopeTooShort(EnvelopeError):
    """SV-E200 -- Envelope is shorter than its 32-byte header."""

    code = "SV-E200"
    message = "Invalid encrypted data: envelope is shorter than 32 bytes"
    resolution = "Check that the full ciphertext was downloaded."


class AuthenticationFailed(EnvelopeError):
    """SV-E201 -- Authentication tag did not verify."""

    code = "SV-E201"
    message = "Envelope authentication failed"
    resolution = (
        "The ciphertext was tampered with or the wrong key was used. "
        "Re-fetch the envelope and the key share."
    )


# ===================================================================
# SV-E3xx  Capability tokens
# ===================================================================

class CommandNotSubset(TokenError):
    """SV-E300 -- Requested command is not an attenuation of the parent's."""

    code = "SV-E300"
    message = "Requested command is not a subset of the parent token's command"
    resolution = "Request a command that extends the parent's command path."


class ExpiryExceedsParent(TokenError):
    """SV-E301 -- Requested expiry is later than the parent's expiry."""

    code = "SV-E301"
    message = "Token expiry would exceed the parent token's expiry"
    resolution = "Use a shorter time-to-live or refresh the parent token."


class ChainInvalid(TokenError):
    """SV-E302 -- A link in the token chain is malformed, forged or broader than its parent."""

    code = "SV-E302"
    message = "Capability token chain is invalid"
    resolution = "Request a freshly issued token from the delegating identity."


class Expired(TokenError):
    """SV-E303 -- A token in the chain has passed its expiry."""

    code = "SV-E303"
    message = "Capability token has expired"
    resolution = "Request a new delegation token."


class UntrustedRoot(TokenError):
    """SV-E304 -- The chain's root issuer is not a trusted authority."""

    code = "SV-E304"
    message = "Capability token chain does not terminate at a trusted root"
    resolution = "Obtain a token delegated from a trusted root identity."


# ===================================================================
# SV-E4xx  Custody service
# ===================================================================

class CustodyPermissionDenied(CustodyError):
    """SV-E400 -- The custody service refused the operation."""

    code = "SV-E400"
    message = "Custody service denied the operation"
    resolution = "Check the token's command and the share's access-control entry."


class NamespaceNotFound(CustodyError):
    """SV-E401 -- The namespace does not exist."""

    code = "SV-E401"
    message = "Namespace not found"
    resolution = "Create the namespace or fix the configured namespace id."


class NamespaceNotRegistered(CustodyError):
    """SV-E402 -- The configured namespace is not registered to the builder."""

    code = "SV-E402"
    message = "Builder does not have the configured namespace registered"
    resolution = "Check the SEALVAULT_NAMESPACE_ID setting."


class ShareNotFound(CustodyError):
    """SV-E403 -- No share is stored under the document id."""

    code = "SV-E403"
    message = "Key share not found"
    resolution = "Verify the namespace and document identifiers."


class ShareMismatch(CustodyError):
    """SV-E404 -- The share read back differs from the share written."""

    code = "SV-E404"
    message = "Stored key share does not match the submitted share"
    resolution = "Check the custody nodes for inconsistent data."


class CustodyUnavailable(CustodyError):
    """SV-E405 -- The custody service could not be reached."""

    code = "SV-E405"
    message = "Custody service is unavailable"
    resolution = "Retry after a delay. Check the custody node URLs."


# ===================================================================
# SV-E5xx  Content storage
# ===================================================================

class StorageUnavailable(TransportError):
    """SV-E500 -- Content storage could not be reached."""

    code = "SV-E500"
    message = "Content storage is unavailable"
    resolution = "Retry after a delay. Check the storage gateway URL."


class InvalidContent(TransportError):
    """SV-E501 -- Content storage returned an unusable response."""

    code = "SV-E501"
    message = "Content storage returned invalid data"
    resolution = "Check the storage gateway and the content identifier."


class ContentNotFound(TransportError):
    """SV-E502 -- No content is stored under the identifier."""

    code = "SV-E502"
    message = "Content not found"
    resolution = "Verify the content identifier. Uploads may take time to propagate."


# ---------------------------------------------------------------------------
# Lookup helper
# ---------------------------------------------------------------------------

_CODE_MAP: dict[str, type[SealVaultError]] = {
    cls.code: cls
    for cls in [
        # E1xx
        MalformedSecret,
        InvalidKeyLength,
        # E2xx
        EnvelopeTooShort,
        AuthenticationFailed,
        # E3xx
        CommandNotSubset,
        ExpiryExceedsParent,
        ChainInvalid,
        Expired,
        UntrustedRoot,
        # E4xx
        CustodyPermissionDenied,
        NamespaceNotFound,
        NamespaceNotRegistered,
        ShareNotFound,
        ShareMismatch,
        CustodyUnavailable,
        # E5xx
        StorageUnavailable,
        InvalidContent,
        ContentNotFound,
    ]
}


def error_from_code(code: str, message: str | None = None) -> SealVaultError:
    """Instantiate the correct exception class for a SealVault error code.

    Parameters
    ----------
    code:
        A SealVault error code such as ``"SV-E302"``.
    message:
        Optional override for the default error message.

    Raises
    ------
    KeyError
        If *code* is not a recognised SealVault error code.
    """
    cls = _CODE_MAP[code]
    return cls(message) if message else cls()
