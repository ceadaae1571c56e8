"""Symmetric key derivation.

A custody secret is arbitrary-length key material; the envelope cipher
needs exactly 32 bytes.  The derived key is ``SHA-256(secret)``, so the
same secret always yields the same key.
"""
from __future__ import annotations

import hashlib

from sealvault.core.errors import InvalidKeyLength
from sealvault.core.types import Secret

KEY_LENGTH = 32
"""Derived key length in bytes (AES-256)."""


def derive_key(secret: bytes | Secret) -> bytes:
    """Derive the 32-byte envelope key from *secret*.

    Raises
    ------
    InvalidKeyLength
        If the digest is not exactly :data:`KEY_LENGTH` bytes.
    """
    material = secret.expose() if isinstance(secret, Secret) else secret
    key = hashlib.sha256(material).digest()
    if len(key) != KEY_LENGTH:
        raise InvalidKeyLength(details={"length": len(key)})
    return key


def derive_key_from_hex(text: str) -> bytes:
    """Decode hex-encoded secret material and derive its key.

    Raises :class:`~sealvault.core.errors.MalformedSecret` on empty or
    non-hex input.
    """
    return derive_key(Secret.from_hex(text))
