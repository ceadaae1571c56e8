"""SealVault cryptographic primitives.

Public API
----------
- :func:`derive_key` -- SHA-256 of secret material into a 256-bit AEAD key.
- :func:`seal` / :func:`open_envelope` -- AES-256-GCM envelopes laid out as
  ``nonce || tag || ciphertext``.
- :class:`Keypair` -- Ed25519 identity with its ``did:nil:`` identifier.
- :func:`split` / :func:`combine` -- XOR secret sharing across custody nodes.
"""
from __future__ import annotations

from sealvault.crypto.envelope import (
    HEADER_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    open_envelope,
    open_to_file,
    seal,
    seal_file,
)
from sealvault.crypto.identity import Keypair, is_did, public_key_from_did
from sealvault.crypto.kdf import KEY_LENGTH, derive_key, derive_key_from_hex
from sealvault.crypto.sharing import combine, split

__all__ = [
    "HEADER_SIZE",
    "KEY_LENGTH",
    "NONCE_SIZE",
    "TAG_SIZE",
    "Keypair",
    "combine",
    "derive_key",
    "derive_key_from_hex",
    "is_did",
    "open_envelope",
    "open_to_file",
    "public_key_from_did",
    "seal",
    "seal_file",
    "split",
]
