"""Authenticated encryption envelope.

Wire layout (bit-exact, shared with every reader of stored content)::

    [16-byte nonce][16-byte GCM tag][ciphertext]

AES-256-GCM with a fresh random 16-byte nonce per call and no associated
data.  The ciphertext travels through untrusted public storage, so the
tag is always verified before any plaintext is released.
"""
from __future__ import annotations

import os
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from sealvault.core.errors import AuthenticationFailed, EnvelopeTooShort, InvalidKeyLength
from sealvault.crypto.kdf import KEY_LENGTH

NONCE_SIZE = 16
TAG_SIZE = 16
HEADER_SIZE = NONCE_SIZE + TAG_SIZE


def _cipher(key: bytes) -> AESGCM:
    if len(key) != KEY_LENGTH:
        raise InvalidKeyLength(details={"length": len(key)})
    return AESGCM(key)


def seal(plaintext: bytes, key: bytes) -> bytes:
    """Encrypt *plaintext* and return ``nonce || tag || ciphertext``.

    The output is always exactly ``len(plaintext) + 32`` bytes.
    """
    aead = _cipher(key)
    nonce = os.urandom(NONCE_SIZE)
    # AESGCM appends the tag to the ciphertext.
    sealed = aead.encrypt(nonce, plaintext, None)
    ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
    return nonce + tag + ciphertext


def open_envelope(envelope: bytes, key: bytes) -> bytes:
    """Verify and decrypt an envelope produced by :func:`seal`.

    Raises
    ------
    EnvelopeTooShort
        If *envelope* is shorter than the 32-byte header.
    AuthenticationFailed
        If the tag does not verify (tampering, wrong key or wrong nonce).
    """
    if len(envelope) < HEADER_SIZE:
        raise EnvelopeTooShort(details={"length": len(envelope)})
    aead = _cipher(key)
    nonce = envelope[:NONCE_SIZE]
    tag = envelope[NONCE_SIZE:HEADER_SIZE]
    ciphertext = envelope[HEADER_SIZE:]
    try:
        return aead.decrypt(nonce, ciphertext + tag, None)
    except InvalidTag:
        raise AuthenticationFailed(details={"length": len(envelope)}) from None


def seal_file(path: Path | str, key: bytes) -> bytes:
    """Read *path* and return its sealed envelope."""
    return seal(Path(path).read_bytes(), key)


def open_to_file(envelope: bytes, key: bytes, path: Path | str) -> bytes:
    """Open *envelope*, write the plaintext to *path*, and return it.

    Nothing is written unless authentication succeeds.
    """
    plaintext = open_envelope(envelope, key)
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(plaintext)
    return plaintext
