"""Ed25519 identities and their DIDs.

An identity is an Ed25519 key pair named by ``did:nil:<hex public key>``.
Because the DID embeds the raw public key, a verifier can check a
signature from the DID alone, with no key registry.
"""
from __future__ import annotations

import re

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from sealvault.core.errors import ChainInvalid, MalformedSecret
from sealvault.core.types import Did, Secret

DID_PREFIX = "did:nil:"

_DID_RE: re.Pattern[str] = re.compile(r"^did:nil:(?P<key>[0-9a-f]{64})$")


class Keypair:
    """An Ed25519 signing key and its DID.

    Usage
    -----
    ::

        builder = Keypair.from_hex(config.builder_private_key.get_secret_value())
        user = Keypair.from_secret(Secret.generate())
        user.did   # 'did:nil:3b6a...'
    """

    __slots__ = ("_private_key", "_did")

    def __init__(self, private_key: ed25519.Ed25519PrivateKey) -> None:
        self._private_key = private_key
        raw_public = private_key.public_key().public_bytes(
            serialization.Encoding.Raw,
            serialization.PublicFormat.Raw,
        )
        self._did = Did(DID_PREFIX + raw_public.hex())

    @classmethod
    def generate(cls) -> Keypair:
        return cls(ed25519.Ed25519PrivateKey.generate())

    @classmethod
    def from_secret(cls, secret: Secret) -> Keypair:
        """Use a 32-byte secret directly as the private key seed."""
        material = secret.expose()
        if len(material) != 32:
            raise MalformedSecret(
                "Identity secret must be exactly 32 bytes",
                details={"length": len(material)},
            )
        return cls(ed25519.Ed25519PrivateKey.from_private_bytes(material))

    @classmethod
    def from_hex(cls, private_key_hex: str) -> Keypair:
        return cls.from_secret(Secret.from_hex(private_key_hex))

    @property
    def did(self) -> Did:
        return self._did

    @property
    def signing_key(self) -> ed25519.Ed25519PrivateKey:
        return self._private_key

    def private_key_hex(self) -> str:
        """Reveal the raw private key as hex.  Use with caution."""
        return self._private_key.private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption(),
        ).hex()

    def __repr__(self) -> str:
        return f"Keypair(did={self._did!r})"


def is_did(value: str) -> bool:
    return _DID_RE.match(value) is not None


def public_key_from_did(did: str) -> ed25519.Ed25519PublicKey:
    """Recover the verification key embedded in *did*.

    Raises :class:`ChainInvalid` if *did* is not a well-formed
    ``did:nil`` identifier.
    """
    match = _DID_RE.match(did)
    if match is None:
        raise ChainInvalid(
            f"Malformed DID in token: {did!r}",
            details={"did": did},
        )
    return ed25519.Ed25519PublicKey.from_public_bytes(bytes.fromhex(match["key"]))
