"""Wire encoding for capability token chains.

Each link is a compact JWS signed with the issuer's Ed25519 key
(``EdDSA``).  A chain is serialised leaf first, links joined by ``/``::

    <invocation-or-delegation>/<delegation>/.../<root>

Every non-root link names its parent through the ``prf`` claim, the
SHA-256 hex digest of the parent's compact link.  Parsing rebuilds the
owned parent chain and checks that linkage but does NOT verify
signatures; that is :class:`~sealvault.tokens.verification.TokenVerifier`'s job.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

import jwt
from pydantic import ValidationError

from sealvault.core.errors import ChainInvalid
from sealvault.core.types import CapabilityToken, Command, Did, TokenKind

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric import ed25519

    from sealvault.crypto.identity import Keypair

ALGORITHM = "EdDSA"
LINK_SEPARATOR = "/"

REQUIRED_CLAIMS: tuple[str, ...] = ("kind", "iss", "aud", "sub", "cmd", "exp", "nonce")


def claims_of(
    *,
    kind: TokenKind,
    issuer: Did,
    audience: Did,
    subject: Did,
    command: Command,
    expires_at: int,
    nonce: str,
    body: dict[str, Any],
    proofs: tuple[str, ...],
) -> dict[str, Any]:
    """Build the JWT claim set for one link."""
    return {
        "kind": str(kind),
        "iss": str(issuer),
        "aud": str(audience),
        "sub": str(subject),
        "cmd": str(command),
        "exp": expires_at,
        "nonce": nonce,
        "body": body,
        "prf": list(proofs),
    }


def token_claims(token: CapabilityToken) -> dict[str, Any]:
    """Return the claim set that *token*'s own fields describe."""
    return claims_of(
        kind=token.kind,
        issuer=token.issuer,
        audience=token.audience,
        subject=token.subject,
        command=token.command,
        expires_at=token.expires_at,
        nonce=token.nonce,
        body=token.body,
        proofs=token.proofs,
    )


def sign_link(claims: dict[str, Any], signer: Keypair) -> str:
    """Sign *claims* with *signer* and return the compact JWS."""
    raw: str = jwt.encode(claims, signer.signing_key, algorithm=ALGORITHM)
    return raw


def decode_link(raw: str) -> dict[str, Any]:
    """Decode a link WITHOUT verifying its signature."""
    try:
        claims: dict[str, Any] = jwt.decode(
            raw,
            options={"verify_signature": False},
        )
    except jwt.InvalidTokenError as exc:
        raise ChainInvalid(f"Undecodable token link: {exc}") from exc
    return claims


def verify_link(raw: str, public_key: ed25519.Ed25519PublicKey) -> dict[str, Any]:
    """Verify a link's signature and return its claims.

    Expiry is deliberately not checked here so that the verifier can
    apply its own clock and report :class:`Expired` distinctly.
    """
    try:
        claims: dict[str, Any] = jwt.decode(
            raw,
            public_key,
            algorithms=[ALGORITHM],
            options={
                "verify_exp": False,
                "verify_aud": False,
                "require": list(REQUIRED_CLAIMS),
            },
        )
    except jwt.InvalidTokenError as exc:
        raise ChainInvalid(
            f"Token link signature verification failed: {exc}",
        ) from exc
    return claims


def token_from_claims(
    claims: dict[str, Any],
    raw: str,
    parent: CapabilityToken | None,
) -> CapabilityToken:
    """Build a :class:`CapabilityToken` from decoded claims."""
    missing = [c for c in REQUIRED_CLAIMS if c not in claims]
    if missing:
        raise ChainInvalid(
            "Token link is missing required claims",
            details={"missing": missing},
        )
    try:
        return CapabilityToken(
            kind=TokenKind(claims["kind"]),
            issuer=Did(claims["iss"]),
            audience=Did(claims["aud"]),
            subject=Did(claims["sub"]),
            command=Command.parse(claims["cmd"]),
            expires_at=claims["exp"],
            nonce=claims["nonce"],
            body=claims.get("body") or {},
            proofs=tuple(claims.get("prf") or ()),
            parent=parent,
            raw=raw,
        )
    except (ValidationError, ValueError, TypeError, AttributeError) as exc:
        raise ChainInvalid(f"Malformed token link: {exc}") from exc


def serialize_token(token: CapabilityToken) -> str:
    """Serialise *token* and its ancestors, leaf first."""
    return LINK_SEPARATOR.join(link.raw for link in token.chain)


def parse_token(envelope: str) -> CapabilityToken:
    """Parse a serialised chain back into an owned token chain.

    Raises
    ------
    ChainInvalid
        If any link cannot be decoded or a ``prf`` claim does not name
        the next link in the envelope.
    """
    links = [part for part in envelope.strip().split(LINK_SEPARATOR) if part]
    if not links:
        raise ChainInvalid("Empty token envelope")

    parent: CapabilityToken | None = None
    for raw in reversed(links):
        token = token_from_claims(decode_link(raw), raw, parent)
        expected = (parent.link_hash,) if parent is not None else ()
        if token.proofs != expected:
            raise ChainInvalid(
                "Token link does not reference its parent",
                details={"expected": list(expected), "found": list(token.proofs)},
            )
        parent = token

    assert parent is not None
    return parent
