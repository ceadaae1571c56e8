"""Capability chain verification.

Walks a presented token from its root down to the leaf.  For every link:

1. **Signature** -- the compact link verifies under the public key
   embedded in the issuer's DID, its claims match the token's fields, and
   its ``prf`` claim names the parent link.
2. **Expiry** -- ``now < expires_at`` (strict less-than) for the link
   and therefore for every ancestor.
3. **Narrowing** -- issuer equals the parent's audience, subject is
   inherited, command extends the parent's, expiry is not later than
   the parent's, and the parent is not an invocation.

Finally the root issuer MUST be one of the trusted roots.  If ANY check
fails, the whole chain is rejected.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from sealvault.core.clock import Clock, SystemClock
from sealvault.core.errors import ChainInvalid, Expired, TokenError, UntrustedRoot
from sealvault.core.types import CapabilityToken, Command, Did, TokenKind
from sealvault.crypto.identity import public_key_from_did
from sealvault.tokens.codec import parse_token, token_claims, verify_link

# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class TokenVerificationResult:
    """Outcome of :meth:`TokenVerifier.verify`.

    Attributes
    ----------
    valid:
        ``True`` if every link passed every check.
    token:
        The parsed leaf token (``None`` if the envelope could not be
        parsed at all).
    error:
        The failure, one of :class:`ChainInvalid`, :class:`Expired` or
        :class:`UntrustedRoot`; ``None`` when valid.
    links_verified:
        Number of links that passed before verification stopped.
    """

    valid: bool
    token: CapabilityToken | None = None
    error: TokenError | None = None
    links_verified: int = 0


# ---------------------------------------------------------------------------
# Verifier
# ---------------------------------------------------------------------------

class TokenVerifier:
    """Verifies capability chains against a set of trusted root issuers.

    Parameters
    ----------
    trusted_roots:
        DIDs whose root tokens are accepted.
    clock:
        Time source for expiry checks.  Defaults to the system clock.
    """

    def __init__(
        self,
        trusted_roots: Iterable[Did],
        *,
        clock: Clock | None = None,
    ) -> None:
        self._trusted: frozenset[str] = frozenset(str(d) for d in trusted_roots)
        self._clock: Clock = clock or SystemClock()

    @property
    def trusted_roots(self) -> frozenset[str]:
        return self._trusted

    def verify(
        self,
        token: CapabilityToken | str,
        *,
        audience: Did | None = None,
        required_command: Command | str | None = None,
    ) -> TokenVerificationResult:
        """Verify *token* and return a tagged result instead of raising."""
        parsed: CapabilityToken | None = None
        counter = _Counter()
        try:
            parsed = parse_token(token) if isinstance(token, str) else token
            self._verify_chain(
                parsed,
                audience=audience,
                required_command=required_command,
                counter=counter,
            )
        except TokenError as exc:
            return TokenVerificationResult(
                valid=False,
                token=parsed,
                error=exc,
                links_verified=counter.value,
            )
        return TokenVerificationResult(
            valid=True,
            token=parsed,
            links_verified=counter.value,
        )

    def verify_or_raise(
        self,
        token: CapabilityToken | str,
        *,
        audience: Did | None = None,
        required_command: Command | str | None = None,
    ) -> CapabilityToken:
        """Verify *token* and return the parsed leaf.

        Raises
        ------
        ChainInvalid
            A link is malformed, forged, mislinked or broader than its
            parent, or the leaf does not match *audience* /
            *required_command*.
        Expired
            Any link's ``expires_at`` has passed.
        UntrustedRoot
            The root issuer is not trusted.
        """
        parsed = parse_token(token) if isinstance(token, str) else token
        self._verify_chain(
            parsed,
            audience=audience,
            required_command=required_command,
            counter=_Counter(),
        )
        return parsed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _verify_chain(
        self,
        token: CapabilityToken,
        *,
        audience: Did | None,
        required_command: Command | str | None,
        counter: _Counter,
    ) -> None:
        now = self._clock.now()
        chain = list(reversed(token.chain))

        for position, link in enumerate(chain):
            parent = chain[position - 1] if position else None
            self._check_signature(link, parent, position)
            if link.is_expired(now):
                raise Expired(
                    details={
                        "position": position,
                        "kind": str(link.kind),
                        "expires_at": link.expires_at,
                        "now": int(now),
                    },
                )
            _check_narrowing(link, parent, position)
            counter.value += 1

        root = chain[0]
        if str(root.issuer) not in self._trusted:
            raise UntrustedRoot(details={"root_issuer": str(root.issuer)})

        if audience is not None and token.audience != audience:
            raise ChainInvalid(
                "Token audience does not match the presenting identity",
                details={
                    "expected_audience": str(audience),
                    "token_audience": str(token.audience),
                },
            )
        if required_command is not None:
            required = Command.coerce(required_command)
            if not required.is_attenuation_of(token.command):
                raise ChainInvalid(
                    "Token command does not cover the requested operation",
                    details={
                        "required_command": str(required),
                        "token_command": str(token.command),
                    },
                )

    @staticmethod
    def _check_signature(
        link: CapabilityToken,
        parent: CapabilityToken | None,
        position: int,
    ) -> None:
        claims = verify_link(link.raw, public_key_from_did(link.issuer))
        if claims != token_claims(link):
            raise ChainInvalid(
                "Token fields do not match the signed payload",
                details={"position": position},
            )
        expected = (parent.link_hash,) if parent is not None else ()
        if link.proofs != expected:
            raise ChainInvalid(
                "Token link does not reference its parent",
                details={"position": position},
            )


@dataclass(slots=True)
class _Counter:
    value: int = 0


def _check_narrowing(
    link: CapabilityToken,
    parent: CapabilityToken | None,
    position: int,
) -> None:
    if parent is None:
        if link.kind != TokenKind.ROOT:
            raise ChainInvalid(
                "Chain does not start with a root token",
                details={"position": position, "kind": str(link.kind)},
            )
        return

    problems: list[str] = []
    if link.kind == TokenKind.ROOT:
        problems.append("root token used as a child link")
    if parent.kind == TokenKind.INVOCATION:
        problems.append("invocation token extended")
    if link.issuer != parent.audience:
        problems.append("issuer is not the parent's audience")
    if link.subject != parent.subject:
        problems.append("subject differs from the parent's")
    if not link.command.is_attenuation_of(parent.command):
        problems.append("command is broader than the parent's")
    if link.expires_at > parent.expires_at:
        problems.append("expiry is later than the parent's")

    if problems:
        raise ChainInvalid(
            "Token link is not a valid narrowing of its parent",
            details={"position": position, "problems": problems},
        )
