"""Capability token issuance.

Key invariants:
* **Attenuation rule**: a child's command MUST extend its parent's command
  path (the parent's command is a prefix of the child's).
* **Time bound**: a child MUST NOT outlive its parent.
* **Chain rule**: only the parent's audience may extend it, and an
  invocation is terminal.

These are enforced at issuance so a caller learns about a bad request
immediately; :class:`~sealvault.tokens.verification.TokenVerifier`
re-checks all of them for tokens received from elsewhere.
"""
from __future__ import annotations

import secrets
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from sealvault.core.clock import Clock, SystemClock
from sealvault.core.errors import ChainInvalid, CommandNotSubset, ExpiryExceedsParent
from sealvault.core.types import CapabilityToken, Command, Did, TokenKind
from sealvault.tokens.codec import claims_of, decode_link, sign_link, token_from_claims

if TYPE_CHECKING:
    from sealvault.crypto.identity import Keypair

CommandLike = Command | str | Iterable[str]


class TokenIssuer:
    """Builds signed root, delegation and invocation tokens.

    Parameters
    ----------
    clock:
        Time source for ``expires_at`` computation.  Defaults to the
        system clock.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock: Clock = clock or SystemClock()

    def _now(self) -> int:
        return int(self._clock.now())

    def issue_root(
        self,
        identity: Keypair,
        *,
        ttl_seconds: int,
        command: CommandLike = (),
        audience: Did | None = None,
        body: dict[str, Any] | None = None,
    ) -> CapabilityToken:
        """Issue a self-signed root token.

        The root grants *command* (unconstrained by default) to
        *audience*, which defaults to the issuing identity itself.
        """
        _check_ttl(ttl_seconds)
        granted_to = audience or identity.did
        return self._sign(
            identity,
            kind=TokenKind.ROOT,
            audience=granted_to,
            subject=granted_to,
            command=Command.coerce(command),
            expires_at=self._now() + ttl_seconds,
            body=body or {},
            parent=None,
        )

    def delegate(
        self,
        parent: CapabilityToken,
        command: CommandLike,
        audience: Did,
        ttl_seconds: int,
        signing_key: Keypair,
        body: dict[str, Any] | None = None,
    ) -> CapabilityToken:
        """Extend *parent* with a narrower delegation to *audience*.

        Raises
        ------
        CommandNotSubset
            If *command* is not an attenuation of the parent's command.
        ExpiryExceedsParent
            If ``now + ttl_seconds`` is later than the parent's expiry.
        ChainInvalid
            If *parent* is an invocation or *signing_key* is not the
            parent's audience.
        """
        return self._extend(
            TokenKind.DELEGATION,
            parent,
            command,
            audience,
            ttl_seconds,
            signing_key,
            body,
        )

    def invoke(
        self,
        parent: CapabilityToken,
        command: CommandLike,
        audience: Did,
        ttl_seconds: int,
        signing_key: Keypair,
        args: dict[str, Any] | None = None,
    ) -> CapabilityToken:
        """Consume *parent* into a terminal invocation carrying *args*.

        Same checks as :meth:`delegate`.
        """
        return self._extend(
            TokenKind.INVOCATION,
            parent,
            command,
            audience,
            ttl_seconds,
            signing_key,
            args,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _extend(
        self,
        kind: TokenKind,
        parent: CapabilityToken,
        command: CommandLike,
        audience: Did,
        ttl_seconds: int,
        signing_key: Keypair,
        body: dict[str, Any] | None,
    ) -> CapabilityToken:
        _check_ttl(ttl_seconds)

        if parent.kind == TokenKind.INVOCATION:
            raise ChainInvalid(
                "An invocation token cannot be extended",
                details={"parent_command": str(parent.command)},
            )
        if signing_key.did != parent.audience:
            raise ChainInvalid(
                "Only the parent token's audience may extend it",
                details={
                    "parent_audience": str(parent.audience),
                    "signer": str(signing_key.did),
                },
            )

        requested = Command.coerce(command)
        if not requested.is_attenuation_of(parent.command):
            raise CommandNotSubset(
                details={
                    "parent_command": str(parent.command),
                    "requested_command": str(requested),
                },
            )

        expires_at = self._now() + ttl_seconds
        if expires_at > parent.expires_at:
            raise ExpiryExceedsParent(
                details={
                    "parent_expires_at": parent.expires_at,
                    "requested_expires_at": expires_at,
                },
            )

        return self._sign(
            signing_key,
            kind=kind,
            audience=audience,
            subject=parent.subject,
            command=requested,
            expires_at=expires_at,
            body=body or {},
            parent=parent,
        )

    def _sign(
        self,
        signer: Keypair,
        *,
        kind: TokenKind,
        audience: Did,
        subject: Did,
        command: Command,
        expires_at: int,
        body: dict[str, Any],
        parent: CapabilityToken | None,
    ) -> CapabilityToken:
        nonce = secrets.token_hex(16)
        proofs = (parent.link_hash,) if parent is not None else ()
        claims = claims_of(
            kind=kind,
            issuer=signer.did,
            audience=audience,
            subject=subject,
            command=command,
            expires_at=expires_at,
            nonce=nonce,
            body=body,
            proofs=proofs,
        )
        raw = sign_link(claims, signer)
        # Built from the signed payload so the body matches its JSON form.
        return token_from_claims(decode_link(raw), raw, parent)


def _check_ttl(ttl_seconds: int) -> None:
    if ttl_seconds <= 0:
        raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
