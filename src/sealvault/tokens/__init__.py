"""SealVault capability tokens.

Public API
----------
- :class:`TokenIssuer` -- root, delegation and invocation issuance with
  attenuation and expiry enforcement.
- :class:`TokenVerifier` -- root-to-leaf chain verification.
- :func:`serialize_token` / :func:`parse_token` -- the ``/``-joined compact
  chain form carried in ``Authorization`` headers.
"""
from __future__ import annotations

from sealvault.tokens.codec import parse_token, serialize_token
from sealvault.tokens.issuer import TokenIssuer
from sealvault.tokens.verification import TokenVerificationResult, TokenVerifier

__all__ = [
    "TokenIssuer",
    "TokenVerificationResult",
    "TokenVerifier",
    "parse_token",
    "serialize_token",
]
