"""XOR secret sharing across custody nodes.

A secret is split into ``n`` shares so that each custody node holds one
share and no single node learns anything about the secret.  The first
``n - 1`` shares are uniformly random; the last is the XOR of the secret
with all of them.  All ``n`` shares are required to recombine.
"""
from __future__ import annotations

import secrets
from collections.abc import Sequence
from functools import reduce


def _xor(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b, strict=True))


def split(secret: bytes, n: int) -> list[bytes]:
    """Split *secret* into *n* additive XOR shares."""
    if n < 1:
        raise ValueError(f"share count must be at least 1, got {n}")
    if n == 1:
        return [bytes(secret)]
    randoms = [secrets.token_bytes(len(secret)) for _ in range(n - 1)]
    last = reduce(_xor, randoms, bytes(secret))
    return [*randoms, last]


def combine(shares: Sequence[bytes]) -> bytes:
    """Recombine a complete set of shares produced by :func:`split`."""
    if not shares:
        raise ValueError("at least one share is required")
    lengths = {len(s) for s in shares}
    if len(lengths) != 1:
        raise ValueError("shares must all have the same length")
    return reduce(_xor, shares[1:], bytes(shares[0]))
