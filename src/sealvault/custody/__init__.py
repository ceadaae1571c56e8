"""Key custody spread over several nodes."""
from __future__ import annotations

from sealvault.custody.cluster import ShardedCustodyService

__all__ = ["ShardedCustodyService"]
