"""HTTP clients for the custody nodes and content storage."""
from __future__ import annotations

from sealvault.transport.http import HTTPContentStore, HTTPCustodyNode

__all__ = ["HTTPContentStore", "HTTPCustodyNode"]
