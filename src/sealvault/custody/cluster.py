"""Custody across several nodes with one XOR share per node.

:class:`ShardedCustodyService` presents a set of custody nodes as a
single :class:`~sealvault.core.interfaces.CustodyService`.  On write the
secret is split with :func:`sealvault.crypto.sharing.split` and node
``i`` receives share ``i``; on read every node is asked for its share
and the results are recombined.  Every node must succeed.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from sealvault.core.errors import ShareMismatch
from sealvault.core.types import Secret, StoreAck
from sealvault.crypto import sharing

if TYPE_CHECKING:
    from sealvault.core.interfaces import CustodyService
    from sealvault.core.types import (
        AccessControl,
        BuilderProfile,
        CapabilityToken,
        Did,
        NamespaceSpec,
    )

logger = logging.getLogger(__name__)


class ShardedCustodyService:
    """Fans custody operations out to every node, one at a time.

    Parameters
    ----------
    nodes:
        The custody nodes.  Order matters: share ``i`` always goes to
        ``nodes[i]``.
    """

    def __init__(self, nodes: Sequence[CustodyService]) -> None:
        if not nodes:
            raise ValueError("at least one custody node is required")
        self._nodes = list(nodes)

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    async def read_profile(self, builder: Did) -> BuilderProfile:
        """Namespaces are only reported if every node has them."""
        profiles = [await node.read_profile(builder) for node in self._nodes]
        common = set(profiles[0].namespaces)
        for profile in profiles[1:]:
            common &= set(profile.namespaces)
        first = profiles[0]
        return first.model_copy(
            update={"namespaces": [ns for ns in first.namespaces if ns in common]}
        )

    async def create_namespace(
        self, spec: NamespaceSpec, token: CapabilityToken
    ) -> str:
        for node in self._nodes:
            await node.create_namespace(spec, token)
        return spec.namespace_id

    async def store_share(
        self,
        *,
        owner: Did,
        acl: AccessControl,
        namespace_id: str,
        document_id: str,
        share: str,
        token: CapabilityToken,
    ) -> StoreAck:
        parts = sharing.split(Secret.from_hex(share).expose(), len(self._nodes))
        for index, (node, part) in enumerate(zip(self._nodes, parts, strict=True)):
            await node.store_share(
                owner=owner,
                acl=acl,
                namespace_id=namespace_id,
                document_id=document_id,
                share=part.hex(),
                token=token,
            )
            logger.debug("Stored share %d/%d for %s", index + 1, len(parts), document_id)
        return StoreAck(
            namespace_id=namespace_id,
            document_id=document_id,
            nodes=len(self._nodes),
        )

    async def read_share(
        self,
        namespace_id: str,
        document_id: str,
        token: CapabilityToken,
    ) -> str:
        parts: list[bytes] = []
        for node in self._nodes:
            part = await node.read_share(namespace_id, document_id, token)
            parts.append(Secret.from_hex(part).expose())
        try:
            return sharing.combine(parts).hex()
        except ValueError as exc:
            raise ShareMismatch(
                "Custody nodes returned shares of different lengths",
                details={"document_id": document_id},
            ) from exc
