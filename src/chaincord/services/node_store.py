"""Bounded in-memory cache of message nodes."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict

from chaincord.core.config import MAX_MESSAGE_NODES
from chaincord.core.models import MsgNode

logger = logging.getLogger(__name__)


class NodeStore:
    """Least-recently-used cache of :class:`MsgNode` keyed by message id.

    The map is guarded by one cache-level lock and each node carries its own
    lock for field mutation. Eviction only drops the in-memory entry; the
    store never reads or writes durable storage, callers decide when a node
    is complete enough to persist.
    """

    def __init__(self, max_entries: int = MAX_MESSAGE_NODES) -> None:
        """Create an empty cache holding at most ``max_entries`` nodes."""
        if max_entries <= 0:
            message = "max_entries must be positive"
            raise ValueError(message)
        self.max_entries = max_entries
        self._nodes: OrderedDict[int, MsgNode] = OrderedDict()
        self._lock = asyncio.Lock()

    async def get_or_create(self, msg_id: int) -> MsgNode:
        """Return the cached node for ``msg_id`` or cache a new empty one."""
        async with self._lock:
            node = self._nodes.get(msg_id)
            if node is not None:
                self._nodes.move_to_end(msg_id)
                return node
            node = MsgNode()
            self._insert(msg_id, node)
            return node

    async def get(self, msg_id: int) -> MsgNode | None:
        """Memory-only lookup; a hit refreshes the entry's recency."""
        async with self._lock:
            node = self._nodes.get(msg_id)
            if node is not None:
                self._nodes.move_to_end(msg_id)
            return node

    async def set(self, msg_id: int, node: MsgNode) -> None:
        """Insert or replace the node for ``msg_id``."""
        async with self._lock:
            if msg_id in self._nodes:
                self._nodes[msg_id] = node
                self._nodes.move_to_end(msg_id)
                return
            self._insert(msg_id, node)

    async def set_if_absent(self, msg_id: int, node: MsgNode) -> MsgNode:
        """Cache ``node`` unless another task cached one first; return the winner."""
        async with self._lock:
            existing = self._nodes.get(msg_id)
            if existing is not None:
                self._nodes.move_to_end(msg_id)
                return existing
            self._insert(msg_id, node)
            return node

    async def delete(self, msg_id: int) -> None:
        """Drop ``msg_id`` from memory if present."""
        async with self._lock:
            self._nodes.pop(msg_id, None)

    def size(self) -> int:
        """Return the number of cached nodes."""
        return len(self._nodes)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, msg_id: object) -> bool:
        return msg_id in self._nodes

    def _insert(self, msg_id: int, node: MsgNode) -> None:
        # Caller holds self._lock.
        while len(self._nodes) >= self.max_entries:
            evicted_id, _ = self._nodes.popitem(last=False)
            logger.debug("Evicted message node %s from memory cache", evicted_id)
        self._nodes[msg_id] = node
