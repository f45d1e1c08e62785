"""Database service package."""

from __future__ import annotations

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, TypeVar

from chaincord.core.error_handling import log_exception
from chaincord.services.database.core import DATABASE_ERRORS, DatabaseCore
from chaincord.services.database.nodes import MessageNodeMixin

if TYPE_CHECKING:
    from collections.abc import Callable

    from chaincord.core.models import MsgNode

logger = logging.getLogger(__name__)
T = TypeVar("T")


class NodeDB(DatabaseCore, MessageNodeMixin):
    """Turso/libSQL-backed durable tier for message nodes.

    The synchronous methods block on disk or network I/O. Async code uses
    the ``a``-prefixed wrappers, which run every call on one dedicated
    thread because a libSQL connection must stay on a single thread.
    """

    def __init__(
        self,
        db_url: str | None = None,
        auth_token: str | None = None,
        local_db_path: str = "chaincord.db",
    ) -> None:
        """Store settings; call :meth:`init` before use."""
        super().__init__(db_url, auth_token, local_db_path)
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="chaincord-db",
        )

    async def _run(self, func: Callable[..., T], *args: Any) -> T:  # noqa: ANN401
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor,
            functools.partial(func, *args),
        )

    def _create_tables(self) -> None:
        self._init_node_tables()
        self._sync()

    async def init(self) -> None:
        """Open the connection and create tables."""
        await self._run(self._create_tables)

    async def aload_node(self, message_id: int) -> MsgNode | None:
        """Load a node without blocking the event loop.

        Storage errors are logged and reported as a miss so a broken
        database degrades to a cold cache instead of failing the turn.
        """
        try:
            return await self._run(self.load_node, message_id)
        except DATABASE_ERRORS as exc:
            log_exception(
                logger=logger,
                message="Failed to load message node",
                error=exc,
                context={"message_id": message_id},
            )
            return None

    async def asave_node(self, message_id: int, node: MsgNode) -> bool:
        """Persist a detached node snapshot; returns False on failure."""
        try:
            await self._run(self.save_node, message_id, node)
        except DATABASE_ERRORS as exc:
            log_exception(
                logger=logger,
                message="Failed to persist message node",
                error=exc,
                context={"message_id": message_id},
            )
            return False
        return True

    async def adelete_node(self, message_id: int) -> None:
        """Remove a stored node without blocking the event loop."""
        await self._run(self.delete_node, message_id)

    async def aclose(self) -> None:
        """Close the connection and stop the database thread."""
        await self._run(self.close)
        self._executor.shutdown(wait=False)


async def init_node_db(
    local_db_path: str = "chaincord.db",
    db_url: str | None = None,
    auth_token: str | None = None,
) -> NodeDB:
    """Create the node database and its tables."""
    instance = NodeDB(
        db_url=db_url,
        auth_token=auth_token,
        local_db_path=local_db_path,
    )
    await instance.init()
    return instance


__all__ = [
    "DATABASE_ERRORS",
    "NodeDB",
    "init_node_db",
]
