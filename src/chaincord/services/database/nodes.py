"""Durable storage of message nodes."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from chaincord.core.models import MsgNode
from chaincord.services.database.core import _with_reconnect

if TYPE_CHECKING:
    from .core import DatabaseProtocol as _Base
else:
    _Base = object

logger = logging.getLogger(__name__)


def _normalize_message_id(message_id: int | str) -> str:
    # int() strips subclass metadata such as discord snowflake wrappers
    try:
        return str(int(message_id))
    except (TypeError, ValueError):
        return str(message_id)


class MessageNodeMixin(_Base):
    """Mixin that stores one JSON record per message id."""

    def _init_node_tables(self) -> None:
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS message_nodes (
                message_id TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.commit()

    @_with_reconnect
    def load_node(self, message_id: int | str) -> MsgNode | None:
        """Return the stored node for ``message_id``, or None on a miss."""
        conn = self._get_connection()
        row = conn.execute(
            "SELECT payload FROM message_nodes WHERE message_id = ?",
            (_normalize_message_id(message_id),),
        ).fetchone()
        if row is None or not row[0]:
            return None

        try:
            record = json.loads(row[0])
        except json.JSONDecodeError as exc:
            logger.warning(
                "Discarding corrupt node record for message %s: %s",
                message_id,
                exc,
            )
            return None
        if not isinstance(record, dict):
            logger.warning("Discarding non-object node record for %s", message_id)
            return None
        return MsgNode.from_record(record)

    @_with_reconnect
    def save_node(self, message_id: int | str, node: MsgNode) -> None:
        """Upsert the persisted fields of ``node``."""
        payload = json.dumps(node.to_record(), default=str)
        conn = self._get_connection()
        conn.execute(
            """INSERT INTO message_nodes (message_id, payload)
               VALUES (?, ?)
               ON CONFLICT(message_id) DO UPDATE SET
                   payload = excluded.payload,
                   updated_at = CURRENT_TIMESTAMP""",
            (_normalize_message_id(message_id), payload),
        )
        conn.commit()
        self._sync()

    @_with_reconnect
    def delete_node(self, message_id: int | str) -> None:
        """Remove the stored node for ``message_id`` if present."""
        conn = self._get_connection()
        conn.execute(
            "DELETE FROM message_nodes WHERE message_id = ?",
            (_normalize_message_id(message_id),),
        )
        conn.commit()
        self._sync()
