"""Core database functionality for Turso/libSQL."""

from __future__ import annotations

import functools
import logging
import os
from typing import TYPE_CHECKING, Any, Concatenate, ParamSpec, Protocol, TypeVar, cast

import libsql as libsql_module

from chaincord.core.error_handling import log_exception

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)
libsql: Any = libsql_module
LibsqlConnection = Any

LIBSQL_ERROR = cast(
    "type[BaseException]",
    getattr(libsql, "LibsqlError", getattr(libsql, "Error", Exception)),
)
DATABASE_ERRORS = (ValueError, LIBSQL_ERROR)


class DatabaseProtocol(Protocol):
    """Protocol for database connection management."""

    def _get_connection(self) -> LibsqlConnection: ...
    def _reconnect(self) -> None: ...
    def _sync(self) -> None: ...


T_Database = TypeVar("T_Database", bound=DatabaseProtocol)
P = ParamSpec("P")
T = TypeVar("T")


def _is_stale_connection_error(error: BaseException) -> bool:
    error_str = str(error)
    return "stream not found" in error_str or "Hrana" in error_str


def _with_reconnect(
    method: Callable[Concatenate[T_Database, P], T],
) -> Callable[Concatenate[T_Database, P], T]:
    """Reconnect once and retry when the Turso stream has gone stale."""

    @functools.wraps(method)
    def wrapper(self: T_Database, *args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return method(self, *args, **kwargs)
        except DATABASE_ERRORS as exc:
            if not _is_stale_connection_error(exc):
                raise
            logger.warning("Turso connection error, reconnecting: %s", exc)
            self._reconnect()
            try:
                return method(self, *args, **kwargs)
            except DATABASE_ERRORS as retry_exc:
                log_exception(
                    logger=logger,
                    message="Failed to reconnect to Turso",
                    error=retry_exc,
                    context={"method": method.__name__},
                )
                raise

    return wrapper


class DatabaseCore:
    """Connection management for an embedded libSQL replica."""

    def __init__(
        self,
        db_url: str | None = None,
        auth_token: str | None = None,
        local_db_path: str = "chaincord.db",
    ) -> None:
        """Store connection settings; the connection opens lazily.

        Args:
            db_url: Turso database URL (e.g., libsql://your-db.turso.io)
            auth_token: Turso authentication token
            local_db_path: Local path for the embedded replica or plain file

        """
        self.db_url = db_url or os.getenv("TURSO_DATABASE_URL")
        self.auth_token = auth_token or os.getenv("TURSO_AUTH_TOKEN")
        self.local_db_path = local_db_path
        self._conn: LibsqlConnection | None = None

    def _close_quietly(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        except DATABASE_ERRORS as exc:
            logger.debug("Ignoring error while closing database: %s", exc)
        self._conn = None

    def _reconnect(self) -> None:
        self._close_quietly()
        self._get_connection()

    def _fallback_to_local(self, reason: BaseException) -> None:
        logger.warning(
            "Falling back to local database at %s due to Turso error: %s",
            self.local_db_path,
            reason,
        )
        self._close_quietly()
        self.db_url = None
        self.auth_token = None
        self._conn = libsql.connect(self.local_db_path)

    def _get_connection(self) -> LibsqlConnection:
        if self._conn is not None:
            return self._conn

        if not (self.db_url and self.auth_token):
            logger.info(
                "No Turso credentials found, using local database %s",
                self.local_db_path,
            )
            self._conn = libsql.connect(self.local_db_path)
            return self._conn

        try:
            self._conn = libsql.connect(
                self.local_db_path,
                sync_url=self.db_url,
                auth_token=self.auth_token,
            )
            self._conn.sync()
            logger.info("Connected to Turso database: %s", self.db_url)
        except DATABASE_ERRORS as exc:
            self._fallback_to_local(exc)
        return self._conn

    def _sync(self) -> None:
        """Push local writes to Turso when running as a replica."""
        if self._conn is None or not (self.db_url and self.auth_token):
            return
        try:
            self._conn.sync()
        except DATABASE_ERRORS as exc:
            self._fallback_to_local(exc)

    def close(self) -> None:
        """Close the underlying connection."""
        self._close_quietly()
