"""Centralized exception logging and process-level hooks."""

from __future__ import annotations

import logging
import sys
import threading
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Mapping
    from types import TracebackType

LOGGER = logging.getLogger(__name__)

# Exceptions a top-level handler may catch, log and survive.
COMMON_HANDLER_EXCEPTIONS = (
    AssertionError,
    AttributeError,
    LookupError,
    OSError,
    RuntimeError,
    TimeoutError,
    TypeError,
    ValueError,
)


def _format_context(context: Mapping[str, object]) -> str:
    return ", ".join(f"{key}={context[key]!r}" for key in sorted(context))


def log_exception(
    *,
    logger: logging.Logger,
    message: str,
    error: BaseException,
    context: Mapping[str, object] | None = None,
) -> None:
    """Write one structured error entry with the traceback of ``error``."""
    if not context:
        logger.error(message, exc_info=error)
        return
    logger.error("%s | %s", message, _format_context(context), exc_info=error)


def log_task_exception(task: asyncio.Task[Any]) -> None:
    """Done-callback that logs a failed background task instead of losing it."""
    if task.cancelled():
        return
    error = task.exception()
    if error is None:
        return
    log_exception(
        logger=LOGGER,
        message="Background task failed",
        error=error,
        context={"task": task.get_name()},
    )


def register_asyncio_exception_handler(
    loop: asyncio.AbstractEventLoop,
    *,
    logger: logging.Logger | None = None,
) -> None:
    """Route unhandled loop errors through :func:`log_exception`."""
    target_logger = logger or LOGGER

    def _handle_exception(
        _loop: asyncio.AbstractEventLoop,
        context: dict[str, Any],
    ) -> None:
        message = str(context.get("message") or "Unhandled asyncio exception")
        error = context.get("exception")
        details = {key: value for key, value in context.items() if key != "message"}
        if isinstance(error, BaseException):
            log_exception(
                logger=target_logger,
                message=message,
                error=error,
                context=details,
            )
        else:
            target_logger.error("%s | %s", message, _format_context(details))

    loop.set_exception_handler(_handle_exception)


def install_global_exception_hooks(*, logger: logging.Logger | None = None) -> None:
    """Log uncaught exceptions from the main thread and worker threads."""
    target_logger = logger or LOGGER
    previous_excepthook = sys.excepthook
    previous_thread_hook = threading.excepthook

    def _sys_excepthook(
        exc_type: type[BaseException],
        exc_value: BaseException,
        exc_traceback: TracebackType | None,
    ) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            previous_excepthook(exc_type, exc_value, exc_traceback)
            return
        target_logger.error(
            "Unhandled exception at process boundary",
            exc_info=(exc_type, exc_value, exc_traceback),
        )

    def _thread_excepthook(args: threading.ExceptHookArgs) -> None:
        if issubclass(args.exc_type, KeyboardInterrupt):
            previous_thread_hook(args)
            return
        thread_name = args.thread.name if args.thread else "unknown"
        if args.exc_value is None:
            target_logger.error("Unhandled thread exception | thread=%s", thread_name)
            return
        target_logger.error(
            "Unhandled thread exception | thread=%s",
            thread_name,
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )

    sys.excepthook = _sys_excepthook
    threading.excepthook = _thread_excepthook


def log_discord_event_error(
    *,
    logger: logging.Logger,
    event_name: str,
    args: tuple[object, ...],
    kwargs: Mapping[str, object],
) -> None:
    """Log the exception currently being handled by a Discord event."""
    context = {
        "event": event_name,
        "args_count": len(args),
        "kwargs_keys": tuple(sorted(kwargs)),
    }
    exc_value = sys.exc_info()[1]
    if exc_value is None:
        logger.error("Unhandled Discord event error | %s", _format_context(context))
        return
    log_exception(
        logger=logger,
        message="Unhandled Discord event error",
        error=exc_value,
        context=context,
    )
