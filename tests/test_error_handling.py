from __future__ import annotations

import asyncio
import logging

import pytest

from chaincord.core.error_handling import (
    log_discord_event_error,
    log_exception,
    log_task_exception,
    register_asyncio_exception_handler,
)


def _raise_runtime_error() -> None:
    raise RuntimeError


def _raise_value_error() -> None:
    raise ValueError


def test_log_exception_includes_sorted_context(
    caplog: pytest.LogCaptureFixture,
) -> None:
    logger = logging.getLogger("tests.log_exception")

    with caplog.at_level(logging.ERROR, logger=logger.name):
        log_exception(
            logger=logger,
            message="Worker job failed",
            error=ValueError("bad"),
            context={"worker": 2, "attempt": 1},
        )

    assert "Worker job failed | attempt=1, worker=2" in caplog.text


def test_log_discord_event_error_logs_active_exception(
    caplog: pytest.LogCaptureFixture,
) -> None:
    logger = logging.getLogger("tests.discord_events")

    with caplog.at_level(logging.ERROR, logger=logger.name):
        try:
            _raise_runtime_error()
        except RuntimeError:
            log_discord_event_error(
                logger=logger,
                event_name="on_message",
                args=(),
                kwargs={},
            )

    assert "Unhandled Discord event error" in caplog.text
    assert "event='on_message'" in caplog.text


@pytest.mark.asyncio
async def test_register_asyncio_exception_handler_logs_errors(
    caplog: pytest.LogCaptureFixture,
) -> None:
    loop = asyncio.get_running_loop()
    previous_handler = loop.get_exception_handler()
    logger = logging.getLogger("tests.asyncio_handler")
    register_asyncio_exception_handler(loop, logger=logger)
    handler = loop.get_exception_handler()
    assert handler is not None

    try:
        with caplog.at_level(logging.ERROR, logger=logger.name):
            try:
                _raise_value_error()
            except ValueError as exc:
                handler(loop, {"message": "loop context", "exception": exc})
    finally:
        loop.set_exception_handler(previous_handler)

    assert "loop context" in caplog.text


@pytest.mark.asyncio
async def test_log_task_exception_reports_failed_tasks(
    caplog: pytest.LogCaptureFixture,
) -> None:
    async def _fail() -> None:
        _raise_value_error()

    async def _wait_forever() -> None:
        await asyncio.Event().wait()

    failed = asyncio.create_task(_fail(), name="failing-task")
    cancelled = asyncio.create_task(_wait_forever(), name="cancelled-task")
    await asyncio.gather(failed, return_exceptions=True)
    cancelled.cancel()
    await asyncio.gather(cancelled, return_exceptions=True)

    with caplog.at_level(logging.ERROR):
        log_task_exception(failed)
        log_task_exception(cancelled)

    assert "task='failing-task'" in caplog.text
    assert "cancelled-task" not in caplog.text
