from __future__ import annotations

import httpx
import pytest

from chaincord.services import http as http_mod


class _NoJitter:
    @staticmethod
    def random() -> float:
        return 0.0


@pytest.fixture
def observed_delays(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    delays: list[float] = []

    async def _fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr(http_mod.asyncio, "sleep", _fake_sleep)
    monkeypatch.setattr(http_mod, "_JITTER_RANDOM", _NoJitter())
    return delays


@pytest.mark.asyncio
async def test_wait_before_retry_caps_retry_after_to_max_backoff(
    observed_delays: list[float],
) -> None:
    response = httpx.Response(
        http_mod.HTTP_TOO_MANY_REQUESTS,
        headers={"retry-after": "120"},
    )
    await http_mod.wait_before_retry(0, response=response)

    assert observed_delays == [30.0]


@pytest.mark.asyncio
async def test_wait_before_retry_honours_short_retry_after(
    observed_delays: list[float],
) -> None:
    response = httpx.Response(
        http_mod.HTTP_TOO_MANY_REQUESTS,
        headers={"retry-after": "3"},
    )
    await http_mod.wait_before_retry(4, response=response)

    assert observed_delays == [3.0]


@pytest.mark.asyncio
async def test_wait_before_retry_uses_exponential_backoff(
    observed_delays: list[float],
) -> None:
    for attempt in range(3):
        await http_mod.wait_before_retry(attempt, base_delay=2.0)

    assert observed_delays == [2.0, 4.0, 8.0]


def test_parse_retry_after_rejects_garbage() -> None:
    assert http_mod.parse_retry_after_seconds("") is None
    assert http_mod.parse_retry_after_seconds("-5") is None
    assert http_mod.parse_retry_after_seconds("soon") is None
    assert http_mod.parse_retry_after_seconds("7") == 7.0


@pytest.mark.asyncio
async def test_request_with_retries_retries_transient_status(
    observed_delays: list[float],
) -> None:
    statuses = iter([503, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(next(statuses), request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        response = await http_mod.request_with_retries(
            lambda: client.get("https://cdn.example/file.png"),
            options=http_mod.RetryOptions(retries=2, base_delay=0.5),
        )

    assert response.status_code == 200
    assert observed_delays == [0.5]


@pytest.mark.asyncio
async def test_request_with_retries_raises_after_last_transport_error(
    observed_delays: list[float],
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(httpx.ConnectError):
            await http_mod.request_with_retries(
                lambda: client.get("https://cdn.example/file.png"),
                options=http_mod.RetryOptions(retries=1, base_delay=1.0),
            )

    assert observed_delays == [1.0]
