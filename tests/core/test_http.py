from __future__ import annotations

import asyncio

import httpx
import pytest

from switchboard.core.cancellation import CancellationToken
from switchboard.core.errors import Cancelled, NetworkError, VendorHttpError
from switchboard.core.http import RetryPolicy, fetch_with_retry, is_retryable_status, raise_for_status
from tests.fixtures.http_fake import FakeTransport, json_response

NO_BACKOFF = RetryPolicy(max_attempts=3, backoff_base=0, backoff_max=0)


def _run(transport: FakeTransport, *, policy: RetryPolicy = NO_BACKOFF, token: CancellationToken | None = None):
    async def scenario() -> httpx.Response:
        async with transport.client() as client:
            request = client.build_request("POST", "https://vendor.test/v1/chat?key=secret", json={})
            response = await fetch_with_retry(
                client,
                request,
                token=token or CancellationToken(),
                policy=policy,
                provider="vendor",
            )
            await response.aread()
            return response

    return asyncio.run(scenario())


def test_retry_policy_backoff_is_capped() -> None:
    policy = RetryPolicy(max_attempts=5, backoff_base=1.0, backoff_max=3.0)

    assert [policy.delay_for(attempt) for attempt in range(4)] == [1.0, 2.0, 3.0, 3.0]


def test_retry_policy_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


@pytest.mark.parametrize(
    ("status", "expected"),
    [(200, False), (400, False), (404, False), (429, True), (500, True), (503, True)],
)
def test_retryable_statuses(status: int, expected: bool) -> None:
    assert is_retryable_status(status) is expected


def test_server_errors_are_retried_until_success() -> None:
    transport = FakeTransport(
        json_response({"error": "busy"}, 503),
        json_response({"error": "slow down"}, 429),
        json_response({"ok": True}),
    )

    response = _run(transport)

    assert response.status_code == 200
    assert len(transport.requests) == 3


def test_client_errors_are_not_retried() -> None:
    transport = FakeTransport(json_response({"error": "bad"}, 400))

    response = _run(transport)

    assert response.status_code == 400
    assert len(transport.requests) == 1


def test_last_retryable_response_is_returned_after_budget() -> None:
    transport = FakeTransport(*(json_response({"error": "down"}, 500) for _ in range(2)))

    response = _run(transport, policy=RetryPolicy(max_attempts=2, backoff_base=0))

    assert response.status_code == 500
    assert len(transport.requests) == 2


def test_transport_errors_raise_network_error(caplog: pytest.LogCaptureFixture) -> None:
    transport = FakeTransport(*(httpx.ConnectError("refused") for _ in range(3)))

    with pytest.raises(NetworkError) as excinfo:
        _run(transport)

    assert excinfo.value.provider == "vendor"
    assert len(transport.requests) == 3
    assert "secret" not in caplog.text


def test_transport_error_then_success() -> None:
    transport = FakeTransport(httpx.ReadTimeout("slow"), json_response({"ok": True}))

    response = _run(transport)

    assert response.json() == {"ok": True}


def test_cancelled_token_prevents_any_attempt() -> None:
    transport = FakeTransport(json_response({"ok": True}))
    token = CancellationToken()
    token.cancel("caller")

    with pytest.raises(Cancelled):
        _run(transport, token=token)

    assert transport.requests == []


def test_backoff_sleep_is_cancellable() -> None:
    transport = FakeTransport(json_response({}, 500), json_response({}, 200))
    policy = RetryPolicy(max_attempts=2, backoff_base=30, backoff_max=30)

    async def scenario() -> None:
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel, "stop")
        async with transport.client() as client:
            request = client.build_request("GET", "https://vendor.test/")
            await fetch_with_retry(client, request, token=token, policy=policy)

    with pytest.raises(Cancelled):
        asyncio.run(asyncio.wait_for(scenario(), timeout=5))
    assert len(transport.requests) == 1


def test_raise_for_status_includes_body() -> None:
    async def scenario() -> None:
        response = httpx.Response(404, text='{"error": "model not found"}')
        await raise_for_status(response, provider="vendor")

    with pytest.raises(VendorHttpError) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.status == 404
    assert "model not found" in excinfo.value.body
    assert excinfo.value.retryable is False
