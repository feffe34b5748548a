"""Outbound HTTP with bounded retry under a cancellation token."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx

from .cancellation import CancellationToken, race
from .errors import NetworkError, VendorHttpError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget and exponential backoff (in seconds)."""

    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 10.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)
        if self.backoff_base < 0 or self.backoff_max < 0:
            msg = "backoff values cannot be negative"
            raise ValueError(msg)

    def delay_for(self, attempt: int) -> float:
        return min(self.backoff_base * (2**attempt), self.backoff_max)


DEFAULT_RETRY_POLICY = RetryPolicy()


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


async def fetch_with_retry(
    client: httpx.AsyncClient,
    request: httpx.Request,
    *,
    token: CancellationToken,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    stream: bool = False,
    provider: str = "http",
) -> httpx.Response:
    """Send ``request``, retrying transport failures and 429/5xx answers.

    The token is checked before every attempt and the backoff sleep is
    cancellable. Other 4xx answers are returned on the first attempt. When the
    last attempt still answers 429/5xx that response is returned so the caller
    can report the status.
    """

    last_error: httpx.TransportError | None = None
    for attempt in range(policy.max_attempts):
        token.raise_if_cancelled()
        final_attempt = attempt == policy.max_attempts - 1
        try:
            response = await race(token, client.send(request, stream=stream))
        except httpx.TransportError as exc:
            last_error = exc
            LOGGER.warning(
                "%s %s failed on attempt %d/%d: %s",
                request.method,
                _describe(request),
                attempt + 1,
                policy.max_attempts,
                exc,
            )
        else:
            if final_attempt or not is_retryable_status(response.status_code):
                return response
            LOGGER.warning(
                "%s %s answered %d on attempt %d/%d, retrying",
                request.method,
                _describe(request),
                response.status_code,
                attempt + 1,
                policy.max_attempts,
            )
            await response.aclose()

        if not final_attempt:
            await race(token, asyncio.sleep(policy.delay_for(attempt)))

    msg = f"request failed after {policy.max_attempts} attempts: {last_error}"
    raise NetworkError(provider, msg) from last_error


async def raise_for_status(response: httpx.Response, *, provider: str) -> None:
    """Raise :class:`VendorHttpError` carrying the body of a non-2xx response."""

    if response.is_success:
        return
    body = await response.aread()
    raise VendorHttpError(provider, response.status_code, body.decode("utf-8", errors="replace"))


def _describe(request: httpx.Request) -> str:
    # Gemini passes its API key as a query parameter.
    return str(request.url.copy_remove_param("key"))


__all__ = [
    "DEFAULT_RETRY_POLICY",
    "RetryPolicy",
    "fetch_with_retry",
    "is_retryable_status",
    "raise_for_status",
]
