"""Call-scoped cancellation tokens and the shared merge utility.

Tokens are cooperative: nothing is interrupted until code awaiting I/O
observes the token, either directly through :meth:`CancellationToken.wait` or
through :func:`race`, which runs one awaitable against a token.
Tokens belong to a single event loop and are not thread safe.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Iterable, Optional, TypeVar

from .errors import Cancelled

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[Optional[str]], None]


class CancellationToken:
    """A one-shot cancellation signal with listeners."""

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._listeners: list[Listener] = []
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> bool:
        """Cancel the token, returning ``False`` if it was already cancelled."""

        if self._cancelled:
            return False
        self._cancelled = True
        self._reason = reason
        listeners, self._listeners = self._listeners, []
        if self._event is not None:
            self._event.set()
        for listener in listeners:
            try:
                listener(reason)
            except Exception:
                LOGGER.exception("cancellation listener %r failed", listener)
        return True

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that detaches it.

        A listener added after cancellation runs immediately.
        """

        if self._cancelled:
            listener(self._reason)
            return _noop

        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return remove

    async def wait(self) -> None:
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise Cancelled(self._reason)


class MergedToken(CancellationToken):
    """Token cancelled by whichever of its sources fires first."""

    def __init__(self, sources: Iterable[CancellationToken | None]) -> None:
        super().__init__()
        self._detachers: list[Callable[[], None]] = []
        for source in sources:
            if source is None:
                continue
            if source.cancelled:
                self.cancel(source.reason)
                break
            self._detachers.append(source.add_listener(self.cancel))

    def cancel(self, reason: str | None = None) -> bool:
        fired = super().cancel(reason)
        if fired:
            self.close()
        return fired

    def close(self) -> None:
        """Detach from every source token."""

        detachers, self._detachers = self._detachers, []
        for detach in detachers:
            detach()

    def __enter__(self) -> "MergedToken":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def merge_tokens(*tokens: CancellationToken | None) -> MergedToken:
    """Combine several tokens into one; ``None`` entries are ignored."""

    return MergedToken(tokens)


async def race(token: CancellationToken, awaitable: Awaitable[T]) -> T:
    """Await ``awaitable`` unless ``token`` fires first, then raise :class:`Cancelled`."""

    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise Cancelled(token.reason)

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        waiter.cancel()
        raise

    if task in done:
        waiter.cancel()
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    if not task.cancelled() and task.exception() is None:
        # Finished alongside the token; release what it produced.
        aclose = getattr(task.result(), "aclose", None)
        if aclose is not None:
            await aclose()
    raise Cancelled(token.reason)


def _noop() -> None:
    return None


__all__ = ["CancellationToken", "MergedToken", "merge_tokens", "race"]
