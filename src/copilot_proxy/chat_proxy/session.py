from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")
Receive = Callable[[], Awaitable[dict]]


class OperationCanceled(Exception):
    """Raised by :func:`run_cancellable` when the token fires first."""


class CancellationToken:
    """One-shot signal shared by every suspending step of a request."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "client disconnected") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


async def watch_disconnect(receive: Receive, token: CancellationToken) -> None:
    """Fire ``token`` once the ASGI server reports the client has gone.

    Must only be started after the request body has been consumed.
    """

    while True:
        message = await receive()
        if message.get("type") == "http.disconnect":
            token.cancel()
            return


async def run_cancellable(
    awaitable: Awaitable[T],
    token: CancellationToken,
    *,
    timeout: float | None = None,
) -> T:
    """Await ``awaitable`` unless ``token`` fires or ``timeout`` elapses first.

    The pending operation is cancelled in both cases; :class:`OperationCanceled`
    or :class:`TimeoutError` is raised accordingly.
    """

    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCanceled(token.reason)

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {work, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()

    if work in done and not token.cancelled:
        return work.result()

    if work in done:
        # Finished in the same tick the client left; discard the result.
        if not work.cancelled() and work.exception() is None:
            result = work.result()
            if isinstance(result, httpx.Response):
                await result.aclose()
    else:
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
    if token.cancelled:
        raise OperationCanceled(token.reason)
    raise TimeoutError(f"operation did not complete within {timeout}s")


@dataclass
class ProxySession:
    """Per-request state: cancellation signal and upstream response handle."""

    token: CancellationToken = field(default_factory=CancellationToken)
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    response: Optional[httpx.Response] = None
    _watcher: Optional[asyncio.Task] = None
    _closed: bool = False

    @classmethod
    def start(cls, receive: Optional[Receive] = None) -> "ProxySession":
        session = cls()
        if receive is not None:
            session._watcher = asyncio.ensure_future(
                watch_disconnect(receive, session.token)
            )
        return session

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._watcher is not None and not self._watcher.done():
            self._watcher.cancel()
            await asyncio.gather(self._watcher, return_exceptions=True)
        if self.response is not None:
            try:
                await self.response.aclose()
            except Exception as exc:  # noqa: BLE001
                logger.debug("[session %s] upstream close failed: %s", self.request_id, exc)

    async def __aenter__(self) -> "ProxySession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
