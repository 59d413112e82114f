"""Incremental copy of an upstream response to the waiting client."""

from __future__ import annotations

import enum
import logging
from typing import AsyncIterator, Iterator, List, Optional, Tuple

import httpx
from starlette.requests import ClientDisconnect
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from .errors import ErrorKind, RelayError
from .session import OperationCanceled, ProxySession, run_cancellable

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_BYTES = 32 * 1024
EVENT_STREAM = "text/event-stream"
JSON_MEDIA_TYPE = "application/json"

# Framing of the upstream connection, not of the payload.
HOP_BY_HOP_RESPONSE_HEADERS = frozenset(
    {
        b"connection",
        b"keep-alive",
        b"proxy-authenticate",
        b"proxy-authorization",
        b"te",
        b"trailers",
        b"transfer-encoding",
        b"upgrade",
    }
)


class RelayState(str, enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"


def negotiated_media_type(stream: bool) -> str:
    return EVENT_STREAM if stream else JSON_MEDIA_TYPE


def relay_headers(
    headers: httpx.Headers, fallback_media_type: str | None
) -> List[Tuple[bytes, bytes]]:
    """Copy upstream headers, keeping repeated ones, minus hop-by-hop fields.

    ``fallback_media_type`` only fills in a missing ``content-type``.
    """

    out: List[Tuple[bytes, bytes]] = []
    has_content_type = False
    for raw_key, raw_value in headers.raw:
        key = raw_key.lower()
        if key in HOP_BY_HOP_RESPONSE_HEADERS:
            continue
        if key == b"content-type":
            has_content_type = True
        out.append((key, raw_value))
    if not has_content_type and fallback_media_type:
        out.append((b"content-type", fallback_media_type.encode("latin-1")))
    return out


async def _next_chunk(chunks: AsyncIterator[bytes]) -> Optional[bytes]:
    """Return the next non-empty chunk, or ``None`` at end of stream."""

    async for chunk in chunks:
        if chunk:
            return chunk
    return None


def _slices(chunk: bytes, size: int) -> Iterator[bytes]:
    if len(chunk) <= size:
        yield chunk
        return
    for start in range(0, len(chunk), size):
        yield chunk[start : start + size]


class StreamRelay(Response):
    """ASGI response that streams ``upstream`` through to the caller.

    Every upstream chunk becomes its own ``http.response.body`` message, so
    event-stream framing reaches the client without extra buffering. The
    session (and with it the upstream response) is closed on every exit.
    """

    def __init__(
        self,
        session: ProxySession,
        upstream: httpx.Response,
        *,
        media_type: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_BYTES,
    ):
        self.session = session
        self.upstream = upstream
        self.status_code = upstream.status_code
        self.media_type = media_type
        self.chunk_size = max(int(chunk_size), 1)
        self.background = None
        self.raw_headers = relay_headers(upstream.headers, media_type)
        self.state = RelayState.IDLE
        self.error: Optional[RelayError] = None
        self.bytes_relayed = 0

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            self.error = await self.relay(send)
        finally:
            await self.session.aclose()
        if self.error is not None:
            self._log_abort(self.error)
        if self.background is not None:
            await self.background()

    async def relay(self, send: Send) -> Optional[RelayError]:
        token = self.session.token
        if token.cancelled:
            return self._abort(ErrorKind.CANCELED, "request canceled")
        try:
            await send(
                {
                    "type": "http.response.start",
                    "status": self.status_code,
                    "headers": self.raw_headers,
                }
            )
        except (OSError, ClientDisconnect):
            return self._abort(ErrorKind.WRITE_FAILED, "client went away")
        self.state = RelayState.STREAMING

        chunks = self.upstream.aiter_raw()
        try:
            while True:
                if token.cancelled:
                    return self._abort(ErrorKind.CANCELED, "request canceled")
                try:
                    chunk = await run_cancellable(_next_chunk(chunks), token)
                except OperationCanceled:
                    return self._abort(ErrorKind.CANCELED, "request canceled")
                except httpx.HTTPError as exc:
                    logger.warning(
                        "[relay %s] upstream stream interrupted: %s",
                        self.session.request_id,
                        exc,
                    )
                    return self._abort(
                        ErrorKind.BAD_GATEWAY, "upstream stream interrupted"
                    )
                if chunk is None:
                    break
                for piece in _slices(chunk, self.chunk_size):
                    try:
                        await send(
                            {
                                "type": "http.response.body",
                                "body": piece,
                                "more_body": True,
                            }
                        )
                    except (OSError, ClientDisconnect):
                        return self._abort(ErrorKind.WRITE_FAILED, "client went away")
                    self.bytes_relayed += len(piece)
        finally:
            await chunks.aclose()

        try:
            await send({"type": "http.response.body", "body": b"", "more_body": False})
        except (OSError, ClientDisconnect):
            return self._abort(ErrorKind.WRITE_FAILED, "client went away")
        self.state = RelayState.COMPLETED
        return None

    def _abort(self, kind: ErrorKind, message: str) -> RelayError:
        self.state = RelayState.ABORTED
        return RelayError(kind, message)

    def _log_abort(self, error: RelayError) -> None:
        if error.kind is ErrorKind.BAD_GATEWAY:
            return
        logger.debug(
            "[relay %s] aborted after %d bytes: %s",
            self.session.request_id,
            self.bytes_relayed,
            error.kind.value,
        )
