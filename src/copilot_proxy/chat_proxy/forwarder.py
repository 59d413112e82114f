from __future__ import annotations

import json
import logging
from typing import Any, Dict

from fastapi import Request
from starlette.requests import ClientDisconnect
from starlette.responses import Response

from ..catalog.registry import ModelRegistry
from .augment import augment
from .config import ProxyConfig
from .errors import (
    ErrorKind,
    GatewayError,
    ValidationError,
    err_gateway_canceled,
    error_response,
)
from .gateway import UpstreamGateway
from .normalization import NormalizedRequest, normalize
from .relay import StreamRelay, negotiated_media_type
from .session import ProxySession

logger = logging.getLogger(__name__)


def serialize_upstream(document: Dict[str, Any]) -> bytes:
    """Compact JSON for the provider.

    Non-ASCII text is escaped, so strings holding lone surrogates survive the
    trip unchanged.
    """

    return json.dumps(
        document, ensure_ascii=True, allow_nan=False, separators=(",", ":")
    ).encode("ascii")


class ChatForwarder:
    """Runs one chat request: validate, rewrite, call upstream, relay back."""

    def __init__(
        self,
        cfg: ProxyConfig,
        registry: ModelRegistry,
        gateway: UpstreamGateway,
    ):
        self.cfg = cfg
        self.registry = registry
        self.gateway = gateway

    def prepare(self, raw_body: bytes) -> tuple[NormalizedRequest, bytes]:
        normalized = normalize(raw_body, self.registry)
        upstream_doc = augment(normalized.document, normalized.descriptor)
        return normalized, serialize_upstream(upstream_doc)

    async def handle_chat(self, request: Request) -> Response:
        try:
            raw_body = await request.body()
        except ClientDisconnect:
            logger.debug("[forwarder] client disconnected while sending the request")
            return error_response(err_gateway_canceled())

        try:
            normalized, payload = self.prepare(raw_body)
        except ValidationError as exc:
            logger.info("[forwarder] rejected chat request: %s", exc.message)
            return error_response(exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("[forwarder] could not prepare upstream payload")
            return error_response(exc)

        session = ProxySession.start(request.receive)
        try:
            response = await self.gateway.send(
                session.token,
                self.cfg.chat_completions_url,
                payload,
                self.cfg.api_key,
            )
        except GatewayError as exc:
            await session.aclose()
            if exc.kind is ErrorKind.CANCELED:
                logger.debug("[forwarder %s] request canceled", session.request_id)
            return error_response(exc)
        except Exception as exc:  # noqa: BLE001
            await session.aclose()
            logger.exception("[forwarder %s] unexpected failure", session.request_id)
            return error_response(exc)

        session.response = response
        logger.info(
            "[forwarder %s] model=%s upstream_model=%s stream=%s status=%s",
            session.request_id,
            normalized.requested_model,
            normalized.descriptor.wire_name,
            normalized.stream,
            response.status_code,
        )
        return StreamRelay(
            session,
            response,
            media_type=negotiated_media_type(normalized.stream),
            chunk_size=self.cfg.relay_chunk_bytes,
        )
