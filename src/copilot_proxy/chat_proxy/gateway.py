from __future__ import annotations

import logging
from typing import Optional

import httpx

from .config import ProxyConfig
from .errors import err_bad_gateway, err_gateway_canceled
from .session import CancellationToken, OperationCanceled, run_cancellable

logger = logging.getLogger(__name__)


def build_client(
    cfg: ProxyConfig, transport: Optional[httpx.AsyncBaseTransport] = None
) -> httpx.AsyncClient:
    """Create the process-wide pooled client used for every upstream call.

    Only connecting is time-bounded; a streamed generation may run as long as
    the caller stays connected.
    """

    limits = httpx.Limits(
        max_connections=None,
        max_keepalive_connections=cfg.max_idle_connections_per_host,
        keepalive_expiry=cfg.idle_connection_timeout_s,
    )
    timeout = httpx.Timeout(None, connect=cfg.connect_timeout_s)
    return httpx.AsyncClient(limits=limits, timeout=timeout, transport=transport)


class UpstreamGateway:
    def __init__(
        self,
        cfg: ProxyConfig,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.cfg = cfg
        self.client = client or build_client(cfg, transport)

    async def aclose(self) -> None:
        await self.client.aclose()

    @staticmethod
    def build_headers(api_key: str | None) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    async def send(
        self,
        token: CancellationToken,
        url: str,
        body: bytes,
        api_key: str | None,
    ) -> httpx.Response:
        """POST ``body`` upstream and return the response once headers arrive.

        The body is left unread for the relay. Any status code is returned
        as-is; only transport failures and cancellation raise
        :class:`GatewayError`.
        """

        try:
            request = self.client.build_request(
                "POST", url, content=body, headers=self.build_headers(api_key)
            )
        except httpx.InvalidURL as exc:
            logger.warning("[gateway] invalid upstream url %r: %s", url, exc)
            raise err_bad_gateway() from exc

        try:
            response = await run_cancellable(
                self.client.send(request, stream=True),
                token,
                timeout=self.cfg.header_timeout_s,
            )
        except OperationCanceled as exc:
            logger.debug("[gateway] client disconnected during upstream request")
            raise err_gateway_canceled() from exc
        except TimeoutError as exc:
            logger.warning(
                "[gateway] no response headers from %s within %ss",
                url,
                self.cfg.header_timeout_s,
            )
            raise err_bad_gateway() from exc
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "[gateway] upstream request to %s failed: %s: %s",
                url,
                exc.__class__.__name__,
                exc,
            )
            raise err_bad_gateway() from exc

        logger.info("[gateway] upstream %s -> %s", url, response.status_code)
        return response
