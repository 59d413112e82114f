from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaValidationError
from starlette.responses import Response

from .. import __version__
from ..catalog.registry import ModelRegistry, default_registry
from .config import ProxyConfig
from .forwarder import ChatForwarder
from .gateway import UpstreamGateway
from .models import (
    ModelDetails,
    RunningModelsResponse,
    ShowRequest,
    ShowResponse,
    VersionResponse,
)

logger = logging.getLogger(__name__)

# Version reported to clients that expect a local model server.
OLLAMA_COMPAT_VERSION = "0.6.4"
DEFAULT_SHOW_MODEL = "GLM-4.6"
DEFAULT_CAPABILITIES = ["tools", "vision"]


def _read_show_request(raw: bytes) -> ShowRequest:
    if not raw.strip():
        return ShowRequest()
    try:
        return ShowRequest.model_validate_json(raw)
    except SchemaValidationError:
        return ShowRequest()


def build_show_response(registry: ModelRegistry, model_name: str) -> ShowResponse:
    descriptor, found = registry.lookup(model_name)
    if found:
        capabilities = descriptor.sorted_capabilities()
        details = ModelDetails(**descriptor.details())
        architecture = descriptor.family
    else:
        capabilities = list(DEFAULT_CAPABILITIES)
        details = ModelDetails(
            format="glm",
            family="glm",
            families=["glm"],
            parameter_size="cloud",
            quantization_level="cloud",
        )
        architecture = "glm"
    return ShowResponse(
        capabilities=capabilities,
        details=details,
        model_info={
            "general.basename": model_name,
            "general.architecture": architecture,
            f"{architecture}.context_length": registry.context_length(model_name),
        },
    )


def create_app(
    cfg: Optional[ProxyConfig] = None,
    registry: Optional[ModelRegistry] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the proxy application.

    ``transport`` replaces the network layer of the upstream client, which
    lets tests stand up a fake provider.
    """

    cfg = cfg or ProxyConfig.load()
    registry = registry or default_registry()
    gateway = UpstreamGateway(cfg, transport=transport)
    forwarder = ChatForwarder(cfg, registry, gateway)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "[app] forwarding chat to %s (%d models)", cfg.base_url, len(registry)
        )
        if cfg.host not in ("127.0.0.1", "localhost", "::1"):
            logger.warning(
                "[app] listening on %s without inbound authentication", cfg.host
            )
        try:
            yield
        finally:
            await gateway.aclose()

    app = FastAPI(title="Copilot Proxy", version=__version__, lifespan=lifespan)
    app.state.config = cfg
    app.state.registry = registry
    app.state.gateway = gateway
    app.state.forwarder = forwarder

    async def list_tags() -> JSONResponse:
        return JSONResponse(content=registry.catalog())

    app.add_api_route("/api/tags", list_tags, methods=["GET"])
    app.add_api_route("/api/list", list_tags, methods=["GET"])

    @app.get("/api/version")
    async def version() -> VersionResponse:
        return VersionResponse(version=OLLAMA_COMPAT_VERSION)

    @app.get("/api/ps")
    async def running_models() -> RunningModelsResponse:
        return RunningModelsResponse()

    @app.post("/api/show")
    async def show(request: Request) -> JSONResponse:
        show_request = _read_show_request(await request.body())
        model_name = show_request.name or show_request.model or DEFAULT_SHOW_MODEL
        response = build_show_response(registry, model_name)
        return JSONResponse(content=response.model_dump())

    async def chat_completions(request: Request) -> Response:
        return await forwarder.handle_chat(request)

    app.add_api_route("/v1/chat/completions", chat_completions, methods=["POST"])
    app.add_api_route("/api/chat", chat_completions, methods=["POST"])

    @app.get("/healthz")
    async def health() -> dict:
        return {"status": "ok"}

    return app
