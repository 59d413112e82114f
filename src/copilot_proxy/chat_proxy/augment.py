from __future__ import annotations

from typing import Any, Dict

from ..catalog.models import ModelDescriptor

THINKING_ENABLED = {"type": "enabled"}


def wants_tool_stream(document: Dict[str, Any], descriptor: ModelDescriptor) -> bool:
    """Incremental tool-call streaming needs a capable model, tools and ``stream: true``.

    ``stream`` must be the literal boolean; an absent or null value does not
    count here even though it negotiates an event stream at the handler.
    """

    if not descriptor.tool_stream:
        return False
    tools = document.get("tools")
    if not isinstance(tools, list) or not tools:
        return False
    return document.get("stream") is True


def augment(document: Dict[str, Any], descriptor: ModelDescriptor) -> Dict[str, Any]:
    """Return the upstream body for ``document``; the input is left untouched."""

    upstream = dict(document)
    upstream["model"] = descriptor.wire_name
    upstream["thinking"] = dict(THINKING_ENABLED)
    upstream.pop("tool_stream", None)
    if wants_tool_stream(document, descriptor):
        upstream["tool_stream"] = True
    return upstream
