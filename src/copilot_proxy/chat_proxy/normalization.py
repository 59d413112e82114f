"""Validation of inbound chat payloads.

The payload stays an open JSON document: only ``model``, ``messages[].role``,
``stream`` and ``tools`` are inspected, everything else is forwarded verbatim.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from typing import Any, Dict

from ..catalog.models import ModelDescriptor
from ..catalog.registry import ModelRegistry
from .errors import (
    err_invalid_role,
    err_malformed_json,
    err_message_not_object,
    err_missing_field,
    err_missing_role,
    err_unknown_model,
)

VALID_ROLES = frozenset({"system", "user", "assistant", "tool"})


def _reject_constant(name: str) -> Any:
    # Only standard JSON literals; NaN and Infinity are rejected.
    raise err_malformed_json(f"invalid literal {name}")


@dataclass
class NormalizedRequest:
    document: Dict[str, Any]
    descriptor: ModelDescriptor
    requested_model: str

    @property
    def stream(self) -> bool:
        """Whether the caller expects an event stream.

        An absent ``stream`` counts as streaming, which is how local-model
        clients behave.
        """

        return self.document.get("stream") is not False


def parse_document(raw_body: bytes | str) -> Dict[str, Any]:
    if isinstance(raw_body, bytes):
        try:
            raw_body = raw_body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise err_malformed_json(str(exc)) from exc
    try:
        document = json.loads(raw_body, parse_constant=_reject_constant)
    except json.JSONDecodeError as exc:
        raise err_malformed_json(str(exc)) from exc
    if not isinstance(document, dict):
        raise err_malformed_json("request body must be a JSON object")
    return document


def validate_messages(messages: Any) -> None:
    if not isinstance(messages, list) or not messages:
        raise err_missing_field("messages")
    for index, message in enumerate(messages):
        if not isinstance(message, dict):
            raise err_message_not_object(index)
        role = message.get("role")
        if not isinstance(role, str) or not role:
            raise err_missing_role(index)
        if role not in VALID_ROLES:
            raise err_invalid_role(index, role)


def normalize(raw_body: bytes | str, registry: ModelRegistry) -> NormalizedRequest:
    """Parse and validate ``raw_body``; raise :class:`ValidationError` on failure.

    Checks run in a fixed order and stop at the first problem. The returned
    document is a private deep copy, so later rewriting never touches the
    caller's structure.
    """

    document = parse_document(raw_body)

    model = document.get("model")
    if not isinstance(model, str) or not model:
        raise err_missing_field("model")

    validate_messages(document.get("messages"))

    descriptor, found = registry.lookup(model)
    if not found:
        raise err_unknown_model(model)

    return NormalizedRequest(
        document=copy.deepcopy(document),
        descriptor=descriptor,
        requested_model=model,
    )
