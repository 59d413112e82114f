"""Dataclasses describing the models advertised by the proxy."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable

DEFAULT_CONTEXT_LENGTH = 128_000


def normalize_capabilities(raw: Iterable[Any] | None) -> FrozenSet[str]:
    """Return the trimmed, lower-cased capability names found in ``raw``."""

    return frozenset(
        item.strip().lower() for item in raw or () if isinstance(item, str) and item.strip()
    )


@dataclass(frozen=True)
class ModelDescriptor:
    display_name: str
    wire_name: str
    capabilities: FrozenSet[str] = field(default_factory=frozenset)
    context_length: int = DEFAULT_CONTEXT_LENGTH
    # Upstream accepts incremental tool-call streaming for this model.
    tool_stream: bool = False
    family: str = "glm"
    parameter_size: str = "cloud"
    quantization_level: str = "cloud"

    def __post_init__(self) -> None:
        if not self.display_name or not self.wire_name:
            raise ValueError("display_name and wire_name are required")
        object.__setattr__(self, "wire_name", self.wire_name.lower())
        object.__setattr__(
            self, "capabilities", normalize_capabilities(self.capabilities)
        )

    def sorted_capabilities(self) -> list[str]:
        return sorted(self.capabilities)

    def details(self) -> dict[str, Any]:
        return {
            "format": self.family,
            "family": self.family,
            "families": [self.family],
            "parameter_size": self.parameter_size,
            "quantization_level": self.quantization_level,
        }
