"""Static, in-memory catalog of the models the proxy advertises.

The registry is built once at start-up and only read afterwards, so request
handlers share a single instance without locking.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, Optional, Tuple

from .models import DEFAULT_CONTEXT_LENGTH, ModelDescriptor

CATALOG_MODIFIED_AT = "2024-01-01T00:00:00Z"

DEFAULT_MODELS: Tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        "GLM-4.7",
        "glm-4.7",
        frozenset({"tools", "vision"}),
        context_length=200_000,
        tool_stream=True,
    ),
    ModelDescriptor(
        "GLM-4.6",
        "glm-4.6",
        frozenset({"tools", "vision"}),
        context_length=200_000,
        tool_stream=True,
    ),
    ModelDescriptor("GLM-4.5", "glm-4.5", frozenset({"tools", "vision"})),
    ModelDescriptor("GLM-4.5-Air", "glm-4.5-air", frozenset({"tools", "vision"})),
)


class RegistryError(ValueError):
    pass


class ModelRegistry:
    def __init__(self, descriptors: Iterable[ModelDescriptor] = DEFAULT_MODELS):
        self._descriptors: Tuple[ModelDescriptor, ...] = tuple(descriptors)
        index: Dict[str, ModelDescriptor] = {}
        for descriptor in self._descriptors:
            for key in {descriptor.display_name.lower(), descriptor.wire_name}:
                existing = index.get(key)
                if existing is not None and existing is not descriptor:
                    raise RegistryError(
                        f"Duplicate model name '{key}' "
                        f"({existing.display_name}, {descriptor.display_name})"
                    )
                index[key] = descriptor
        self._index = index

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def lookup(self, name: str) -> Tuple[Optional[ModelDescriptor], bool]:
        """Return ``(descriptor, found)`` for a case-insensitive model name."""

        if not isinstance(name, str) or not name:
            return None, False
        descriptor = self._index.get(name.lower())
        return descriptor, descriptor is not None

    def is_valid(self, name: str) -> bool:
        return self.lookup(name)[1]

    def canonical_wire_name(self, name: str) -> str:
        """Return the upstream spelling of ``name``, or ``name`` when unknown.

        Callers need :meth:`is_valid` to tell an unknown model apart from one
        whose wire name happens to equal the input.
        """

        descriptor, found = self.lookup(name)
        return descriptor.wire_name if found else name

    def context_length(self, name: str) -> int:
        descriptor, found = self.lookup(name)
        return descriptor.context_length if found else DEFAULT_CONTEXT_LENGTH

    def catalog(self) -> Dict[str, Any]:
        """Render the discovery document served by ``/api/tags``."""

        return {
            "models": [
                {
                    "name": descriptor.display_name,
                    "model": descriptor.display_name,
                    "modified_at": CATALOG_MODIFIED_AT,
                    "size": 0,
                    "digest": descriptor.display_name,
                    "capabilities": descriptor.sorted_capabilities(),
                    "details": descriptor.details(),
                }
                for descriptor in self._descriptors
            ]
        }


_DEFAULT_REGISTRY: ModelRegistry | None = None


def default_registry() -> ModelRegistry:
    global _DEFAULT_REGISTRY  # noqa: PLW0603
    if _DEFAULT_REGISTRY is None:
        _DEFAULT_REGISTRY = ModelRegistry()
    return _DEFAULT_REGISTRY


__all__ = [
    "CATALOG_MODIFIED_AT",
    "DEFAULT_MODELS",
    "ModelRegistry",
    "RegistryError",
    "default_registry",
]
