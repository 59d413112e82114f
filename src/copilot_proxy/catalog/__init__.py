"""Model catalog shared by the discovery endpoints and the chat pipeline."""

from .models import DEFAULT_CONTEXT_LENGTH, ModelDescriptor, normalize_capabilities
from .registry import DEFAULT_MODELS, ModelRegistry, RegistryError, default_registry

__all__ = [
    "DEFAULT_CONTEXT_LENGTH",
    "DEFAULT_MODELS",
    "ModelDescriptor",
    "ModelRegistry",
    "RegistryError",
    "default_registry",
    "normalize_capabilities",
]
