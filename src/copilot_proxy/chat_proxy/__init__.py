"""Local-model-compatible chat proxy in front of an OpenAI-compatible provider.

Chat requests are validated against the model catalog, rewritten for the
provider dialect and streamed back to the caller as they arrive.
"""

__all__ = []
