"""Copilot Proxy: a local model-server facade for remote GLM chat models."""

__version__ = "0.5.0"
