from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "https://api.z.ai/api/coding/paas/v4"


@dataclass
class ProxyConfig:
    api_key: str = ""
    base_url: str = DEFAULT_BASE_URL
    host: str = "127.0.0.1"
    port: int = 11434
    debug: bool = False
    verbose: bool = False
    # Upstream connection pool; httpx defaults are too small for several IDE sessions.
    max_idle_connections_per_host: int = 50
    idle_connection_timeout_s: float = 90.0
    connect_timeout_s: float = 10.0
    # Bounds the wait for upstream response headers only, never the body.
    header_timeout_s: Optional[float] = None
    relay_chunk_bytes: int = 32 * 1024
    config_file_path: Optional[str] = None

    @property
    def chat_completions_url(self) -> str:
        return self.base_url.rstrip("/") + "/chat/completions"

    @classmethod
    def load(cls) -> "ProxyConfig":
        from .config_loader import load_proxy_config

        return load_proxy_config()
