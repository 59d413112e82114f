import inspect
import json
import os
import sys
from pathlib import Path

import httpx
import pytest

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from copilot_proxy.chat_proxy.config import ProxyConfig  # noqa: E402
from copilot_proxy.chat_proxy.config_loader import API_KEY_ENV_VARS, CONFIG_FILE_ENV  # noqa: E402
from copilot_proxy.logging_utils import LOG_DIR_ENV  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep the developer's own config file and ZAI_* variables out of tests."""

    for key in list(os.environ.keys()):
        if key.startswith("ZAI_") or key in API_KEY_ENV_VARS:
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    config_path = tmp_path / "config" / "config.toml"
    monkeypatch.setenv(CONFIG_FILE_ENV, str(config_path))
    monkeypatch.setenv(LOG_DIR_ENV, str(tmp_path / "logs"))
    yield config_path


class _UnreadBody(httpx.AsyncByteStream):
    """Body handed out unread, as a real network transport would."""

    def __init__(self, content: bytes):
        self._content = content

    async def __aiter__(self):
        yield self._content


class FakeUpstream:
    """Scriptable provider behind ``httpx.MockTransport``.

    Records every request it receives; ``handler`` may be sync or async and
    defaults to a small JSON chat completion.
    """

    def __init__(self, handler=None):
        self.requests: list[httpx.Request] = []
        self.bodies: list[dict] = []
        self.handler = handler or self.default_handler
        self.transport = httpx.MockTransport(self._dispatch)

    @staticmethod
    def default_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "id": "chatcmpl-123",
                "object": "chat.completion",
                "choices": [
                    {
                        "index": 0,
                        "message": {"role": "assistant", "content": "Hello World"},
                        "finish_reason": "stop",
                    }
                ],
            },
        )

    async def _dispatch(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.bodies.append(json.loads(request.content))
        result = self.handler(request)
        if inspect.isawaitable(result):
            result = await result
        if result.is_stream_consumed:
            # httpx reads ``content=``/``json=`` bodies eagerly; re-wrap them so
            # the client receives an unread streaming response.
            result = httpx.Response(
                result.status_code,
                headers=result.headers,
                stream=_UnreadBody(result.content),
                request=request,
            )
        return result

    @property
    def last_body(self) -> dict:
        return self.bodies[-1]


@pytest.fixture
def fake_upstream():
    return FakeUpstream()


@pytest.fixture
def proxy_config():
    return ProxyConfig(api_key="test-key", base_url="https://upstream.test/api/v4")
