"""
Shared fixtures and fakes for the CellClaw test suite.
"""

import json
from typing import Any, Callable, Optional

import httpx
import pytest

from cellclaw.exceptions import ProtocolError
from cellclaw.models import (
    CompletionResponse,
    StopReason,
    StreamComplete,
    StreamError,
    TextBlock,
    TextDelta,
    ToolUseBlock,
    Usage,
)
from cellclaw.providers.base import ProviderConfig


class ScriptedProvider:
    """Provider stand-in that replays canned responses in order.

    Items may be CompletionResponse values or exceptions to raise.
    """

    name = "scripted"
    default_model = "scripted-1"

    def __init__(self, responses=None) -> None:
        self.responses = list(responses or [])
        self.requests = []
        self.api_key = ""
        self.model = self.default_model

    def configure(self, api_key: str, model=None) -> None:
        self.api_key = api_key
        self.model = model or self.default_model

    @property
    def is_configured(self) -> bool:
        return True

    def _next(self, request):
        self.requests.append(request)
        if not self.responses:
            raise ProtocolError("script exhausted")
        return self.responses.pop(0)

    async def complete(self, request):
        item = self._next(request)
        if isinstance(item, Exception):
            raise item
        return item

    def stream(self, request):
        item = self._next(request)
        return self._replay(item)

    async def _replay(self, item):
        if isinstance(item, Exception):
            yield StreamError(str(item), protocol_error=isinstance(item, ProtocolError))
            return
        for block in item.content:
            if isinstance(block, TextBlock) and not block.thought:
                for word in block.text.split(" "):
                    yield TextDelta(word + " ")
        yield StreamComplete(item)


def text_response(text: str) -> CompletionResponse:
    return CompletionResponse((TextBlock(text),), StopReason.END_TURN, Usage(10, 5))


def tool_response(*calls: ToolUseBlock, text: str = "") -> CompletionResponse:
    content = ((TextBlock(text),) if text else ()) + tuple(calls)
    return CompletionResponse(content, StopReason.TOOL_USE, Usage(10, 5))


class Recorder:
    """Collects emitted events for assertions."""

    def __init__(self) -> None:
        self.events = []

    def __call__(self, event) -> None:
        self.events.append(event)

    def of_type(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


def sse(*events: tuple) -> bytes:
    """Encode (event, data) pairs as an SSE body. ``event`` may be None."""
    lines = []
    for name, data in events:
        if name:
            lines.append(f"event: {name}")
        payload = data if isinstance(data, str) else json.dumps(data)
        lines.append(f"data: {payload}")
        lines.append("")
    return ("\n".join(lines) + "\n").encode()


class MockHTTP:
    """Records requests and answers them with a handler."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def last_body(self) -> Optional[dict[str, Any]]:
        if not self.requests:
            return None
        return json.loads(self.requests[-1].content)

    def config(self) -> ProviderConfig:
        return ProviderConfig(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self))
        )


@pytest.fixture
def recorder():
    return Recorder()
