"""Anthropic Messages API provider.

Example:
    from cellclaw.providers import AnthropicProvider

    provider = AnthropicProvider(api_key="sk-ant-...", model="claude-sonnet-4-6")
    response = await provider.complete(request)

    async for event in provider.stream(request):
        ...
"""

from typing import Any, AsyncIterator, Optional

import httpx

from ..models import (
    CompletionRequest,
    CompletionResponse,
    ContentBlock,
    StopReason,
    StreamComplete,
    StreamError,
    StreamEvent,
    TextBlock,
    TextDelta,
    ToolResultBlock,
    ToolUseBlock,
    ToolUseInputDelta,
    ToolUseStart,
    Usage,
)
from ..schema import tools_to_anthropic_format
from .base import Provider, ProviderConfig, ToolCallAccumulator, iter_sse_events

STOP_REASONS = {
    "end_turn": StopReason.END_TURN,
    "stop_sequence": StopReason.END_TURN,
    "tool_use": StopReason.TOOL_USE,
    "max_tokens": StopReason.MAX_TOKENS,
}


def _stop_reason(value: Optional[str]) -> StopReason:
    return STOP_REASONS.get(value or "", StopReason.END_TURN)


def _content_block_to_json(block: ContentBlock) -> dict[str, Any]:
    if isinstance(block, TextBlock):
        if block.thought:
            result: dict[str, Any] = {"type": "thinking", "thinking": block.text}
            if block.signature:
                result["signature"] = block.signature
            return result
        return {"type": "text", "text": block.text}
    if isinstance(block, ToolUseBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    if isinstance(block, ToolResultBlock):
        result = {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": block.content,
        }
        if block.is_error:
            result["is_error"] = True
        return result
    raise TypeError(f"Unsupported content block: {block!r}")


def _block_from_json(block: dict[str, Any]) -> Optional[ContentBlock]:
    block_type = block.get("type")
    if block_type == "text":
        return TextBlock(block.get("text", ""))
    if block_type == "thinking":
        return TextBlock(block.get("thinking", ""), thought=True, signature=block.get("signature"))
    if block_type == "tool_use":
        return ToolUseBlock(
            id=block.get("id", ""),
            name=block.get("name", ""),
            input=block.get("input") or {},
        )
    return None


class _BlockBuilder:
    """Accumulates one streamed text or thinking block."""

    def __init__(self, thought: bool = False) -> None:
        self.thought = thought
        self.parts: list[str] = []
        self.signature: Optional[str] = None

    def build(self) -> TextBlock:
        return TextBlock("".join(self.parts), thought=self.thought, signature=self.signature)


class AnthropicProvider(Provider):
    """Provider for Anthropic's ``/v1/messages`` endpoint."""

    name = "anthropic"
    default_model = "claude-sonnet-4-6"
    api_url = "https://api.anthropic.com/v1/messages"
    api_version = "2023-06-01"

    def __init__(
        self,
        api_key: str = "",
        model: Optional[str] = None,
        config: Optional[ProviderConfig] = None,
        thinking_budget: int = 0,
    ) -> None:
        super().__init__(api_key, model, config)
        self.thinking_budget = thinking_budget

    def _endpoint(self, stream: bool) -> str:
        return self._base_url

    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self._api_key, "anthropic-version": self.api_version}

    def _build_body(self, request: CompletionRequest, stream: bool) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self._model,
            "max_tokens": request.max_tokens,
            "system": request.system_prompt,
            "messages": [
                {
                    "role": msg.role.value,
                    "content": [_content_block_to_json(b) for b in msg.content],
                }
                for msg in request.messages
            ],
        }
        if stream:
            body["stream"] = True
        if self.thinking_budget > 0:
            body["thinking"] = {
                "type": "enabled",
                "budget_tokens": min(self.thinking_budget, request.max_tokens - 1),
            }
        if request.tools:
            body["tools"] = tools_to_anthropic_format(request.tools)
        return body

    def _parse_response(
        self, payload: dict[str, Any], request: CompletionRequest
    ) -> CompletionResponse:
        blocks = []
        for raw in payload.get("content") or []:
            block = _block_from_json(raw)
            if block is not None:
                blocks.append(block)

        usage = None
        usage_obj = payload.get("usage")
        if usage_obj:
            usage = Usage(
                input_tokens=usage_obj.get("input_tokens", 0),
                output_tokens=usage_obj.get("output_tokens", 0),
            )

        return CompletionResponse(tuple(blocks), _stop_reason(payload.get("stop_reason")), usage)

    async def _stream_events(
        self, response: httpx.Response, request: CompletionRequest
    ) -> AsyncIterator[StreamEvent]:
        builders: dict[int, Any] = {}
        finished: dict[int, ContentBlock] = {}
        stop_reason = StopReason.END_TURN
        input_tokens = 0
        output_tokens = 0

        def finish(index: int) -> None:
            builder = builders.pop(index, None)
            if builder is not None:
                finished[index] = builder.build()

        async for sse in iter_sse_events(response):
            if sse.event == "ping":
                continue
            data = sse.json()

            if sse.event == "message_start":
                usage = (data.get("message") or {}).get("usage") or {}
                input_tokens = usage.get("input_tokens", 0)

            elif sse.event == "content_block_start":
                index = data.get("index", len(builders) + len(finished))
                block = data.get("content_block") or {}
                block_type = block.get("type")
                if block_type == "tool_use":
                    acc = ToolCallAccumulator(block.get("id", ""), block.get("name", ""))
                    builders[index] = acc
                    yield ToolUseStart(acc.id, acc.name)
                elif block_type == "thinking":
                    builders[index] = _BlockBuilder(thought=True)
                elif block_type == "text":
                    builder = _BlockBuilder()
                    initial = block.get("text", "")
                    if initial:
                        builder.parts.append(initial)
                        yield TextDelta(initial)
                    builders[index] = builder

            elif sse.event == "content_block_delta":
                builder = builders.get(data.get("index", -1))
                delta = data.get("delta") or {}
                delta_type = delta.get("type")
                if delta_type == "text_delta":
                    text = delta.get("text", "")
                    if isinstance(builder, _BlockBuilder):
                        builder.parts.append(text)
                    yield TextDelta(text)
                elif delta_type == "input_json_delta":
                    partial = delta.get("partial_json", "")
                    if isinstance(builder, ToolCallAccumulator):
                        builder.append(partial)
                    yield ToolUseInputDelta(partial)
                elif delta_type == "thinking_delta" and isinstance(builder, _BlockBuilder):
                    builder.parts.append(delta.get("thinking", ""))
                elif delta_type == "signature_delta" and isinstance(builder, _BlockBuilder):
                    builder.signature = delta.get("signature")

            elif sse.event == "content_block_stop":
                finish(data.get("index", -1))

            elif sse.event == "message_delta":
                delta = data.get("delta") or {}
                stop_reason = _stop_reason(delta.get("stop_reason"))
                output_tokens = (data.get("usage") or {}).get("output_tokens", output_tokens)

            elif sse.event == "message_stop":
                for index in list(builders):
                    finish(index)
                content = tuple(finished[i] for i in sorted(finished))
                yield StreamComplete(
                    CompletionResponse(content, stop_reason, Usage(input_tokens, output_tokens))
                )
                return

            elif sse.event == "error":
                error = data.get("error") or {}
                yield StreamError(error.get("message") or sse.data)
                return
