"""OpenAI Chat Completions provider, plus the OpenAI-compatible OpenRouter.

Tool names are sent with dots replaced by underscores and mapped back from
the request catalog when the reply is parsed, so the mapping lives only for
the duration of one call.
"""

import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from ..exceptions import ProtocolError
from ..models import (
    CompletionRequest,
    CompletionResponse,
    Message,
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
from ..schema import tool_name_map, tools_to_openai_format, wire_tool_name
from .base import Provider, ToolCallAccumulator, iter_sse_events

logger = logging.getLogger("cellclaw.providers.openai")

FINISH_REASONS = {
    "stop": StopReason.END_TURN,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "length": StopReason.MAX_TOKENS,
}


def _stop_reason(finish_reason: Optional[str], has_tool_calls: bool) -> StopReason:
    if has_tool_calls:
        return StopReason.TOOL_USE
    return FINISH_REASONS.get(finish_reason or "", StopReason.END_TURN)


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw or "{}")
    except (json.JSONDecodeError, TypeError):
        logger.warning("Discarding unparseable tool arguments: %.200s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _message_to_json(msg: Message) -> list[dict[str, Any]]:
    results = [b for b in msg.content if isinstance(b, ToolResultBlock)]
    if results:
        return [
            {"role": "tool", "tool_call_id": r.tool_use_id, "content": r.content}
            for r in results
        ]

    calls = msg.tool_uses
    if calls:
        text = msg.text
        return [
            {
                "role": "assistant",
                "content": text if text.strip() else None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": wire_tool_name(call.name),
                            "arguments": json.dumps(call.input),
                        },
                    }
                    for call in calls
                ],
            }
        ]

    return [{"role": msg.role.value, "content": msg.text}]


class OpenAIProvider(Provider):
    """Provider for OpenAI's ``/v1/chat/completions`` endpoint."""

    name = "openai"
    default_model = "gpt-5.2"
    api_url = "https://api.openai.com/v1/chat/completions"
    max_tokens_field = "max_completion_tokens"

    def _endpoint(self, stream: bool) -> str:
        return self._base_url

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def _build_body(self, request: CompletionRequest, stream: bool) -> dict[str, Any]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": request.system_prompt}]
        for msg in request.messages:
            messages.extend(_message_to_json(msg))

        body: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            self.max_tokens_field: request.max_tokens,
        }
        if request.tools:
            body["tools"] = tools_to_openai_format(request.tools, rename=wire_tool_name)
        if stream:
            body["stream"] = True
            body["stream_options"] = {"include_usage": True}
        return body

    def _parse_response(
        self, payload: dict[str, Any], request: CompletionRequest
    ) -> CompletionResponse:
        choices = payload.get("choices") or []
        if not choices:
            raise ProtocolError(f"{self.name} response contained no choices")
        choice = choices[0]
        message = choice.get("message") or {}
        names = tool_name_map(request.tools)

        blocks: list[Any] = []
        content = message.get("content")
        if isinstance(content, str) and content.strip():
            blocks.append(TextBlock(content))

        for call in message.get("tool_calls") or []:
            function = call.get("function") or {}
            raw_name = function.get("name", "")
            blocks.append(
                ToolUseBlock(
                    id=call.get("id", ""),
                    name=names.get(raw_name, raw_name),
                    input=_parse_arguments(function.get("arguments")),
                )
            )

        usage = None
        usage_obj = payload.get("usage")
        if usage_obj:
            usage = Usage(
                input_tokens=usage_obj.get("prompt_tokens", 0),
                output_tokens=usage_obj.get("completion_tokens", 0),
            )

        has_calls = any(isinstance(b, ToolUseBlock) for b in blocks)
        return CompletionResponse(
            tuple(blocks), _stop_reason(choice.get("finish_reason"), has_calls), usage
        )

    async def _stream_events(
        self, response: httpx.Response, request: CompletionRequest
    ) -> AsyncIterator[StreamEvent]:
        names = tool_name_map(request.tools)
        text_parts: list[str] = []
        calls: dict[int, ToolCallAccumulator] = {}
        finish_reason: Optional[str] = None
        usage: Optional[Usage] = None

        async for sse in iter_sse_events(response):
            if sse.data.strip() == "[DONE]":
                blocks: list[Any] = []
                text = "".join(text_parts)
                if text.strip():
                    blocks.append(TextBlock(text))
                blocks.extend(calls[i].build() for i in sorted(calls))
                yield StreamComplete(
                    CompletionResponse(
                        tuple(blocks), _stop_reason(finish_reason, bool(calls)), usage
                    )
                )
                return

            chunk = sse.json()
            if chunk.get("error"):
                error = chunk["error"]
                message = error.get("message") if isinstance(error, dict) else str(error)
                yield StreamError(message or sse.data)
                return

            usage_obj = chunk.get("usage")
            if usage_obj:
                usage = Usage(
                    input_tokens=usage_obj.get("prompt_tokens", 0),
                    output_tokens=usage_obj.get("completion_tokens", 0),
                )

            for choice in chunk.get("choices") or []:
                delta = choice.get("delta") or {}
                content = delta.get("content")
                if content:
                    text_parts.append(content)
                    yield TextDelta(content)

                for fragment in delta.get("tool_calls") or []:
                    index = fragment.get("index", 0)
                    function = fragment.get("function") or {}
                    acc = calls.get(index)
                    if acc is None:
                        raw_name = function.get("name", "")
                        acc = ToolCallAccumulator(
                            fragment.get("id", ""), names.get(raw_name, raw_name)
                        )
                        calls[index] = acc
                        yield ToolUseStart(acc.id, acc.name)
                    arguments = function.get("arguments")
                    if arguments:
                        acc.append(arguments)
                        yield ToolUseInputDelta(arguments)

                if choice.get("finish_reason"):
                    finish_reason = choice["finish_reason"]


class OpenRouterProvider(OpenAIProvider):
    """OpenAI-compatible provider routed through OpenRouter."""

    name = "openrouter"
    default_model = "google/gemini-2.5-flash"
    api_url = "https://openrouter.ai/api/v1/chat/completions"
    max_tokens_field = "max_tokens"

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["X-Title"] = "CellClaw"
        return headers
