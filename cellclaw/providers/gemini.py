"""Google Gemini ``generateContent`` provider."""

import json
import uuid
from typing import Any, AsyncIterator, Optional

import httpx

from ..exceptions import ProtocolError
from ..models import (
    CompletionRequest,
    CompletionResponse,
    ContentBlock,
    Role,
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
from ..schema import tool_name_map, tools_to_gemini_format, wire_tool_name
from .base import Provider, iter_sse_events


def _synthesize_id(name: str) -> str:
    return f"gemini_{uuid.uuid4().hex[:12]}_{name}"


def _usage(payload: dict[str, Any]) -> Optional[Usage]:
    meta = payload.get("usageMetadata")
    if not meta:
        return None
    return Usage(
        input_tokens=meta.get("promptTokenCount", 0),
        output_tokens=meta.get("candidatesTokenCount", 0),
    )


class GeminiProvider(Provider):
    """Provider for the Gemini ``v1beta`` models endpoint."""

    name = "gemini"
    default_model = "gemini-2.5-flash"
    api_url = "https://generativelanguage.googleapis.com/v1beta/models"

    def _endpoint(self, stream: bool) -> str:
        if stream:
            return f"{self._base_url}/{self._model}:streamGenerateContent?alt=sse"
        return f"{self._base_url}/{self._model}:generateContent"

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key}

    def _build_body(self, request: CompletionRequest, stream: bool) -> dict[str, Any]:
        call_names = {
            block.id: block.name for msg in request.messages for block in msg.tool_uses
        }

        contents = []
        for msg in request.messages:
            parts: list[dict[str, Any]] = []
            for block in msg.content:
                if isinstance(block, TextBlock):
                    if not block.thought:
                        parts.append({"text": block.text})
                elif isinstance(block, ToolUseBlock):
                    parts.append(
                        {"functionCall": {"name": wire_tool_name(block.name), "args": block.input}}
                    )
                elif isinstance(block, ToolResultBlock):
                    name = call_names.get(block.tool_use_id, block.tool_use_id)
                    parts.append(
                        {
                            "functionResponse": {
                                "name": wire_tool_name(name),
                                "response": {"content": block.content},
                            }
                        }
                    )
                else:
                    raise TypeError(f"Unsupported content block: {block!r}")
            if parts:
                contents.append(
                    {"role": "user" if msg.role == Role.USER else "model", "parts": parts}
                )

        body: dict[str, Any] = {
            "system_instruction": {"parts": [{"text": request.system_prompt}]},
            "contents": contents,
            "generationConfig": {"maxOutputTokens": request.max_tokens},
        }
        if request.tools:
            body["tools"] = tools_to_gemini_format(request.tools, rename=wire_tool_name)
        return body

    def _parse_parts(
        self, parts: list[dict[str, Any]], names: dict[str, str]
    ) -> list[ContentBlock]:
        blocks: list[ContentBlock] = []
        for part in parts:
            text = part.get("text")
            if isinstance(text, str) and text:
                blocks.append(
                    TextBlock(
                        text,
                        thought=bool(part.get("thought")),
                        signature=part.get("thoughtSignature"),
                    )
                )
            call = part.get("functionCall")
            if call:
                raw_name = call.get("name", "")
                name = names.get(raw_name, raw_name)
                blocks.append(
                    ToolUseBlock(
                        id=call.get("id") or _synthesize_id(raw_name),
                        name=name,
                        input=call.get("args") or {},
                    )
                )
        return blocks

    def _parse_response(
        self, payload: dict[str, Any], request: CompletionRequest
    ) -> CompletionResponse:
        candidates = payload.get("candidates") or []
        if not candidates:
            feedback = payload.get("promptFeedback") or {}
            reason = feedback.get("blockReason", "no candidates")
            raise ProtocolError(f"Gemini returned no candidates: {reason}")

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        blocks = self._parse_parts(parts, tool_name_map(request.tools))

        has_calls = any(isinstance(b, ToolUseBlock) for b in blocks)
        if has_calls:
            stop_reason = StopReason.TOOL_USE
        elif candidate.get("finishReason") == "MAX_TOKENS":
            stop_reason = StopReason.MAX_TOKENS
        else:
            stop_reason = StopReason.END_TURN

        return CompletionResponse(tuple(blocks), stop_reason, _usage(payload))

    async def _stream_events(
        self, response: httpx.Response, request: CompletionRequest
    ) -> AsyncIterator[StreamEvent]:
        names = tool_name_map(request.tools)
        text_parts: list[str] = []
        calls: list[ToolUseBlock] = []
        finish_reason: Optional[str] = None
        usage: Optional[Usage] = None
        received = False

        async for sse in iter_sse_events(response):
            chunk = sse.json()
            if chunk.get("error"):
                error = chunk["error"]
                yield StreamError(error.get("message") if isinstance(error, dict) else str(error))
                return
            received = True
            usage = _usage(chunk) or usage

            for candidate in (chunk.get("candidates") or [])[:1]:
                parts = (candidate.get("content") or {}).get("parts") or []
                for block in self._parse_parts(parts, names):
                    if isinstance(block, TextBlock):
                        if not block.thought:
                            text_parts.append(block.text)
                            yield TextDelta(block.text)
                    elif isinstance(block, ToolUseBlock):
                        calls.append(block)
                        yield ToolUseStart(block.id, block.name)
                        yield ToolUseInputDelta(json.dumps(block.input))
                if candidate.get("finishReason"):
                    finish_reason = candidate["finishReason"]

        if not received:
            return

        blocks: list[ContentBlock] = []
        text = "".join(text_parts)
        if text:
            blocks.append(TextBlock(text))
        blocks.extend(calls)

        if calls:
            stop_reason = StopReason.TOOL_USE
        elif finish_reason == "MAX_TOKENS":
            stop_reason = StopReason.MAX_TOKENS
        else:
            stop_reason = StopReason.END_TURN
        yield StreamComplete(CompletionResponse(tuple(blocks), stop_reason, usage))
