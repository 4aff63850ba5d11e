"""
Tests for the vendor providers.

Each provider is driven through httpx.MockTransport so request translation,
response parsing, streaming and error normalization are checked without a
network.
"""

import json

import httpx
import pytest
from conftest import MockHTTP, sse

from cellclaw.exceptions import ConfigurationError, ProtocolError, TransportError
from cellclaw.models import (
    CompletionRequest,
    CompletionResponse,
    Message,
    ParameterProperty,
    Role,
    StopReason,
    StreamComplete,
    StreamError,
    TextBlock,
    TextDelta,
    ToolApiDefinition,
    ToolParameters,
    ToolResultBlock,
    ToolUseBlock,
    ToolUseInputDelta,
    ToolUseStart,
)
from cellclaw.providers import (
    AnthropicProvider,
    GeminiProvider,
    OpenAIProvider,
    OpenRouterProvider,
    ToolCallAccumulator,
    collect_stream,
)

SMS_SEND = ToolApiDefinition(
    "sms.send",
    "Send an SMS message.",
    ToolParameters(
        properties={
            "to": ParameterProperty("string", "Recipient."),
            "body": ParameterProperty("string", "Text."),
        },
        required=("to", "body"),
    ),
)

EMAIL_SEND = ToolApiDefinition(
    "email.send",
    "Send an email.",
    ToolParameters(
        properties={
            "to": ParameterProperty("string", "Recipient."),
            "subject": ParameterProperty("string", "Subject."),
            "body": ParameterProperty("string", "Body."),
        },
        required=("to",),
    ),
)


def _request(*messages, tools=(SMS_SEND,)):
    return CompletionRequest(
        system_prompt="You are a test assistant.",
        messages=messages or (Message.user("hello"),),
        tools=tools,
        max_tokens=256,
    )


def _tool_round_trip():
    """user -> assistant tool call -> tool result transcript."""
    return (
        Message.user("Text Sam"),
        Message(
            Role.ASSISTANT,
            (
                TextBlock("Sending."),
                ToolUseBlock("call_1", "sms.send", {"to": "+15550100", "body": "hi"}),
            ),
        ),
        Message.tool_results([ToolResultBlock("call_1", '{"sent": true}')]),
    )


async def _drain(events):
    return [event async for event in events]


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


class TestToolCallAccumulator:
    def test_fragments_concatenate_in_order(self):
        acc = ToolCallAccumulator("t1", "email.send")
        for fragment in ['{"to":"a@example.com",', '"subject":"Hi",', '"body":"Test"}']:
            acc.append(fragment)
        block = acc.build()
        assert block == ToolUseBlock(
            "t1", "email.send", {"to": "a@example.com", "subject": "Hi", "body": "Test"}
        )

    def test_empty_input_is_empty_object(self):
        assert ToolCallAccumulator("t1", "x").build().input == {}

    def test_invalid_json_yields_empty_object(self, caplog):
        acc = ToolCallAccumulator("t1", "x")
        acc.append('{"to": ')
        assert acc.build().input == {}
        assert "unparseable" in caplog.text

    def test_non_object_json_yields_empty_object(self):
        acc = ToolCallAccumulator("t1", "x")
        acc.append("[1, 2]")
        assert acc.build().input == {}


class TestCollectStream:
    @pytest.mark.asyncio
    async def test_returns_final_response(self):
        async def events():
            yield TextDelta("hi")
            yield StreamComplete(CompletionResponse((TextBlock("hi"),)))

        response = await collect_stream(events())
        assert response.text == "hi"

    @pytest.mark.asyncio
    async def test_stream_error_raises_transport_error(self):
        async def events():
            yield StreamError("boom", status_code=503)

        with pytest.raises(TransportError) as exc_info:
            await collect_stream(events())
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_malformed_stream_raises_protocol_error(self):
        async def events():
            yield StreamError("Malformed stream", protocol_error=True)

        with pytest.raises(ProtocolError):
            await collect_stream(events())

    @pytest.mark.asyncio
    async def test_silent_end_raises(self):
        async def events():
            yield TextDelta("partial")

        with pytest.raises(ProtocolError):
            await collect_stream(events())


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class TestAnthropicProvider:
    def _provider(self, http: MockHTTP, **kwargs) -> AnthropicProvider:
        return AnthropicProvider(api_key="sk-ant-test", config=http.config(), **kwargs)

    @pytest.mark.asyncio
    async def test_complete_request_shape(self):
        http = MockHTTP(
            lambda r: httpx.Response(
                200,
                json={
                    "content": [{"type": "text", "text": "Hello!"}],
                    "stop_reason": "end_turn",
                    "usage": {"input_tokens": 11, "output_tokens": 3},
                },
            )
        )
        provider = self._provider(http)

        response = await provider.complete(_request(*_tool_round_trip()))

        sent = http.requests[0]
        assert str(sent.url) == "https://api.anthropic.com/v1/messages"
        assert sent.headers["x-api-key"] == "sk-ant-test"
        assert sent.headers["anthropic-version"] == "2023-06-01"

        body = http.last_body
        assert body["model"] == "claude-sonnet-4-6"
        assert body["system"] == "You are a test assistant."
        assert body["max_tokens"] == 256
        assert "stream" not in body
        assert body["tools"][0]["name"] == "sms.send"
        assert body["tools"][0]["input_schema"]["required"] == ["to", "body"]
        assistant = body["messages"][1]
        assert assistant["role"] == "assistant"
        assert assistant["content"][1] == {
            "type": "tool_use",
            "id": "call_1",
            "name": "sms.send",
            "input": {"to": "+15550100", "body": "hi"},
        }
        assert body["messages"][2]["content"][0]["type"] == "tool_result"
        assert body["messages"][2]["content"][0]["tool_use_id"] == "call_1"

        assert response.text == "Hello!"
        assert response.stop_reason == StopReason.END_TURN
        assert response.usage.input_tokens == 11

    @pytest.mark.asyncio
    async def test_complete_parses_tool_use(self):
        http = MockHTTP(
            lambda r: httpx.Response(
                200,
                json={
                    "content": [
                        {"type": "thinking", "thinking": "hmm", "signature": "sig"},
                        {"type": "text", "text": "On it."},
                        {
                            "type": "tool_use",
                            "id": "toolu_1",
                            "name": "sms.send",
                            "input": {"to": "+1", "body": "x"},
                        },
                    ],
                    "stop_reason": "tool_use",
                },
            )
        )
        response = await self._provider(http).complete(_request())

        assert response.stop_reason == StopReason.TOOL_USE
        assert response.text == "On it."
        assert response.content[0] == TextBlock("hmm", thought=True, signature="sig")
        assert response.tool_uses == [ToolUseBlock("toolu_1", "sms.send", {"to": "+1", "body": "x"})]

    @pytest.mark.asyncio
    async def test_thinking_budget_is_opt_in(self):
        http = MockHTTP(
            lambda r: httpx.Response(200, json={"content": [], "stop_reason": "end_turn"})
        )
        await self._provider(http).complete(_request())
        assert "thinking" not in http.last_body

        await self._provider(http, thinking_budget=1024).complete(_request())
        assert http.last_body["thinking"] == {"type": "enabled", "budget_tokens": 255}

    @pytest.mark.asyncio
    async def test_missing_key_fails_before_network(self):
        http = MockHTTP(lambda r: httpx.Response(200, json={}))
        provider = AnthropicProvider(api_key="", config=http.config())

        with pytest.raises(ConfigurationError):
            await provider.complete(_request())
        with pytest.raises(ConfigurationError):
            provider.stream(_request())
        assert http.requests == []

    @pytest.mark.asyncio
    async def test_http_error_raises_transport_error(self):
        http = MockHTTP(lambda r: httpx.Response(529, text="overloaded"))

        with pytest.raises(TransportError) as exc_info:
            await self._provider(http).complete(_request())

        assert exc_info.value.status_code == 529
        assert "overloaded" in exc_info.value.response
        assert not exc_info.value.is_auth_failure

    @pytest.mark.asyncio
    async def test_auth_error_is_flagged(self):
        http = MockHTTP(lambda r: httpx.Response(401, json={"error": "bad key"}))

        with pytest.raises(TransportError) as exc_info:
            await self._provider(http).complete(_request())
        assert exc_info.value.is_auth_failure

    @pytest.mark.asyncio
    async def test_network_failure_raises_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError):
            await self._provider(MockHTTP(handler)).complete(_request())

    @pytest.mark.asyncio
    async def test_malformed_body_raises_protocol_error(self):
        http = MockHTTP(lambda r: httpx.Response(200, text="<html>not json</html>"))

        with pytest.raises(ProtocolError):
            await self._provider(http).complete(_request())

    @pytest.mark.asyncio
    async def test_stream_reassembles_tool_input(self):
        body = sse(
            ("message_start", {"type": "message_start", "message": {"usage": {"input_tokens": 12}}}),
            (
                "content_block_start",
                {
                    "type": "content_block_start",
                    "index": 0,
                    "content_block": {"type": "tool_use", "id": "toolu_1", "name": "email.send", "input": {}},
                },
            ),
            ("ping", {"type": "ping"}),
            (
                "content_block_delta",
                {
                    "type": "content_block_delta",
                    "index": 0,
                    "delta": {"type": "input_json_delta", "partial_json": '{"to":"a@example.com",'},
                },
            ),
            (
                "content_block_delta",
                {
                    "type": "content_block_delta",
                    "index": 0,
                    "delta": {"type": "input_json_delta", "partial_json": '"subject":"Hi",'},
                },
            ),
            (
                "content_block_delta",
                {
                    "type": "content_block_delta",
                    "index": 0,
                    "delta": {"type": "input_json_delta", "partial_json": '"body":"Test"}'},
                },
            ),
            ("content_block_stop", {"type": "content_block_stop", "index": 0}),
            (
                "message_delta",
                {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 30}},
            ),
            ("message_stop", {"type": "message_stop"}),
        )
        http = MockHTTP(
            lambda r: httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})
        )

        events = await _drain(self._provider(http).stream(_request(tools=(EMAIL_SEND,))))

        assert http.last_body["stream"] is True
        assert events[0] == ToolUseStart("toolu_1", "email.send")
        assert [e.partial_json for e in events if isinstance(e, ToolUseInputDelta)] == [
            '{"to":"a@example.com",',
            '"subject":"Hi",',
            '"body":"Test"}',
        ]
        final = events[-1]
        assert isinstance(final, StreamComplete)
        assert final.response.stop_reason == StopReason.TOOL_USE
        assert final.response.tool_uses[0].input == {
            "to": "a@example.com",
            "subject": "Hi",
            "body": "Test",
        }
        assert final.response.usage.input_tokens == 12
        assert final.response.usage.output_tokens == 30

    @pytest.mark.asyncio
    async def test_stream_text_deltas(self):
        body = sse(
            (
                "content_block_start",
                {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            ),
            (
                "content_block_delta",
                {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hel"}},
            ),
            (
                "content_block_delta",
                {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "lo"}},
            ),
            ("content_block_stop", {"type": "content_block_stop", "index": 0}),
            ("message_delta", {"type": "message_delta", "delta": {"stop_reason": "end_turn"}}),
            ("message_stop", {"type": "message_stop"}),
        )
        http = MockHTTP(lambda r: httpx.Response(200, content=body))

        response = await collect_stream(self._provider(http).stream(_request()))

        assert response.text == "Hello"
        assert response.stop_reason == StopReason.END_TURN

    @pytest.mark.asyncio
    async def test_stream_error_status(self):
        http = MockHTTP(lambda r: httpx.Response(500, text="internal"))

        events = await _drain(self._provider(http).stream(_request()))

        assert len(events) == 1
        assert isinstance(events[0], StreamError)
        assert events[0].status_code == 500
        assert not events[0].protocol_error

    @pytest.mark.asyncio
    async def test_stream_error_event(self):
        body = sse(("error", {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}))
        http = MockHTTP(lambda r: httpx.Response(200, content=body))

        events = await _drain(self._provider(http).stream(_request()))

        assert events == [StreamError("Overloaded")]

    @pytest.mark.asyncio
    async def test_stream_that_ends_early_reports_error(self):
        body = sse(
            (
                "content_block_start",
                {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": "Hi"}},
            ),
        )
        http = MockHTTP(lambda r: httpx.Response(200, content=body))

        events = await _drain(self._provider(http).stream(_request()))

        assert events[0] == TextDelta("Hi")
        assert isinstance(events[-1], StreamError)

    @pytest.mark.asyncio
    async def test_stream_malformed_payload_reports_error(self):
        body = b"event: message_start\ndata: {not json\n\n"
        http = MockHTTP(lambda r: httpx.Response(200, content=body))

        events = await _drain(self._provider(http).stream(_request()))

        assert len(events) == 1
        assert isinstance(events[0], StreamError)
        assert events[0].protocol_error


# ---------------------------------------------------------------------------
# OpenAI / OpenRouter
# ---------------------------------------------------------------------------


def _openai_reply(message, finish_reason="stop", usage=None):
    payload = {"choices": [{"index": 0, "message": message, "finish_reason": finish_reason}]}
    if usage:
        payload["usage"] = usage
    return payload


class TestOpenAIProvider:
    def _provider(self, http: MockHTTP) -> OpenAIProvider:
        return OpenAIProvider(api_key="sk-test", config=http.config())

    @pytest.mark.asyncio
    async def test_request_translation(self):
        http = MockHTTP(
            lambda r: httpx.Response(200, json=_openai_reply({"role": "assistant", "content": "Done."}))
        )

        await self._provider(http).complete(_request(*_tool_round_trip()))

        sent = http.requests[0]
        assert str(sent.url) == "https://api.openai.com/v1/chat/completions"
        assert sent.headers["authorization"] == "Bearer sk-test"

        body = http.last_body
        assert body["model"] == "gpt-5.2"
        assert body["max_completion_tokens"] == 256
        assert body["tools"][0]["type"] == "function"
        assert body["tools"][0]["function"]["name"] == "sms_send"

        messages = body["messages"]
        assert messages[0] == {"role": "system", "content": "You are a test assistant."}
        assert messages[1] == {"role": "user", "content": "Text Sam"}
        assert messages[2]["role"] == "assistant"
        assert messages[2]["content"] == "Sending."
        call = messages[2]["tool_calls"][0]
        assert call["id"] == "call_1"
        assert call["function"]["name"] == "sms_send"
        assert json.loads(call["function"]["arguments"]) == {"to": "+15550100", "body": "hi"}
        assert messages[3] == {"role": "tool", "tool_call_id": "call_1", "content": '{"sent": true}'}

    @pytest.mark.asyncio
    async def test_tool_call_names_mapped_back(self):
        reply = _openai_reply(
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": "call_9",
                        "type": "function",
                        "function": {"name": "sms_send", "arguments": '{"to": "+1", "body": "yo"}'},
                    }
                ],
            },
            finish_reason="tool_calls",
            usage={"prompt_tokens": 20, "completion_tokens": 7},
        )
        http = MockHTTP(lambda r: httpx.Response(200, json=reply))

        response = await self._provider(http).complete(_request())

        assert response.stop_reason == StopReason.TOOL_USE
        assert response.tool_uses == [ToolUseBlock("call_9", "sms.send", {"to": "+1", "body": "yo"})]
        assert response.text == ""
        assert response.usage.output_tokens == 7

    @pytest.mark.asyncio
    async def test_length_maps_to_max_tokens(self):
        http = MockHTTP(
            lambda r: httpx.Response(
                200, json=_openai_reply({"role": "assistant", "content": "cut"}, finish_reason="length")
            )
        )
        response = await self._provider(http).complete(_request())
        assert response.stop_reason == StopReason.MAX_TOKENS

    @pytest.mark.asyncio
    async def test_no_choices_is_protocol_error(self):
        http = MockHTTP(lambda r: httpx.Response(200, json={"choices": []}))
        with pytest.raises(ProtocolError):
            await self._provider(http).complete(_request())

    @pytest.mark.asyncio
    async def test_stream_accumulates_tool_calls_by_index(self):
        body = sse(
            (None, {"choices": [{"index": 0, "delta": {"role": "assistant", "content": "Ok"}}]}),
            (
                None,
                {
                    "choices": [
                        {
                            "index": 0,
                            "delta": {
                                "tool_calls": [
                                    {
                                        "index": 0,
                                        "id": "call_1",
                                        "type": "function",
                                        "function": {"name": "email_send", "arguments": '{"to":"a@example.com",'},
                                    }
                                ]
                            },
                        }
                    ]
                },
            ),
            (
                None,
                {"choices": [{"index": 0, "delta": {"tool_calls": [{"index": 0, "function": {"arguments": '"subject":"Hi",'}}]}}]},
            ),
            (
                None,
                {"choices": [{"index": 0, "delta": {"tool_calls": [{"index": 0, "function": {"arguments": '"body":"Test"}'}}]}}]},
            ),
            (None, {"choices": [{"index": 0, "delta": {}, "finish_reason": "tool_calls"}]}),
            (None, {"choices": [], "usage": {"prompt_tokens": 5, "completion_tokens": 9}}),
            (None, "[DONE]"),
        )
        http = MockHTTP(lambda r: httpx.Response(200, content=body))

        events = await _drain(self._provider(http).stream(_request(tools=(EMAIL_SEND,))))

        assert http.last_body["stream"] is True
        assert http.last_body["stream_options"] == {"include_usage": True}
        assert events[0] == TextDelta("Ok")
        assert events[1] == ToolUseStart("call_1", "email.send")
        assert len([e for e in events if isinstance(e, ToolUseInputDelta)]) == 3
        final = events[-1]
        assert isinstance(final, StreamComplete)
        assert final.response.stop_reason == StopReason.TOOL_USE
        assert final.response.text == "Ok"
        assert final.response.tool_uses == [
            ToolUseBlock("call_1", "email.send", {"to": "a@example.com", "subject": "Hi", "body": "Test"})
        ]
        assert final.response.usage.output_tokens == 9

    @pytest.mark.asyncio
    async def test_stream_without_done_reports_error(self):
        body = sse((None, {"choices": [{"index": 0, "delta": {"content": "Hi"}}]}))
        http = MockHTTP(lambda r: httpx.Response(200, content=body))

        events = await _drain(self._provider(http).stream(_request()))

        assert events[0] == TextDelta("Hi")
        assert isinstance(events[-1], StreamError)


class TestOpenRouterProvider:
    @pytest.mark.asyncio
    async def test_endpoint_and_token_field(self):
        http = MockHTTP(
            lambda r: httpx.Response(200, json=_openai_reply({"role": "assistant", "content": "hi"}))
        )
        provider = OpenRouterProvider(api_key="or-key", config=http.config())

        response = await provider.complete(_request())

        sent = http.requests[0]
        assert str(sent.url) == "https://openrouter.ai/api/v1/chat/completions"
        assert sent.headers["authorization"] == "Bearer or-key"
        body = http.last_body
        assert body["model"] == "google/gemini-2.5-flash"
        assert body["max_tokens"] == 256
        assert "max_completion_tokens" not in body
        assert response.text == "hi"


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


class TestGeminiProvider:
    def _provider(self, http: MockHTTP) -> GeminiProvider:
        return GeminiProvider(api_key="g-key", config=http.config())

    @pytest.mark.asyncio
    async def test_request_translation(self):
        http = MockHTTP(
            lambda r: httpx.Response(
                200,
                json={"candidates": [{"content": {"parts": [{"text": "Sent."}]}, "finishReason": "STOP"}]},
            )
        )

        response = await self._provider(http).complete(_request(*_tool_round_trip()))

        sent = http.requests[0]
        assert str(sent.url) == (
            "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash:generateContent"
        )
        assert sent.headers["x-goog-api-key"] == "g-key"

        body = http.last_body
        assert body["system_instruction"] == {"parts": [{"text": "You are a test assistant."}]}
        assert body["generationConfig"] == {"maxOutputTokens": 256}
        declaration = body["tools"][0]["function_declarations"][0]
        assert declaration["name"] == "sms_send"
        assert declaration["parameters"]["type"] == "OBJECT"
        assert declaration["parameters"]["properties"]["to"]["type"] == "STRING"

        contents = body["contents"]
        assert [c["role"] for c in contents] == ["user", "model", "user"]
        assert contents[1]["parts"][1] == {
            "functionCall": {"name": "sms_send", "args": {"to": "+15550100", "body": "hi"}}
        }
        assert contents[2]["parts"][0] == {
            "functionResponse": {"name": "sms_send", "response": {"content": '{"sent": true}'}}
        }
        assert response.text == "Sent."
        assert response.stop_reason == StopReason.END_TURN

    @pytest.mark.asyncio
    async def test_function_call_gets_synthesized_id(self):
        http = MockHTTP(
            lambda r: httpx.Response(
                200,
                json={
                    "candidates": [
                        {
                            "content": {
                                "role": "model",
                                "parts": [{"functionCall": {"name": "sms_send", "args": {"to": "+1", "body": "x"}}}],
                            },
                            "finishReason": "STOP",
                        }
                    ],
                    "usageMetadata": {"promptTokenCount": 8, "candidatesTokenCount": 4},
                },
            )
        )

        response = await self._provider(http).complete(_request())

        assert response.stop_reason == StopReason.TOOL_USE
        call = response.tool_uses[0]
        assert call.name == "sms.send"
        assert call.input == {"to": "+1", "body": "x"}
        assert call.id.startswith("gemini_")
        assert call.id.endswith("_sms_send")
        assert response.usage.input_tokens == 8

    @pytest.mark.asyncio
    async def test_max_tokens_finish(self):
        http = MockHTTP(
            lambda r: httpx.Response(
                200,
                json={"candidates": [{"content": {"parts": [{"text": "cut"}]}, "finishReason": "MAX_TOKENS"}]},
            )
        )
        response = await self._provider(http).complete(_request())
        assert response.stop_reason == StopReason.MAX_TOKENS

    @pytest.mark.asyncio
    async def test_blocked_prompt_is_protocol_error(self):
        http = MockHTTP(
            lambda r: httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})
        )
        with pytest.raises(ProtocolError) as exc_info:
            await self._provider(http).complete(_request())
        assert "SAFETY" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_stream(self):
        body = sse(
            (None, {"candidates": [{"content": {"parts": [{"text": "Hel"}]}}]}),
            (None, {"candidates": [{"content": {"parts": [{"text": "lo"}]}, "finishReason": "STOP"}]}),
        )
        http = MockHTTP(lambda r: httpx.Response(200, content=body))

        events = await _drain(self._provider(http).stream(_request()))

        assert str(http.requests[0].url).endswith(":streamGenerateContent?alt=sse")
        assert events[:2] == [TextDelta("Hel"), TextDelta("lo")]
        assert isinstance(events[-1], StreamComplete)
        assert events[-1].response.text == "Hello"

    @pytest.mark.asyncio
    async def test_stream_function_call(self):
        body = sse(
            (
                None,
                {
                    "candidates": [
                        {
                            "content": {"parts": [{"functionCall": {"name": "sms_send", "args": {"to": "+1", "body": "x"}}}]},
                            "finishReason": "STOP",
                        }
                    ]
                },
            ),
        )
        http = MockHTTP(lambda r: httpx.Response(200, content=body))

        events = await _drain(self._provider(http).stream(_request()))

        start = events[0]
        assert isinstance(start, ToolUseStart)
        assert start.name == "sms.send"
        assert json.loads(events[1].partial_json) == {"to": "+1", "body": "x"}
        assert events[-1].response.stop_reason == StopReason.TOOL_USE

    @pytest.mark.asyncio
    async def test_empty_stream_reports_error(self):
        http = MockHTTP(lambda r: httpx.Response(200, content=b""))

        events = await _drain(self._provider(http).stream(_request()))

        assert len(events) == 1
        assert isinstance(events[0], StreamError)
