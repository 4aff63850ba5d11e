"""Base provider for vendor LLM integrations.

A provider turns a normalized :class:`CompletionRequest` into one vendor HTTP
call and turns the vendor reply back into a :class:`CompletionResponse` or a
sequence of :class:`StreamEvent` values. Vendor JSON never leaves the
provider.
"""

import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

import httpx

from ..exceptions import ConfigurationError, ProtocolError, TransportError
from ..models import (
    CompletionRequest,
    CompletionResponse,
    StreamComplete,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolUseBlock,
    ToolUseInputDelta,
    ToolUseStart,
)

logger = logging.getLogger("cellclaw.providers")

MAX_ERROR_BODY_CHARS = 2_000


@dataclass
class ProviderConfig:
    """Transport settings shared by all providers.

    Attributes:
        connect_timeout: Seconds to wait for a connection. Default 30.
        read_timeout: Seconds to wait between reads. Default 120.
        base_url: Optional override of the vendor endpoint.
        http_client: Optional shared ``httpx.AsyncClient``. When supplied the
            provider never closes it.
        extra_headers: Headers added to every request.
    """

    connect_timeout: float = 30.0
    read_timeout: float = 120.0
    base_url: Optional[str] = None
    http_client: Optional[httpx.AsyncClient] = None
    extra_headers: dict[str, str] = field(default_factory=dict)


@dataclass
class SSEMessage:
    """One decoded server-sent event."""

    event: str
    data: str

    def json(self) -> Any:
        try:
            return json.loads(self.data)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Malformed stream payload: {e}") from e


async def iter_sse_events(response: httpx.Response) -> AsyncIterator[SSEMessage]:
    """Decode an SSE body into messages, in transport order."""
    event_type = "message"
    data_lines: list[str] = []

    async for raw in response.aiter_lines():
        line = raw.rstrip("\r\n")

        if line.startswith(":"):
            continue

        if not line:
            if data_lines:
                yield SSEMessage(event_type, "\n".join(data_lines))
            event_type = "message"
            data_lines = []
            continue

        if ":" in line:
            name, _, value = line.partition(":")
            value = value[1:] if value.startswith(" ") else value
        else:
            name, value = line, ""

        if name == "event":
            event_type = value
        elif name == "data":
            data_lines.append(value)

    if data_lines:
        yield SSEMessage(event_type, "\n".join(data_lines))


class ToolCallAccumulator:
    """Rebuilds a tool call from ToolUseStart plus input fragments."""

    def __init__(self, id: str, name: str) -> None:
        self.id = id
        self.name = name
        self._fragments: list[str] = []

    def append(self, fragment: str) -> None:
        self._fragments.append(fragment)

    @property
    def raw_input(self) -> str:
        return "".join(self._fragments)

    def build(self) -> ToolUseBlock:
        raw = self.raw_input.strip()
        if not raw:
            return ToolUseBlock(self.id, self.name, {})
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unparseable input for tool call %s (%s)", self.id, self.name)
            return ToolUseBlock(self.id, self.name, {})
        if not isinstance(parsed, dict):
            logger.warning("Tool call %s input is not an object", self.id)
            return ToolUseBlock(self.id, self.name, {})
        return ToolUseBlock(self.id, self.name, parsed)


def stream_error_to_exception(event: StreamError) -> Exception:
    """The exception the blocking path would have raised for this failure."""
    if event.protocol_error:
        return ProtocolError(event.message, status_code=event.status_code)
    return TransportError(event.message, status_code=event.status_code)


async def collect_stream(events: AsyncIterator[StreamEvent]) -> CompletionResponse:
    """Consume a stream and return its final response.

    Raises:
        TransportError: On a StreamError event for a failed transport or a
            vendor-reported error.
        ProtocolError: On a StreamError event for an unusable body, or when
            the stream ends without a terminal event.
    """
    async for event in events:
        if isinstance(event, StreamComplete):
            return event.response
        if isinstance(event, StreamError):
            raise stream_error_to_exception(event)
        if not isinstance(event, (TextDelta, ToolUseStart, ToolUseInputDelta)):
            raise TypeError(f"Unexpected stream event: {event!r}")
    raise ProtocolError("Stream ended without a completion event")


def _truncate(text: str) -> str:
    if len(text) > MAX_ERROR_BODY_CHARS:
        return text[:MAX_ERROR_BODY_CHARS] + "...[TRUNCATED]"
    return text


class Provider(ABC):
    """Base class for vendor providers.

    Subclasses describe the wire format (endpoint, headers, body, parsing);
    this class owns credentials, HTTP transport, and error normalization.
    Instances are safe to reuse across calls but must not be reconfigured
    while a call is in flight.
    """

    name: str = ""
    default_model: str = ""
    api_url: str = ""

    def __init__(
        self,
        api_key: str = "",
        model: Optional[str] = None,
        config: Optional[ProviderConfig] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model or self.default_model
        self._config = config or ProviderConfig()

    def configure(self, api_key: str, model: Optional[str] = None) -> None:
        """Set credentials and model. Takes effect at the next call."""
        self._api_key = api_key
        self._model = model or self.default_model

    @property
    def model(self) -> str:
        return self._model

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key and self._api_key.strip())

    @property
    def config(self) -> ProviderConfig:
        return self._config

    def _require_key(self) -> None:
        if not self.is_configured:
            raise ConfigurationError(f"No API key configured for provider '{self.name}'")

    @property
    def _base_url(self) -> str:
        return (self._config.base_url or self.api_url).rstrip("/")

    # -- wire format hooks ---------------------------------------------------

    @abstractmethod
    def _endpoint(self, stream: bool) -> str:
        """Full URL for a blocking or streaming call."""

    @abstractmethod
    def _headers(self) -> dict[str, str]:
        """Vendor auth and version headers."""

    @abstractmethod
    def _build_body(self, request: CompletionRequest, stream: bool) -> dict[str, Any]:
        """Translate a normalized request into the vendor JSON body."""

    @abstractmethod
    def _parse_response(
        self, payload: dict[str, Any], request: CompletionRequest
    ) -> CompletionResponse:
        """Translate a vendor JSON body into a normalized response."""

    @abstractmethod
    def _stream_events(
        self, response: httpx.Response, request: CompletionRequest
    ) -> AsyncIterator[StreamEvent]:
        """Translate a vendor event stream into normalized events."""

    # -- transport -----------------------------------------------------------

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._config.http_client is not None:
            yield self._config.http_client
            return
        timeout = httpx.Timeout(self._config.read_timeout, connect=self._config.connect_timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            yield client

    def _request_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(self._headers())
        headers.update(self._config.extra_headers)
        return headers

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Send one blocking completion request.

        Raises:
            ConfigurationError: No API key configured.
            TransportError: Network failure or non-2xx status.
            ProtocolError: The body could not be parsed.
        """
        self._require_key()
        body = self._build_body(request, stream=False)
        logger.debug(
            "%s complete: model=%s messages=%d tools=%d",
            self.name,
            self._model,
            len(request.messages),
            len(request.tools),
        )

        async with self._client() as client:
            try:
                response = await client.post(
                    self._endpoint(stream=False), json=body, headers=self._request_headers()
                )
            except httpx.HTTPError as e:
                raise TransportError(f"{self.name} request failed: {e}") from e

        if response.status_code >= 400:
            text = _truncate(response.text)
            raise TransportError(
                f"API error {response.status_code}: {text}",
                status_code=response.status_code,
                response=text,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProtocolError(f"{self.name} returned a non-JSON body: {e}") from e
        if not isinstance(payload, dict):
            raise ProtocolError(f"{self.name} returned an unexpected body: {type(payload).__name__}")

        try:
            return self._parse_response(payload, request)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ProtocolError(f"Malformed {self.name} response: {e}") from e

    def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        """Start a streaming completion.

        The configuration check happens here, before any network call; every
        later failure is reported as a StreamError event.
        """
        self._require_key()
        body = self._build_body(request, stream=True)
        return self._stream(body, request)

    async def _stream(
        self, body: dict[str, Any], request: CompletionRequest
    ) -> AsyncIterator[StreamEvent]:
        finished = False
        async with self._client() as client:
            try:
                async with client.stream(
                    "POST",
                    self._endpoint(stream=True),
                    json=body,
                    headers=self._request_headers(),
                ) as response:
                    if response.status_code >= 400:
                        raw = await response.aread()
                        text = _truncate(raw.decode("utf-8", errors="replace"))
                        yield StreamError(
                            f"API error {response.status_code}: {text}",
                            status_code=response.status_code,
                        )
                        return

                    async for event in self._stream_events(response, request):
                        if isinstance(event, (StreamComplete, StreamError)):
                            finished = True
                        yield event
                        if finished:
                            return
            except httpx.HTTPError as e:
                yield StreamError(f"{self.name} stream failed: {e}")
                return
            except ProtocolError as e:
                yield StreamError(e.message, protocol_error=True)
                return
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                yield StreamError(f"Malformed {self.name} stream: {e}", protocol_error=True)
                return

        if not finished:
            yield StreamError(
                f"{self.name} stream ended without a completion event", protocol_error=True
            )
