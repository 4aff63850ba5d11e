"""
CellClaw - Data models shared by providers, tools and the agent loop.

Content blocks and stream events are closed unions of small frozen
dataclasses. Consumers dispatch with ``isinstance`` and treat anything else
as a programming error.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Union


class Role(str, Enum):
    """Author of a transcript message."""

    USER = "user"
    ASSISTANT = "assistant"


class StopReason(str, Enum):
    """Why a model response ended."""

    END_TURN = "end_turn"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Content blocks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextBlock:
    """Plain text, or a vendor reasoning block when ``thought`` is set."""

    text: str
    thought: bool = False
    signature: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": "text", "text": self.text}
        if self.thought:
            result["thought"] = True
        if self.signature:
            result["signature"] = self.signature
        return result


@dataclass(frozen=True)
class ToolUseBlock:
    """A tool invocation requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass(frozen=True)
class ToolResultBlock:
    """The outcome of one tool invocation, answering a ToolUseBlock by id."""

    tool_use_id: str
    content: str
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
            "is_error": self.is_error,
        }


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


def content_block_from_dict(data: dict[str, Any]) -> ContentBlock:
    """Rebuild a content block from its ``to_dict`` form."""
    block_type = data.get("type")
    if block_type == "text":
        return TextBlock(
            text=data.get("text", ""),
            thought=data.get("thought", False),
            signature=data.get("signature"),
        )
    if block_type == "tool_use":
        return ToolUseBlock(id=data["id"], name=data["name"], input=data.get("input", {}))
    if block_type == "tool_result":
        return ToolResultBlock(
            tool_use_id=data["tool_use_id"],
            content=data.get("content", ""),
            is_error=data.get("is_error", False),
        )
    raise ValueError(f"Unknown content block type: {block_type!r}")


@dataclass(frozen=True)
class Message:
    """One transcript entry. Immutable once appended."""

    role: Role
    content: tuple[ContentBlock, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.content, tuple):
            object.__setattr__(self, "content", tuple(self.content))

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(Role.USER, (TextBlock(text),))

    @classmethod
    def assistant(cls, text: str) -> "Message":
        return cls(Role.ASSISTANT, (TextBlock(text),))

    @classmethod
    def tool_results(cls, results: Iterable[ToolResultBlock]) -> "Message":
        return cls(Role.USER, tuple(results))

    @property
    def text(self) -> str:
        return "".join(
            b.text for b in self.content if isinstance(b, TextBlock) and not b.thought
        )

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role.value, "content": [b.to_dict() for b in self.content]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            role=Role(data["role"]),
            content=tuple(content_block_from_dict(b) for b in data.get("content", [])),
        )


# ---------------------------------------------------------------------------
# Tool catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ParameterProperty:
    """One named parameter of a tool."""

    type: str
    description: str
    enum: Optional[tuple[str, ...]] = None

    def __post_init__(self) -> None:
        if self.enum is not None and not isinstance(self.enum, tuple):
            object.__setattr__(self, "enum", tuple(self.enum))


@dataclass(frozen=True)
class ToolParameters:
    """JSON-schema style object description of a tool's arguments."""

    properties: dict[str, ParameterProperty] = field(default_factory=dict)
    required: tuple[str, ...] = ()
    type: str = "object"

    def __post_init__(self) -> None:
        if not isinstance(self.required, tuple):
            object.__setattr__(self, "required", tuple(self.required))

    @classmethod
    def from_json_schema(cls, schema: dict[str, Any]) -> "ToolParameters":
        properties = {
            name: ParameterProperty(
                type=prop.get("type", "string"),
                description=prop.get("description", ""),
                enum=prop.get("enum"),
            )
            for name, prop in schema.get("properties", {}).items()
        }
        return cls(
            properties=properties,
            required=tuple(schema.get("required", ())),
            type=schema.get("type", "object"),
        )


@dataclass(frozen=True)
class ToolApiDefinition:
    """What a provider is told about a tool."""

    name: str
    description: str
    input_schema: ToolParameters = field(default_factory=ToolParameters)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of a tool's ``execute``. Exactly one of data/error is meaningful."""

    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, message: str) -> "ToolResult":
        return cls(success=False, error=message)

    def render(self) -> str:
        """String form forwarded to the model as tool result content."""
        if not self.success:
            return self.error or "Unknown error"
        if self.data is None:
            return "Success"
        if isinstance(self.data, str):
            return self.data
        return json.dumps(self.data, default=str)


# ---------------------------------------------------------------------------
# Requests and responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            self.input_tokens + other.input_tokens,
            self.output_tokens + other.output_tokens,
        )


@dataclass(frozen=True)
class CompletionRequest:
    """A normalized request, built fresh for every provider call."""

    system_prompt: str
    messages: tuple[Message, ...] = ()
    tools: tuple[ToolApiDefinition, ...] = ()
    max_tokens: int = 4096

    def __post_init__(self) -> None:
        if not isinstance(self.messages, tuple):
            object.__setattr__(self, "messages", tuple(self.messages))
        if not isinstance(self.tools, tuple):
            object.__setattr__(self, "tools", tuple(self.tools))
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got {self.max_tokens}")


@dataclass(frozen=True)
class CompletionResponse:
    content: tuple[ContentBlock, ...] = ()
    stop_reason: StopReason = StopReason.END_TURN
    usage: Optional[Usage] = None

    def __post_init__(self) -> None:
        if not isinstance(self.content, tuple):
            object.__setattr__(self, "content", tuple(self.content))

    @property
    def text(self) -> str:
        return "".join(
            b.text for b in self.content if isinstance(b, TextBlock) and not b.thought
        )

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolUseStart:
    id: str
    name: str


@dataclass(frozen=True)
class ToolUseInputDelta:
    partial_json: str


@dataclass(frozen=True)
class StreamComplete:
    response: CompletionResponse


@dataclass(frozen=True)
class StreamError:
    """A failed stream.

    ``protocol_error`` marks an unusable body, as opposed to a transport
    failure or an error the vendor reported.
    """

    message: str
    status_code: Optional[int] = None
    protocol_error: bool = False


StreamEvent = Union[TextDelta, ToolUseStart, ToolUseInputDelta, StreamComplete, StreamError]
