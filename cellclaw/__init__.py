"""
CellClaw - On-device agent core.

Converses with a user through a pluggable LLM provider and runs device tools
on the model's behalf, gating sensitive actions behind human approval.
"""

from .agent import (
    AgentEvent,
    AgentLoop,
    AgentRunResult,
    AgentState,
    AssistantTextEvent,
    Conversation,
    ErrorEvent,
    FailureReason,
    ProviderFailoverEvent,
    RunStatus,
    StateChangedEvent,
    TextDeltaEvent,
    ThinkingTextEvent,
    ToolCallDeniedEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
    UserMessageEvent,
)
from .approval import ApprovalQueue, ApprovalRequest, ApprovalResult
from .config import CellClawConfig, KeyStore, configure_logging
from .exceptions import (
    CellClawError,
    ConfigurationError,
    IterationLimitExceeded,
    ProtocolError,
    ToolError,
    TransportError,
)
from .memory import ConversationStore, Database, SemanticMemory, get_database
from .models import (
    CompletionRequest,
    CompletionResponse,
    ContentBlock,
    Message,
    ParameterProperty,
    Role,
    StopReason,
    StreamComplete,
    StreamError,
    StreamEvent,
    TextBlock,
    TextDelta,
    ToolApiDefinition,
    ToolParameters,
    ToolResult,
    ToolResultBlock,
    ToolUseBlock,
    ToolUseInputDelta,
    ToolUseStart,
    Usage,
)
from .policy import (
    DEVICE_TOOL_DEFAULTS,
    ApprovalPolicyManager,
    AutonomyPolicy,
    ToolApprovalPolicy,
)
from .prompt import PromptBuilder
from .providers import (
    AnthropicProvider,
    GeminiProvider,
    OpenAIProvider,
    OpenRouterProvider,
    Provider,
    ProviderConfig,
    ProviderManager,
    collect_stream,
)
from .runtime import AgentRuntime
from .scheduler import ScheduledTask, ScheduledTaskRunner, ScheduledTaskStore
from .tools import FunctionTool, Tool, ToolRegistry, define_tool

__version__ = "0.1.0"
__all__ = [
    # Agent loop
    "AgentLoop",
    "AgentRunResult",
    "AgentState",
    "RunStatus",
    "FailureReason",
    "Conversation",
    "AgentEvent",
    "UserMessageEvent",
    "AssistantTextEvent",
    "TextDeltaEvent",
    "ThinkingTextEvent",
    "ToolCallStartEvent",
    "ToolCallResultEvent",
    "ToolCallDeniedEvent",
    "StateChangedEvent",
    "ErrorEvent",
    "ProviderFailoverEvent",
    # Approval and policy
    "ApprovalQueue",
    "ApprovalRequest",
    "ApprovalResult",
    "AutonomyPolicy",
    "ApprovalPolicyManager",
    "ToolApprovalPolicy",
    "DEVICE_TOOL_DEFAULTS",
    # Tools
    "Tool",
    "FunctionTool",
    "ToolRegistry",
    "define_tool",
    # Providers
    "Provider",
    "ProviderConfig",
    "ProviderManager",
    "AnthropicProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "GeminiProvider",
    "collect_stream",
    # Models
    "Role",
    "StopReason",
    "Message",
    "ContentBlock",
    "TextBlock",
    "ToolUseBlock",
    "ToolResultBlock",
    "CompletionRequest",
    "CompletionResponse",
    "Usage",
    "StreamEvent",
    "TextDelta",
    "ToolUseStart",
    "ToolUseInputDelta",
    "StreamComplete",
    "StreamError",
    "ParameterProperty",
    "ToolParameters",
    "ToolApiDefinition",
    "ToolResult",
    # Runtime, config, persistence
    "AgentRuntime",
    "CellClawConfig",
    "KeyStore",
    "configure_logging",
    "PromptBuilder",
    "Database",
    "get_database",
    "ConversationStore",
    "SemanticMemory",
    "ScheduledTask",
    "ScheduledTaskStore",
    "ScheduledTaskRunner",
    # Exceptions
    "CellClawError",
    "ConfigurationError",
    "TransportError",
    "ProtocolError",
    "ToolError",
    "IterationLimitExceeded",
]
