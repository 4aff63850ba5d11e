"""
CellClaw - Agent loop.

Drives one conversation through repeated model turns: call the provider,
record the reply, run the tools it asked for (subject to policy and human
approval), feed the results back, and stop when the model answers without
requesting tools.

Example:
    loop = AgentLoop(manager, registry, AutonomyPolicy(DEVICE_TOOL_DEFAULTS), ApprovalQueue())
    loop.subscribe(print)

    result = await loop.submit_message("Text Sam that I'm running late")
    if result.ok:
        print(result.text)
"""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Union

from .approval import ApprovalQueue, ApprovalRequest, ApprovalResult
from .exceptions import (
    CellClawError,
    ConfigurationError,
    IterationLimitExceeded,
    ProtocolError,
    TransportError,
)
from .memory import ConversationStore, SemanticMemory
from .models import (
    CompletionRequest,
    CompletionResponse,
    Message,
    Role,
    StopReason,
    StreamComplete,
    StreamError,
    TextBlock,
    TextDelta,
    ToolResult,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from .policy import ApprovalPolicyManager, AutonomyPolicy, ToolApprovalPolicy
from .prompt import PromptBuilder
from .providers.base import Provider, stream_error_to_exception
from .providers.manager import FailoverEvent, ProviderManager
from .tools import ToolRegistry

logger = logging.getLogger("cellclaw.agent")

DENIED_BY_USER = "Tool execution denied by user"
TOOL_CANCELLED = "Tool call cancelled"
TOOL_NOT_EXECUTED = "Tool call not executed"


class AgentState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    MODEL_RESPONDED = "model_responded"
    DISPATCHING_TOOLS = "dispatching_tools"
    WAITING_APPROVAL = "waiting_approval"
    PAUSED = "paused"
    DONE = "done"
    FAILED = "failed"


class RunStatus(str, Enum):
    DONE = "done"
    PAUSED = "paused"
    FAILED = "failed"


class FailureReason(str, Enum):
    PROVIDER_ERROR = "provider_error"
    PROTOCOL_ERROR = "protocol_error"
    CONFIGURATION_ERROR = "configuration_error"
    ITERATION_LIMIT = "iteration_limit"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AgentRunResult:
    """Outcome of one :meth:`AgentLoop.submit_message` call.

    ``turns`` counts provider calls. ``text`` is the final assistant text.
    """

    status: RunStatus
    conversation_id: str
    turns: int
    text: str = ""
    reason: Optional[FailureReason] = None
    error: Optional[str] = None
    usage: Usage = field(default_factory=Usage)

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.DONE

    def raise_for_error(self) -> None:
        """Raise the matching exception if the run failed."""
        if self.status != RunStatus.FAILED:
            return
        message = self.error or "Agent run failed"
        if self.reason == FailureReason.ITERATION_LIMIT:
            raise IterationLimitExceeded(message, iterations=self.turns)
        if self.reason == FailureReason.CONFIGURATION_ERROR:
            raise ConfigurationError(message)
        if self.reason == FailureReason.PROTOCOL_ERROR:
            raise ProtocolError(message)
        raise TransportError(message)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserMessageEvent:
    conversation_id: str
    text: str


@dataclass(frozen=True)
class AssistantTextEvent:
    conversation_id: str
    text: str


@dataclass(frozen=True)
class TextDeltaEvent:
    conversation_id: str
    text: str


@dataclass(frozen=True)
class ThinkingTextEvent:
    conversation_id: str
    text: str


@dataclass(frozen=True)
class ToolCallStartEvent:
    conversation_id: str
    tool_use_id: str
    name: str
    params: dict[str, Any]


@dataclass(frozen=True)
class ToolCallResultEvent:
    conversation_id: str
    tool_use_id: str
    name: str
    result: ToolResult


@dataclass(frozen=True)
class ToolCallDeniedEvent:
    conversation_id: str
    tool_use_id: str
    name: str
    reason: str


@dataclass(frozen=True)
class StateChangedEvent:
    conversation_id: str
    state: AgentState


@dataclass(frozen=True)
class ErrorEvent:
    conversation_id: str
    message: str


@dataclass(frozen=True)
class ProviderFailoverEvent:
    conversation_id: str
    from_provider: str
    to_provider: str
    reason: str


AgentEvent = Union[
    UserMessageEvent,
    AssistantTextEvent,
    TextDeltaEvent,
    ThinkingTextEvent,
    ToolCallStartEvent,
    ToolCallResultEvent,
    ToolCallDeniedEvent,
    StateChangedEvent,
    ErrorEvent,
    ProviderFailoverEvent,
]

EventHandler = Callable[[AgentEvent], None]
ProviderSource = Union[Provider, ProviderManager]


class Conversation:
    """A transcript and the lock that serializes runs over it."""

    def __init__(self, id: str) -> None:
        self.id = id
        self.messages: list[Message] = []
        self.state = AgentState.IDLE
        self.lock = asyncio.Lock()
        self.task: Optional["asyncio.Task[AgentRunResult]"] = None
        self.pending_approvals = 0
        self.paused = False
        self.persist = True


class AgentLoop:
    """Multi-turn tool-calling loop over a pluggable provider.

    Args:
        providers: A single provider, or a ProviderManager (enables
            switching and failover).
        registry: Tools offered to the model.
        policy: Per-tool autonomy policy.
        approvals: Where ASK-policy calls wait for a human.
        prompt_builder: Builds the system prompt for every call.
        store: Optional plain-text conversation log.
        memory: Optional fact store injected into the system prompt.
        max_iterations: Provider calls allowed per submission; 0 is unlimited.
        max_tokens: Output budget per provider call.
        stream: Use streaming calls and surface TextDeltaEvents.
        parallel_tool_calls: Dispatch the tool calls of one reply concurrently.
        history_limit: Messages restored by :meth:`load_history`.
    """

    def __init__(
        self,
        providers: ProviderSource,
        registry: ToolRegistry,
        policy: AutonomyPolicy,
        approvals: ApprovalQueue,
        prompt_builder: Optional[PromptBuilder] = None,
        store: Optional[ConversationStore] = None,
        memory: Optional[SemanticMemory] = None,
        max_iterations: int = 0,
        max_tokens: int = 4096,
        stream: bool = False,
        parallel_tool_calls: bool = True,
        history_limit: int = 50,
    ) -> None:
        if max_iterations < 0:
            raise ConfigurationError("max_iterations must be >= 0")
        self.providers = providers
        self.registry = registry
        self.policy = policy
        self.policy_manager = ApprovalPolicyManager(policy)
        self.approvals = approvals
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.store = store
        self.memory = memory
        self.max_iterations = max_iterations
        self.max_tokens = max_tokens
        self.stream = stream
        self.parallel_tool_calls = parallel_tool_calls
        self.history_limit = history_limit
        self._conversations: dict[str, Conversation] = {}
        self._handlers: list[EventHandler] = []

    # -- observers -----------------------------------------------------------

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def _emit(self, event: AgentEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.exception("Event handler error: %s", e)

    # -- conversations -------------------------------------------------------

    def conversation(self, conversation_id: str = "default") -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            conversation = Conversation(conversation_id)
            self._conversations[conversation_id] = conversation
        return conversation

    def conversation_ids(self) -> list[str]:
        return list(self._conversations)

    def state(self, conversation_id: str = "default") -> AgentState:
        return self.conversation(conversation_id).state

    def history(self, conversation_id: str = "default") -> list[Message]:
        return list(self.conversation(conversation_id).messages)

    async def load_history(self, conversation_id: str = "default") -> int:
        """Replace the transcript with recent plain-text messages from the store."""
        if self.store is None:
            return 0
        conversation = self.conversation(conversation_id)
        stored = await asyncio.to_thread(
            self.store.get_recent_messages, conversation_id, self.history_limit
        )
        async with conversation.lock:
            conversation.messages = [
                Message.user(m.content) if m.role == Role.USER.value else Message.assistant(m.content)
                for m in stored
            ]
        logger.debug("Loaded %d messages into %s", len(stored), conversation_id)
        return len(stored)

    async def reset(self, conversation_id: str = "default", clear_store: bool = False) -> None:
        conversation = self.conversation(conversation_id)
        async with conversation.lock:
            conversation.messages = []
            conversation.paused = False
            self._set_state(conversation, AgentState.IDLE)
        if clear_store and self.store is not None:
            await asyncio.to_thread(self.store.clear, conversation_id)

    def _set_state(self, conversation: Conversation, state: AgentState) -> None:
        if conversation.state != state:
            conversation.state = state
            self._emit(StateChangedEvent(conversation.id, state))

    # -- submission ----------------------------------------------------------

    def start(
        self, text: str, conversation_id: str = "default", persist: bool = True
    ) -> "asyncio.Task[AgentRunResult]":
        """Run a submission as a task, cancelling any earlier one for the conversation."""
        conversation = self.conversation(conversation_id)
        if conversation.task is not None and not conversation.task.done():
            conversation.task.cancel()
        task = asyncio.ensure_future(self.submit_message(text, conversation_id, persist))
        conversation.task = task
        return task

    def cancel(self, conversation_id: str = "default") -> bool:
        """Cancel the task started by :meth:`start` for the conversation."""
        task = self.conversation(conversation_id).task
        if task is None or task.done():
            return False
        return task.cancel()

    def pause(self, conversation_id: str = "default") -> None:
        """Stop the conversation's run before its next provider call.

        The run returns with ``RunStatus.PAUSED`` once the turn in progress
        (including its tool round) completes.
        """
        self.conversation(conversation_id).paused = True

    def resume(
        self, conversation_id: str = "default"
    ) -> Optional["asyncio.Task[AgentRunResult]"]:
        """Clear the pause flag; continue a paused run as a task.

        Returns None when the conversation was not paused.
        """
        conversation = self.conversation(conversation_id)
        conversation.paused = False
        if conversation.state != AgentState.PAUSED:
            return None
        task = asyncio.ensure_future(self._continue(conversation))
        conversation.task = task
        return task

    async def submit_message(
        self, text: str, conversation_id: str = "default", persist: bool = True
    ) -> AgentRunResult:
        """Append a user message and run turns until the model is done.

        Provider failures end the run as FAILED and leave the transcript as
        it was at the point of failure. Cancellation propagates after every
        unanswered tool call has been given an error result.
        """
        conversation = self.conversation(conversation_id)
        async with conversation.lock:
            conversation.messages.append(Message.user(text))
            self._emit(UserMessageEvent(conversation_id, text))
            conversation.persist = persist
            if persist:
                await self._persist(conversation_id, Role.USER, text)
            return await self._run_cancellable(conversation)

    async def _continue(self, conversation: Conversation) -> AgentRunResult:
        async with conversation.lock:
            if conversation.state != AgentState.PAUSED:
                # Another submission ran while this one waited for the lock.
                return AgentRunResult(RunStatus.DONE, conversation.id, 0)
            logger.info("Resuming run on %s", conversation.id)
            return await self._run_cancellable(conversation)

    async def _run_cancellable(self, conversation: Conversation) -> AgentRunResult:
        try:
            return await self._run(conversation, conversation.persist)
        except asyncio.CancelledError:
            logger.info("Submission on %s cancelled", conversation.id)
            self._close_open_tool_uses(conversation, TOOL_CANCELLED)
            conversation.pending_approvals = 0
            self._set_state(conversation, AgentState.IDLE)
            raise

    def _close_open_tool_uses(self, conversation: Conversation, reason: str) -> None:
        """Answer the last assistant message's tool calls with an error result."""
        if not conversation.messages:
            return
        last = conversation.messages[-1]
        if last.role != Role.ASSISTANT or not last.tool_uses:
            return
        conversation.messages.append(
            Message.tool_results(
                ToolResultBlock(call.id, reason, is_error=True) for call in last.tool_uses
            )
        )

    async def _run(self, conversation: Conversation, persist: bool) -> AgentRunResult:
        turns = 0
        usage = Usage()

        while True:
            if conversation.paused:
                logger.info("Run on %s paused after %d turns", conversation.id, turns)
                self._set_state(conversation, AgentState.PAUSED)
                return AgentRunResult(RunStatus.PAUSED, conversation.id, turns, usage=usage)

            self._set_state(conversation, AgentState.AWAITING_MODEL)
            request = CompletionRequest(
                system_prompt=await self._system_prompt(),
                messages=tuple(conversation.messages),
                tools=tuple(self.registry.to_api_schema()),
                max_tokens=self.max_tokens,
            )
            turns += 1

            try:
                response = await self._call_provider(conversation, request)
            except ConfigurationError as e:
                return self._fail(conversation, turns, usage, FailureReason.CONFIGURATION_ERROR, e.message)
            except ProtocolError as e:
                return self._fail(conversation, turns, usage, FailureReason.PROTOCOL_ERROR, e.message)
            except CellClawError as e:
                return self._fail(conversation, turns, usage, FailureReason.PROVIDER_ERROR, e.message)

            self._set_state(conversation, AgentState.MODEL_RESPONDED)
            if response.usage is not None:
                usage = usage + response.usage
            conversation.messages.append(Message(Role.ASSISTANT, response.content))

            for block in response.content:
                if isinstance(block, TextBlock):
                    if block.thought:
                        self._emit(ThinkingTextEvent(conversation.id, block.text))
                    elif block.text:
                        self._emit(AssistantTextEvent(conversation.id, block.text))

            text = response.text
            if text and persist:
                await self._persist(conversation.id, Role.ASSISTANT, text)

            if response.stop_reason == StopReason.ERROR:
                self._close_open_tool_uses(conversation, TOOL_NOT_EXECUTED)
                return self._fail(
                    conversation, turns, usage, FailureReason.PROTOCOL_ERROR,
                    "Provider reported an error stop reason",
                )

            calls = response.tool_uses
            logger.debug(
                "Turn %d on %s: stop_reason=%s tool_calls=%d",
                turns,
                conversation.id,
                response.stop_reason.value,
                len(calls),
            )
            if response.stop_reason != StopReason.TOOL_USE or not calls:
                if calls:
                    logger.warning(
                        "Dropping %d tool calls on %s (stop_reason=%s)",
                        len(calls),
                        conversation.id,
                        response.stop_reason.value,
                    )
                    self._close_open_tool_uses(conversation, TOOL_NOT_EXECUTED)
                self._set_state(conversation, AgentState.DONE)
                return AgentRunResult(RunStatus.DONE, conversation.id, turns, text, usage=usage)

            self._set_state(conversation, AgentState.DISPATCHING_TOOLS)
            results = await self._dispatch(conversation, calls)
            conversation.messages.append(Message.tool_results(results))

            if self.max_iterations and turns >= self.max_iterations:
                return self._fail(
                    conversation, turns, usage, FailureReason.ITERATION_LIMIT,
                    f"Max iterations ({self.max_iterations}) reached",
                )

    def _fail(
        self,
        conversation: Conversation,
        turns: int,
        usage: Usage,
        reason: FailureReason,
        message: str,
    ) -> AgentRunResult:
        logger.warning("Run on %s failed (%s): %s", conversation.id, reason.value, message)
        self._set_state(conversation, AgentState.FAILED)
        self._emit(ErrorEvent(conversation.id, message))
        return AgentRunResult(
            RunStatus.FAILED,
            conversation.id,
            turns,
            reason=reason,
            error=message,
            usage=usage,
        )

    async def _persist(self, conversation_id: str, role: Role, text: str) -> None:
        if self.store is None:
            return
        try:
            await asyncio.to_thread(self.store.add_message, role.value, text, conversation_id)
        except Exception as e:
            logger.exception("Failed to persist %s message for %s: %s", role.value, conversation_id, e)

    async def _system_prompt(self) -> str:
        memory_context = ""
        if self.memory is not None:
            memory_context = await asyncio.to_thread(self.memory.build_context)
        return self.prompt_builder.build_system_prompt(self.registry, memory_context)

    # -- provider calls ------------------------------------------------------

    def _active_provider(self) -> Provider:
        if isinstance(self.providers, ProviderManager):
            return self.providers.active_provider()
        return self.providers

    async def _call_provider(
        self, conversation: Conversation, request: CompletionRequest
    ) -> CompletionResponse:
        if self.stream:
            return await self._call_streaming(conversation, request)

        if isinstance(self.providers, ProviderManager):

            def report(failover: FailoverEvent) -> None:
                self._emit(
                    ProviderFailoverEvent(
                        conversation.id,
                        failover.from_provider,
                        failover.to_provider,
                        failover.reason,
                    )
                )

            return await self.providers.complete_with_failover(request, on_failover=report)
        return await self.providers.complete(request)

    async def _call_streaming(
        self, conversation: Conversation, request: CompletionRequest
    ) -> CompletionResponse:
        provider = self._active_provider()
        async with aclosing(provider.stream(request)) as events:
            async for event in events:
                if isinstance(event, TextDelta):
                    if event.text:
                        self._emit(TextDeltaEvent(conversation.id, event.text))
                elif isinstance(event, StreamComplete):
                    return event.response
                elif isinstance(event, StreamError):
                    raise stream_error_to_exception(event)
        raise ProtocolError(f"{provider.name} stream ended without a completion event")

    # -- tool dispatch -------------------------------------------------------

    async def _dispatch(
        self, conversation: Conversation, calls: list[ToolUseBlock]
    ) -> list[ToolResultBlock]:
        """Run every call; results come back in the order the model asked."""
        if self.parallel_tool_calls and len(calls) > 1:
            results = await asyncio.gather(
                *(self._dispatch_one(conversation, call) for call in calls)
            )
            return list(results)
        return [await self._dispatch_one(conversation, call) for call in calls]

    async def _dispatch_one(
        self, conversation: Conversation, call: ToolUseBlock
    ) -> ToolResultBlock:
        self._emit(ToolCallStartEvent(conversation.id, call.id, call.name, call.input))

        tool = self.registry.get(call.name)
        if tool is None:
            logger.warning("Model requested unknown tool %s", call.name)
            return ToolResultBlock(call.id, f"Error: Unknown tool '{call.name}'", is_error=True)

        # DENY holds for every tool; requires_approval only skips the ASK prompt.
        policy = self.policy.get_policy(call.name)
        if policy == ToolApprovalPolicy.DENY:
            reason = f"Tool '{call.name}' is denied by policy"
            self._emit(ToolCallDeniedEvent(conversation.id, call.id, call.name, reason))
            return ToolResultBlock(call.id, reason, is_error=True)
        if policy == ToolApprovalPolicy.ASK and tool.requires_approval:
            approval = await self._request_approval(conversation, call)
            self.policy_manager.handle_result(call.name, approval)
            if approval == ApprovalResult.DENIED:
                self._emit(
                    ToolCallDeniedEvent(conversation.id, call.id, call.name, DENIED_BY_USER)
                )
                return ToolResultBlock(call.id, DENIED_BY_USER, is_error=True)

        result = await tool.run(call.input)
        self._emit(ToolCallResultEvent(conversation.id, call.id, call.name, result))
        return ToolResultBlock(call.id, result.render(), is_error=not result.success)

    async def _request_approval(
        self, conversation: Conversation, call: ToolUseBlock
    ) -> ApprovalResult:
        conversation.pending_approvals += 1
        self._set_state(conversation, AgentState.WAITING_APPROVAL)
        try:
            return await self.approvals.request(
                ApprovalRequest(
                    tool_name=call.name,
                    parameters=call.input,
                    description=f"Allow {call.name}?",
                )
            )
        finally:
            conversation.pending_approvals = max(0, conversation.pending_approvals - 1)
            if conversation.pending_approvals == 0:
                self._set_state(conversation, AgentState.DISPATCHING_TOOLS)
