"""
CellClaw - Runtime wiring.

Builds the full object graph (keys, providers, tools, policy, approvals,
persistence and the agent loop) from a :class:`CellClawConfig`.
"""

import logging
from typing import Iterable, Optional

from .agent import AgentLoop
from .approval import ApprovalQueue
from .config import CellClawConfig, KeyStore
from .memory import ConversationStore, Database, SemanticMemory, get_database
from .policy import DEVICE_TOOL_DEFAULTS, AutonomyPolicy, ToolApprovalPolicy
from .prompt import PromptBuilder
from .providers.base import ProviderConfig
from .providers.manager import ProviderManager
from .scheduler import ScheduledTaskRunner, ScheduledTaskStore
from .tools import Tool, ToolRegistry

logger = logging.getLogger("cellclaw.runtime")


class AgentRuntime:
    """Everything a host needs to run the agent.

    Example:
        runtime = AgentRuntime(CellClawConfig.from_env(), tools=[SettingsGet()])
        result = await runtime.loop.submit_message("What's my ringer mode?")
    """

    def __init__(
        self,
        config: Optional[CellClawConfig] = None,
        tools: Optional[Iterable[Tool]] = None,
        keys: Optional[KeyStore] = None,
        provider_config: Optional[ProviderConfig] = None,
        database: Optional[Database] = None,
    ) -> None:
        self.config = config or CellClawConfig()
        self.keys = keys or self.config.key_store()

        self.providers = ProviderManager(
            self.keys,
            provider_type=self.config.provider,
            model=self.config.model,
            failover=self.config.failover,
            config=provider_config,
            thinking_budget=self.config.thinking_budget,
        )

        self.registry = ToolRegistry(list(tools or []))

        self.policy = AutonomyPolicy(DEVICE_TOOL_DEFAULTS)
        for tool_name, value in self.config.tool_policies.items():
            self.policy.set_policy(tool_name, ToolApprovalPolicy(value))

        self.approvals = ApprovalQueue()

        self.database = database
        if self.database is None and self.config.database_url:
            self.database = get_database(self.config.database_url)
        self.store: Optional[ConversationStore] = None
        self.memory: Optional[SemanticMemory] = None
        self.tasks: Optional[ScheduledTaskStore] = None
        if self.database is not None:
            self.store = ConversationStore(self.database)
            self.memory = SemanticMemory(self.database)
            self.tasks = ScheduledTaskStore(self.database)

        self.prompt_builder = PromptBuilder(
            user_name=self.config.user_name,
            personality_prompt=self.config.personality_prompt,
        )

        self.loop = AgentLoop(
            self.providers,
            self.registry,
            self.policy,
            self.approvals,
            prompt_builder=self.prompt_builder,
            store=self.store,
            memory=self.memory,
            max_iterations=self.config.max_iterations,
            max_tokens=self.config.max_tokens,
            stream=self.config.stream,
            parallel_tool_calls=self.config.parallel_tool_calls,
            history_limit=self.config.history_limit,
        )
        self.scheduler = ScheduledTaskRunner(self.loop, self.tasks)

        logger.info(
            "Runtime ready: provider=%s tools=%d persistence=%s",
            self.providers.active_type,
            len(self.registry),
            "on" if self.database is not None else "off",
        )
