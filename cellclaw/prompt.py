"""
CellClaw - System prompt assembly.
"""

from typing import Optional

from .tools import ToolRegistry

DEFAULT_IDENTITY = """You are CellClaw, an autonomous AI assistant running directly on the user's phone. \
You have access to the phone's capabilities through tools: messages, calls, contacts, \
calendar, camera, location, files, app control and system settings.

You are helpful, proactive, and safety-conscious. Always prioritize the user's safety and \
privacy. For sensitive actions such as sending messages, making calls or executing scripts, \
the user will be asked for approval unless they have set those tools to auto-approve."""


class PromptBuilder:
    """Builds the system prompt sent with every provider call.

    The prompt is rebuilt per call so tool registrations and remembered
    facts are picked up without restarting a conversation.
    """

    def __init__(
        self,
        user_name: str = "",
        personality_prompt: str = "",
        identity: Optional[str] = None,
    ) -> None:
        self.user_name = user_name
        self.personality_prompt = personality_prompt
        self.identity = identity or DEFAULT_IDENTITY

    def build_system_prompt(self, registry: ToolRegistry, memory_context: str = "") -> str:
        parts = [self.identity]

        if self.user_name.strip():
            parts.append(f"\nThe user's name is {self.user_name.strip()}.")

        if self.personality_prompt.strip():
            parts.append("\n## Custom Instructions")
            parts.append(self.personality_prompt.strip())

        parts.append("\n## Available Tools")
        for tool in registry.all():
            parts.append(f"- **{tool.name}**: {tool.description}")

        parts.append(
            "\n## Tool Use Guidelines"
            "\n- Use tools proactively to help the user accomplish their goals."
            "\n- For tools that require approval, the user will be prompted before execution."
            "\n- Always explain what you're about to do before using a tool."
            "\n- If a tool fails or is denied, explain the error and suggest alternatives."
        )

        if memory_context.strip():
            parts.append(memory_context.rstrip())

        return "\n".join(parts)
