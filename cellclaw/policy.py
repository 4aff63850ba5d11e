"""
CellClaw - Per-tool autonomy policy.

The policy store decides, for each tool name, whether a call runs
automatically, waits for a human, or is refused outright. Unknown tools
default to ASK.
"""

import logging
import threading
from enum import Enum
from typing import Any, Mapping, Optional

from .approval import ApprovalResult

logger = logging.getLogger("cellclaw.policy")


class ToolApprovalPolicy(str, Enum):
    """How a tool call is authorized."""

    AUTO = "auto"
    ASK = "ask"
    DENY = "deny"


# Standard device tools: reads run automatically, writes and sends ask first.
DEVICE_TOOL_DEFAULTS: dict[str, ToolApprovalPolicy] = {
    "sms.read": ToolApprovalPolicy.AUTO,
    "contacts.search": ToolApprovalPolicy.AUTO,
    "calendar.query": ToolApprovalPolicy.AUTO,
    "location.get": ToolApprovalPolicy.AUTO,
    "clipboard.read": ToolApprovalPolicy.AUTO,
    "file.read": ToolApprovalPolicy.AUTO,
    "file.list": ToolApprovalPolicy.AUTO,
    "settings.get": ToolApprovalPolicy.AUTO,
    "sensor.read": ToolApprovalPolicy.AUTO,
    "phone.log": ToolApprovalPolicy.AUTO,
    "notification.send": ToolApprovalPolicy.AUTO,
    "notification.listen": ToolApprovalPolicy.AUTO,
    "browser.search": ToolApprovalPolicy.AUTO,
    "browser.open": ToolApprovalPolicy.AUTO,
    "screen.read": ToolApprovalPolicy.AUTO,
    "screen.capture": ToolApprovalPolicy.AUTO,
    "vision.analyze": ToolApprovalPolicy.AUTO,
    "app.launch": ToolApprovalPolicy.AUTO,
    "app.automate": ToolApprovalPolicy.AUTO,
    "messaging.read": ToolApprovalPolicy.AUTO,
    "sms.send": ToolApprovalPolicy.ASK,
    "phone.call": ToolApprovalPolicy.ASK,
    "contacts.add": ToolApprovalPolicy.ASK,
    "calendar.create": ToolApprovalPolicy.ASK,
    "camera.snap": ToolApprovalPolicy.ASK,
    "camera.record": ToolApprovalPolicy.ASK,
    "clipboard.write": ToolApprovalPolicy.ASK,
    "file.write": ToolApprovalPolicy.ASK,
    "script.exec": ToolApprovalPolicy.ASK,
    "email.send": ToolApprovalPolicy.ASK,
    "schedule.manage": ToolApprovalPolicy.ASK,
    "messaging.open": ToolApprovalPolicy.ASK,
    "messaging.reply": ToolApprovalPolicy.ASK,
}


class AutonomyPolicy:
    """Thread-safe map of tool name to :class:`ToolApprovalPolicy`.

    Writes are visible to the next read from any loop or thread. The map is
    never held locked across an await.

    Args:
        defaults: Initial table, restored by :meth:`reset`. The core applies
            no defaults of its own.
    """

    def __init__(self, defaults: Optional[Mapping[str, Any]] = None) -> None:
        self._lock = threading.Lock()
        self._defaults = {
            name: ToolApprovalPolicy(policy) for name, policy in (defaults or {}).items()
        }
        self._policies = dict(self._defaults)

    def get_policy(self, tool_name: str) -> ToolApprovalPolicy:
        with self._lock:
            return self._policies.get(tool_name, ToolApprovalPolicy.ASK)

    def set_policy(self, tool_name: str, policy: ToolApprovalPolicy) -> None:
        policy = ToolApprovalPolicy(policy)
        with self._lock:
            previous = self._policies.get(tool_name)
            self._policies[tool_name] = policy
        if previous != policy:
            logger.info("Policy for %s set to %s", tool_name, policy.value)

    def all_policies(self) -> dict[str, ToolApprovalPolicy]:
        with self._lock:
            return dict(self._policies)

    def reset(self) -> None:
        with self._lock:
            self._policies = dict(self._defaults)

    def to_dict(self) -> dict[str, str]:
        return {name: policy.value for name, policy in self.all_policies().items()}

    @classmethod
    def from_dict(
        cls, data: Mapping[str, str], defaults: Optional[Mapping[str, Any]] = None
    ) -> "AutonomyPolicy":
        policy = cls(defaults)
        for name, value in data.items():
            policy.set_policy(name, ToolApprovalPolicy(value))
        return policy


class ApprovalPolicyManager:
    """Turns approval outcomes into standing policy.

    ALWAYS_ALLOW promotes the tool to AUTO for the lifetime of the policy
    store; the other outcomes leave policy untouched.
    """

    def __init__(self, policy: AutonomyPolicy) -> None:
        self.policy = policy

    def handle_result(self, tool_name: str, result: ApprovalResult) -> None:
        if result == ApprovalResult.ALWAYS_ALLOW:
            self.policy.set_policy(tool_name, ToolApprovalPolicy.AUTO)
