"""
CellClaw - Human approval rendezvous.

A tool call that needs a human decision parks on :meth:`ApprovalQueue.request`
until someone answers through :meth:`ApprovalQueue.respond`. Answers may come
from the event loop itself or from another thread (a UI or notification
callback).

Example:
    queue = ApprovalQueue()
    queue.subscribe(lambda pending: print(len(pending), "waiting"))

    result = await queue.request(
        ApprovalRequest("sms.send", {"to": "+15550100"}, "Allow sms.send?")
    )
"""

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger("cellclaw.approval")


class ApprovalResult(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"
    ALWAYS_ALLOW = "always_allow"


@dataclass(frozen=True)
class ApprovalRequest:
    """One pending question to the user about a tool call."""

    tool_name: str
    parameters: dict[str, Any]
    description: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tool_name": self.tool_name,
            "parameters": self.parameters,
            "description": self.description,
            "timestamp": self.timestamp,
        }


@dataclass
class _Pending:
    request: ApprovalRequest
    future: "asyncio.Future[ApprovalResult]"
    loop: asyncio.AbstractEventLoop


Subscriber = Callable[[list[ApprovalRequest]], None]


class ApprovalQueue:
    """Registry of in-flight approval requests.

    Each request is resolved at most once. The pending set is guarded by a
    short lock that is never held while waiting.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: dict[str, _Pending] = {}
        self._subscribers: list[Subscriber] = []

    @property
    def requests(self) -> list[ApprovalRequest]:
        """Pending requests in submission order."""
        with self._lock:
            return [entry.request for entry in self._pending.values()]

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def subscribe(self, callback: Subscriber) -> None:
        """Call ``callback(pending)`` whenever the pending set changes."""
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def _notify(self) -> None:
        with self._lock:
            snapshot = [entry.request for entry in self._pending.values()]
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception as e:
                logger.exception("Approval subscriber error: %s", e)

    async def request(self, request: ApprovalRequest) -> ApprovalResult:
        """Register ``request`` and wait for its answer.

        The entry is removed when this returns, raises, or is cancelled.

        Raises:
            ValueError: A request with the same id is already pending.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[ApprovalResult] = loop.create_future()
        with self._lock:
            if request.id in self._pending:
                raise ValueError(f"Approval request {request.id} is already pending")
            self._pending[request.id] = _Pending(request, future, loop)
        logger.info("Approval requested for %s (%s)", request.tool_name, request.id)
        self._notify()

        try:
            return await future
        finally:
            with self._lock:
                entry = self._pending.get(request.id)
                removed = entry is not None and entry.future is future
                if removed:
                    del self._pending[request.id]
            if removed:
                self._notify()

    def respond(self, request_id: str, result: ApprovalResult) -> bool:
        """Answer one pending request.

        Returns False when the id is unknown or was already answered.
        """
        with self._lock:
            entry = self._pending.pop(request_id, None)
        if entry is None:
            logger.debug("Ignoring response for unknown approval %s", request_id)
            return False
        logger.info("Approval %s for %s: %s", request_id, entry.request.tool_name, result.value)
        self._resolve(entry, ApprovalResult(result))
        self._notify()
        return True

    def respond_all(self, result: ApprovalResult) -> int:
        """Answer every request pending at the time of the call.

        Requests submitted afterwards are unaffected. Returns how many were
        answered.
        """
        with self._lock:
            entries = list(self._pending.values())
            self._pending.clear()
        for entry in entries:
            self._resolve(entry, ApprovalResult(result))
        if entries:
            logger.info("Answered %d pending approvals: %s", len(entries), result.value)
            self._notify()
        return len(entries)

    @staticmethod
    def _resolve(entry: _Pending, result: ApprovalResult) -> None:
        def deliver() -> None:
            if not entry.future.done():
                entry.future.set_result(result)

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is entry.loop:
            deliver()
        elif not entry.loop.is_closed():
            entry.loop.call_soon_threadsafe(deliver)
