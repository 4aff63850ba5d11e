"""
CellClaw - Scheduled task execution.

The host platform decides *when* a task fires; this module decides what a
firing does: submit the task prompt to the agent on the task's own
conversation, retry once on a provider failure, and record the run.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .agent import AgentLoop, AgentRunResult, FailureReason
from .memory import Database, ScheduledTaskModel

logger = logging.getLogger("cellclaw.scheduler")

SCHEDULED_PREFIX = "[Scheduled Task] "


@dataclass(frozen=True)
class ScheduledTask:
    id: int
    name: str
    prompt: str
    interval_minutes: int
    initial_delay_minutes: int = 0
    enabled: bool = True
    last_run: Optional[datetime] = None

    @property
    def conversation_id(self) -> str:
        return f"scheduled-{self.id}"

    @classmethod
    def from_model(cls, row: ScheduledTaskModel) -> "ScheduledTask":
        return cls(
            id=row.id,
            name=row.name,
            prompt=row.prompt,
            interval_minutes=row.interval_minutes,
            initial_delay_minutes=row.initial_delay_minutes or 0,
            enabled=bool(row.enabled),
            last_run=row.last_run,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "prompt": self.prompt,
            "interval_minutes": self.interval_minutes,
            "initial_delay_minutes": self.initial_delay_minutes,
            "enabled": self.enabled,
            "last_run": self.last_run.isoformat() if self.last_run else None,
        }


class ScheduledTaskStore:
    """CRUD over the ``scheduled_tasks`` table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def create(
        self,
        name: str,
        prompt: str,
        interval_minutes: int,
        initial_delay_minutes: int = 0,
    ) -> ScheduledTask:
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        with self.db.get_session() as session:
            row = self.db.create_scheduled_task(
                session,
                name=name,
                prompt=prompt,
                interval_minutes=interval_minutes,
                initial_delay_minutes=initial_delay_minutes,
            )
            return ScheduledTask.from_model(row)

    def get(self, task_id: int) -> Optional[ScheduledTask]:
        with self.db.get_session() as session:
            row = self.db.get_scheduled_task(session, task_id)
            return ScheduledTask.from_model(row) if row else None

    def list(self) -> List[ScheduledTask]:
        with self.db.get_session() as session:
            return [ScheduledTask.from_model(r) for r in self.db.list_scheduled_tasks(session)]

    def mark_run(self, task_id: int) -> None:
        with self.db.get_session() as session:
            self.db.update_last_run(session, task_id)

    def set_enabled(self, task_id: int, enabled: bool) -> bool:
        with self.db.get_session() as session:
            return self.db.set_task_enabled(session, task_id, enabled)

    def delete(self, task_id: int) -> bool:
        with self.db.get_session() as session:
            return self.db.delete_scheduled_task(session, task_id)


class ScheduledTaskRunner:
    """Runs one scheduled task firing.

    Transport failures are retried once for the whole submission. Other
    failures (configuration, malformed responses, iteration limit) are
    reported without retry.
    """

    def __init__(
        self,
        loop: AgentLoop,
        store: Optional[ScheduledTaskStore] = None,
        retry_delay: float = 1.0,
    ) -> None:
        self.loop = loop
        self.store = store
        self.retry_delay = retry_delay

    async def run(self, task: ScheduledTask) -> bool:
        """Execute ``task``. Returns True when the agent run succeeded."""
        if not task.enabled:
            logger.debug("Skipping disabled task %s", task.id)
            return False

        logger.info("Executing scheduled task %s (%s)", task.id, task.name)
        result = await self._submit(task)
        if not result.ok and result.reason == FailureReason.PROVIDER_ERROR:
            logger.warning("Scheduled task %s failed (%s); retrying once", task.id, result.error)
            if self.retry_delay > 0:
                await asyncio.sleep(self.retry_delay)
            result = await self._submit(task)

        if not result.ok:
            logger.error("Scheduled task %s failed: %s", task.id, result.error)
            return False

        if self.store is not None:
            await asyncio.to_thread(self.store.mark_run, task.id)
        return True

    async def _submit(self, task: ScheduledTask) -> AgentRunResult:
        return await self.loop.submit_message(
            SCHEDULED_PREFIX + task.prompt, conversation_id=task.conversation_id
        )
