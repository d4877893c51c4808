"""
Progress tracker: per-exchange task checklists and completion percentage.

The percentage is informational only. It never gates a status transition:
a party may mark an exchange completed at any percentage.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Callable, Optional

from .errors import InvalidTransition, NotFound
from .events import parties, progress_updated
from .locks import KeyedLock
from .models import (
    MAX_SKILL_DESCRIPTION,
    TERMINAL_STATUSES,
    Changeset,
    Exchange,
    Progress,
    Task,
    check_text,
    generate_id,
    utcnow,
)
from .protocols import EngineStore, EventPusher
from .state_machine import require_party

logger = logging.getLogger(__name__)


def completion_percentage(progress: Progress) -> int:
    """
    ``round(100 * done / total)`` over both checklists, 0 when empty.

    Halves round up.
    """
    tasks = progress.all_tasks
    if not tasks:
        return 0
    done = sum(1 for t in tasks if t.completed)
    return int(math.floor(100 * done / len(tasks) + 0.5))


class ProgressTracker:
    """Owns the two task checklists of every exchange."""

    def __init__(
        self,
        store: EngineStore,
        event_pusher: EventPusher,
        exchange_locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._event_pusher = event_pusher
        self._locks = exchange_locks or KeyedLock()
        self._clock = clock

    async def _load(self, exchange_id: str) -> Exchange:
        exchange = await self._store.get_exchange(exchange_id)
        if exchange is None:
            raise NotFound(f"Exchange {exchange_id} not found")
        return exchange

    async def percentage(self, exchange_id: str) -> int:
        exchange = await self._load(exchange_id)
        return completion_percentage(exchange.progress)

    async def add_task(
        self, exchange_id: str, actor_id: str, description: str,
    ) -> Task:
        """Append a task to the actor's own checklist."""
        text = check_text(description, "task", MAX_SKILL_DESCRIPTION)

        async with self._locks.hold(exchange_id):
            exchange = await self._load(exchange_id)
            require_party(exchange, actor_id, "add tasks to")
            if exchange.status in TERMINAL_STATUSES:
                raise InvalidTransition(
                    f"Cannot add tasks to a {exchange.status.value} exchange"
                )

            task = Task(task_id=generate_id("task"), description=text)
            exchange.tasks_for(actor_id).append(task)
            exchange.updated_at = self._clock()
            await self._store.apply(Changeset(exchanges=[exchange]))
            percentage = completion_percentage(exchange.progress)

        await self._event_pusher.push(
            progress_updated(
                exchange_id, actor_id, task.task_id, percentage, parties(exchange),
            )
        )
        return task

    async def complete_task(
        self, exchange_id: str, actor_id: str, task_id: str,
    ) -> int:
        """
        Mark a task complete and return the new percentage.

        Re-marking a completed task is a no-op.
        """
        async with self._locks.hold(exchange_id):
            exchange = await self._load(exchange_id)
            require_party(exchange, actor_id, "update tasks of")
            task = exchange.progress.find_task(task_id)
            if task is None:
                raise NotFound(f"Task {task_id} not found in exchange {exchange_id}")

            if task.completed:
                return completion_percentage(exchange.progress)

            task.completed = True
            task.completed_at = self._clock()
            exchange.updated_at = task.completed_at
            await self._store.apply(Changeset(exchanges=[exchange]))
            percentage = completion_percentage(exchange.progress)

        logger.info(
            "Exchange %s: task %s completed by %s (%d%%)",
            exchange_id, task_id, actor_id, percentage,
        )
        await self._event_pusher.push(
            progress_updated(
                exchange_id, actor_id, task_id, percentage, parties(exchange),
            )
        )
        return percentage
