"""Retire runtime sessions when their task reaches a terminal status."""

from __future__ import annotations

import logging
from enum import Enum

from agent_runtime.sessions.registry import SessionRegistry

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    """Kanban task statuses reported by the task service."""

    INBOX = "inbox"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"
    BLOCKED = "blocked"
    ARCHIVED = "archived"


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.ARCHIVED})


class TaskLifecycleHandler:
    """Closes a task's sessions on transition into a terminal status."""

    def __init__(self, *, registry: SessionRegistry) -> None:
        self.registry = registry

    def on_status_changed(
        self,
        *,
        account_id: str,
        task_id: str,
        status: TaskStatus | str,
    ) -> int:
        """Return how many sessions were closed (0 for non-terminal statuses)."""

        resolved = TaskStatus(status)
        if resolved not in TERMINAL_TASK_STATUSES:
            return 0
        closed = self.registry.close_sessions_for_task(
            account_id=account_id,
            task_id=task_id,
            reason=f"task_{resolved.value}",
        )
        logger.debug(
            "Task reached terminal status (task_id=%s status=%s closed_sessions=%s).",
            task_id,
            resolved.value,
            closed,
        )
        return closed
