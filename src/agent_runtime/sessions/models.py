"""Domain models for runtime session scopes and records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import NamedTuple

DEFAULT_TASK_CLOSED_REASON = "task_done"
DEFAULT_CLOSED_REASON = "closed"


class InvalidScopeError(ValueError):
    """Caller passed a missing or malformed identifier."""


class SessionType(str, Enum):
    """Kind of attachment a session represents."""

    TASK = "task"
    SYSTEM = "system"


@dataclass(frozen=True, slots=True)
class TaskScope:
    """An agent working on one task within an account."""

    account_id: str
    task_id: str
    agent_id: str

    def __post_init__(self) -> None:
        _require_identifier("account_id", self.account_id)
        _require_identifier("task_id", self.task_id)
        _require_identifier("agent_id", self.agent_id)

    @property
    def session_type(self) -> SessionType:
        return SessionType.TASK

    @property
    def scope_key(self) -> str:
        return f"task:{self.task_id}:agent:{self.agent_id}:{self.account_id}"


@dataclass(frozen=True, slots=True)
class SystemScope:
    """An agent working for its account outside any task."""

    account_id: str
    agent_id: str

    def __post_init__(self) -> None:
        _require_identifier("account_id", self.account_id)
        _require_identifier("agent_id", self.agent_id)

    @property
    def session_type(self) -> SessionType:
        return SessionType.SYSTEM

    @property
    def task_id(self) -> None:
        return None

    @property
    def scope_key(self) -> str:
        return f"system:agent:{self.agent_id}:{self.account_id}"


SessionScope = TaskScope | SystemScope


def scope_for(*, account_id: str, agent_id: str, task_id: str | None = None) -> SessionScope:
    """Build a task scope when task_id is given, otherwise a system scope."""

    if task_id is None:
        return SystemScope(account_id=account_id, agent_id=agent_id)
    return TaskScope(account_id=account_id, task_id=task_id, agent_id=agent_id)


class EnsureSessionResult(NamedTuple):
    session_key: str
    is_new: bool


@dataclass(slots=True)
class RuntimeSessionView:
    """Readable session record for callers and CLI."""

    session_id: str
    account_id: str
    agent_id: str
    agent_slug: str
    session_type: SessionType
    task_id: str | None
    generation: int
    session_key: str
    opened_at: datetime
    closed_at: datetime | None
    closed_reason: str | None

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    def scope(self) -> SessionScope:
        if self.session_type is SessionType.TASK:
            if self.task_id is None:
                raise InvalidScopeError(f"Task session without task_id: {self.session_key}")
            return TaskScope(
                account_id=self.account_id,
                task_id=self.task_id,
                agent_id=self.agent_id,
            )
        return SystemScope(account_id=self.account_id, agent_id=self.agent_id)


def require_identifier(name: str, value: object) -> str:
    """Return value when it is a non-blank string, else raise InvalidScopeError."""

    _require_identifier(name, value)
    return value  # type: ignore[return-value]


def _require_identifier(name: str, value: object) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidScopeError(f"{name} must be a non-empty string, got {value!r}.")
    # ":" separates key segments
    if ":" in value:
        raise InvalidScopeError(f"{name} must not contain ':', got {value!r}.")
