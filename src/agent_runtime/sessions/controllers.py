"""Controllers for runtime session CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from agent_runtime.config import Settings
from agent_runtime.delivery.backoff import backoff_cap_ms, backoff_delay_ms
from agent_runtime.sessions.models import RuntimeSessionView, scope_for
from agent_runtime.sessions.registry import SessionRegistry


@dataclass(slots=True)
class SessionScopeCommand:
    """CLI input addressing one scope."""

    db_path: Path | None
    account_id: str
    agent_id: str
    task_id: str | None


@dataclass(slots=True)
class SessionEnsureCommand:
    """CLI input for create-or-reuse."""

    db_path: Path | None
    account_id: str
    agent_id: str
    agent_slug: str
    task_id: str | None


@dataclass(slots=True)
class SessionListCommand:
    """CLI input for session listing."""

    db_path: Path | None
    account_id: str
    task_id: str | None
    agent_id: str | None
    include_closed: bool
    limit: int


@dataclass(slots=True)
class SessionKeyCommand:
    """CLI input for show/close by key."""

    db_path: Path | None
    session_key: str
    reason: str | None = None


@dataclass(slots=True)
class SessionCloseTaskCommand:
    """CLI input for closing every session of a task."""

    db_path: Path | None
    account_id: str
    task_id: str
    reason: str | None


@dataclass(slots=True)
class BackoffPreviewCommand:
    """CLI input for backoff schedule preview."""

    attempts: int
    base_ms: int | None
    max_ms: int | None


class SessionCliController:
    """Coordinates registry and backoff CLI operations."""

    def ensure(self, command: SessionEnsureCommand) -> list[str]:
        scope = scope_for(
            account_id=command.account_id,
            agent_id=command.agent_id,
            task_id=command.task_id,
        )
        with _registry(Settings.from_env(db_path=command.db_path)) as registry:
            result = registry.ensure_session(scope, agent_slug=command.agent_slug)
        action = "created" if result.is_new else "reused"
        return [f"Session {action}: session_key={result.session_key} is_new={result.is_new}"]

    def active(self, command: SessionScopeCommand) -> list[str]:
        scope = scope_for(
            account_id=command.account_id,
            agent_id=command.agent_id,
            task_id=command.task_id,
        )
        with _registry(Settings.from_env(db_path=command.db_path)) as registry:
            session = registry.get_active_session(scope)
        if session is None:
            return [f"No open session for scope={scope.scope_key}"]
        return _session_lines(session)

    def show(self, command: SessionKeyCommand) -> list[str]:
        with _registry(Settings.from_env(db_path=command.db_path)) as registry:
            session = registry.get_session_by_key(command.session_key)
        if session is None:
            raise ValueError(f"Session not found: {command.session_key}")
        return _session_lines(session)

    def list_sessions(self, command: SessionListCommand) -> list[str]:
        with _registry(Settings.from_env(db_path=command.db_path)) as registry:
            sessions = registry.list_sessions(
                account_id=command.account_id,
                task_id=command.task_id,
                agent_id=command.agent_id,
                include_closed=command.include_closed,
                limit=command.limit,
            )
        if not sessions:
            return ["No sessions found."]
        lines = ["session_key | type | generation | opened_at | closed_at | closed_reason"]
        lines.extend(
            " | ".join(
                (
                    session.session_key,
                    session.session_type.value,
                    str(session.generation),
                    session.opened_at.isoformat(),
                    session.closed_at.isoformat() if session.closed_at else "-",
                    session.closed_reason or "-",
                ),
            )
            for session in sessions
        )
        return lines

    def close(self, command: SessionKeyCommand) -> list[str]:
        with _registry(Settings.from_env(db_path=command.db_path)) as registry:
            closed = registry.close_session(
                session_key=command.session_key,
                reason=command.reason,
            )
        if not closed:
            raise ValueError(f"No open session with key: {command.session_key}")
        return [f"Session closed: session_key={command.session_key}"]

    def close_task(self, command: SessionCloseTaskCommand) -> list[str]:
        with _registry(Settings.from_env(db_path=command.db_path)) as registry:
            closed = registry.close_sessions_for_task(
                account_id=command.account_id,
                task_id=command.task_id,
                reason=command.reason,
            )
        return [f"Closed sessions: task_id={command.task_id} closed={closed}"]

    def backoff(self, command: BackoffPreviewCommand) -> list[str]:
        settings = Settings.from_env()
        base_ms = command.base_ms if command.base_ms is not None else settings.delivery.backoff_base_ms
        max_ms = command.max_ms if command.max_ms is not None else settings.delivery.backoff_max_ms
        lines = ["attempt | cap_ms | sample_ms"]
        for attempt in range(0, command.attempts + 1):
            lines.append(
                f"{attempt} | {backoff_cap_ms(attempt, base_ms, max_ms)} | "
                f"{backoff_delay_ms(attempt, base_ms, max_ms)}",
            )
        return lines


def _session_lines(session: RuntimeSessionView) -> list[str]:
    return [
        f"session_key={session.session_key}",
        f"session_type={session.session_type.value}",
        f"account_id={session.account_id}",
        f"agent_id={session.agent_id} agent_slug={session.agent_slug}",
        f"task_id={session.task_id or '-'}",
        f"generation={session.generation}",
        f"opened_at={session.opened_at.isoformat()}",
        f"closed_at={session.closed_at.isoformat() if session.closed_at else '-'}",
        f"closed_reason={session.closed_reason or '-'}",
    ]


@contextmanager
def _registry(settings: Settings) -> Iterator[SessionRegistry]:
    settings.validate()
    registry = SessionRegistry(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    registry.init_schema()
    try:
        yield registry
    finally:
        registry.close()
