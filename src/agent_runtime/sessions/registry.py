"""Persistent registry of agent runtime sessions."""

from __future__ import annotations

import logging
from pathlib import Path
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from agent_runtime.sessions.keys import build_session_key
from agent_runtime.sessions.models import (
    DEFAULT_CLOSED_REASON,
    DEFAULT_TASK_CLOSED_REASON,
    EnsureSessionResult,
    InvalidScopeError,
    RuntimeSessionView,
    SessionScope,
    SessionType,
    SystemScope,
    TaskScope,
    require_identifier,
)
from agent_runtime.storage.alembic_runner import upgrade_head
from agent_runtime.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from agent_runtime.storage.sqlmodel_models import RuntimeSession

logger = logging.getLogger(__name__)
DEFAULT_SQLITE_BUSY_TIMEOUT_MS = 5_000


class SessionRegistry:
    """Session persistence facade backed by SQLModel + SQLite.

    At most one open session per scope is enforced by the partial unique
    index ``uq_runtime_sessions_scope_open`` and generation uniqueness by
    ``uq_runtime_sessions_scope_generation``. A caller that loses an insert
    race gets an IntegrityError from the database and re-reads instead of
    creating a duplicate; no application-level lock is held across scopes.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = DEFAULT_SQLITE_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def get_active_session(self, scope: SessionScope) -> RuntimeSessionView | None:
        """Return the open session for scope, if any."""

        _require_scope(scope)
        with Session(self.engine) as session:
            row = self._find_open_row(session=session, scope=scope)
            if row is None:
                return None
            return _to_session_view(row)

    def ensure_session(self, scope: SessionScope, *, agent_slug: str) -> EnsureSessionResult:
        """Reuse the open session for scope or open the next generation."""

        _require_scope(scope)
        require_identifier("agent_slug", agent_slug)

        conflict: IntegrityError | None = None
        conflict_generation: int | None = None
        while True:
            with Session(self.engine) as session:
                existing = self._find_open_row(session=session, scope=scope)
                if existing is not None:
                    return EnsureSessionResult(session_key=existing.session_key, is_new=False)

                generation = self._next_generation(session=session, scope=scope)
                if conflict is not None and generation == conflict_generation:
                    # Nothing changed since the failed insert; the conflict is not a race.
                    raise conflict

                session_key = build_session_key(
                    scope,
                    agent_slug=agent_slug,
                    generation=generation,
                )
                session.add(
                    RuntimeSession(
                        session_id=str(uuid4()),
                        scope_key=scope.scope_key,
                        account_id=scope.account_id,
                        agent_id=scope.agent_id,
                        agent_slug=agent_slug,
                        session_type=scope.session_type.value,
                        task_id=scope.task_id,
                        generation=generation,
                        session_key=session_key,
                        opened_at=to_db_datetime(utc_now()),
                    ),
                )
                try:
                    session.commit()
                except IntegrityError as error:
                    session.rollback()
                    conflict = error
                    conflict_generation = generation
                    logger.warning(
                        "Concurrent runtime session insert lost the race; re-reading "
                        "(scope=%s generation=%s).",
                        scope.scope_key,
                        generation,
                    )
                    continue

            logger.info(
                "Opened runtime session (session_key=%s generation=%s).",
                session_key,
                generation,
            )
            return EnsureSessionResult(session_key=session_key, is_new=True)

    def close_sessions_for_task(
        self,
        *,
        account_id: str,
        task_id: str,
        reason: str | None = None,
    ) -> int:
        """Close every open session bound to the task. Returns how many were closed."""

        require_identifier("account_id", account_id)
        require_identifier("task_id", task_id)
        closed_reason = reason or DEFAULT_TASK_CLOSED_REASON

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(RuntimeSession)
                .where(
                    col(RuntimeSession.account_id) == account_id,
                    col(RuntimeSession.task_id) == task_id,
                    col(RuntimeSession.closed_at).is_(None),
                )
                .values(
                    closed_at=to_db_datetime(utc_now()),
                    closed_reason=closed_reason,
                ),
            )
            closed = result.rowcount
            session.commit()

        if closed:
            logger.info(
                "Closed runtime sessions for task (account_id=%s task_id=%s closed=%s reason=%s).",
                account_id,
                task_id,
                closed,
                closed_reason,
            )
        return closed

    def close_session(self, *, session_key: str, reason: str | None = None) -> bool:
        """Close one open session by key. False when unknown or already closed."""

        if not isinstance(session_key, str) or not session_key.strip():
            raise InvalidScopeError(f"session_key must be a non-empty string, got {session_key!r}.")
        closed_reason = reason or DEFAULT_CLOSED_REASON

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(RuntimeSession)
                .where(
                    col(RuntimeSession.session_key) == session_key,
                    col(RuntimeSession.closed_at).is_(None),
                )
                .values(
                    closed_at=to_db_datetime(utc_now()),
                    closed_reason=closed_reason,
                ),
            )
            if result.rowcount < 1:
                session.rollback()
                return False
            session.commit()

        logger.info(
            "Closed runtime session (session_key=%s reason=%s).",
            session_key,
            closed_reason,
        )
        return True

    def get_session_by_key(self, session_key: str) -> RuntimeSessionView | None:
        """Resolve a session key to its record, open or closed."""

        with Session(self.engine) as session:
            row = session.exec(
                select(RuntimeSession)
                .where(RuntimeSession.session_key == session_key)
                .order_by(col(RuntimeSession.opened_at).desc())
                .limit(1),
            ).first()
        if row is None:
            return None
        return _to_session_view(row)

    def list_sessions(
        self,
        *,
        account_id: str,
        task_id: str | None = None,
        agent_id: str | None = None,
        include_closed: bool = False,
        limit: int = 50,
    ) -> list[RuntimeSessionView]:
        """List sessions for an account, newest first."""

        require_identifier("account_id", account_id)
        with Session(self.engine) as session:
            statement = (
                select(RuntimeSession)
                .where(RuntimeSession.account_id == account_id)
                .order_by(
                    col(RuntimeSession.opened_at).desc(),
                    col(RuntimeSession.generation).desc(),
                )
                .limit(limit)
            )
            if task_id is not None:
                statement = statement.where(RuntimeSession.task_id == task_id)
            if agent_id is not None:
                statement = statement.where(RuntimeSession.agent_id == agent_id)
            if not include_closed:
                statement = statement.where(col(RuntimeSession.closed_at).is_(None))
            rows = session.exec(statement).all()
        return [_to_session_view(row) for row in rows]

    def _find_open_row(self, *, session: Session, scope: SessionScope) -> RuntimeSession | None:
        return session.exec(
            select(RuntimeSession).where(
                RuntimeSession.scope_key == scope.scope_key,
                col(RuntimeSession.closed_at).is_(None),
            ),
        ).one_or_none()

    def _next_generation(self, *, session: Session, scope: SessionScope) -> int:
        current = session.exec(
            select(func.max(RuntimeSession.generation)).where(
                RuntimeSession.scope_key == scope.scope_key,
            ),
        ).one()
        return (current or 0) + 1


def _require_scope(scope: object) -> None:
    if not isinstance(scope, TaskScope | SystemScope):
        raise InvalidScopeError(f"Expected TaskScope or SystemScope, got {type(scope).__name__}.")


def _to_session_view(row: RuntimeSession) -> RuntimeSessionView:
    return RuntimeSessionView(
        session_id=row.session_id,
        account_id=row.account_id,
        agent_id=row.agent_id,
        agent_slug=row.agent_slug,
        session_type=SessionType(row.session_type),
        task_id=row.task_id,
        generation=row.generation,
        session_key=row.session_key,
        opened_at=to_utc_aware_datetime(row.opened_at),
        closed_at=to_utc_aware_datetime(row.closed_at) if row.closed_at is not None else None,
        closed_reason=row.closed_reason,
    )
