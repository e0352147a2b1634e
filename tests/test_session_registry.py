from __future__ import annotations

import queue
import sqlite3
import threading
from pathlib import Path

import allure
import pytest

from agent_runtime.sessions.models import (
    InvalidScopeError,
    SessionType,
    SystemScope,
    TaskScope,
)
from agent_runtime.sessions.registry import SessionRegistry
from agent_runtime.storage.common import connect_sqlite_with_policy

pytestmark = [
    allure.epic("Agent Runtime"),
    allure.feature("Session Registry"),
]


def _registry(tmp_path: Path, name: str = "sessions.db") -> SessionRegistry:
    registry = SessionRegistry(tmp_path / name)
    registry.init_schema()
    return registry


def _ensure_in_thread(  # pragma: no cover - timing-sensitive helper
    db_path: Path,
    scope: TaskScope,
    start: threading.Barrier,
    results: queue.Queue[tuple[str, str, bool]],
) -> None:
    registry = SessionRegistry(db_path, sqlite_busy_timeout_ms=10_000)
    try:
        start.wait(timeout=5)
        ensured = registry.ensure_session(scope, agent_slug="writer")
        results.put(("ok", ensured.session_key, ensured.is_new))
    except Exception as error:  # noqa: BLE001
        results.put(("error", str(error), False))
    finally:
        registry.close()


def test_task_session_generations_follow_close_and_reopen(tmp_path: Path) -> None:
    registry = _registry(tmp_path)
    scope = TaskScope(account_id="acc1", task_id="t42", agent_id="a1")

    first = registry.ensure_session(scope, agent_slug="writer")
    assert first.session_key == "task:t42:agent:writer:acc1:v1"
    assert first.is_new is True

    again = registry.ensure_session(scope, agent_slug="writer")
    assert again.session_key == first.session_key
    assert again.is_new is False

    assert registry.close_sessions_for_task(account_id="acc1", task_id="t42") == 1

    reopened = registry.ensure_session(scope, agent_slug="writer")
    assert reopened.session_key == "task:t42:agent:writer:acc1:v2"
    assert reopened.is_new is True

    active = registry.get_active_session(scope)
    assert active is not None
    assert active.session_key == reopened.session_key
    assert active.generation == 2
    assert active.session_type == SessionType.TASK
    assert active.is_open is True
    assert active.scope() == scope
    registry.close()


def test_system_session_is_independent_from_task_sessions(tmp_path: Path) -> None:
    registry = _registry(tmp_path)
    system_scope = SystemScope(account_id="acc1", agent_id="a1")
    task_scope = TaskScope(account_id="acc1", task_id="t1", agent_id="a1")

    system = registry.ensure_session(system_scope, agent_slug="writer")
    task = registry.ensure_session(task_scope, agent_slug="writer")

    assert system.session_key == "system:agent:writer:acc1:v1"
    assert task.session_key == "task:t1:agent:writer:acc1:v1"
    assert system.is_new is True
    assert task.is_new is True

    assert registry.close_sessions_for_task(account_id="acc1", task_id="t1") == 1
    active_system = registry.get_active_session(system_scope)
    assert active_system is not None
    assert active_system.session_key == system.session_key
    assert active_system.task_id is None
    assert registry.get_active_session(task_scope) is None
    registry.close()


def test_scopes_differing_in_one_field_do_not_share_sessions(tmp_path: Path) -> None:
    registry = _registry(tmp_path)
    base = TaskScope(account_id="acc1", task_id="t1", agent_id="a1")
    variants = [
        base,
        TaskScope(account_id="acc2", task_id="t1", agent_id="a1"),
        TaskScope(account_id="acc1", task_id="t2", agent_id="a1"),
        TaskScope(account_id="acc1", task_id="t1", agent_id="a2"),
    ]

    keys = [
        registry.ensure_session(scope, agent_slug=f"slug-{index}")
        for index, scope in enumerate(variants)
    ]

    assert all(result.is_new for result in keys)
    assert len({result.session_key for result in keys}) == len(variants)
    registry.close()


def test_close_sessions_for_task_closes_all_agents_of_that_task_only(tmp_path: Path) -> None:
    registry = _registry(tmp_path)
    for agent_id in ("a1", "a2", "a3"):
        registry.ensure_session(
            TaskScope(account_id="acc1", task_id="t1", agent_id=agent_id),
            agent_slug=agent_id,
        )
    for agent_id in ("a1", "a2"):
        registry.ensure_session(
            TaskScope(account_id="acc1", task_id="t2", agent_id=agent_id),
            agent_slug=agent_id,
        )
    registry.ensure_session(
        TaskScope(account_id="acc2", task_id="t1", agent_id="a1"),
        agent_slug="a1",
    )

    assert registry.close_sessions_for_task(account_id="acc1", task_id="t1", reason="task_done") == 3
    assert registry.close_sessions_for_task(account_id="acc1", task_id="t1") == 0

    remaining = registry.list_sessions(account_id="acc1")
    assert sorted(session.task_id or "" for session in remaining) == ["t2", "t2"]
    other_account = registry.list_sessions(account_id="acc2")
    assert [session.task_id for session in other_account] == ["t1"]

    closed = registry.list_sessions(account_id="acc1", task_id="t1", include_closed=True)
    assert len(closed) == 3
    assert {session.closed_reason for session in closed} == {"task_done"}
    registry.close()


def test_close_sessions_for_unknown_task_is_a_noop(tmp_path: Path) -> None:
    registry = _registry(tmp_path)

    assert registry.close_sessions_for_task(account_id="acc1", task_id="missing") == 0
    registry.close()


def test_closed_session_is_never_reopened_or_rewritten(tmp_path: Path) -> None:
    registry = _registry(tmp_path)
    scope = TaskScope(account_id="acc1", task_id="t1", agent_id="a1")
    first = registry.ensure_session(scope, agent_slug="writer")

    assert registry.close_session(session_key=first.session_key, reason="operator") is True
    closed = registry.get_session_by_key(first.session_key)
    assert closed is not None
    assert closed.closed_reason == "operator"
    assert closed.closed_at is not None

    assert registry.close_session(session_key=first.session_key, reason="second") is False
    assert registry.close_sessions_for_task(account_id="acc1", task_id="t1", reason="late") == 0

    unchanged = registry.get_session_by_key(first.session_key)
    assert unchanged is not None
    assert unchanged.closed_reason == "operator"
    assert unchanged.closed_at == closed.closed_at

    second = registry.ensure_session(scope, agent_slug="writer")
    assert second.session_key.endswith(":v2")
    assert registry.get_session_by_key(first.session_key).is_open is False  # type: ignore[union-attr]
    registry.close()


def test_close_session_returns_false_for_unknown_key(tmp_path: Path) -> None:
    registry = _registry(tmp_path)

    assert registry.close_session(session_key="task:t1:agent:writer:acc1:v1") is False
    with pytest.raises(InvalidScopeError):
        registry.close_session(session_key="  ")
    registry.close()


def test_get_session_by_key_and_list_sessions_filters(tmp_path: Path) -> None:
    registry = _registry(tmp_path)
    task_a1 = registry.ensure_session(
        TaskScope(account_id="acc1", task_id="t1", agent_id="a1"),
        agent_slug="alpha",
    )
    registry.ensure_session(
        TaskScope(account_id="acc1", task_id="t1", agent_id="a2"),
        agent_slug="beta",
    )
    registry.ensure_session(SystemScope(account_id="acc1", agent_id="a1"), agent_slug="alpha")

    found = registry.get_session_by_key(task_a1.session_key)
    assert found is not None
    assert found.agent_id == "a1"
    assert found.agent_slug == "alpha"
    assert found.opened_at.tzinfo is not None
    assert registry.get_session_by_key("system:agent:nobody:acc1:v1") is None

    assert len(registry.list_sessions(account_id="acc1")) == 3
    assert len(registry.list_sessions(account_id="acc1", task_id="t1")) == 2
    assert len(registry.list_sessions(account_id="acc1", agent_id="a1")) == 2
    assert len(registry.list_sessions(account_id="acc1", limit=1)) == 1
    assert registry.list_sessions(account_id="acc-unknown") == []
    registry.close()


def test_invalid_scopes_are_rejected_before_touching_storage(tmp_path: Path) -> None:
    registry = _registry(tmp_path)

    with pytest.raises(InvalidScopeError, match="account_id"):
        TaskScope(account_id="", task_id="t1", agent_id="a1")
    with pytest.raises(InvalidScopeError, match="task_id"):
        TaskScope(account_id="acc1", task_id="   ", agent_id="a1")
    with pytest.raises(InvalidScopeError, match="agent_id"):
        SystemScope(account_id="acc1", agent_id=None)  # type: ignore[arg-type]
    with pytest.raises(InvalidScopeError, match="must not contain"):
        TaskScope(account_id="acc1", task_id="t:1", agent_id="a1")
    with pytest.raises(InvalidScopeError, match="agent_slug"):
        registry.ensure_session(SystemScope(account_id="acc1", agent_id="a1"), agent_slug="")
    with pytest.raises(InvalidScopeError, match="Expected TaskScope or SystemScope"):
        registry.ensure_session({"account_id": "acc1"}, agent_slug="writer")  # type: ignore[arg-type]
    with pytest.raises(InvalidScopeError, match="task_id"):
        registry.close_sessions_for_task(account_id="acc1", task_id="")

    assert registry.list_sessions(account_id="acc1", include_closed=True) == []
    registry.close()


def test_concurrent_ensure_creates_exactly_one_session(tmp_path: Path) -> None:
    db_path = tmp_path / "concurrent.db"
    registry = _registry(tmp_path, name="concurrent.db")
    scope = TaskScope(account_id="acc1", task_id="t1", agent_id="a1")
    assert registry.get_active_session(scope) is None

    workers = 8
    start = threading.Barrier(workers)
    results: queue.Queue[tuple[str, str, bool]] = queue.Queue()
    threads = [
        threading.Thread(target=_ensure_in_thread, args=(db_path, scope, start, results))
        for _ in range(workers)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    outcomes = [results.get_nowait() for _ in range(workers)]
    assert [outcome for outcome in outcomes if outcome[0] == "error"] == []
    assert {outcome[1] for outcome in outcomes} == {"task:t1:agent:writer:acc1:v1"}
    assert sum(1 for outcome in outcomes if outcome[2]) == 1

    sessions = registry.list_sessions(account_id="acc1", include_closed=True)
    assert len(sessions) == 1
    registry.close()


def test_schema_rejects_second_open_row_for_scope(tmp_path: Path) -> None:
    db_path = tmp_path / "schema.db"
    registry = _registry(tmp_path, name="schema.db")
    registry.ensure_session(SystemScope(account_id="acc1", agent_id="a1"), agent_slug="writer")
    registry.close()

    connection = connect_sqlite_with_policy(db_path=db_path, busy_timeout_ms=1_000)
    version = connection.execute("SELECT version_num FROM alembic_version LIMIT 1").fetchone()
    assert version is not None
    assert str(version["version_num"]) == "20261019_0001"

    with pytest.raises(sqlite3.IntegrityError):
        connection.execute(
            """
            INSERT INTO runtime_sessions (
                session_id, scope_key, account_id, agent_id, agent_slug,
                session_type, task_id, generation, session_key, opened_at
            ) VALUES (
                'dup', 'system:agent:a1:acc1', 'acc1', 'a1', 'writer',
                'system', NULL, 2, 'system:agent:writer:acc1:v2', CURRENT_TIMESTAMP
            )
            """,
        )
    connection.rollback()
    connection.close()
