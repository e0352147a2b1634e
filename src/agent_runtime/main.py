"""CLI entrypoint for agent-runtime."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from agent_runtime import __version__
from agent_runtime.sessions.controllers import (
    BackoffPreviewCommand,
    SessionCliController,
    SessionCloseTaskCommand,
    SessionEnsureCommand,
    SessionKeyCommand,
    SessionListCommand,
    SessionScopeCommand,
)

click.rich_click.USE_MARKDOWN = True
SESSION_CONTROLLER = SessionCliController()


@click.group()
@click.version_option(version=__version__, prog_name="agent-runtime")
def agent_runtime() -> None:
    """Agent runtime CLI."""


@agent_runtime.group()
def sessions() -> None:
    """Runtime session registry commands."""


@sessions.command("ensure")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--account-id", required=True, help="Owning account id.")
@click.option("--agent-id", required=True, help="Agent id.")
@click.option("--agent-slug", required=True, help="Agent slug embedded into the session key.")
@click.option(
    "--task-id",
    default=None,
    help="Task id. Omit for the agent's system session.",
)
def sessions_ensure(
    db_path: Path | None,
    account_id: str,
    agent_id: str,
    agent_slug: str,
    task_id: str | None,
) -> None:
    """Return the open session for a scope, opening a new generation if none."""

    _run(
        SESSION_CONTROLLER.ensure,
        SessionEnsureCommand(
            db_path=db_path,
            account_id=account_id,
            agent_id=agent_id,
            agent_slug=agent_slug,
            task_id=task_id,
        ),
    )


@sessions.command("active")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--account-id", required=True, help="Owning account id.")
@click.option("--agent-id", required=True, help="Agent id.")
@click.option("--task-id", default=None, help="Task id. Omit for the system scope.")
def sessions_active(
    db_path: Path | None,
    account_id: str,
    agent_id: str,
    task_id: str | None,
) -> None:
    """Show the open session for a scope, if any."""

    _run(
        SESSION_CONTROLLER.active,
        SessionScopeCommand(
            db_path=db_path,
            account_id=account_id,
            agent_id=agent_id,
            task_id=task_id,
        ),
    )


@sessions.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("session_key")
def sessions_show(db_path: Path | None, session_key: str) -> None:
    """Show one session by key."""

    _run(
        SESSION_CONTROLLER.show,
        SessionKeyCommand(db_path=db_path, session_key=session_key),
    )


@sessions.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--account-id", required=True, help="Owning account id.")
@click.option("--task-id", default=None, help="Optional task filter.")
@click.option("--agent-id", default=None, help="Optional agent filter.")
@click.option(
    "--include-closed/--open-only",
    default=False,
    show_default=True,
    help="Include closed generations.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max rows.",
)
def sessions_list(  # noqa: PLR0913
    db_path: Path | None,
    account_id: str,
    task_id: str | None,
    agent_id: str | None,
    include_closed: bool,
    limit: int,
) -> None:
    """List sessions for an account, newest first."""

    _run(
        SESSION_CONTROLLER.list_sessions,
        SessionListCommand(
            db_path=db_path,
            account_id=account_id,
            task_id=task_id,
            agent_id=agent_id,
            include_closed=include_closed,
            limit=limit,
        ),
    )


@sessions.command("close")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--reason", default=None, help="Closed reason to record.")
@click.argument("session_key")
def sessions_close(db_path: Path | None, reason: str | None, session_key: str) -> None:
    """Close one open session by key."""

    _run(
        SESSION_CONTROLLER.close,
        SessionKeyCommand(db_path=db_path, session_key=session_key, reason=reason),
    )


@sessions.command("close-task")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--account-id", required=True, help="Owning account id.")
@click.option("--task-id", required=True, help="Task whose sessions should be closed.")
@click.option("--reason", default=None, help="Closed reason. Defaults to task_done.")
def sessions_close_task(
    db_path: Path | None,
    account_id: str,
    task_id: str,
    reason: str | None,
) -> None:
    """Close every open session of a task across all agents."""

    _run(
        SESSION_CONTROLLER.close_task,
        SessionCloseTaskCommand(
            db_path=db_path,
            account_id=account_id,
            task_id=task_id,
            reason=reason,
        ),
    )


@agent_runtime.command("backoff")
@click.option(
    "--attempts",
    type=click.IntRange(min=0, max=100),
    default=8,
    show_default=True,
    help="Preview attempts 0..N.",
)
@click.option("--base-ms", type=click.IntRange(min=0), default=None, help="Base delay in ms.")
@click.option("--max-ms", type=click.IntRange(min=0), default=None, help="Delay cap in ms.")
def backoff(attempts: int, base_ms: int | None, max_ms: int | None) -> None:
    """Preview the full-jitter delivery backoff schedule."""

    _run(
        SESSION_CONTROLLER.backoff,
        BackoffPreviewCommand(attempts=attempts, base_ms=base_ms, max_ms=max_ms),
    )


def _run(handler: Callable[[Any], list[str]], command: Any) -> None:
    try:
        lines = handler(command)
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_runtime()
