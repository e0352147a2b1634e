"""Session key formatting.

Keys are stored verbatim by the delivery process and by tracing, so the
formats below are a stable external contract:

    task:<taskId>:agent:<agentSlug>:<accountId>:v<generation>
    system:agent:<agentSlug>:<accountId>:v<generation>
"""

from __future__ import annotations

from dataclasses import dataclass

from agent_runtime.sessions.models import (
    SessionScope,
    SessionType,
    TaskScope,
    require_identifier,
)

TASK_PREFIX = "task:"
SYSTEM_PREFIX = "system:"

_TASK_KEY_PARTS = 6
_SYSTEM_KEY_PARTS = 5


@dataclass(frozen=True, slots=True)
class ParsedSessionKey:
    """Fields recoverable from a session key."""

    session_type: SessionType
    task_id: str | None
    agent_slug: str
    account_id: str
    generation: int


def build_task_session_key(
    *,
    account_id: str,
    task_id: str,
    agent_slug: str,
    generation: int,
) -> str:
    return f"{TASK_PREFIX}{task_id}:agent:{agent_slug}:{account_id}:v{generation}"


def build_system_session_key(*, account_id: str, agent_slug: str, generation: int) -> str:
    return f"{SYSTEM_PREFIX}agent:{agent_slug}:{account_id}:v{generation}"


def build_session_key(scope: SessionScope, *, agent_slug: str, generation: int) -> str:
    """Format the key for one generation of a scope."""

    require_identifier("agent_slug", agent_slug)
    if generation < 1:
        raise ValueError(f"generation must be >= 1, got {generation}")
    if isinstance(scope, TaskScope):
        return build_task_session_key(
            account_id=scope.account_id,
            task_id=scope.task_id,
            agent_slug=agent_slug,
            generation=generation,
        )
    return build_system_session_key(
        account_id=scope.account_id,
        agent_slug=agent_slug,
        generation=generation,
    )


def parse_session_key(session_key: str) -> ParsedSessionKey:
    """Parse a key produced by build_session_key, raising ValueError if malformed."""

    parts = session_key.split(":")
    if session_key.startswith(TASK_PREFIX) and len(parts) == _TASK_KEY_PARTS:
        _, task_id, marker, agent_slug, account_id, version = parts
        if marker == "agent" and task_id:
            return ParsedSessionKey(
                session_type=SessionType.TASK,
                task_id=task_id,
                agent_slug=_non_empty(agent_slug, session_key),
                account_id=_non_empty(account_id, session_key),
                generation=_parse_generation(version, session_key),
            )
    if session_key.startswith(SYSTEM_PREFIX) and len(parts) == _SYSTEM_KEY_PARTS:
        _, marker, agent_slug, account_id, version = parts
        if marker == "agent":
            return ParsedSessionKey(
                session_type=SessionType.SYSTEM,
                task_id=None,
                agent_slug=_non_empty(agent_slug, session_key),
                account_id=_non_empty(account_id, session_key),
                generation=_parse_generation(version, session_key),
            )
    raise ValueError(f"Malformed session key: {session_key!r}")


def _non_empty(value: str, session_key: str) -> str:
    if not value:
        raise ValueError(f"Malformed session key: {session_key!r}")
    return value


def _parse_generation(value: str, session_key: str) -> int:
    digits = value[1:]
    if not value.startswith("v") or not (digits.isascii() and digits.isdigit()):
        raise ValueError(f"Malformed session key generation: {session_key!r}")
    if int(digits) < 1:
        raise ValueError(f"Malformed session key generation: {session_key!r}")
    return int(digits)
