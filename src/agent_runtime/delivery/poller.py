"""Polling loop that hands work items to agents under a runtime session."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from agent_runtime.delivery.backoff import (
    DEFAULT_BACKOFF_BASE_MS,
    DEFAULT_BACKOFF_MAX_MS,
    RandomSource,
    backoff_delay_ms,
)
from agent_runtime.sessions.models import SessionScope, scope_for
from agent_runtime.sessions.registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkItem:
    """One unit of work destined for an agent process."""

    item_id: str
    account_id: str
    agent_id: str
    agent_slug: str
    task_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def scope(self) -> SessionScope:
        return scope_for(account_id=self.account_id, agent_id=self.agent_id, task_id=self.task_id)


@dataclass(slots=True)
class PollSummary:
    """Aggregate poller counters for CLI reporting."""

    polls: int = 0
    poll_failures: int = 0
    delivered: int = 0
    delivery_failures: int = 0
    sessions_opened: int = 0


FetchWork = Callable[[], Sequence[WorkItem]]
DeliverWork = Callable[[str, WorkItem], None]


class DeliveryPoller:
    """Fetches pending work, ensures a session per item, and delivers it.

    A failed fetch counts as a poll failure and the next poll waits for a
    full-jitter backoff delay; a successful fetch resets the counter. A
    failure delivering a single item is logged and counted but does not
    slow down polling.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        registry: SessionRegistry,
        fetch_work: FetchWork,
        deliver: DeliverWork,
        poll_interval_seconds: float = 5.0,
        backoff_base_ms: int = DEFAULT_BACKOFF_BASE_MS,
        backoff_max_ms: int = DEFAULT_BACKOFF_MAX_MS,
        rng: RandomSource | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.registry = registry
        self.fetch_work = fetch_work
        self.deliver = deliver
        self.poll_interval_seconds = poll_interval_seconds
        self.backoff_base_ms = backoff_base_ms
        self.backoff_max_ms = backoff_max_ms
        self.consecutive_failures = 0
        self.last_error: str | None = None
        self._rng = rng
        self._sleep = sleep
        self._stop_requested = False

    def request_stop(self) -> None:
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def run_once(self) -> PollSummary:
        """Poll once and deliver everything that was fetched."""

        summary = PollSummary(polls=1)
        try:
            items = list(self.fetch_work())
        except Exception as error:  # noqa: BLE001
            self.consecutive_failures += 1
            self.last_error = str(error)
            summary.poll_failures = 1
            logger.error(
                "Delivery poll failed (consecutive_failures=%s): %s",
                self.consecutive_failures,
                error,
            )
            return summary

        self.consecutive_failures = 0
        if items:
            logger.info("Found %s work items to deliver.", len(items))

        for item in items:
            if self._stop_requested:
                break
            self._deliver_item(item=item, summary=summary)
        return summary

    def run_loop(self, *, max_polls: int | None = None) -> PollSummary:
        """Poll until stopped or max_polls reached."""

        aggregate = PollSummary()
        while not self._stop_requested:
            if max_polls is not None and aggregate.polls >= max_polls:
                break

            summary = self.run_once()
            aggregate.polls += summary.polls
            aggregate.poll_failures += summary.poll_failures
            aggregate.delivered += summary.delivered
            aggregate.delivery_failures += summary.delivery_failures
            aggregate.sessions_opened += summary.sessions_opened

            if self._stop_requested:
                break
            if max_polls is not None and aggregate.polls >= max_polls:
                break
            self._sleep_with_stop(self.next_delay_seconds())
        return aggregate

    def next_delay_seconds(self) -> float:
        """Regular interval when healthy, backoff delay after poll failures."""

        if self.consecutive_failures > 0:
            delay_ms = backoff_delay_ms(
                self.consecutive_failures,
                self.backoff_base_ms,
                self.backoff_max_ms,
                rng=self._rng,
            )
            return delay_ms / 1000
        return self.poll_interval_seconds

    def _deliver_item(self, *, item: WorkItem, summary: PollSummary) -> None:
        try:
            ensured = self.registry.ensure_session(item.scope(), agent_slug=item.agent_slug)
            if ensured.is_new:
                summary.sessions_opened += 1
            self.deliver(ensured.session_key, item)
        except Exception as error:  # noqa: BLE001
            summary.delivery_failures += 1
            logger.warning("Failed to deliver work item %s: %s", item.item_id, error)
            return
        summary.delivered += 1

    def _sleep_with_stop(self, seconds: float) -> None:
        remaining = max(0.0, seconds)
        while not self._stop_requested and remaining > 0:
            step = min(0.1, remaining)
            self._sleep(step)
            remaining -= step
