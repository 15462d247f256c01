"""Daily scheduler that reruns the batch at a random time each day."""

import asyncio
import random
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import structlog

from autotx.accounts import Account
from autotx.events import EventLog, run_failed, run_scheduled
from autotx.orchestrator import BatchOrchestrator, RunSummary
from autotx.tasks import TaskSpec

logger = structlog.get_logger(__name__)


class SchedulerState(str, Enum):
    """Lifecycle states of the daily scheduler."""

    IDLE = "idle"
    RUNNING = "running"
    WAITING = "waiting"


@dataclass
class ScheduleState:
    """Process-wide schedule bookkeeping; lost on restart."""

    state: SchedulerState = SchedulerState.IDLE
    next_run_at: datetime | None = None
    runs_completed: int = 0
    runs_failed: int = 0
    last_error: str | None = None


def milliseconds_until_next_midnight(now: datetime) -> int:
    """Milliseconds from ``now`` to the next local midnight (always > 0).

    Measured in elapsed time, so days with a DST shift are 23 or 25 hours
    long. Naive datetimes are read as local time.
    """
    tomorrow = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return round((tomorrow.timestamp() - now.timestamp()) * 1000)


class DailyScheduler:
    """Runs the batch now, then once per day at a uniformly random instant.

    Each delay is drawn uniformly from ``[0, ms until next local midnight)``,
    so consecutive runs land at different times of day. Any error escaping a
    run is logged and reported; the loop keeps going.
    """

    def __init__(
        self,
        orchestrator: BatchOrchestrator,
        tasks: Sequence[TaskSpec],
        accounts: Sequence[Account],
        events: EventLog,
        loop_count: int = 1,
        first_loop_count: int | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._orchestrator = orchestrator
        self._tasks = list(tasks)
        self._accounts = list(accounts)
        self._events = events
        self._loop_count = loop_count
        self._first_loop_count = first_loop_count or loop_count
        self._rng = rng or random.Random()
        self._clock = clock
        self._sleep = sleep

        self._schedule = ScheduleState()
        self._stopped = False
        self._logger = logger.bind(component="daily_scheduler")

    @property
    def schedule(self) -> ScheduleState:
        return self._schedule

    @property
    def state(self) -> SchedulerState:
        return self._schedule.state

    def compute_delay(self, now: datetime | None = None) -> int:
        """Draw the jittered delay in milliseconds until the next run."""
        now = now or self._clock()
        window = milliseconds_until_next_midnight(now)
        return int(self._rng.random() * window)

    async def run_once(
        self, loop_count: int | None = None, initial: bool = False
    ) -> RunSummary | None:
        """Run one batch, absorbing any error it raises.

        Returns:
            The run summary, or None if the run failed.
        """
        self._schedule.state = SchedulerState.RUNNING
        loop_count = loop_count or self._loop_count

        try:
            summary = await self._orchestrator.run_batch(loop_count, self._tasks, self._accounts)
        except Exception as e:
            self._schedule.runs_failed += 1
            self._schedule.last_error = str(e)
            self._logger.exception("run_failed", initial=initial, error=str(e))
            self._events.publish(run_failed(str(e), initial=initial))
            return None

        self._schedule.runs_completed += 1
        self._schedule.last_error = None
        self._logger.info(
            "run_completed",
            succeeded=summary.total_succeeded,
            failed=summary.total_failed,
        )
        return summary

    async def wait_for_next_run(self) -> None:
        """Sleep until the next jittered run time."""
        now = self._clock()
        delay_ms = self.compute_delay(now)
        next_run_at = now + timedelta(milliseconds=delay_ms)

        self._schedule.state = SchedulerState.WAITING
        self._schedule.next_run_at = next_run_at
        self._logger.info(
            "next_run_scheduled",
            next_run_at=next_run_at.strftime("%Y-%m-%d %H:%M:%S"),
            delay_s=round(delay_ms / 1000),
        )
        self._events.publish(run_scheduled(next_run_at, delay_ms))

        await self._sleep(delay_ms / 1000)

    async def run_forever(self, max_runs: int | None = None) -> None:
        """Run immediately, then keep running once a day.

        Args:
            max_runs: Stop after this many runs. None means never stop.
        """
        self._stopped = False
        runs = 0
        self._logger.info(
            "scheduler_starting", tasks=len(self._tasks), accounts=len(self._accounts)
        )

        await self.run_once(self._first_loop_count, initial=True)
        runs += 1

        while not self._stopped:
            if max_runs is not None and runs >= max_runs:
                break

            await self.wait_for_next_run()
            if self._stopped:
                break

            await self.run_once()
            runs += 1

        self._schedule.state = SchedulerState.IDLE
        self._logger.info("scheduler_stopped", runs=runs)

    def stop(self) -> None:
        """Stop after the current run or wait finishes."""
        self._stopped = True

    def get_status(self) -> dict[str, Any]:
        """Get current scheduler status."""
        return {
            "state": self._schedule.state.value,
            "next_run_at": (
                self._schedule.next_run_at.isoformat() if self._schedule.next_run_at else None
            ),
            "runs_completed": self._schedule.runs_completed,
            "runs_failed": self._schedule.runs_failed,
            "last_error": self._schedule.last_error,
        }
