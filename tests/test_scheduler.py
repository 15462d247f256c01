"""Tests for the DailyScheduler."""

import random
import time
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from autotx.events import EventType
from autotx.orchestrator import RunSummary
from autotx.scheduler import (
    DailyScheduler,
    SchedulerState,
    ScheduleState,
    milliseconds_until_next_midnight,
)
from conftest import make_tasks

NOON = datetime(2026, 3, 14, 12, 0, 0)
HOUR_MS = 60 * 60 * 1000
HALF_DAY_MS = 12 * HOUR_MS

# POSIX TZ strings, so no tz database is needed
UTC_TZ = "UTC0"
US_EASTERN_TZ = "EST5EDT,M3.2.0,M11.1.0"

pytestmark = pytest.mark.skipif(not hasattr(time, "tzset"), reason="needs time.tzset")


def set_local_timezone(monkeypatch, tz: str) -> None:
    monkeypatch.setenv("TZ", tz)
    time.tzset()


@pytest.fixture(autouse=True)
def local_timezone(monkeypatch):
    """Pin local time to UTC unless a test picks another zone."""
    set_local_timezone(monkeypatch, UTC_TZ)
    yield
    monkeypatch.undo()
    time.tzset()


def make_scheduler(orchestrator, events, sleep, sample=0.5, **kwargs) -> DailyScheduler:
    rng = MagicMock(spec=random.Random)
    rng.random.return_value = sample
    return DailyScheduler(
        orchestrator,
        make_tasks(2),
        kwargs.pop("accounts", ["acct"]),
        events,
        rng=rng,
        clock=lambda: NOON,
        sleep=sleep,
        **kwargs,
    )


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    mock.run_batch = AsyncMock(return_value=RunSummary(total_succeeded=2))
    return mock


class TestMillisecondsUntilNextMidnight:
    """Tests for the midnight window helper."""

    def test_noon(self):
        assert milliseconds_until_next_midnight(NOON) == HALF_DAY_MS

    def test_just_before_midnight(self):
        assert milliseconds_until_next_midnight(datetime(2026, 3, 14, 23, 59, 59)) == 1000

    def test_exactly_midnight_is_a_full_day(self):
        """Test the window at midnight reaches the following midnight."""
        assert milliseconds_until_next_midnight(datetime(2026, 3, 14)) == 24 * HOUR_MS

    def test_month_boundary(self):
        assert milliseconds_until_next_midnight(datetime(2026, 1, 31, 18, 0)) == 6 * HOUR_MS

    def test_spring_forward_day_is_short(self, monkeypatch):
        """Test the window follows elapsed time when clocks skip an hour."""
        set_local_timezone(monkeypatch, US_EASTERN_TZ)

        # 2026-03-08 02:00 EST jumps to 03:00 EDT
        assert milliseconds_until_next_midnight(datetime(2026, 3, 8)) == 23 * HOUR_MS
        assert milliseconds_until_next_midnight(datetime(2026, 3, 8, 12, 0)) == 12 * HOUR_MS

    def test_fall_back_day_is_long(self, monkeypatch):
        """Test the window includes the repeated hour when clocks go back."""
        set_local_timezone(monkeypatch, US_EASTERN_TZ)

        # 2026-11-01 02:00 EDT falls back to 01:00 EST
        assert milliseconds_until_next_midnight(datetime(2026, 11, 1)) == 25 * HOUR_MS


class TestComputeDelay:
    """Tests for the jittered delay."""

    def test_delay_scales_random_sample(self, orchestrator, events, sleep):
        scheduler = make_scheduler(orchestrator, events, sleep, sample=0.25)

        assert scheduler.compute_delay() == HALF_DAY_MS // 4

    def test_zero_sample(self, orchestrator, events, sleep):
        scheduler = make_scheduler(orchestrator, events, sleep, sample=0.0)

        assert scheduler.compute_delay() == 0

    def test_delay_always_below_window(self, orchestrator, events, sleep):
        """Test real random samples stay inside [0, window)."""
        scheduler = DailyScheduler(
            orchestrator, make_tasks(1), ["acct"], events, rng=random.Random(7)
        )
        now = datetime(2026, 3, 14, 23, 59, 58)
        window = milliseconds_until_next_midnight(now)

        delays = [scheduler.compute_delay(now) for _ in range(500)]

        assert all(0 <= d < window for d in delays)
        assert len(set(delays)) > 1

    def test_different_samples_give_different_delays(self, orchestrator, events, sleep):
        low = make_scheduler(orchestrator, events, sleep, sample=0.1)
        high = make_scheduler(orchestrator, events, sleep, sample=0.9)

        assert low.compute_delay(NOON) != high.compute_delay(NOON)


class TestRunOnce:
    """Tests for DailyScheduler.run_once."""

    @pytest.mark.asyncio
    async def test_success_returns_summary(self, orchestrator, events, sleep):
        scheduler = make_scheduler(orchestrator, events, sleep)

        summary = await scheduler.run_once()

        assert summary.total_succeeded == 2
        assert scheduler.schedule.runs_completed == 1
        orchestrator.run_batch.assert_awaited_once()
        loop_count, tasks, accounts = orchestrator.run_batch.await_args.args
        assert loop_count == 1
        assert len(tasks) == 2
        assert accounts == ["acct"]

    @pytest.mark.asyncio
    async def test_error_is_absorbed_and_reported(self, orchestrator, events, sleep):
        """Test an error escaping the batch is published, not raised."""
        orchestrator.run_batch.side_effect = RuntimeError("account list broke")
        scheduler = make_scheduler(orchestrator, events, sleep)

        summary = await scheduler.run_once(initial=True)

        assert summary is None
        assert scheduler.schedule.runs_failed == 1
        assert scheduler.schedule.last_error == "account list broke"
        failed = events.events_of(EventType.RUN_FAILED)
        assert len(failed) == 1
        assert failed[0].data == {"error": "account list broke", "initial": True}

    @pytest.mark.asyncio
    async def test_explicit_loop_count(self, orchestrator, events, sleep):
        scheduler = make_scheduler(orchestrator, events, sleep, loop_count=2)

        await scheduler.run_once(loop_count=5)
        await scheduler.run_once()

        counts = [c.args[0] for c in orchestrator.run_batch.await_args_list]
        assert counts == [5, 2]


class TestRunForever:
    """Tests for DailyScheduler.run_forever."""

    @pytest.mark.asyncio
    async def test_runs_immediately_then_waits(self, orchestrator, events, sleep):
        """Test the first run starts without waiting and later runs wait first."""
        scheduler = make_scheduler(orchestrator, events, sleep, sample=0.5)

        await scheduler.run_forever(max_runs=3)

        assert orchestrator.run_batch.await_count == 3
        assert sleep.await_count == 2
        sleep.assert_awaited_with(HALF_DAY_MS / 2 / 1000)
        scheduled = events.events_of(EventType.RUN_SCHEDULED)
        assert len(scheduled) == 2
        assert scheduled[0].data["delay_ms"] == HALF_DAY_MS // 2

    @pytest.mark.asyncio
    async def test_single_run_never_sleeps(self, orchestrator, events, sleep):
        scheduler = make_scheduler(orchestrator, events, sleep)

        await scheduler.run_forever(max_runs=1)

        assert orchestrator.run_batch.await_count == 1
        sleep.assert_not_awaited()
        assert scheduler.state == SchedulerState.IDLE

    @pytest.mark.asyncio
    async def test_first_loop_count(self, orchestrator, events, sleep):
        """Test the initial run may use a different loop count."""
        scheduler = make_scheduler(orchestrator, events, sleep, first_loop_count=4)

        await scheduler.run_forever(max_runs=2)

        counts = [c.args[0] for c in orchestrator.run_batch.await_args_list]
        assert counts == [4, 1]

    @pytest.mark.asyncio
    async def test_failed_run_keeps_looping(self, orchestrator, events, sleep):
        """Test a failing run does not stop the schedule."""
        orchestrator.run_batch.side_effect = [
            RuntimeError("first"),
            RunSummary(total_succeeded=1),
            RuntimeError("third"),
        ]
        scheduler = make_scheduler(orchestrator, events, sleep)

        await scheduler.run_forever(max_runs=3)

        failed = events.events_of(EventType.RUN_FAILED)
        assert [e.data["initial"] for e in failed] == [True, False]
        assert scheduler.schedule.runs_completed == 1
        assert scheduler.schedule.runs_failed == 2
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_state_transitions(self, orchestrator, events, sleep):
        """Test Running and Waiting alternate."""
        scheduler = make_scheduler(orchestrator, events, sleep)
        seen = []

        async def record_run(*args):
            seen.append(scheduler.state)
            return RunSummary()

        async def record_sleep(seconds):
            seen.append(scheduler.state)

        orchestrator.run_batch.side_effect = record_run
        sleep.side_effect = record_sleep
        assert scheduler.state == SchedulerState.IDLE

        await scheduler.run_forever(max_runs=2)

        assert seen == [SchedulerState.RUNNING, SchedulerState.WAITING, SchedulerState.RUNNING]
        assert scheduler.schedule.next_run_at is not None

    @pytest.mark.asyncio
    async def test_stop_during_wait(self, orchestrator, events, sleep):
        """Test stop() ends the loop after the current wait."""
        scheduler = make_scheduler(orchestrator, events, sleep)

        async def stop_while_waiting(seconds):
            scheduler.stop()

        sleep.side_effect = stop_while_waiting

        await scheduler.run_forever()

        assert orchestrator.run_batch.await_count == 1

    def test_get_status(self, orchestrator, events, sleep):
        scheduler = make_scheduler(orchestrator, events, sleep)

        status = scheduler.get_status()

        assert status == {
            "state": "idle",
            "next_run_at": None,
            "runs_completed": 0,
            "runs_failed": 0,
            "last_error": None,
        }

    def test_schedule_state_defaults(self):
        state = ScheduleState()

        assert state.state == SchedulerState.IDLE
        assert state.runs_completed == 0
