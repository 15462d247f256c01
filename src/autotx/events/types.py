"""Domain events emitted while driving tasks across accounts.

The orchestrator never talks to a transport directly. It publishes these
events to an :class:`~autotx.events.publisher.EventLog`, and subscribers (the
console logger, the Telegram notifier) decide what to do with them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventType(str, Enum):
    """Types of events published by the orchestrator."""

    # Batch lifecycle
    RUN_STARTED = "run.started"
    RUN_FINISHED = "run.finished"
    RUN_FAILED = "run.failed"
    RUN_SCHEDULED = "run.scheduled"

    # Per-account progress
    ACCOUNT_STARTED = "account.started"
    ACCOUNT_FINISHED = "account.finished"

    # Task outcomes
    TASK_COMPLETED = "task.completed"
    TASK_FAILED = "task.failed"

    # Reporting
    BALANCE_PROBE_FAILED = "balance_probe.failed"


@dataclass
class RunEvent:
    """Base event structure for all orchestrator events."""

    event_type: EventType
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: UUID = field(default_factory=uuid4)
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to a JSON-compatible dictionary."""
        return {
            "id": str(self.event_id),
            "type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


@dataclass
class AccountEvent(RunEvent):
    """Event tied to one account within a loop."""

    address: str = ""
    account_number: int = 0  # 1-based
    total_accounts: int = 0
    loop_number: int = 1  # 1-based

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base["account"] = {
            "address": self.address,
            "number": self.account_number,
            "total": self.total_accounts,
            "loop": self.loop_number,
        }
        return base


@dataclass
class TaskEvent(AccountEvent):
    """Outcome of a single task invocation."""

    task_name: str = ""
    exit_code: int | None = None
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.event_type == EventType.TASK_COMPLETED

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base["task"] = {
            "name": self.task_name,
            "exit_code": self.exit_code,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }
        return base


@dataclass
class BalanceLine:
    """One account's balance as reported at the end of a run."""

    address: str
    amount: Decimal


@dataclass
class RunFinishedEvent(RunEvent):
    """Final summary of a batch run."""

    total_succeeded: int = 0
    total_failed: int = 0
    balances: list[BalanceLine] = field(default_factory=list)
    symbol: str = ""

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base["summary"] = {
            "total_succeeded": self.total_succeeded,
            "total_failed": self.total_failed,
            "symbol": self.symbol,
            "balances": [
                {"address": line.address, "amount": str(line.amount)}
                for line in self.balances
            ],
        }
        return base


# === Event factories ===


def run_started(loop_count: int, account_count: int, task_count: int) -> RunEvent:
    """Create a run started event."""
    return RunEvent(
        event_type=EventType.RUN_STARTED,
        data={
            "loop_count": loop_count,
            "account_count": account_count,
            "task_count": task_count,
        },
    )


def account_started(
    address: str, account_number: int, total_accounts: int, loop_number: int = 1
) -> AccountEvent:
    """Create an account started event."""
    return AccountEvent(
        event_type=EventType.ACCOUNT_STARTED,
        address=address,
        account_number=account_number,
        total_accounts=total_accounts,
        loop_number=loop_number,
    )


def account_finished(
    address: str,
    account_number: int,
    total_accounts: int,
    total_succeeded: int,
    loop_number: int = 1,
) -> AccountEvent:
    """Create an account finished event carrying the running total."""
    return AccountEvent(
        event_type=EventType.ACCOUNT_FINISHED,
        address=address,
        account_number=account_number,
        total_accounts=total_accounts,
        loop_number=loop_number,
        data={"total_succeeded": total_succeeded},
    )


def task_completed(
    task_name: str,
    address: str,
    account_number: int,
    total_accounts: int,
    duration_ms: float,
    loop_number: int = 1,
) -> TaskEvent:
    """Create a task completed event."""
    return TaskEvent(
        event_type=EventType.TASK_COMPLETED,
        task_name=task_name,
        address=address,
        account_number=account_number,
        total_accounts=total_accounts,
        loop_number=loop_number,
        exit_code=0,
        duration_ms=duration_ms,
    )


def task_failed(
    task_name: str,
    address: str,
    account_number: int,
    total_accounts: int,
    error: str,
    duration_ms: float,
    exit_code: int | None = None,
    loop_number: int = 1,
) -> TaskEvent:
    """Create a task failed event."""
    return TaskEvent(
        event_type=EventType.TASK_FAILED,
        task_name=task_name,
        address=address,
        account_number=account_number,
        total_accounts=total_accounts,
        loop_number=loop_number,
        exit_code=exit_code,
        error=error,
        duration_ms=duration_ms,
    )


def balance_probe_failed(address: str, attempts: int, error: str) -> RunEvent:
    """Create a balance probe failure event."""
    return RunEvent(
        event_type=EventType.BALANCE_PROBE_FAILED,
        data={"address": address, "attempts": attempts, "error": error},
    )


def run_finished(
    total_succeeded: int,
    total_failed: int,
    balances: list[BalanceLine],
    symbol: str = "",
) -> RunFinishedEvent:
    """Create a run finished event."""
    return RunFinishedEvent(
        event_type=EventType.RUN_FINISHED,
        total_succeeded=total_succeeded,
        total_failed=total_failed,
        balances=list(balances),
        symbol=symbol,
    )


def run_failed(error: str, initial: bool = False) -> RunEvent:
    """Create a run failed event."""
    return RunEvent(
        event_type=EventType.RUN_FAILED,
        data={"error": error, "initial": initial},
    )


def run_scheduled(next_run_at: datetime, delay_ms: int) -> RunEvent:
    """Create an event announcing the next scheduled run."""
    return RunEvent(
        event_type=EventType.RUN_SCHEDULED,
        data={"next_run_at": next_run_at.isoformat(), "delay_ms": delay_ms},
    )
