"""Event module for autotx."""

from autotx.events.publisher import EventLog, Subscriber, log_event
from autotx.events.types import (
    AccountEvent,
    BalanceLine,
    EventType,
    RunEvent,
    RunFinishedEvent,
    TaskEvent,
    account_finished,
    account_started,
    balance_probe_failed,
    run_failed,
    run_finished,
    run_scheduled,
    run_started,
    task_completed,
    task_failed,
)

__all__ = [
    # Log
    "EventLog",
    "Subscriber",
    "log_event",
    # Types
    "EventType",
    "RunEvent",
    "AccountEvent",
    "TaskEvent",
    "RunFinishedEvent",
    "BalanceLine",
    # Factories
    "run_started",
    "run_finished",
    "run_failed",
    "run_scheduled",
    "account_started",
    "account_finished",
    "task_completed",
    "task_failed",
    "balance_probe_failed",
]
