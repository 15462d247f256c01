"""Batch orchestrator - drives the task catalog across every account.

A batch run walks ``loop_count x accounts x tasks`` strictly in that order,
one child process at a time:
- Each account is bound as the active one before its tasks start
- A failed task is logged and reported, then the next task runs
- Fixed pacing sleeps separate tasks and accounts
- Balances are collected once at the end and reported with the totals
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from autotx.accounts import Account
from autotx.balances import AccountBalanceProbe
from autotx.config import get_settings
from autotx.events import (
    BalanceLine,
    EventLog,
    account_finished,
    account_started,
    run_finished,
    run_started,
)
from autotx.exceptions import ConfigurationError
from autotx.tasks import RunContext, TaskFailure, TaskRunner, TaskSpec

logger = structlog.get_logger(__name__)


@dataclass
class RunSummary:
    """Accumulated outcome of one batch run."""

    loop_count: int = 1
    total_succeeded: int = 0
    total_failed: int = 0
    balances: list[BalanceLine] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def total_attempted(self) -> int:
        return self.total_succeeded + self.total_failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "loop_count": self.loop_count,
            "total_succeeded": self.total_succeeded,
            "total_failed": self.total_failed,
            "balances": [
                {"address": line.address, "amount": str(line.amount)}
                for line in self.balances
            ],
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class BatchOrchestrator:
    """Sequences task execution per account, per loop.

    Usage:
        orchestrator = BatchOrchestrator(runner, probe, events)
        summary = await orchestrator.run_batch(1, tasks, accounts)
    """

    def __init__(
        self,
        runner: TaskRunner,
        probe: AccountBalanceProbe,
        events: EventLog,
        inter_task_delay: float | None = None,
        inter_account_delay: float | None = None,
        symbol: str | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        settings = get_settings()
        self._runner = runner
        self._probe = probe
        self._events = events
        self._inter_task_delay = (
            settings.inter_task_delay if inter_task_delay is None else inter_task_delay
        )
        self._inter_account_delay = (
            settings.inter_account_delay if inter_account_delay is None else inter_account_delay
        )
        self._symbol = settings.balance_symbol if symbol is None else symbol
        self._sleep = sleep

        self._active_account: Account | None = None
        self._summary: RunSummary | None = None
        self._logger = logger.bind(component="batch_orchestrator")

    @property
    def active_account(self) -> Account | None:
        """The account bound to the task currently running, if any."""
        return self._active_account

    @property
    def last_summary(self) -> RunSummary | None:
        return self._summary

    async def run_batch(
        self,
        loop_count: int,
        tasks: Sequence[TaskSpec],
        accounts: Sequence[Account],
    ) -> RunSummary:
        """Run every task for every account, ``loop_count`` times.

        Args:
            loop_count: Number of passes over all accounts (>= 1).
            tasks: Task catalog, run in the given order.
            accounts: Accounts, processed in the given order.

        Returns:
            The summary of this run, including end-of-run balances.

        Raises:
            ConfigurationError: If the loop count, tasks or accounts are empty.
        """
        if loop_count < 1:
            raise ConfigurationError(f"loop_count must be positive, got {loop_count}")
        if not tasks:
            raise ConfigurationError("No tasks configured")
        if not accounts:
            raise ConfigurationError("No accounts configured")

        summary = RunSummary(loop_count=loop_count)
        self._summary = summary
        total_accounts = len(accounts)

        self._events.publish(run_started(loop_count, total_accounts, len(tasks)))
        self._logger.info(
            "batch_starting",
            loops=loop_count,
            accounts=total_accounts,
            tasks=len(tasks),
        )

        try:
            for loop_index in range(loop_count):
                self._logger.info("loop_starting", loop=f"{loop_index + 1}/{loop_count}")
                for account_index, account in enumerate(accounts):
                    await self._run_account(
                        summary, tasks, account, loop_index, account_index, total_accounts
                    )
        finally:
            self._active_account = None

        self._logger.info(
            "batch_tasks_finished",
            succeeded=summary.total_succeeded,
            failed=summary.total_failed,
        )

        summary.balances = await self._probe.get_balances(accounts)
        summary.finished_at = datetime.now(timezone.utc)

        self._events.publish(
            run_finished(
                summary.total_succeeded,
                summary.total_failed,
                summary.balances,
                symbol=self._symbol,
            )
        )
        return summary

    async def _run_account(
        self,
        summary: RunSummary,
        tasks: Sequence[TaskSpec],
        account: Account,
        loop_index: int,
        account_index: int,
        total_accounts: int,
    ) -> None:
        self._active_account = account
        account_number = account_index + 1
        log = self._logger.bind(
            account=f"{account_number}/{total_accounts}", address=account.address
        )

        log.info("account_starting")
        self._events.publish(
            account_started(account.address, account_number, total_accounts, loop_index + 1)
        )

        context = RunContext(
            loop_index=loop_index,
            account_index=account_index,
            total_accounts=total_accounts,
            account=account,
        )

        for task in tasks:
            try:
                await self._runner.run(task, context)
            except TaskFailure as e:
                summary.total_failed += 1
                log.warning("task_failed_continuing", task=task.name, error=str(e))
            else:
                summary.total_succeeded += 1

            log.debug("pacing", kind="inter_task", seconds=self._inter_task_delay)
            await self._sleep(self._inter_task_delay)

        if account_index < total_accounts - 1:
            log.debug("pacing", kind="inter_account", seconds=self._inter_account_delay)
            await self._sleep(self._inter_account_delay)

        self._events.publish(
            account_finished(
                account.address,
                account_number,
                total_accounts,
                summary.total_succeeded,
                loop_index + 1,
            )
        )
        log.info("account_finished", total_succeeded=summary.total_succeeded)
