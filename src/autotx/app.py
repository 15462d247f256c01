"""Process runtime: wires components together and owns their lifecycle.

Usage:
    # Run now, then once a day at a random time
    uv run python -m autotx

    # Single batch and exit
    uv run python -m autotx --once

    # Two loops over a subset of tasks for the first run
    uv run python -m autotx --loops=2 --task Uniswap --task Kuru
"""

import argparse
import asyncio
import sys
from collections.abc import Sequence
from typing import Any

import structlog

from autotx.accounts import Account, load_accounts
from autotx.balances import AccountBalanceProbe, LedgerClient, RpcLedgerClient
from autotx.config import configure_logging, get_settings
from autotx.events import EventLog, log_event
from autotx.exceptions import ConfigurationError
from autotx.lock import AdmissionError, SingleInstanceGuard
from autotx.notifications import TelegramNotifier
from autotx.orchestrator import BatchOrchestrator, RunSummary
from autotx.scheduler import DailyScheduler
from autotx.tasks import (
    SubprocessTaskExecutor,
    TaskExecutor,
    TaskRunner,
    TaskSpec,
    build_task_catalog,
)

logger = structlog.get_logger(__name__)


class Runtime:
    """Owns the lock, the accounts and every long-lived component.

    Usage:
        async with Runtime(tasks) as runtime:
            await runtime.run_forever()
    """

    def __init__(
        self,
        tasks: Sequence[TaskSpec],
        accounts: Sequence[Account] | None = None,
        guard: SingleInstanceGuard | None = None,
        executor: TaskExecutor | None = None,
        ledger: LedgerClient | None = None,
        notifier: TelegramNotifier | None = None,
        first_loop_count: int = 1,
    ):
        self._tasks = list(tasks)
        self._accounts = list(accounts) if accounts is not None else None
        self._guard = guard or SingleInstanceGuard()
        self._executor = executor or SubprocessTaskExecutor()
        self._ledger = ledger
        self._notifier = notifier
        self._first_loop_count = first_loop_count

        self.events = EventLog()
        self._orchestrator: BatchOrchestrator | None = None
        self._scheduler: DailyScheduler | None = None
        self._is_started = False
        self._logger = logger.bind(component="runtime")

    async def __aenter__(self) -> "Runtime":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()

    @property
    def scheduler(self) -> DailyScheduler:
        if self._scheduler is None:
            raise RuntimeError("Runtime not started")
        return self._scheduler

    @property
    def accounts(self) -> list[Account]:
        return list(self._accounts or [])

    async def start(self) -> None:
        """Take the instance lock, load accounts and build components.

        Raises:
            AdmissionError: If another instance holds the lock.
            ConfigurationError: If no tasks or no accounts are configured.
        """
        if self._is_started:
            return

        if not self._tasks:
            raise ConfigurationError("No tasks configured")

        self._guard.acquire()
        try:
            if self._accounts is None:
                self._accounts = load_accounts()
            elif not self._accounts:
                raise ConfigurationError("No accounts configured")
        except Exception:
            self._guard.release()
            raise

        if self._ledger is None:
            self._ledger = RpcLedgerClient()
        if self._notifier is None:
            self._notifier = TelegramNotifier()

        self.events.subscribe(log_event)
        self.events.subscribe(self._notifier)

        self._orchestrator = BatchOrchestrator(
            runner=TaskRunner(self._executor, self.events),
            probe=AccountBalanceProbe(self._ledger, self.events),
            events=self.events,
        )
        self._scheduler = DailyScheduler(
            self._orchestrator,
            self._tasks,
            self._accounts,
            self.events,
            first_loop_count=self._first_loop_count,
        )

        self._is_started = True
        self._logger.info(
            "runtime_started",
            accounts=len(self._accounts),
            tasks=[task.name for task in self._tasks],
        )

    async def run_once(self) -> RunSummary | None:
        """Run a single batch with the first-run loop count."""
        return await self.scheduler.run_once(self._first_loop_count, initial=True)

    async def run_forever(self, max_runs: int | None = None) -> None:
        """Run now and then daily until the process is stopped."""
        await self.scheduler.run_forever(max_runs=max_runs)

    async def shutdown(self) -> None:
        """Flush notifications, close clients and release the lock."""
        self._logger.info("runtime_shutting_down")

        if self._scheduler is not None:
            self._scheduler.stop()
        if self._notifier is not None:
            await self._notifier.aclose()
        if isinstance(self._ledger, RpcLedgerClient):
            await self._ledger.close()

        self._guard.release()
        self._is_started = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autotx",
        description="Run a fixed task catalog across wallet accounts, once a day.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                          # Run now, then daily at a random time
  %(prog)s --once                   # Single run, then exit
  %(prog)s --loops=3 --once         # Three passes over all wallets, then exit
  %(prog)s --task Uniswap --task Kuru
        """,
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single batch and exit instead of scheduling daily runs",
    )
    parser.add_argument(
        "--loops",
        type=int,
        default=1,
        help="Number of passes over all wallets for the first run (default: 1)",
    )
    parser.add_argument(
        "--task",
        action="append",
        dest="tasks",
        metavar="NAME",
        help="Only run this task (repeatable; default: full catalog)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Override LOG_LEVEL",
    )
    parser.add_argument(
        "--log-format",
        choices=["console", "json"],
        default=None,
        help="Override LOG_FORMAT",
    )
    return parser


async def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(level=args.log_level, format=args.log_format)
    settings = get_settings()

    if args.loops < 1:
        parser.error("--loops must be at least 1")

    try:
        tasks = build_task_catalog(names=args.tasks)
    except KeyError as e:
        parser.error(str(e.args[0]))

    logger.info(
        "starting_autotx",
        mode="once" if args.once else "daily",
        loops=args.loops,
        lock_file=str(settings.lock_file),
    )

    try:
        async with Runtime(tasks, first_loop_count=args.loops) as runtime:
            if args.once:
                await runtime.run_once()
            else:
                await runtime.run_forever()
    except AdmissionError as e:
        logger.error("admission_denied", error=str(e))
        return 1
    except ConfigurationError as e:
        logger.error("configuration_error", error=str(e))
        return 1

    return 0


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("interrupted")
