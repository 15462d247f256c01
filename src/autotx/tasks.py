"""Task catalog and single-task execution as child processes.

Each task is an external script that does its own on-chain work for the
active account. The orchestrator only sees its exit status: 0 is success,
anything else (or failing to start it at all) is a :class:`TaskFailure`.
"""

import asyncio
import os
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import structlog

from autotx.accounts import Account
from autotx.config import get_settings
from autotx.events import EventLog, task_completed, task_failed
from autotx.exceptions import AutoTxError

logger = structlog.get_logger(__name__)

# (display name, script file) in execution order
DEFAULT_TASK_SCRIPTS: tuple[tuple[str, str], ...] = (
    ("Uniswap", "uniswap.js"),
    ("Rubic Swap", "rubic.js"),
    ("Magma Staking", "magma.js"),
    ("Kitsu", "kitsu.js"),
    ("Izumi", "izumi.js"),
    ("Deploy", "deploy.mjs"),
    ("Bebop", "bebop.js"),
    ("Bean", "bean.js"),
    ("Apriori", "apriori.js"),
    ("Kuru", "kuru.js"),
)


@dataclass(frozen=True)
class TaskSpec:
    """One entry of the task catalog."""

    name: str
    invocation: tuple[str, ...]


@dataclass(frozen=True)
class RunContext:
    """Where in the batch a task invocation happens."""

    loop_index: int  # 0-based
    account_index: int  # 0-based
    total_accounts: int
    account: Account

    @property
    def account_number(self) -> int:
        return self.account_index + 1

    @property
    def loop_number(self) -> int:
        return self.loop_index + 1


@dataclass(frozen=True)
class ExitOutcome:
    """How an external task process ended."""

    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class TaskResult:
    """A successful task invocation."""

    task: TaskSpec
    account_number: int
    duration_ms: float


class TaskFailure(AutoTxError):
    """A task exited non-zero or could not be started."""

    def __init__(
        self,
        task_name: str,
        message: str,
        exit_code: int | None = None,
    ):
        super().__init__(f"{task_name}: {message}")
        self.task_name = task_name
        self.exit_code = exit_code


class TaskExecutor(Protocol):
    """Runs an external task and reports how it exited."""

    async def run(self, invocation: Sequence[str], env: Mapping[str, str]) -> ExitOutcome: ...


class SubprocessTaskExecutor:
    """Runs tasks as child processes sharing this process's console."""

    def __init__(self, cwd: Path | None = None):
        self._cwd = cwd

    async def run(self, invocation: Sequence[str], env: Mapping[str, str]) -> ExitOutcome:
        """Spawn the task and wait for it to exit.

        Args:
            invocation: argv of the child process.
            env: Variables added on top of the current environment.

        Raises:
            OSError: If the process cannot be started.
        """
        process = await asyncio.create_subprocess_exec(
            *invocation,
            env={**os.environ, **env},
            cwd=self._cwd,
        )
        returncode = await process.wait()
        return ExitOutcome(returncode=returncode)


def build_task_catalog(
    runtime: str | None = None,
    tasks_dir: Path | None = None,
    names: Sequence[str] | None = None,
) -> list[TaskSpec]:
    """Build the ordered task catalog.

    Args:
        runtime: Interpreter used to run each script. Defaults to settings.
        tasks_dir: Directory holding the scripts. Defaults to settings.
        names: Optional subset of task names (case-insensitive); catalog order
            is kept regardless of the order given here.

    Raises:
        KeyError: If a requested name is not in the catalog.
    """
    settings = get_settings()
    runtime = runtime or settings.task_runtime
    tasks_dir = tasks_dir or settings.tasks_dir

    catalog = [
        TaskSpec(name=name, invocation=(runtime, str(tasks_dir / script)))
        for name, script in DEFAULT_TASK_SCRIPTS
    ]
    if names is None:
        return catalog

    wanted = {name.strip().lower() for name in names}
    known = {task.name.lower() for task in catalog}
    unknown = wanted - known
    if unknown:
        raise KeyError(f"Unknown task(s): {', '.join(sorted(unknown))}")
    return [task for task in catalog if task.name.lower() in wanted]


class TaskRunner:
    """Runs one task for the active account and reports the outcome."""

    def __init__(
        self,
        executor: TaskExecutor,
        events: EventLog,
        account_env_var: str | None = None,
    ):
        self._executor = executor
        self._events = events
        self._account_env_var = account_env_var or get_settings().account_env_var
        self._logger = logger.bind(component="task_runner")

    async def run(self, task: TaskSpec, context: RunContext) -> TaskResult:
        """Invoke a task and wait for it to finish.

        Publishes exactly one task completed or task failed event.

        Raises:
            TaskFailure: If the task exits non-zero or cannot be spawned.
        """
        self._logger.info(
            "task_starting",
            task=task.name,
            account=f"{context.account_number}/{context.total_accounts}",
            loop=context.loop_number,
        )
        env = {self._account_env_var: context.account.secret.get_secret_value()}
        started = time.perf_counter()

        try:
            outcome = await self._executor.run(task.invocation, env)
        except OSError as e:
            failure = TaskFailure(task.name, f"could not start: {e}")
        else:
            failure = None
            if not outcome.ok:
                failure = TaskFailure(
                    task.name,
                    f"exited with code {outcome.returncode}",
                    exit_code=outcome.returncode,
                )

        duration_ms = (time.perf_counter() - started) * 1000

        if failure is not None:
            self._events.publish(
                task_failed(
                    task.name,
                    context.account.address,
                    context.account_number,
                    context.total_accounts,
                    error=str(failure),
                    duration_ms=duration_ms,
                    exit_code=failure.exit_code,
                    loop_number=context.loop_number,
                )
            )
            raise failure

        self._events.publish(
            task_completed(
                task.name,
                context.account.address,
                context.account_number,
                context.total_accounts,
                duration_ms=duration_ms,
                loop_number=context.loop_number,
            )
        )
        return TaskResult(task=task, account_number=context.account_number, duration_ms=duration_ms)
