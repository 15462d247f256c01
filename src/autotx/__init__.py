"""autotx - run a fixed task catalog across wallet accounts on a jittered daily cadence."""

__version__ = "0.1.0"

from autotx.accounts import Account, load_accounts
from autotx.balances import AccountBalanceProbe, LedgerError, RpcLedgerClient
from autotx.config import configure_logging, get_settings
from autotx.events import EventLog, EventType, RunEvent
from autotx.exceptions import AutoTxError, ConfigurationError
from autotx.lock import AdmissionError, AlreadyRunning, SingleInstanceGuard
from autotx.notifications import TelegramNotifier
from autotx.orchestrator import BatchOrchestrator, RunSummary
from autotx.scheduler import DailyScheduler, SchedulerState, ScheduleState
from autotx.tasks import (
    ExitOutcome,
    RunContext,
    SubprocessTaskExecutor,
    TaskExecutor,
    TaskFailure,
    TaskRunner,
    TaskSpec,
    build_task_catalog,
)

__all__ = [
    # Version
    "__version__",
    # Accounts
    "Account",
    "load_accounts",
    # Tasks
    "TaskSpec",
    "RunContext",
    "ExitOutcome",
    "TaskExecutor",
    "SubprocessTaskExecutor",
    "TaskRunner",
    "TaskFailure",
    "build_task_catalog",
    # Orchestration
    "BatchOrchestrator",
    "RunSummary",
    "DailyScheduler",
    "SchedulerState",
    "ScheduleState",
    # Reporting
    "AccountBalanceProbe",
    "RpcLedgerClient",
    "LedgerError",
    "TelegramNotifier",
    "EventLog",
    "EventType",
    "RunEvent",
    # Admission control
    "SingleInstanceGuard",
    "AdmissionError",
    "AlreadyRunning",
    # Errors
    "AutoTxError",
    "ConfigurationError",
    # Config
    "get_settings",
    "configure_logging",
]
