"""Pytest configuration and fixtures."""

import os
from collections.abc import Mapping, Sequence
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

# Set test environment variables before importing settings
TEST_SECRET_1 = "0x" + "11" * 32
TEST_SECRET_2 = "0x" + "22" * 32
TEST_SECRET_3 = "0x" + "33" * 32

os.environ.setdefault("PRIVATE_KEYS", f"{TEST_SECRET_1},{TEST_SECRET_2}")
os.environ.setdefault("RPC_URL", "http://localhost:8545")

from autotx.accounts import Account  # noqa: E402
from autotx.events import EventLog  # noqa: E402
from autotx.tasks import ExitOutcome, TaskSpec  # noqa: E402


class ScriptedTaskExecutor:
    """In-memory task executor returning preset exit codes.

    Outcomes are keyed by the last element of the invocation (the script);
    values are exit codes or exceptions to raise. Unknown scripts exit 0.
    """

    def __init__(self, outcomes: Mapping[str, int | BaseException] | None = None):
        self.outcomes = dict(outcomes or {})
        self.calls: list[tuple[tuple[str, ...], dict[str, str]]] = []

    async def run(self, invocation: Sequence[str], env: Mapping[str, str]) -> ExitOutcome:
        self.calls.append((tuple(invocation), dict(env)))
        outcome = self.outcomes.get(invocation[-1], 0)
        if isinstance(outcome, BaseException):
            raise outcome
        return ExitOutcome(returncode=outcome)


class FakeLedger:
    """Ledger returning fixed balances, optionally failing a few times first."""

    def __init__(self, balances: Mapping[str, Decimal] | None = None, failures: int = 0):
        self.balances = dict(balances or {})
        self.failures = failures
        self.calls: list[str] = []

    async def get_balance(self, address: str) -> Decimal:
        self.calls.append(address)
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("rpc unavailable")
        return self.balances.get(address, Decimal("1.5"))


def make_tasks(count: int) -> list[TaskSpec]:
    """Build ``count`` fake tasks named task1..taskN."""
    return [
        TaskSpec(name=f"task{i}", invocation=("fake-runtime", f"task{i}"))
        for i in range(1, count + 1)
    ]


@pytest.fixture
def events():
    """Create an empty event log."""
    return EventLog()


@pytest.fixture
def executor():
    """Create an executor where every task succeeds."""
    return ScriptedTaskExecutor()


@pytest.fixture
def ledger():
    """Create a ledger that always answers."""
    return FakeLedger()


@pytest.fixture
def sleep():
    """Mock for asyncio.sleep that returns immediately."""
    return AsyncMock()


@pytest.fixture
def account_1():
    return Account.from_secret(TEST_SECRET_1)


@pytest.fixture
def account_2():
    return Account.from_secret(TEST_SECRET_2)


@pytest.fixture
def accounts(account_1, account_2):
    return [account_1, account_2]
