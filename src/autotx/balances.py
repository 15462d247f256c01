"""End-of-run balance reporting with bounded retry."""

import asyncio
import itertools
from collections.abc import Awaitable, Callable, Sequence
from decimal import Decimal
from typing import Any, Protocol

import httpx
import structlog

from autotx.accounts import Account
from autotx.config import get_settings
from autotx.events import BalanceLine, EventLog, balance_probe_failed
from autotx.exceptions import AutoTxError

logger = structlog.get_logger(__name__)

WEI_PER_ETHER = Decimal(10) ** 18


class LedgerError(AutoTxError):
    """A balance query failed."""


class LedgerClient(Protocol):
    """Anything that can report an address's spendable balance."""

    async def get_balance(self, address: str) -> Decimal: ...


class RpcLedgerClient:
    """Queries balances from an EVM JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self._rpc_url = rpc_url or settings.rpc_url
        self._timeout = timeout or settings.rpc_timeout
        self._client = client
        self._ids = itertools.count(1)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._get_client().post(self._rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LedgerError(f"{method} request failed: {e}") from e

        if not isinstance(body, dict):
            raise LedgerError(f"Invalid {method} response format")
        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise LedgerError(f"{method} returned an error: {message}")
        if "result" not in body:
            raise LedgerError(f"{method} response has no result")
        return body["result"]

    async def get_balance(self, address: str) -> Decimal:
        """Get the latest balance of an address in whole native units."""
        result = await self._call("eth_getBalance", [address, "latest"])
        try:
            wei = int(result, 16)
        except (TypeError, ValueError) as e:
            raise LedgerError(f"Unparseable balance: {result!r}") from e
        return Decimal(wei) / WEI_PER_ETHER


class AccountBalanceProbe:
    """Collects one balance per account, substituting zero on failure.

    Each query gets a fixed number of attempts separated by a fixed backoff.
    The probe never raises: it always returns one line per account, in input
    order, and publishes a single failure event for each account it gave up
    on.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        events: EventLog,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        settings = get_settings()
        self._ledger = ledger
        self._events = events
        self._max_attempts = max_attempts or settings.balance_max_attempts
        self._retry_delay = settings.balance_retry_delay if retry_delay is None else retry_delay
        self._sleep = sleep
        self._logger = logger.bind(component="balance_probe")

    async def get_balance(self, account: Account) -> BalanceLine:
        """Query one account, retrying up to the attempt limit."""
        last_error = ""
        for attempt in range(1, self._max_attempts + 1):
            try:
                amount = await self._ledger.get_balance(account.address)
                return BalanceLine(address=account.address, amount=amount)
            except Exception as e:
                last_error = str(e)
                self._logger.warning(
                    "balance_query_failed",
                    address=account.address,
                    attempt=attempt,
                    error=last_error,
                )
                if attempt < self._max_attempts:
                    await self._sleep(self._retry_delay)

        self._events.publish(
            balance_probe_failed(account.address, self._max_attempts, last_error)
        )
        return BalanceLine(address=account.address, amount=Decimal(0))

    async def get_balances(self, accounts: Sequence[Account]) -> list[BalanceLine]:
        """Query every account sequentially, in order."""
        return [await self.get_balance(account) for account in accounts]
