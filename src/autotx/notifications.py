"""Best-effort Telegram notifications for run progress."""

import asyncio
from decimal import Decimal

import httpx
import structlog

from autotx.config import get_settings
from autotx.events import AccountEvent, EventType, RunEvent, RunFinishedEvent, TaskEvent

logger = structlog.get_logger(__name__)


def format_amount(amount: Decimal, places: int = 4) -> str:
    """Render a balance with a fixed number of decimal places."""
    return f"{amount:.{places}f}"


def format_event(event: RunEvent, symbol: str = "") -> str | None:
    """Render the human-readable notification text for an event.

    Returns:
        The message, or None for events that are not sent to the chat.
    """
    event_type = event.event_type

    if event_type == EventType.ACCOUNT_STARTED and isinstance(event, AccountEvent):
        return (
            f"Starting wallet {event.account_number}/{event.total_accounts}\n"
            f"{event.address}"
        )
    elif event_type == EventType.TASK_COMPLETED and isinstance(event, TaskEvent):
        return f"{event.task_name} [Wallet {event.account_number}] finished"
    elif event_type == EventType.TASK_FAILED and isinstance(event, TaskEvent):
        return f"{event.task_name} [Wallet {event.account_number}] error"
    elif event_type == EventType.ACCOUNT_FINISHED and isinstance(event, AccountEvent):
        total = event.data.get("total_succeeded", 0)
        return f"Wallet {event.address} finished.\nTX: {total} total"
    elif event_type == EventType.RUN_FINISHED and isinstance(event, RunFinishedEvent):
        unit = event.symbol or symbol
        lines = [
            "All transactions finished!",
            "",
            f"Total TX: {event.total_succeeded}",
            "",
            "Wallet balances:",
        ]
        for index, line in enumerate(event.balances, start=1):
            lines.append(f"Wallet {index}: {line.address}")
            lines.append(f"   {format_amount(line.amount)} {unit}".rstrip())
        return "\n".join(lines)
    elif event_type == EventType.BALANCE_PROBE_FAILED:
        return (
            f"Failed to fetch balance for {event.data.get('address')} "
            f"after {event.data.get('attempts')} attempts."
        )
    elif event_type == EventType.RUN_FAILED:
        prefix = "initial" if event.data.get("initial") else "daily"
        return f"Error during {prefix} run:\n{event.data.get('error', '')}"

    return None


class TelegramNotifier:
    """Sends text messages to one Telegram chat, never raising to callers.

    Delivery is fire-and-forget: :meth:`notify` schedules the HTTP call on the
    running loop and returns at once. Failed deliveries are logged locally
    and dropped without retry.

    The notifier is also an event subscriber; calling it with a
    :class:`RunEvent` formats and sends the matching message.
    """

    def __init__(
        self,
        bot_token: str | None = None,
        chat_id: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
        symbol: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        if bot_token is None and settings.telegram_bot_token is not None:
            bot_token = settings.telegram_bot_token.get_secret_value()
        self._bot_token = bot_token
        self._chat_id = chat_id or settings.telegram_chat_id
        self._api_url = (api_url or settings.telegram_api_url).rstrip("/")
        self._timeout = timeout or settings.notify_timeout
        self._symbol = symbol if symbol is not None else settings.balance_symbol

        self._client = client
        self._pending: set[asyncio.Task[bool]] = set()
        self._logger = logger.bind(component="telegram_notifier")

        if not self.enabled:
            self._logger.info("telegram_disabled", reason="missing token or chat id")

    @property
    def enabled(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._api_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def send(self, text: str) -> bool:
        """Deliver one message and wait for the outcome.

        Returns:
            True if Telegram accepted the message. Errors are logged, not raised.
        """
        if not self.enabled:
            self._logger.debug("notification_skipped", text=text)
            return False

        try:
            response = await self._get_client().post(
                f"/bot{self._bot_token}/sendMessage",
                data={"chat_id": self._chat_id, "text": text},
            )
        except httpx.HTTPError as e:
            self._logger.error("telegram_connection_error", error=str(e))
            return False

        if response.status_code != 200:
            self._logger.error("telegram_send_failed", status_code=response.status_code)
            return False

        self._logger.debug("telegram_sent", chars=len(text))
        return True

    def notify(self, text: str) -> None:
        """Schedule delivery of a message without waiting for it."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.warning("notification_dropped", reason="no running event loop")
            return

        task = loop.create_task(self.send(text))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def __call__(self, event: RunEvent) -> None:
        text = format_event(event, self._symbol)
        if text is not None:
            self.notify(text)

    async def flush(self) -> None:
        """Wait for every scheduled delivery to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        """Flush pending deliveries and close the HTTP client."""
        await self.flush()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
