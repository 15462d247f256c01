"""Host-wide single instance guard backed by a marker file."""

import atexit
import os
import signal
import sys
from pathlib import Path
from types import FrameType
from typing import Any

import structlog

from autotx.config import get_settings
from autotx.exceptions import AutoTxError

logger = structlog.get_logger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class AdmissionError(AutoTxError):
    """The orchestrator may not start on this host."""


class AlreadyRunning(AdmissionError):
    """Another instance holds the lock marker."""

    def __init__(self, lock_file: Path):
        super().__init__(f"Another instance is already running (lock: {lock_file})")
        self.lock_file = lock_file


class SingleInstanceGuard:
    """Advisory presence lock: the marker file existing means "running".

    There is no staleness check. If a previous instance died without running
    its cleanup, the marker has to be removed by hand.

    Usage:
        guard = SingleInstanceGuard(Path("main.lock"))
        guard.acquire()
        try:
            ...
        finally:
            guard.release()
    """

    def __init__(self, lock_file: Path | None = None, install_signal_handlers: bool = True):
        self._lock_file = Path(lock_file or get_settings().lock_file)
        self._install_signal_handlers = install_signal_handlers
        self._held = False
        self._previous_handlers: dict[int, Any] = {}
        self._logger = logger.bind(component="instance_lock", lock_file=str(self._lock_file))

    @property
    def lock_file(self) -> Path:
        return self._lock_file

    @property
    def is_held(self) -> bool:
        """Whether this guard created the marker and has not released it."""
        return self._held

    def acquire(self) -> None:
        """Create the marker or fail if it already exists.

        Raises:
            AlreadyRunning: If the marker is present.
        """
        if self._held:
            raise AlreadyRunning(self._lock_file)

        self._lock_file.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self._lock_file), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            self._logger.warning("instance_already_running")
            raise AlreadyRunning(self._lock_file) from None

        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(str(os.getpid()))

        self._held = True
        atexit.register(self.release)
        if self._install_signal_handlers:
            self._register_signal_handlers()
        self._logger.info("instance_lock_acquired", pid=os.getpid())

    def release(self) -> None:
        """Remove the marker. Safe to call more than once."""
        if not self._held:
            return

        self._held = False
        atexit.unregister(self.release)
        self._restore_signal_handlers()
        self._lock_file.unlink(missing_ok=True)
        self._logger.info("instance_lock_released")

    def _register_signal_handlers(self) -> None:
        for signum in HANDLED_SIGNALS:
            try:
                self._previous_handlers[signum] = signal.signal(signum, self._on_signal)
            except ValueError:
                # Not the main thread; atexit still covers normal exits
                self._logger.debug("signal_handler_skipped", signal=signum)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            try:
                signal.signal(signum, handler)
            except ValueError:
                self._logger.debug("signal_handler_restore_skipped", signal=signum)
        self._previous_handlers.clear()

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        self._logger.info("termination_signal_received", signal=signal.Signals(signum).name)
        self.release()
        sys.exit(0)

    def __enter__(self) -> "SingleInstanceGuard":
        self.acquire()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()
