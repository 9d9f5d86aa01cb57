"""Graceful shutdown coordinator.

Owns the process-wide stop event every loop and poll waits on, and
tracks in-flight issuances so shutdown can wait (up to a timeout) for
them to wind down after cancellation.

Usage::

    from kcert.app.shutdown import ShutdownCoordinator

    coordinator = ShutdownCoordinator(graceful_timeout=30)
    coordinator.register_signals()

    with coordinator.track("renew default/web-tls"):
        controller.renew(...)

    coordinator.initiate()  # sets the stop event, waits for tracked ops
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Generator
    from types import FrameType

log = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Coordinates graceful shutdown by tracking in-flight operations.

    Parameters
    ----------
    graceful_timeout:
        Maximum seconds to wait for in-flight operations during shutdown.
    stop_event:
        The event to set on shutdown; created when omitted.

    """

    def __init__(
        self,
        graceful_timeout: float = 30,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._graceful_timeout = graceful_timeout
        self._stop_event = stop_event or threading.Event()
        self._in_flight = 0
        self._lock = threading.Lock()
        self._done = threading.Condition(self._lock)

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    @property
    def is_shutting_down(self) -> bool:
        """True once :meth:`initiate` has been called."""
        return self._stop_event.is_set()

    @property
    def in_flight_count(self) -> int:
        """Number of currently tracked operations."""
        with self._lock:
            return self._in_flight

    @contextmanager
    def track(self, name: str) -> Generator[None, None, None]:
        """Context manager to track an in-flight operation."""
        if self._stop_event.is_set():
            log.warning("Operation '%s' starting during shutdown", name)

        with self._lock:
            self._in_flight += 1

        try:
            yield
        finally:
            with self._done:
                self._in_flight -= 1
                if self._in_flight == 0:
                    self._done.notify_all()

    def initiate(self) -> None:
        """Begin graceful shutdown.

        Sets the stop event (which cancels every poll wait) and waits up
        to ``graceful_timeout`` seconds for in-flight operations.
        """
        if self._stop_event.is_set():
            return

        self._stop_event.set()
        log.info("Graceful shutdown initiated")

        with self._done:
            deadline = time.monotonic() + self._graceful_timeout
            while self._in_flight > 0:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    log.warning(
                        "Shutdown timeout expired with %d operations in flight",
                        self._in_flight,
                    )
                    break
                self._done.wait(timeout=remaining)

        if self._in_flight == 0:
            log.info("All in-flight operations completed")

    def register_signals(self) -> None:
        """Register SIGTERM and SIGINT handlers to initiate shutdown.

        Must be called from the main thread.
        """
        try:
            signal.signal(signal.SIGTERM, self._signal_handler)
            signal.signal(signal.SIGINT, self._signal_handler)
        except (ValueError, OSError):
            log.debug("Could not register signal handlers (not main thread)")

    def _signal_handler(self, signum: int, frame: FrameType | None) -> None:
        sig_name = signal.Signals(signum).name
        log.info("Received %s, initiating graceful shutdown", sig_name)
        # Run in a thread to avoid blocking the signal handler
        threading.Thread(
            target=self.initiate,
            name="shutdown-coordinator",
            daemon=True,
        ).start()
