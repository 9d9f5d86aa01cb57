"""Periodic renewal worker.

Daemon thread that requests a reconciliation check every
``renewal_check_hours`` so certificates approaching expiry are renewed
even when no ingress or config map changes.

Usage::

    worker = RenewalWorker(trigger, interval_hours=6)
    worker.start()
    ...
    worker.stop()
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kcert.services.coalesce import CoalescingTrigger

log = logging.getLogger(__name__)


class RenewalWorker:
    """Daemon thread that signals the reconciliation trigger on a timer.

    Parameters
    ----------
    trigger:
        The coalescing trigger of the reconciliation controller.
    interval_hours:
        Hours between checks.
    enabled:
        ``kcert.auto_renewal``; when false, :meth:`start` is a no-op.
    stop_event:
        Shared shutdown signal.

    """

    def __init__(
        self,
        trigger: CoalescingTrigger,
        interval_hours: float = 6,
        *,
        enabled: bool = True,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._trigger = trigger
        self._interval_seconds = interval_hours * 3600
        self._enabled = enabled
        self._stop_event = stop_event or threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the background worker thread."""
        if not self._enabled:
            log.info("Automatic renewal disabled")
            return
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self._run,
            name="renewal-worker",
            daemon=True,
        )
        self._thread.start()
        log.info("Renewal worker started (interval=%.1fh)", self._interval_seconds / 3600)

    def stop(self) -> None:
        """Signal the worker to stop and wait for it."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            log.info("Renewal worker stopped")

    def _run(self) -> None:
        """Main worker loop: check at start-up, then once per interval."""
        while not self._stop_event.is_set():
            log.debug("Scheduled renewal check")
            self._trigger.run_check()
            self._stop_event.wait(timeout=self._interval_seconds)
