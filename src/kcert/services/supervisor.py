"""Restart long-running loops with exponential backoff.

Every watch loop and the periodic renewal loop runs under a
:class:`Supervisor`.  A loop body that raises is reported to the
notifier and restarted after ``initial * 2**(failures - 1)`` seconds,
capped at ``max_backoff``.  Cancellation (shutdown) is never retried.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from kcert.core.errors import Cancelled

if TYPE_CHECKING:
    from collections.abc import Callable

    from kcert.services.notification import Notifier

log = logging.getLogger(__name__)


def backoff_delay(failures: int, initial: float, maximum: float) -> float:
    """Seconds to wait after *failures* consecutive failures."""
    if failures < 1:
        return 0.0
    return min(initial * (2 ** (failures - 1)), maximum)


class Supervisor:
    """Run named loop bodies on daemon threads and keep them alive.

    Parameters
    ----------
    notifier:
        Told about every failure of a supervised body.
    initial_backoff:
        Delay after the first failure, in seconds.
    max_backoff:
        Upper bound on the delay.
    stop_event:
        Shared shutdown signal.  Setting it stops every loop.

    """

    def __init__(
        self,
        notifier: Notifier,
        *,
        initial_backoff: float = 10,
        max_backoff: float = 3600,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._notifier = notifier
        self._initial = initial_backoff
        self._max = max_backoff
        self._stop_event = stop_event or threading.Event()
        self._threads: dict[str, threading.Thread] = {}
        self.failures: dict[str, int] = {}

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def run(self, name: str, body: Callable[[], None]) -> None:
        """Run *body* repeatedly until shutdown.

        A body that returns normally (for example a watch stream that
        timed out) is restarted immediately and its failure count
        resets.  A body that raises :class:`Cancelled` ends the loop.
        """
        failures = 0
        while not self._stop_event.is_set():
            try:
                body()
                failures = 0
            except Cancelled:
                log.info("Loop '%s' cancelled", name)
                return
            except Exception as exc:
                if self._stop_event.is_set():
                    return
                failures += 1
                self.failures[name] = self.failures.get(name, 0) + 1
                delay = backoff_delay(failures, self._initial, self._max)
                log.exception(
                    "Loop '%s' failed (consecutive failures: %d), restarting in %.0fs",
                    name,
                    failures,
                    delay,
                )
                self._notifier.loop_failed(name, exc)
                self._stop_event.wait(timeout=delay)
        log.debug("Loop '%s' stopped", name)

    def start(self, name: str, body: Callable[[], None]) -> None:
        """Run *body* under :meth:`run` on a daemon thread."""
        thread = self._threads.get(name)
        if thread is not None and thread.is_alive():
            return
        thread = threading.Thread(
            target=self.run,
            args=(name, body),
            name=name,
            daemon=True,
        )
        self._threads[name] = thread
        thread.start()
        log.info("Started loop '%s'", name)

    def stop(self, timeout: float = 10) -> None:
        """Signal every loop to stop and wait for the threads."""
        self._stop_event.set()
        for name, thread in self._threads.items():
            thread.join(timeout=timeout)
            if thread.is_alive():
                log.warning("Loop '%s' did not stop within %ss", name, timeout)
        self._threads.clear()
