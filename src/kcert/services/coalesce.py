"""Coalescing trigger for reconciliation checks.

``run_check()`` may be called any number of times from any thread and
never blocks.  Guarantees:

* with no check executing, one starts immediately;
* with a check executing, exactly one more check runs after it, and it
  covers every signal that arrived in the meantime;
* a signal stamped strictly before the start of the latest check is
  already covered by that check and is dropped.

This is a trailing-edge debounce that never drops a request whose
changes might not have been seen yet.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)


class CoalescingTrigger:
    """Single-slot gate plus the timestamp of the last accepted start.

    Parameters
    ----------
    action:
        The check to run.  Exceptions are logged and do not stop later
        checks.
    name:
        Thread name of the worker running *action*.
    clock:
        Monotonic time source (injected by tests).

    """

    def __init__(
        self,
        action: Callable[[], None],
        *,
        name: str = "reconcile-check",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._action = action
        self._name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._running = False
        self._pending = False
        self._last_start: float | None = None
        self._closed = False
        self.runs = 0

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def run_check(self, signalled_at: float | None = None) -> bool:
        """Request a check without waiting for it.

        Parameters
        ----------
        signalled_at:
            When the triggering change was observed, on this trigger's
            clock.  Defaults to now.

        Returns
        -------
        bool
            ``True`` if a check was started or scheduled, ``False`` if
            the signal was already covered or the trigger is closed.

        """
        stamp = self._clock() if signalled_at is None else signalled_at
        with self._lock:
            if self._closed:
                return False
            if self._last_start is not None and stamp < self._last_start:
                log.debug("Check signal predates the latest run, dropping")
                return False
            if self._running:
                self._pending = True
                return True
            self._running = True

        threading.Thread(target=self._loop, name=self._name, daemon=True).start()
        return True

    def _loop(self) -> None:
        while True:
            with self._lock:
                self._pending = False
                self._last_start = self._clock()
                self.runs += 1
            try:
                self._action()
            except Exception:
                log.exception("Reconciliation check failed")

            with self._lock:
                if not self._pending or self._closed:
                    self._running = False
                    self._idle.notify_all()
                    return
            log.debug("Signals arrived during the check, running once more")

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no check is running or scheduled."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._running, timeout=timeout)

    def close(self) -> None:
        """Refuse further signals; a running check is allowed to finish."""
        with self._lock:
            self._closed = True
