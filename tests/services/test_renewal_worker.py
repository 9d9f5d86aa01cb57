"""Tests for kcert.services.renewal_worker."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

from kcert.services.renewal_worker import RenewalWorker


class TestRenewalWorker:
    def test_disabled_never_starts(self):
        trigger = MagicMock()
        worker = RenewalWorker(trigger, enabled=False)
        worker.start()
        assert worker._thread is None
        trigger.run_check.assert_not_called()

    def test_checks_once_per_interval(self):
        stop = threading.Event()
        trigger = MagicMock()
        trigger.run_check.side_effect = lambda: stop.set() if trigger.run_check.call_count >= 2 else None
        worker = RenewalWorker(trigger, interval_hours=0, stop_event=stop)
        worker._run()
        assert trigger.run_check.call_count == 2

    def test_start_checks_immediately(self):
        checked = threading.Event()
        trigger = MagicMock()
        trigger.run_check.side_effect = checked.set
        worker = RenewalWorker(trigger, interval_hours=24, stop_event=threading.Event())
        worker.start()
        assert checked.wait(5)
        worker.stop()
        assert not worker._thread.is_alive()
