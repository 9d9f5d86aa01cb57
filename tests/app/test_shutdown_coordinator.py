"""Unit tests for kcert.app.shutdown: shutdown coordinator."""

from __future__ import annotations

import signal
import threading
import time
from unittest.mock import patch

from kcert.app.shutdown import ShutdownCoordinator

# ---------------------------------------------------------------------------
# TestShutdownCoordinator
# ---------------------------------------------------------------------------


class TestShutdownCoordinator:
    def test_is_shutting_down_starts_false(self):
        sc = ShutdownCoordinator()
        assert sc.is_shutting_down is False

    def test_initiate_sets_stop_event(self):
        stop = threading.Event()
        sc = ShutdownCoordinator(stop_event=stop)
        sc.initiate()
        assert sc.is_shutting_down is True
        assert stop.is_set()

    def test_double_initiate_is_idempotent(self):
        sc = ShutdownCoordinator()
        sc.initiate()
        sc.initiate()
        assert sc.is_shutting_down is True

    def test_track_increments_decrements(self):
        sc = ShutdownCoordinator()
        assert sc.in_flight_count == 0
        with sc.track("renew web/tls"):
            assert sc.in_flight_count == 1
        assert sc.in_flight_count == 0

    def test_track_released_on_error(self):
        sc = ShutdownCoordinator()
        try:
            with sc.track("renew web/tls"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert sc.in_flight_count == 0

    def test_shutdown_waits_for_tracked(self):
        sc = ShutdownCoordinator(graceful_timeout=5)
        started = threading.Event()
        completed = threading.Event()

        def slow_op():
            with sc.track("slow"):
                started.set()
                sc.stop_event.wait(5)
                time.sleep(0.05)
            completed.set()

        t = threading.Thread(target=slow_op)
        t.start()
        started.wait(5)
        sc.initiate()
        assert completed.is_set()
        assert sc.in_flight_count == 0
        t.join(5)

    def test_shutdown_timeout_expires(self, caplog):
        sc = ShutdownCoordinator(graceful_timeout=0)
        started = threading.Event()
        release = threading.Event()

        def blocking_op():
            with sc.track("blocker"):
                started.set()
                release.wait(timeout=5)

        t = threading.Thread(target=blocking_op, daemon=True)
        t.start()
        started.wait(timeout=2)

        with caplog.at_level("WARNING", logger="kcert.app.shutdown"):
            sc.initiate()
        assert "1 operations in flight" in caplog.text

        release.set()
        t.join(timeout=2)


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


class TestSignals:
    def test_register_signals(self):
        sc = ShutdownCoordinator()
        with patch("kcert.app.shutdown.signal.signal") as register:
            sc.register_signals()
        registered = {c.args[0] for c in register.call_args_list}
        assert registered == {signal.SIGTERM, signal.SIGINT}

    def test_register_outside_main_thread_is_tolerated(self):
        sc = ShutdownCoordinator()
        with patch("kcert.app.shutdown.signal.signal", side_effect=ValueError("not main thread")):
            sc.register_signals()

    def test_signal_handler_initiates(self):
        sc = ShutdownCoordinator()
        sc._signal_handler(signal.SIGTERM, None)
        assert sc.stop_event.wait(5)
