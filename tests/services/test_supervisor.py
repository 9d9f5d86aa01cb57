"""Tests for kcert.services.supervisor."""

from __future__ import annotations

import threading
from unittest.mock import MagicMock, patch

import pytest

from kcert.core.errors import Cancelled
from kcert.services.supervisor import Supervisor, backoff_delay


@pytest.mark.parametrize(
    ("failures", "expected"),
    [(0, 0.0), (1, 10), (2, 20), (3, 40), (8, 1280), (9, 2000), (20, 2000)],
)
def test_backoff_delay(failures, expected):
    assert backoff_delay(failures, 10, 2000) == expected


class TestSupervisorRun:
    def _supervisor(self, notifier):
        return Supervisor(notifier, initial_backoff=1, max_backoff=3, stop_event=threading.Event())

    def test_backoff_doubles_and_caps(self):
        notifier = MagicMock()
        supervisor = self._supervisor(notifier)
        body = MagicMock(side_effect=[RuntimeError("a"), RuntimeError("b"), RuntimeError("c"), Cancelled("stop")])

        with patch.object(supervisor.stop_event, "wait", return_value=False) as wait:
            supervisor.run("loop", body)

        assert [c.kwargs["timeout"] for c in wait.call_args_list] == [1, 2, 3]
        assert notifier.loop_failed.call_count == 3
        assert notifier.loop_failed.call_args.args[0] == "loop"
        assert supervisor.failures == {"loop": 3}

    def test_success_resets_backoff(self):
        supervisor = self._supervisor(MagicMock())
        body = MagicMock(side_effect=[RuntimeError("a"), None, RuntimeError("b"), Cancelled("stop")])

        with patch.object(supervisor.stop_event, "wait", return_value=False) as wait:
            supervisor.run("loop", body)

        assert [c.kwargs["timeout"] for c in wait.call_args_list] == [1, 1]

    def test_cancelled_not_retried(self):
        notifier = MagicMock()
        supervisor = self._supervisor(notifier)
        body = MagicMock(side_effect=Cancelled("stop"))
        supervisor.run("loop", body)
        body.assert_called_once()
        notifier.loop_failed.assert_not_called()

    def test_stopped_supervisor_runs_nothing(self):
        supervisor = self._supervisor(MagicMock())
        supervisor.stop_event.set()
        body = MagicMock()
        supervisor.run("loop", body)
        body.assert_not_called()


class TestSupervisorThreads:
    def test_start_and_stop(self):
        supervisor = Supervisor(MagicMock(), stop_event=threading.Event())
        entered = threading.Event()

        def body():
            entered.set()
            supervisor.stop_event.wait(5)

        supervisor.start("loop", body)
        assert entered.wait(5)
        supervisor.stop(timeout=5)
        assert supervisor.stop_event.is_set()
