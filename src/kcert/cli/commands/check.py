"""Check subcommand: one reconciliation pass."""

from __future__ import annotations

import logging

log = logging.getLogger(__name__)


def run_check(config, args) -> int:
    """Reconcile every declared certificate once.

    Exits non-zero when any secret failed to renew.
    """
    from kcert.app import Runtime

    runtime = Runtime.from_settings(config.settings)
    runtime.start_responder()
    try:
        report = runtime.check_once()
    finally:
        runtime.stop()

    for outcome in report.renewed:
        log.warning("Renewed %s/%s", outcome.namespace, outcome.secret_name)
    for error in report.failed:
        log.error("%s", error)
    return 1 if report.failed else 0
