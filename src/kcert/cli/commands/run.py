"""Run subcommand: start the controller."""

from __future__ import annotations

import logging

log = logging.getLogger(__name__)


def run_controller(config, args) -> int:
    """Run the controller until SIGTERM / SIGINT."""
    from kcert.app import Runtime

    runtime = Runtime.from_settings(config.settings)
    runtime.run_forever()
    return 0
