"""Renew subcommand: issue one certificate immediately."""

from __future__ import annotations

import logging

from kcert.core.errors import RenewalError

log = logging.getLogger(__name__)


def run_renew(config, args) -> int:
    """Issue a certificate for ``args.namespace/args.secret``."""
    from kcert.app import Runtime

    runtime = Runtime.from_settings(config.settings)
    runtime.start_responder()
    try:
        outcome = runtime.renew(args.namespace, args.secret, args.hosts)
    except RenewalError as err:
        log.error("%s", err)
        for line in err.transcript:
            log.error("  %s", line)
        return 1
    finally:
        runtime.stop()

    log.warning(
        "Saved %s/%s, valid until %s",
        outcome.namespace,
        outcome.secret_name,
        outcome.not_after,
    )
    return 0
