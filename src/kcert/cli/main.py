"""kcert command-line entry point.

Usage::

    kcert -c /etc/kcert/config.yaml
    kcert -c config.yaml --validate-only
    kcert -c config.yaml run
    kcert -c config.yaml check
    kcert -c config.yaml renew default web-tls --host www.example.com --host example.com
    python -m kcert -c config.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kcert.config import KCertConfig

log = logging.getLogger(__name__)


def _get_version() -> str:
    from kcert import __version__

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kcert",
        description="kcert: ACME certificate controller for Kubernetes",
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        metavar="PATH",
        help="Path to the configuration file (YAML or JSON).",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug output (full tracebacks, verbose logging).",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        default=False,
        help="Validate the configuration file and exit.",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # run
    subparsers.add_parser("run", help="Run the controller until stopped (default)")

    # check
    subparsers.add_parser("check", help="Run one reconciliation pass and exit")

    # renew
    renew_parser = subparsers.add_parser("renew", help="Issue one certificate now")
    renew_parser.add_argument("namespace", help="Namespace of the target secret")
    renew_parser.add_argument("secret", help="Name of the target secret")
    renew_parser.add_argument(
        "--host",
        dest="hosts",
        action="append",
        required=True,
        metavar="HOST",
        help="Host to include in the certificate (repeatable).",
    )

    return parser


def _print_error(message: str) -> None:
    """Print a user-facing error to stderr."""
    print(f"kcert: error: {message}", file=sys.stderr)  # noqa: T201


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.  Parses arguments, loads config, dispatches."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- resolve config path ---
    config_path = Path(args.config)
    if not config_path.is_file():
        _print_error(f"configuration file not found: {config_path}")
        sys.exit(1)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    try:
        from kcert.config import ConfigValidationError, KCertConfig

        config = KCertConfig(config_file=config_path)
    except ConfigValidationError as exc:
        _print_error(str(exc))
        sys.exit(1)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(f"failed to load configuration: {exc}")
        sys.exit(1)

    # -- replace bootstrap logging with structured logging ---
    from kcert.logging import configure_logging

    configure_logging(config.settings.logging)
    if args.debug:
        logging.getLogger("kcert").setLevel(logging.DEBUG)

    if args.validate_only:
        _print_settings_summary(config)
        sys.exit(0)

    # -- dispatch subcommand ---
    command = args.command or "run"

    try:
        if command == "check":
            from kcert.cli.commands.check import run_check

            code = run_check(config, args)
        elif command == "renew":
            from kcert.cli.commands.renew import run_renew

            code = run_renew(config, args)
        else:
            from kcert.cli.commands.run import run_controller

            _print_settings_summary(config)
            code = run_controller(config, args)
    except Exception as exc:
        if args.debug:
            raise
        _print_error(str(exc))
        sys.exit(1)

    sys.exit(code)


def _print_settings_summary(config: KCertConfig) -> None:
    """Log a short summary of the loaded configuration."""
    s = config.settings
    log.info("Config: %s", config)
    log.info("  ACME directory:   %s", s.acme.directory_url)
    log.info("  Account email:    %s", s.acme.email or "(none)")
    log.info("  Namespace:        %s", s.controller.namespace)
    log.info(
        "  Watching:         %s",
        ", ".join(s.controller.namespace_constraints) or "all namespaces",
    )
    log.info("  Preferred type:   %s", s.challenge.preferred_type)
    log.info("  DNS provider:     %s", s.challenge.dns.provider)
    log.info("  Renewal:          %s", "auto" if s.controller.auto_renewal else "manual")
