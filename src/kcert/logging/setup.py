"""Structured logging configuration for kcert.

Provides JSON and text formatters, a renewal-context filter that
injects the namespace and secret of the issuance running on the
current thread into every log record, and a one-call
``configure_logging`` function driven by config settings.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Generator

    from kcert.config.settings import LoggingSettings

# Attributes that are part of the standard LogRecord; everything
# else is considered "extra" and gets included in structured output.
_STANDARD_ATTRS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
        # Our own well-known context attributes (handled explicitly):
        "namespace",
        "secret",
    }
)

_context = threading.local()


@contextmanager
def renewal_context(namespace: str, secret: str) -> Generator[None, None, None]:
    """Tag every record logged on this thread with the target secret."""
    previous = getattr(_context, "value", None)
    _context.value = (namespace, secret)
    try:
        yield
    finally:
        _context.value = previous


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter for production logging.

    Every record becomes a single JSON object on one line containing
    the standard fields plus any *extra* attributes passed by the
    caller or injected by filters.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        data: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        namespace = getattr(record, "namespace", None)
        if namespace not in (None, "-"):
            data["namespace"] = namespace
            data["secret"] = getattr(record, "secret", None)

        # Caller-supplied extra fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development / console use."""

    _FMT = "%(asctime)s %(levelname)-8s [%(namespace)s/%(secret)s] %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class RenewalContextFilter(logging.Filter):
    """Inject the current issuance target into every log record.

    Adds ``namespace`` and ``secret`` from :func:`renewal_context`
    when one is active on the logging thread, otherwise ``"-"``.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        ctx = getattr(_context, "value", None)
        if not hasattr(record, "namespace"):
            record.namespace = ctx[0] if ctx else "-"  # type: ignore[attr-defined]
        if not hasattr(record, "secret"):
            record.secret = ctx[1] if ctx else "-"  # type: ignore[attr-defined]
        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Configure the ``kcert`` logger hierarchy from settings.

    Replaces any bootstrap handlers with properly formatted output.

    Returns the root ``kcert`` logger.
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    root = logging.getLogger("kcert")
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(RenewalContextFilter())
    root.addHandler(console)

    # ── Quieten noisy third-party loggers ───────────────────────────
    for lib in ("urllib3", "botocore", "boto3", "kubernetes", "werkzeug"):
        logging.getLogger(lib).setLevel(logging.WARNING)

    return root
