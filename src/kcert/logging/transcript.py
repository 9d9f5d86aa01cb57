"""Per-issuance transcript capture.

A :class:`TranscriptLogger` records every line logged during one
issuance as ``[Level]: message`` so the whole attempt can be attached
to a failure notification, and forwards each line to a regular logger.
"""

from __future__ import annotations

import logging
import threading


class TranscriptLogger:
    """Collect issuance log lines in order.

    Parameters
    ----------
    logger:
        Logger each line is also forwarded to.

    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger
        self._lines: list[str] = []
        self._lock = threading.Lock()

    @property
    def lines(self) -> list[str]:
        """A snapshot of the transcript so far."""
        with self._lock:
            return list(self._lines)

    def log(self, level: int, msg: str, *args: object) -> None:
        text = msg % args if args else msg
        with self._lock:
            self._lines.append(f"[{logging.getLevelName(level).title()}]: {text}")
        self._logger.log(level, msg, *args)

    def debug(self, msg: str, *args: object) -> None:
        self.log(logging.DEBUG, msg, *args)

    def info(self, msg: str, *args: object) -> None:
        self.log(logging.INFO, msg, *args)

    def warning(self, msg: str, *args: object) -> None:
        self.log(logging.WARNING, msg, *args)

    def error(self, msg: str, *args: object) -> None:
        self.log(logging.ERROR, msg, *args)
