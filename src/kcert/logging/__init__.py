"""Logging subsystem for kcert.

Public API::

    from kcert.logging import configure_logging

    configure_logging(settings.logging)
"""

from kcert.logging.setup import configure_logging, renewal_context
from kcert.logging.transcript import TranscriptLogger

__all__ = ["TranscriptLogger", "configure_logging", "renewal_context"]
