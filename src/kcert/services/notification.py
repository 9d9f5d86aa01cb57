"""Renewal and failure notifications.

Graceful degradation:
- ``smtp.enabled=False`` → :class:`LogNotifier`, messages only logged
- SMTP failure → logged, never raised to the caller
"""

from __future__ import annotations

import abc
import logging
import smtplib
import traceback
from email.mime.text import MIMEText
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kcert.config.settings import SmtpSettings
    from kcert.core.errors import RenewalError
    from kcert.services.issuance import RenewalOutcome

log = logging.getLogger(__name__)


def renewal_subject(namespace: str, secret_name: str, *, success: bool) -> str:
    status = "succeeded" if success else "failed"
    return f"KCert renewal of secret [{namespace}:{secret_name}] {status}"


def renewal_body(
    namespace: str,
    secret_name: str,
    error: RenewalError | None = None,
) -> str:
    status = "Success" if error is None else "Failure"
    lines = [f"Renewal of secret [{namespace}:{secret_name}] completed with status: {status}"]
    if error is not None:
        lines.append(f"\nFailure kind: {error.kind.value} (retryable: {error.retryable})")
        lines.append("\nLogs:\n")
        lines.extend(error.transcript)
        lines.append(f"\nError:\n\n{error.cause}")
    return "\n".join(lines)


class Notifier(abc.ABC):
    """Best-effort delivery of renewal results.  Implementations never raise."""

    @abc.abstractmethod
    def send(self, subject: str, body: str) -> bool:
        """Deliver one message; return whether it was sent."""

    def renewal_succeeded(self, outcome: RenewalOutcome) -> bool:
        return self.send(
            renewal_subject(outcome.namespace, outcome.secret_name, success=True),
            renewal_body(outcome.namespace, outcome.secret_name),
        )

    def renewal_failed(self, error: RenewalError) -> bool:
        return self.send(
            renewal_subject(error.namespace, error.secret_name, success=False),
            renewal_body(error.namespace, error.secret_name, error),
        )

    def loop_failed(self, name: str, exc: BaseException) -> bool:
        trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return self.send(
            f"KCert background task '{name}' failed",
            f"The background task '{name}' failed and will be restarted.\n\n{trace}",
        )


class LogNotifier(Notifier):
    """Notifier used when email is disabled: writes the subject to the log."""

    def send(self, subject: str, body: str) -> bool:
        log.info("Notification: %s", subject)
        log.debug("Notification body:\n%s", body)
        return True


class SmtpNotifier(Notifier):
    """Send plain-text notifications over SMTP.

    Parameters
    ----------
    settings:
        The ``smtp`` configuration section.
    fallback_recipient:
        Used when ``smtp.to`` is empty (the ACME account email).

    """

    def __init__(self, settings: SmtpSettings, fallback_recipient: str = "") -> None:
        self._smtp = settings
        self._recipients = list(settings.to) or ([fallback_recipient] if fallback_recipient else [])

    def renewal_succeeded(self, outcome: RenewalOutcome) -> bool:
        if not self._smtp.notify_success:
            return False
        return super().renewal_succeeded(outcome)

    def send(self, subject: str, body: str) -> bool:
        """Send one message via SMTP.

        Uses per-message connections (not pooled) for simplicity and
        reliability at the expected low volume.

        Never raises. Catches all exceptions and returns a bool.
        """
        if not self._recipients:
            log.debug("No notification recipients configured")
            return False
        try:
            msg = MIMEText(body, "plain", "utf-8")
            msg["From"] = self._smtp.from_address
            msg["To"] = ", ".join(self._recipients)
            msg["Subject"] = subject

            with smtplib.SMTP(
                self._smtp.host,
                self._smtp.port,
                timeout=self._smtp.timeout_seconds,
            ) as server:
                server.ehlo()
                if self._smtp.use_tls:
                    server.starttls()
                    server.ehlo()
                if self._smtp.username:
                    server.login(self._smtp.username, self._smtp.password)
                server.sendmail(self._smtp.from_address, self._recipients, msg.as_string())

            return True
        except Exception:
            log.exception("Failed to send notification to %s", ", ".join(self._recipients))
            return False


def create_notifier(settings: SmtpSettings, fallback_recipient: str = "") -> Notifier:
    if settings.enabled:
        return SmtpNotifier(settings, fallback_recipient)
    return LogNotifier()
