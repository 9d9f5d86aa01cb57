"""Tests for kcert.services.notification."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from email import message_from_string
from unittest.mock import MagicMock, patch

import pytest

from kcert.config.settings import build_settings
from kcert.core.errors import ProvisioningError, RenewalError
from kcert.services.issuance import RenewalOutcome
from kcert.services.notification import (
    LogNotifier,
    SmtpNotifier,
    create_notifier,
    renewal_body,
    renewal_subject,
)


def _smtp_settings(**overrides):
    data = {
        "enabled": True,
        "host": "mail.test.com",
        "port": 25,
        "from_address": "kcert@test.com",
        "to": ["ops@test.com"],
        "use_tls": False,
        "timeout_seconds": 10,
    }
    data.update(overrides)
    return build_settings({"smtp": data}).smtp


def _failure():
    return RenewalError(
        "web",
        "site-tls",
        ["[Info]: Renewing secret web/site-tls", "[Error]: Renewal failed: no zone"],
        ProvisioningError("no zone", retryable=False),
    )


def _success():
    return RenewalOutcome("web", "site-tls", ("a.com",), success=True, not_after=datetime(2030, 1, 1, tzinfo=UTC))


@pytest.fixture()
def smtp_server():
    with patch("kcert.services.notification.smtplib.SMTP") as smtp_class:
        server = MagicMock()
        smtp_class.return_value.__enter__ = MagicMock(return_value=server)
        smtp_class.return_value.__exit__ = MagicMock(return_value=False)
        yield smtp_class, server


class TestMessageText:
    def test_subjects(self):
        assert renewal_subject("web", "tls", success=True) == "KCert renewal of secret [web:tls] succeeded"
        assert renewal_subject("web", "tls", success=False) == "KCert renewal of secret [web:tls] failed"

    def test_failure_body_has_transcript_and_error(self):
        body = renewal_body("web", "site-tls", _failure())
        assert "completed with status: Failure" in body
        assert "Failure kind: provisioning (retryable: False)" in body
        assert "[Error]: Renewal failed: no zone" in body
        assert body.endswith("no zone")

    def test_success_body(self):
        assert renewal_body("web", "site-tls") == (
            "Renewal of secret [web:site-tls] completed with status: Success"
        )


class TestSmtpNotifier:
    def test_failure_sent(self, smtp_server):
        smtp_class, server = smtp_server
        notifier = SmtpNotifier(_smtp_settings())

        assert notifier.renewal_failed(_failure()) is True

        smtp_class.assert_called_once_with("mail.test.com", 25, timeout=10)
        from_addr, to_addrs, raw = server.sendmail.call_args.args
        assert from_addr == "kcert@test.com"
        assert to_addrs == ["ops@test.com"]
        message = message_from_string(raw)
        assert message["Subject"] == "KCert renewal of secret [web:site-tls] failed"
        server.starttls.assert_not_called()
        server.login.assert_not_called()

    def test_tls_and_login(self, smtp_server):
        _, server = smtp_server
        notifier = SmtpNotifier(_smtp_settings(use_tls=True, username="user", password="pw"))
        assert notifier.send("s", "b") is True
        server.starttls.assert_called_once()
        assert server.ehlo.call_count == 2
        server.login.assert_called_once_with("user", "pw")

    def test_success_suppressed_when_disabled(self, smtp_server):
        smtp_class, _ = smtp_server
        notifier = SmtpNotifier(_smtp_settings(notify_success=False))
        assert notifier.renewal_succeeded(_success()) is False
        smtp_class.assert_not_called()

    def test_fallback_recipient(self, smtp_server):
        _, server = smtp_server
        notifier = SmtpNotifier(_smtp_settings(to=[]), fallback_recipient="acme@test.com")
        notifier.send("s", "b")
        assert server.sendmail.call_args.args[1] == ["acme@test.com"]

    def test_no_recipients(self, smtp_server):
        smtp_class, _ = smtp_server
        assert SmtpNotifier(_smtp_settings(to=[])).send("s", "b") is False
        smtp_class.assert_not_called()

    def test_delivery_failure_never_raises(self, smtp_server, caplog):
        smtp_class, _ = smtp_server
        smtp_class.side_effect = ConnectionRefusedError("Connection refused")
        with caplog.at_level(logging.ERROR, logger="kcert.services.notification"):
            assert SmtpNotifier(_smtp_settings()).send("s", "b") is False
        assert "Failed to send notification" in caplog.text

    def test_loop_failure_includes_traceback(self, smtp_server):
        _, server = smtp_server
        try:
            raise RuntimeError("watch stream broke")
        except RuntimeError as exc:
            error = exc
        SmtpNotifier(_smtp_settings()).loop_failed("watch-ingresses-all", error)
        raw = server.sendmail.call_args.args[2]
        message = message_from_string(raw)
        assert message["Subject"] == "KCert background task 'watch-ingresses-all' failed"
        assert "watch stream broke" in message.get_payload(decode=True).decode("utf-8")


class TestFactory:
    def test_disabled_uses_log_notifier(self, caplog):
        notifier = create_notifier(_smtp_settings(enabled=False))
        assert isinstance(notifier, LogNotifier)
        with caplog.at_level(logging.INFO, logger="kcert.services.notification"):
            assert notifier.renewal_failed(_failure()) is True
        assert "KCert renewal of secret [web:site-tls] failed" in caplog.text

    def test_enabled_uses_smtp(self):
        assert isinstance(create_notifier(_smtp_settings()), SmtpNotifier)
