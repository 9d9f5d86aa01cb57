"""Tests for the kcert CLI entry point (kcert.cli.main).

``main()`` and the subcommands import their collaborators inside the
function body, so patches target the *source* module
(``kcert.app.Runtime``), not ``kcert.cli.main``.
"""

from __future__ import annotations

import runpy
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import yaml

from kcert.cli.main import _build_parser, main
from kcert.core.errors import ProvisioningError, RenewalError
from kcert.services.issuance import RenewalOutcome
from kcert.services.reconcile import ReconcileReport

# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class TestParser:
    def test_config_required(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args([])

    def test_default_command_is_none(self):
        args = _build_parser().parse_args(["-c", "x.yaml"])
        assert args.command is None
        assert args.validate_only is False

    def test_renew_collects_hosts(self):
        args = _build_parser().parse_args(
            ["-c", "x.yaml", "renew", "web", "site-tls", "--host", "a.com", "--host", "b.com"],
        )
        assert (args.command, args.namespace, args.secret) == ("renew", "web", "site-tls")
        assert args.hosts == ["a.com", "b.com"]

    def test_renew_needs_a_host(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["-c", "x.yaml", "renew", "web", "site-tls"])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            _build_parser().parse_args(["--version"])
        assert exc_info.value.code == 0
        assert "kcert 1.0.0" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# main()
# ---------------------------------------------------------------------------


def _exit_code(argv) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestMain:
    def test_missing_config_file(self, tmp_path, capsys):
        assert _exit_code(["-c", str(tmp_path / "missing.yaml")]) == 1
        assert "configuration file not found" in capsys.readouterr().err

    def test_validate_only(self, tmp_config_file):
        assert _exit_code(["-c", str(tmp_config_file), "--validate-only"]) == 0

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"logging": {"format": "xml"}}), encoding="utf-8")
        assert _exit_code(["-c", str(path), "--validate-only"]) == 1
        assert "logging.format" in capsys.readouterr().err

    def test_unreadable_config(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        path.write_text("acme: [", encoding="utf-8")
        assert _exit_code(["-c", str(path)]) == 1
        assert "failed to load configuration" in capsys.readouterr().err

    @patch("kcert.app.Runtime")
    def test_run_is_default(self, runtime_cls, tmp_config_file):
        assert _exit_code(["-c", str(tmp_config_file)]) == 0
        runtime_cls.from_settings.return_value.run_forever.assert_called_once()

    @patch("kcert.app.Runtime")
    def test_check_reports_failures(self, runtime_cls, tmp_config_file):
        runtime = runtime_cls.from_settings.return_value
        report = ReconcileReport()
        report.failed.append(RenewalError("web", "a", [], ProvisioningError("boom")))
        runtime.check_once.return_value = report

        assert _exit_code(["-c", str(tmp_config_file), "check"]) == 1
        runtime.start_responder.assert_called_once()
        runtime.stop.assert_called_once()

    @patch("kcert.app.Runtime")
    def test_check_clean(self, runtime_cls, tmp_config_file):
        runtime_cls.from_settings.return_value.check_once.return_value = ReconcileReport()
        assert _exit_code(["-c", str(tmp_config_file), "check"]) == 0

    @patch("kcert.app.Runtime")
    def test_renew_success(self, runtime_cls, tmp_config_file):
        runtime = runtime_cls.from_settings.return_value
        runtime.renew.return_value = RenewalOutcome(
            "web",
            "site-tls",
            ("a.com",),
            success=True,
            not_after=datetime(2030, 1, 1, tzinfo=UTC),
        )
        code = _exit_code(["-c", str(tmp_config_file), "renew", "web", "site-tls", "--host", "a.com"])
        assert code == 0
        runtime.renew.assert_called_once_with("web", "site-tls", ["a.com"])
        runtime.stop.assert_called_once()

    @patch("kcert.app.Runtime")
    def test_renew_failure(self, runtime_cls, tmp_config_file):
        runtime = runtime_cls.from_settings.return_value
        runtime.renew.side_effect = RenewalError("web", "site-tls", ["[Error]: boom"], ProvisioningError("boom"))
        code = _exit_code(["-c", str(tmp_config_file), "renew", "web", "site-tls", "--host", "a.com"])
        assert code == 1
        runtime.stop.assert_called_once()

    @patch("kcert.app.Runtime")
    def test_unexpected_error_exits_1(self, runtime_cls, tmp_config_file, capsys):
        runtime_cls.from_settings.side_effect = RuntimeError("no kubeconfig")
        assert _exit_code(["-c", str(tmp_config_file), "check"]) == 1
        assert "no kubeconfig" in capsys.readouterr().err

    @patch("kcert.app.Runtime")
    def test_debug_reraises(self, runtime_cls, tmp_config_file):
        runtime_cls.from_settings.side_effect = RuntimeError("no kubeconfig")
        with pytest.raises(RuntimeError, match="no kubeconfig"):
            main(["-c", str(tmp_config_file), "--debug", "check"])


def test_module_entry_point():
    with patch("kcert.cli.main.main") as cli_main:
        runpy.run_module("kcert", run_name="__main__")
    cli_main.assert_called_once()


def test_run_controller_returns_zero():
    from kcert.cli.commands.run import run_controller

    with patch("kcert.app.Runtime") as runtime_cls:
        assert run_controller(MagicMock(), SimpleNamespace()) == 0
    runtime_cls.from_settings.return_value.run_forever.assert_called_once()
