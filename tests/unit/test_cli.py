"""
Unit tests for the Typer command line.

Workflows are replaced with mocks; these tests cover option parsing, the
shared context and error reporting.
"""

from unittest.mock import Mock

import pytest
from prometheus_client.parser import text_string_to_metric_families
from typer.testing import CliRunner

from shivish_deploy import workflows
from shivish_deploy.cli.main import app
from shivish_deploy.config import reset_settings
from shivish_deploy.errors import IPDetectionError, PrerequisiteError
from shivish_deploy.models import HealthReport, HealthStatus, ProbeMode, ProbeResult


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    monkeypatch.setenv("SHIVISH_USE_SUDO", "false")
    monkeypatch.setenv("COLUMNS", "250")
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def cli():
    return CliRunner()


def _patch(monkeypatch, name, return_value=None, side_effect=None):
    mock = Mock(return_value=return_value, side_effect=side_effect)
    monkeypatch.setattr(workflows, name, mock)
    return mock


class TestGlobalOptions:
    """Options applied before any command runs"""

    def test_no_args_shows_help(self, cli):
        result = cli.invoke(app, [])

        assert "setup" in result.output
        assert "renew-certs" in result.output

    def test_target_dir_and_dry_run(self, cli, monkeypatch, tmp_path):
        setup = _patch(monkeypatch, "setup_production", HealthReport())

        result = cli.invoke(app, ["--target-dir", str(tmp_path), "--dry-run", "setup", "--skip-build"])

        assert result.exit_code == 0, result.output
        context = setup.call_args.args[0]
        assert context.settings.target_dir == tmp_path
        assert context.settings.dry_run is True
        assert context.runner.dry_run is True
        assert context.runner.use_sudo is False
        assert setup.call_args.kwargs == {"skip_build": True}

    def test_log_level_upper_cased(self, cli, monkeypatch):
        network = _patch(monkeypatch, "check_network")

        result = cli.invoke(app, ["--log-level", "debug", "network"])

        assert result.exit_code == 0, result.output
        assert network.call_args.args[0].settings.log_level == "DEBUG"


class TestErrors:
    def test_deploy_error_exits_1(self, cli, monkeypatch):
        _patch(monkeypatch, "secure_production", side_effect=IPDetectionError(["https://ifconfig.me"]))

        result = cli.invoke(app, ["secure"])

        assert result.exit_code == 1
        assert "Could not determine external IP" in result.output

    def test_prerequisite_error(self, cli, monkeypatch):
        _patch(monkeypatch, "fix_port_conflicts", side_effect=PrerequisiteError("pubspec.yaml missing"))

        result = cli.invoke(app, ["fix-ports"])

        assert result.exit_code == 1
        assert "pubspec.yaml missing" in result.output


class TestCommands:
    """Each command reaches its workflow"""

    @pytest.mark.parametrize(
        "command, workflow",
        [
            ("activate", "activate_services"),
            ("fix-nginx-ssl", "fix_nginx_ssl"),
            ("network", "check_network"),
            ("renew-certs", "renew_certificates"),
        ],
    )
    def test_dispatch(self, cli, monkeypatch, command, workflow):
        mock = _patch(monkeypatch, workflow)

        result = cli.invoke(app, [command])

        assert result.exit_code == 0, result.output
        mock.assert_called_once()

    def test_urls_http_only(self, cli, monkeypatch):
        urls = _patch(monkeypatch, "urls", "203.0.113.7")

        cli.invoke(app, ["urls", "--host", "203.0.113.7", "--http-only"])

        assert urls.call_args.kwargs == {"host": "203.0.113.7", "ssl": False}

    def test_generate_lists_files(self, cli, monkeypatch, tmp_path):
        _patch(monkeypatch, "write_configuration", [tmp_path / ".env"])

        result = cli.invoke(app, ["generate"])

        assert result.exit_code == 0, result.output
        assert f"Wrote {tmp_path / '.env'}" in result.output

    def test_ports_kill_needs_confirmation(self, cli, monkeypatch):
        check_ports = _patch(monkeypatch, "check_ports", {})

        result = cli.invoke(app, ["ports", "--kill"], input="n\n")

        assert result.exit_code == 1
        check_ports.assert_not_called()

    def test_ports_kill_confirmed(self, cli, monkeypatch):
        check_ports = _patch(monkeypatch, "check_ports", {})

        result = cli.invoke(app, ["ports", "--kill", "--yes"])

        assert result.exit_code == 0, result.output
        assert check_ports.call_args.kwargs == {"kill": True}


class TestMonitorCommand:
    """Monitoring options"""

    def test_mode_option(self, cli, monkeypatch):
        monitor = _patch(monkeypatch, "monitor", HealthReport())

        result = cli.invoke(app, ["monitor", "--quick", "--mode", "placeholder"])

        assert result.exit_code == 0, result.output
        assert monitor.call_args.kwargs == {"quick": True, "mode": ProbeMode.PLACEHOLDER}

    def test_metrics_file(self, cli, monkeypatch, tmp_path):
        def fake_monitor(context, quick, mode):
            context.metrics.record(
                ProbeResult(name="Grafana", target="http://localhost:3000/", status=HealthStatus.HEALTHY)
            )
            return HealthReport()

        monkeypatch.setattr(workflows, "monitor", fake_monitor)
        metrics_file = tmp_path / "textfile" / "shivish.prom"

        result = cli.invoke(app, ["monitor", "--metrics-file", str(metrics_file)])

        assert result.exit_code == 0, result.output
        samples = [
            (sample.labels, sample.value)
            for family in text_string_to_metric_families(metrics_file.read_text())
            for sample in family.samples
            if sample.name == "shivish_service_up"
        ]
        assert samples == [({"service": "Grafana", "kind": "http"}, 1.0)]

    def test_metrics_port(self, cli, monkeypatch):
        _patch(monkeypatch, "monitor", HealthReport())
        serve = Mock()
        monkeypatch.setattr("shivish_deploy.cli.main.StackMetrics.serve", serve)

        result = cli.invoke(app, ["monitor", "--metrics-port", "9108"])

        assert result.exit_code == 0, result.output
        serve.assert_called_once_with(9108)
        assert "Serving metrics on :9108/metrics" in result.output

    def test_watch_stops_on_interrupt(self, cli, monkeypatch):
        monitor = _patch(monkeypatch, "monitor", side_effect=[HealthReport(), KeyboardInterrupt()])
        sleep = Mock()
        from_settings = workflows.Context.from_settings

        def with_fake_sleep(settings, console=None):
            context = from_settings(settings, console)
            context.sleep = sleep
            return context

        monkeypatch.setattr(workflows.Context, "from_settings", staticmethod(with_fake_sleep))

        result = cli.invoke(app, ["monitor", "--watch", "--interval", "5"])

        assert result.exit_code == 0, result.output
        assert monitor.call_count == 2
        sleep.assert_called_once_with(5.0)
        assert "Monitoring stopped" in result.output
