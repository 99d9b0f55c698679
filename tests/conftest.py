"""Shared fixtures for shivish-deploy tests."""

import io
import time
from pathlib import Path
from typing import Callable, List

import pytest
from rich.console import Console

from shivish_deploy.catalog import default_stack
from shivish_deploy.cli.ui import StatusPrinter
from shivish_deploy.config import DeploySettings
from shivish_deploy.workflows import Context
from tests.fakes import FakeRunner, FakeSession


@pytest.fixture
def settings(tmp_path: Path) -> DeploySettings:
    """Settings rooted in a temporary directory with tiny readiness budgets."""
    return DeploySettings(
        target_dir=tmp_path / "shivish",
        use_sudo=False,
        startup_timeout=0.02,
        nginx_timeout=0.02,
        clickhouse_timeout=0.02,
        probe_timeout=0.5,
        poll_interval=0.01,
        ip_lookup_services=["https://ip.example/a", "https://ip.example/b"],
    )


@pytest.fixture
def stack():
    return default_stack()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner().on(["hostname", "-I"], stdout="10.0.0.5 172.17.0.1\n")


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def printer() -> StatusPrinter:
    return StatusPrinter(Console(file=io.StringIO(), width=200, highlight=False))


@pytest.fixture
def output(printer) -> Callable[[], str]:
    """Everything printed to the operator so far."""
    return lambda: printer.console.file.getvalue()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def ctx(settings, runner, session, printer, stack, sleeps, tmp_path) -> Context:
    """A workflow context whose target directory exists."""
    settings.target_dir.mkdir(parents=True)

    def short_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        time.sleep(min(seconds, 0.005))

    return Context(
        settings=settings,
        runner=runner,
        console=printer,
        stack=stack,
        session=session,
        sleep=short_sleep,
        host_root=tmp_path / "host",
    )
