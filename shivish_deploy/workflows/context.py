"""Shared state handed to every workflow."""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

import requests

from shivish_deploy.catalog import default_stack
from shivish_deploy.cli.ui import StatusPrinter
from shivish_deploy.config import DeploySettings
from shivish_deploy.docker import ComposeProject, DockerEngine
from shivish_deploy.errors import PrerequisiteError
from shivish_deploy.health import HealthMonitor
from shivish_deploy.metrics import StackMetrics
from shivish_deploy.models import Stack
from shivish_deploy.utils.shell import CommandRunner


@dataclass
class Context:
    """Settings, collaborators and output for one CLI invocation."""

    settings: DeploySettings
    runner: CommandRunner
    console: StatusPrinter = field(default_factory=StatusPrinter)
    stack: Stack = field(default_factory=default_stack)
    session: requests.Session = field(default_factory=requests.Session)
    metrics: Optional[StackMetrics] = None
    sleep: Callable[[float], None] = time.sleep
    host_root: Path = Path("/")

    @classmethod
    def from_settings(cls, settings: DeploySettings, console: Optional[StatusPrinter] = None) -> "Context":
        runner = CommandRunner(sudo=settings.use_sudo, dry_run=settings.dry_run)
        return cls(settings=settings, runner=runner, console=console or StatusPrinter())

    @property
    def target_dir(self) -> Path:
        return self.settings.target_dir

    @property
    def compose(self) -> ComposeProject:
        """The production compose file."""
        return ComposeProject(
            self.runner,
            self.target_dir,
            self.settings.compose_file,
            self.settings.compose_command,
            sleep=self.sleep,
        )

    @property
    def dev_compose(self) -> ComposeProject:
        """The placeholder compose file."""
        return ComposeProject(
            self.runner,
            self.target_dir,
            self.settings.dev_compose_file,
            self.settings.compose_command,
            sleep=self.sleep,
        )

    @property
    def engine(self) -> DockerEngine:
        return DockerEngine(self.runner)

    def health_monitor(self, host: str = "localhost") -> HealthMonitor:
        return HealthMonitor(
            self.stack,
            self.settings,
            self.engine,
            host=host,
            session=self.session,
            metrics=self.metrics,
            meminfo_path=self.host_root / "proc/meminfo",
        )

    def require_target_dir(self) -> Path:
        if not self.target_dir.is_dir():
            raise PrerequisiteError(
                f"Target directory {self.target_dir} does not exist; "
                f"ensure the Shivish project is located at {self.target_dir}"
            )
        return self.target_dir

    def require_project_files(self) -> Path:
        """The target directory must hold the app checkout (``pubspec.yaml`` and ``microservices/``)."""
        self.require_target_dir()
        if not (self.target_dir / "pubspec.yaml").is_file() or not self.settings.microservices_dir.is_dir():
            raise PrerequisiteError(
                f"Shivish project files not found in {self.target_dir}; "
                "expected pubspec.yaml and microservices/ directory"
            )
        return self.target_dir
