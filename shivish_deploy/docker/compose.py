"""docker-compose invocations for one compose file."""

import shlex
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import structlog

from shivish_deploy.utils.error_handler import RetryConfig, retry_with_backoff
from shivish_deploy.utils.shell import CommandResult, CommandRunner

logger = structlog.get_logger(__name__)


class ComposeProject:
    """
    A compose file inside a project directory.

    Every call runs ``<command> -f <compose_file> ...`` with ``project_dir``
    as working directory, so relative bind mounts such as ``./data/postgres``
    resolve the same way as when an operator runs compose by hand.
    """

    def __init__(
        self,
        runner: CommandRunner,
        project_dir: Path,
        compose_file: str = "docker-compose.yml",
        command: Optional[Sequence[str]] = None,
        retry: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.runner = runner
        self.project_dir = Path(project_dir)
        self.compose_file = compose_file
        self.command = list(command or ["docker-compose"])
        self.retry = retry or RetryConfig(max_attempts=3, initial_delay=5.0)
        self.sleep = sleep

    @property
    def path(self) -> Path:
        return self.project_dir / self.compose_file

    def _argv(self, *args: str) -> List[str]:
        return [*self.command, "-f", self.compose_file, *args]

    def shell_line(self, *args: str) -> str:
        """The invocation as a ``/bin/sh`` line, for hooks run by other tools."""
        return f"cd {shlex.quote(str(self.project_dir))} && {shlex.join(self._argv(*args))}"

    def _run(self, *args: str, check: bool = True) -> CommandResult:
        return self.runner.run(self._argv(*args), cwd=self.project_dir, check=check)

    def up(self, services: Sequence[str] = (), detach: bool = True) -> CommandResult:
        """
        Create and start ``services`` (all when empty).

        Image pulls fail transiently often enough that a failed ``up`` is
        retried with backoff before the error propagates.
        """
        args = ["up"]
        if detach:
            args.append("-d")
        logger.info("compose_up", file=self.compose_file, services=list(services) or "all")

        @retry_with_backoff(self.retry, sleep=self.sleep)
        def compose_up() -> CommandResult:
            return self._run(*args, *services)

        return compose_up()

    def down(self, check: bool = True) -> CommandResult:
        logger.info("compose_down", file=self.compose_file)
        return self._run("down", check=check)

    def ps(self, services: Sequence[str] = ()) -> CommandResult:
        return self._run("ps", *services, check=False)

    def logs(self, service: str, tail: int = 10) -> str:
        result = self._run("logs", f"--tail={tail}", service, check=False)
        return result.stdout + result.stderr

    def restart(self, services: Sequence[str] = ()) -> CommandResult:
        logger.info("compose_restart", file=self.compose_file, services=list(services) or "all")
        return self._run("restart", *services)

    def stop(self, services: Sequence[str] = (), check: bool = True) -> CommandResult:
        return self._run("stop", *services, check=check)

    def rm(self, services: Sequence[str] = (), force: bool = True, check: bool = True) -> CommandResult:
        args = ["rm"]
        if force:
            args.append("-f")
        return self._run(*args, *services, check=check)

    def config(self, check: bool = True) -> CommandResult:
        """Validate the compose file (``docker-compose config``)."""
        return self._run("config", "-q", check=check)
