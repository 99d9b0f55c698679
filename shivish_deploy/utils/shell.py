"""Thin wrapper around ``subprocess`` for the external tools we drive.

Every docker, ufw, certbot, crontab and go invocation goes through
``CommandRunner`` so that commands are logged the same way, ``sudo`` is added
in one place and tests can substitute a recording fake.
"""

import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

import structlog

from shivish_deploy.errors import CommandError

logger = structlog.get_logger(__name__)

PathLike = Union[str, Path]


@dataclass
class CommandResult:
    """Outcome of a finished command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Run external commands, optionally through sudo or as a dry run."""

    def __init__(self, sudo: bool = True, dry_run: bool = False) -> None:
        """
        Args:
            sudo: Prefix privileged commands with ``sudo`` when not running as root
            dry_run: Log commands without executing them
        """
        self.use_sudo = sudo and _effective_uid() != 0
        self.dry_run = dry_run

    def which(self, tool: str) -> bool:
        """Return whether ``tool`` is on PATH."""
        return shutil.which(tool) is not None

    def run(
        self,
        argv: Sequence[str],
        *,
        sudo: bool = False,
        check: bool = True,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[PathLike] = None,
        input: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Execute a command and capture its output.

        Args:
            argv: Program and arguments
            sudo: Whether the command needs root privileges
            check: Raise ``CommandError`` when the command fails
            env: Extra environment variables merged over the current ones
            cwd: Working directory
            input: Text written to the command's stdin
            timeout: Seconds before the command is killed

        Returns:
            CommandResult with decoded stdout/stderr
        """
        full_argv = list(argv)
        if sudo and self.use_sudo:
            full_argv = ["sudo", *full_argv]

        log = logger.bind(command=" ".join(full_argv), cwd=str(cwd) if cwd else None)

        if self.dry_run:
            log.info("command_skipped_dry_run")
            return CommandResult(argv=full_argv, returncode=0)

        merged_env = None
        if env:
            merged_env = {**os.environ, **env}

        log.debug("command_starting")
        try:
            completed = subprocess.run(
                full_argv,
                capture_output=True,
                text=True,
                env=merged_env,
                cwd=str(cwd) if cwd else None,
                input=input,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            log.error("command_not_found", error=str(e))
            if check:
                raise CommandError(full_argv, 127, stderr=str(e)) from e
            return CommandResult(argv=full_argv, returncode=127, stderr=str(e))
        except subprocess.TimeoutExpired as e:
            log.error("command_timed_out", timeout=timeout)
            if check:
                raise CommandError(full_argv, 124, stderr=f"timed out after {timeout}s") from e
            return CommandResult(argv=full_argv, returncode=124, stderr=f"timed out after {timeout}s")

        result = CommandResult(
            argv=full_argv,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

        if result.ok:
            log.debug("command_finished")
        else:
            log.warning("command_failed", returncode=result.returncode, stderr=result.stderr.strip()[-500:])
            if check:
                raise CommandError(full_argv, result.returncode, result.stdout, result.stderr)

        return result


def _effective_uid() -> int:
    geteuid = getattr(os, "geteuid", None)
    return geteuid() if geteuid else 0
