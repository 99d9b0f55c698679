"""Exception types raised by deployment operations."""

from typing import Optional, Sequence


class DeployError(Exception):
    """Base class for every failure the CLI reports to the operator."""


class PrerequisiteError(DeployError):
    """A required directory, project file or tool is missing."""


class ConfigurationError(DeployError):
    """A generated or existing configuration file is unusable."""


class CommandError(DeployError):
    """An external command exited with a non-zero status."""

    def __init__(
        self,
        argv: Sequence[str],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        detail = stderr.strip() or stdout.strip()
        message = f"`{' '.join(self.argv)}` exited with status {returncode}"
        if detail:
            message = f"{message}: {detail.splitlines()[-1]}"
        super().__init__(message)


class ProbeError(DeployError):
    """A health probe could not be evaluated."""


class CertificateError(DeployError):
    """A TLS certificate could not be produced."""


class IPDetectionError(DeployError):
    """No lookup service returned a usable external address."""

    def __init__(self, tried: Sequence[str], last_error: Optional[str] = None) -> None:
        self.tried = list(tried)
        self.last_error = last_error
        message = "Could not determine external IP address"
        if tried:
            message = f"{message} (tried {', '.join(tried)})"
        super().__init__(message)
