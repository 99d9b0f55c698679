"""Host firewall configuration through ufw."""

from typing import List, Sequence

import structlog

from shivish_deploy.utils.shell import CommandRunner

logger = structlog.get_logger(__name__)

DEFAULT_RULES: List[str] = [
    "ssh",
    "22/tcp",
    "80/tcp",
    "443/tcp",
    "8080:8099/tcp",  # microservices
    "3000/tcp",  # Grafana
    "9090/tcp",  # Prometheus
    "9001/tcp",  # MinIO Console
    "8123/tcp",  # ClickHouse
]


class Firewall:
    """ufw wrapper; every command runs with root privileges."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def ensure_installed(self) -> bool:
        """Install ufw through apt when missing. Returns True if it was installed."""
        if self.runner.which("ufw"):
            return False
        logger.info("ufw_installing")
        self.runner.run(["apt", "update"], sudo=True)
        self.runner.run(["apt", "install", "-y", "ufw"], sudo=True)
        return True

    def configure(self, rules: Sequence[str] = DEFAULT_RULES) -> None:
        """Reset ufw to deny-incoming/allow-outgoing, allow ``rules`` and enable it."""
        self.runner.run(["ufw", "--force", "reset"], sudo=True)
        self.runner.run(["ufw", "default", "deny", "incoming"], sudo=True)
        self.runner.run(["ufw", "default", "allow", "outgoing"], sudo=True)
        for rule in rules:
            self.runner.run(["ufw", "allow", rule], sudo=True)
        self.runner.run(["ufw", "--force", "enable"], sudo=True)
        logger.info("firewall_configured", rules=list(rules))

    def status(self) -> str:
        return self.runner.run(["ufw", "status"], sudo=True, check=False).stdout
