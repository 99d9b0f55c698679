"""Plain ``docker`` commands: image builds, exec and resource stats."""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

import structlog

from shivish_deploy.utils.shell import CommandResult, CommandRunner

logger = structlog.get_logger(__name__)

STATS_FORMAT = "{{.Container}}\t{{.Name}}\t{{.CPUPerc}}\t{{.MemUsage}}\t{{.MemPerc}}"


@dataclass
class ContainerStats:
    """One line of ``docker stats --no-stream``."""

    container: str
    name: str
    cpu_percent: str
    mem_usage: str
    mem_percent: str


class DockerEngine:
    """Commands against the local Docker daemon."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def build_image(self, tag: str, context: Path) -> CommandResult:
        logger.info("docker_build", tag=tag, context=str(context))
        return self.runner.run(["docker", "build", "-t", tag, "."], cwd=context)

    def exec(self, container: str, command: Sequence[str], check: bool = False) -> CommandResult:
        return self.runner.run(["docker", "exec", container, *command], check=check)

    def stats(self) -> List[ContainerStats]:
        """Snapshot of CPU and memory use per running container."""
        result = self.runner.run(
            ["docker", "stats", "--no-stream", "--format", STATS_FORMAT],
            check=False,
        )
        if not result.ok:
            logger.warning("docker_stats_unavailable", returncode=result.returncode)
            return []

        stats = []
        for line in result.stdout.splitlines():
            fields = line.split("\t")
            if len(fields) != 5:
                continue
            stats.append(ContainerStats(*(field.strip() for field in fields)))
        return stats
