"""Certificate renewal through the user's crontab."""

import structlog

from shivish_deploy.utils.shell import CommandRunner

logger = structlog.get_logger(__name__)


def install_renewal_cron(runner: CommandRunner, command: str, schedule: str = "0 2 * * *") -> bool:
    """
    Add ``schedule command`` to the crontab unless ``command`` is already there.

    Returns:
        Whether the crontab was changed
    """
    current = runner.run(["crontab", "-l"], check=False)
    # crontab -l exits 1 when the user has no crontab yet
    lines = current.stdout.splitlines() if current.ok else []

    if any(command in line and not line.lstrip().startswith("#") for line in lines):
        logger.info("renewal_cron_present", command=command)
        return False

    lines.append(f"{schedule} {command}")
    runner.run(["crontab", "-"], input="\n".join(lines) + "\n")
    logger.info("renewal_cron_installed", schedule=schedule, command=command)
    return True
