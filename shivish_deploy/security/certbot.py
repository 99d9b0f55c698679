"""Let's Encrypt certificates through certbot's standalone authenticator."""

import shlex
import tempfile
from pathlib import Path
from typing import List, Optional

import structlog

from shivish_deploy.docker import ComposeProject
from shivish_deploy.utils.shell import CommandRunner

logger = structlog.get_logger(__name__)

HOST_NGINX_STOP = "systemctl stop nginx || true"


class CertbotClient:
    """
    certbot with port 80 handed over for the standalone challenge.

    Both a host nginx and the stack's ``nginx`` container may hold :80; when
    ``compose`` is given its nginx service is stopped as well.
    """

    def __init__(self, runner: CommandRunner, compose: Optional[ComposeProject] = None) -> None:
        self.runner = runner
        self.compose = compose

    def ensure_installed(self) -> bool:
        if self.runner.which("certbot"):
            return False
        logger.info("certbot_installing")
        self.runner.run(["apt", "update"], sudo=True)
        self.runner.run(["apt", "install", "-y", "certbot", "python3-certbot-nginx"], sudo=True)
        return True

    def _release_port_80(self) -> None:
        self.runner.run(["systemctl", "stop", "nginx"], sudo=True, check=False)
        if self.compose is not None and self.compose.path.exists():
            self.compose.stop(["nginx"], check=False)

    def obtain(self, name: str, email: Optional[str] = None) -> bool:
        """
        Request a certificate for ``name``.

        nginx is left stopped; the caller restarts the stack with the new
        configuration. Failure is reported, not raised, since callers fall
        back to another certificate source.

        Returns:
            Whether certbot issued the certificate
        """
        self._release_port_80()

        argv = [
            "certbot",
            "certonly",
            "--standalone",
            "--non-interactive",
            "--agree-tos",
            "--email",
            email or f"admin@{name}",
            "-d",
            name,
        ]
        result = self.runner.run(argv, sudo=True, check=False)
        if result.ok:
            logger.info("certificate_obtained", name=name)
            return True

        logger.warning(
            "certificate_request_failed",
            name=name,
            returncode=result.returncode,
            stderr=result.stderr.strip()[-500:],
        )
        return False

    def renew_argv(self, marker: Path) -> List[str]:
        """
        ``certbot renew`` with hooks.

        certbot runs the pre and post hooks only when a certificate is due,
        so nginx keeps serving on nights with nothing to renew. The deploy
        hook touches ``marker`` once per renewed certificate.
        """
        pre_hooks = [HOST_NGINX_STOP]
        post_hooks = []
        if self.compose is not None:
            pre_hooks.append(self.compose.shell_line("stop", "nginx"))
            post_hooks.append(self.compose.shell_line("start", "nginx"))

        argv = ["certbot", "renew", "--quiet", "--pre-hook", "; ".join(pre_hooks)]
        if post_hooks:
            argv += ["--post-hook", "; ".join(post_hooks)]
        argv += ["--deploy-hook", f"touch {shlex.quote(str(marker))}"]
        return argv

    def renew(self) -> bool:
        """
        Renew every certificate that is due.

        Returns:
            Whether at least one certificate was renewed
        """
        with tempfile.TemporaryDirectory(prefix="shivish-renew-") as tmp:
            marker = Path(tmp) / "renewed"
            result = self.runner.run(self.renew_argv(marker), sudo=True, check=False)
            renewed = marker.exists()

        if not result.ok:
            logger.warning("certificate_renewal_failed", returncode=result.returncode,
                           stderr=result.stderr.strip()[-500:])
        logger.info("certificate_renewal_checked", renewed=renewed)
        return renewed
