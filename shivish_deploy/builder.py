"""Build the Go microservices into ``shivish-<name>`` Docker images."""

import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import requests
import structlog

from shivish_deploy.docker.engine import DockerEngine
from shivish_deploy.errors import CommandError, PrerequisiteError
from shivish_deploy.generators.files import write_text_file
from shivish_deploy.generators.golang import render_dockerfile, render_go_mod, render_placeholder_main
from shivish_deploy.models import Microservice, Stack
from shivish_deploy.utils.shell import CommandRunner

logger = structlog.get_logger(__name__)

# Module mode, no proxy or checksum database, static binaries and no
# toolchain auto-upgrade.
GO_ENV = {
    "GOPROXY": "direct",
    "GOSUMDB": "off",
    "GONOPROXY": "",
    "GONOSUMDB": "",
    "GO111MODULE": "on",
    "CGO_ENABLED": "0",
    "GOTOOLCHAIN": "local",
    "GOFLAGS": "-mod=mod",
}

GO_INSTALL_ROOT = Path("/usr/local")
GO_BINARY = GO_INSTALL_ROOT / "go" / "bin" / "go"
GO_DOWNLOAD_URL = "https://go.dev/dl/go1.21.6.linux-amd64.tar.gz"

MINIMAL_SOURCE = "main_minimal.go"


@dataclass
class BuildResult:
    service: str
    image: str
    scaffolded: bool = False
    fallback: bool = False


class MicroserviceBuilder:
    """Compiles each service with the local Go toolchain and packages it on alpine."""

    def __init__(
        self,
        runner: CommandRunner,
        engine: DockerEngine,
        stack: Stack,
        microservices_dir: Path,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.runner = runner
        self.engine = engine
        self.stack = stack
        self.microservices_dir = Path(microservices_dir)
        self.session = session or requests.Session()
        self.go = "go"

    def ensure_go(self) -> str:
        """
        Locate or install the Go toolchain and check that it runs.

        Returns:
            The go executable used for builds
        """
        if self.runner.which("go"):
            self.go = "go"
        elif GO_BINARY.exists():
            self.go = str(GO_BINARY)
        else:
            self._install_go()
            self.go = str(GO_BINARY)

        try:
            version = self.runner.run([self.go, "version"], env=GO_ENV)
        except CommandError as e:
            raise PrerequisiteError(f"Go installation test failed: {e}") from e
        logger.info("go_ready", go=self.go, version=version.stdout.strip())
        return self.go

    def _install_go(self) -> None:
        logger.info("go_installing", url=GO_DOWNLOAD_URL)
        if self.runner.dry_run:
            return
        with tempfile.NamedTemporaryFile(suffix=".tar.gz") as archive:
            with self.session.get(GO_DOWNLOAD_URL, stream=True, timeout=60) as response:
                response.raise_for_status()
                for chunk in response.iter_content(chunk_size=1 << 20):
                    archive.write(chunk)
            archive.flush()
            self.runner.run(["rm", "-rf", str(GO_INSTALL_ROOT / "go")], sudo=True)
            self.runner.run(["tar", "-C", str(GO_INSTALL_ROOT), "-xzf", archive.name], sudo=True)

    def clean(self) -> int:
        """Remove ``go.sum`` files, Windows binaries and stale fallback sources."""
        removed = 0
        if not self.microservices_dir.is_dir():
            return removed
        for pattern in ("go.sum", "*.exe", MINIMAL_SOURCE):
            for path in self.microservices_dir.rglob(pattern):
                path.unlink(missing_ok=True)
                removed += 1
        logger.info("previous_builds_cleaned", removed=removed)
        return removed

    def _go(self, args: List[str], cwd: Path, check: bool = True):
        return self.runner.run([self.go, *args], env=GO_ENV, cwd=cwd, check=check)

    def build(self, service: Microservice) -> BuildResult:
        """Compile ``service`` and build its image."""
        service_dir = self.microservices_dir / service.name
        result = BuildResult(service=service.name, image=self.stack.image_name(service))
        log = logger.bind(service=service.name)

        if not service_dir.is_dir():
            log.warning("service_directory_missing", path=str(service_dir))
            service_dir.mkdir(parents=True, exist_ok=True)
            write_text_file(service_dir / "main.go", render_placeholder_main(service))
            write_text_file(service_dir / "go.mod", render_go_mod(service))
            self._go(["build", "-o", service.name, "."], cwd=service_dir)
            result.scaffolded = True
        else:
            go_mod = service_dir / "go.mod"
            if go_mod.exists():
                shutil.copy2(go_mod, service_dir / "go.mod.backup")
            # Standard library only; third-party requirements are dropped.
            write_text_file(go_mod, render_go_mod(service))
            (service_dir / "go.sum").unlink(missing_ok=True)

            self._go(["clean", "-modcache"], cwd=service_dir, check=False)
            self._go(["clean", "-cache"], cwd=service_dir, check=False)

            built = self._go(["build", "-o", service.name, "."], cwd=service_dir, check=False)
            if not built.ok:
                log.warning("service_build_failed_using_minimal", returncode=built.returncode)
                write_text_file(service_dir / MINIMAL_SOURCE, render_placeholder_main(service))
                self._go(["build", "-o", service.name, MINIMAL_SOURCE], cwd=service_dir)
                result.fallback = True

        write_text_file(service_dir / "Dockerfile", render_dockerfile(service))
        self.engine.build_image(result.image, service_dir)
        log.info("service_built", image=result.image, scaffolded=result.scaffolded, fallback=result.fallback)
        return result

    def build_all(self) -> List[BuildResult]:
        if not self.microservices_dir.is_dir():
            raise PrerequisiteError(
                f"Microservices directory not found: {self.microservices_dir} "
                "(expected one sub-directory per service, e.g. auth-service/)"
            )
        return [self.build(service) for service in self.stack.microservices]
