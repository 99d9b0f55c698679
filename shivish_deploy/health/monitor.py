"""Grouped health checks and host resource snapshots."""

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import requests
import structlog

from shivish_deploy.config import DeploySettings
from shivish_deploy.docker.engine import ContainerStats, DockerEngine
from shivish_deploy.health.probes import HttpProbe, PostgresProbe, Probe, RedisProbe
from shivish_deploy.metrics.prometheus_metrics import StackMetrics
from shivish_deploy.models import HealthReport, ProbeMode, Stack

logger = structlog.get_logger(__name__)

DEFAULT_GATEWAY_CHECKS = ("auth-service", "user-service", "api-gateway")


@dataclass
class SystemResources:
    """Memory and disk usage of the host, in bytes."""

    mem_total: int
    mem_available: int
    swap_total: int
    swap_free: int
    disk_path: str
    disk_total: int
    disk_used: int
    disk_free: int

    @property
    def mem_used(self) -> int:
        return self.mem_total - self.mem_available

    @property
    def mem_percent(self) -> float:
        return round(100.0 * self.mem_used / self.mem_total, 1) if self.mem_total else 0.0

    @property
    def disk_percent(self) -> float:
        return round(100.0 * self.disk_used / self.disk_total, 1) if self.disk_total else 0.0


def read_meminfo(path: Path = Path("/proc/meminfo")) -> Dict[str, int]:
    """Parse ``/proc/meminfo`` into bytes per field."""
    values: Dict[str, int] = {}
    try:
        text = Path(path).read_text()
    except OSError:
        return values
    for line in text.splitlines():
        key, _, rest = line.partition(":")
        parts = rest.split()
        if not parts or not parts[0].isdigit():
            continue
        factor = 1024 if len(parts) > 1 and parts[1].lower() == "kb" else 1
        values[key.strip()] = int(parts[0]) * factor
    return values


class HealthMonitor:
    """Builds probes for a stack and runs them."""

    def __init__(
        self,
        stack: Stack,
        settings: DeploySettings,
        engine: Optional[DockerEngine] = None,
        *,
        host: str = "localhost",
        session: Optional[requests.Session] = None,
        metrics: Optional[StackMetrics] = None,
        meminfo_path: Path = Path("/proc/meminfo"),
    ) -> None:
        self.stack = stack
        self.settings = settings
        self.engine = engine
        self.host = host
        self.session = session or requests.Session()
        self.metrics = metrics
        self.meminfo_path = meminfo_path

    def _http(self, name: str, url: str, **kwargs) -> HttpProbe:
        return HttpProbe(name, url, timeout=self.settings.probe_timeout, session=self.session, **kwargs)

    def microservice_probes(
        self, mode: ProbeMode = ProbeMode.PRODUCTION, names: Optional[Sequence[str]] = None
    ) -> List[Probe]:
        """
        Direct probes of every microservice on its published port.

        Production probes hit the health endpoint on the production port;
        placeholder containers only serve ``/`` on ports 8080-8090.
        """
        probes: List[Probe] = []
        for service in self.stack.microservices:
            if names is not None and service.name not in names:
                continue
            if mode == ProbeMode.PRODUCTION:
                url = f"http://{self.host}:{service.host_port}{service.health_path}"
            else:
                url = f"http://{self.host}:{service.placeholder_port}/"
            probes.append(self._http(service.display_name, url))
        return probes

    def core_probes(self, names: Optional[Sequence[str]] = None) -> List[Probe]:
        return [
            self._http(core.display_name, f"http://{self.host}:{core.port}{core.path}")
            for core in self.stack.core_services
            if names is None or core.name in names
        ]

    def database_probes(self) -> List[Probe]:
        pg = self.settings.postgres
        probes: List[Probe] = [
            PostgresProbe(
                host=self.host,
                port=pg.port,
                database=pg.database,
                user=pg.user,
                password=pg.password,
                timeout=self.settings.probe_timeout,
            )
        ]
        if self.engine is not None:
            probes.append(
                RedisProbe(
                    self.engine,
                    self.stack.container_name("redis"),
                    password=self.settings.redis.password,
                )
            )
        return probes

    def gateway_probes(self, base_url: str, services: Sequence[str] = DEFAULT_GATEWAY_CHECKS) -> List[Probe]:
        """Probes of service health endpoints routed through nginx."""
        base = base_url.rstrip("/")
        probes: List[Probe] = []
        for name in services:
            service = self.stack.get(name)
            path = service.health_path.lstrip("/")
            probes.append(
                self._http(
                    service.display_name,
                    f"{base}{service.route}{path}",
                    verify_tls=not base.startswith("https://"),
                )
            )
        return probes

    def run(self, probes: Iterable[Probe], title: str = "Service Health") -> HealthReport:
        report = HealthReport(title=title)
        for probe in probes:
            result = probe.check()
            report.results.append(result)
            if self.metrics is not None:
                self.metrics.record(result)
            logger.info(
                "probe_result",
                name=result.name,
                target=result.target,
                status=result.status.value,
                detail=result.detail,
                latency_ms=result.latency_ms,
            )
        logger.info(
            "health_report",
            title=title,
            healthy=report.healthy_count,
            total=len(report.results),
        )
        return report

    def system_resources(self, disk_path: str = "/") -> SystemResources:
        mem = read_meminfo(self.meminfo_path)
        usage = shutil.disk_usage(disk_path)
        return SystemResources(
            mem_total=mem.get("MemTotal", 0),
            mem_available=mem.get("MemAvailable", mem.get("MemFree", 0)),
            swap_total=mem.get("SwapTotal", 0),
            swap_free=mem.get("SwapFree", 0),
            disk_path=disk_path,
            disk_total=usage.total,
            disk_used=usage.used,
            disk_free=usage.free,
        )

    def container_stats(self) -> List[ContainerStats]:
        if self.engine is None:
            return []
        return self.engine.stats()
