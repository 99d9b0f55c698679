"""
Unit tests for grouped health checks, host resources and probe metrics.
"""

from unittest.mock import Mock

import pytest
from prometheus_client import CollectorRegistry
from prometheus_client.parser import text_string_to_metric_families

from shivish_deploy.docker import DockerEngine
from shivish_deploy.health import HealthMonitor, HttpProbe, PostgresProbe, RedisProbe
from shivish_deploy.health.monitor import read_meminfo
from shivish_deploy.metrics import StackMetrics, get_metrics_handler
from shivish_deploy.models import HealthStatus, ProbeMode, ProbeResult
from tests.fakes import FakeResponse, FakeRunner, FakeSession

MEMINFO = """\
MemTotal:        8000000 kB
MemFree:         1000000 kB
MemAvailable:    6000000 kB
SwapTotal:       2000000 kB
SwapFree:        2000000 kB
HugePages_Total:       0
"""


class TestProbeSelection:
    """Which URLs each group of probes targets"""

    @pytest.fixture
    def monitor(self, stack, settings):
        return HealthMonitor(stack, settings, session=FakeSession())

    def test_production_probes_hit_health_endpoints(self, monitor):
        urls = {probe.name: probe.url for probe in monitor.microservice_probes(ProbeMode.PRODUCTION)}

        assert urls["API Gateway"] == "http://localhost:8081/health"
        assert urls["User Service"] == "http://localhost:8098/health"
        assert len(urls) == 11

    def test_placeholder_probes_hit_root(self, monitor):
        urls = {probe.name: probe.url for probe in monitor.microservice_probes(ProbeMode.PLACEHOLDER)}

        assert urls["API Gateway"] == "http://localhost:8080/"
        assert urls["Temple Service"] == "http://localhost:8090/"

    def test_name_filter(self, monitor):
        probes = monitor.microservice_probes(names=["api-gateway"])

        assert [probe.name for probe in probes] == ["API Gateway"]

    def test_core_probes(self, monitor):
        urls = [probe.url for probe in monitor.core_probes(names=["grafana", "clickhouse"])]

        assert urls == ["http://localhost:3000/", "http://localhost:8123/"]

    def test_gateway_probes_route_through_nginx(self, monitor):
        probes = monitor.gateway_probes("https://203.0.113.7/")

        assert [probe.url for probe in probes] == [
            "https://203.0.113.7/auth/health",
            "https://203.0.113.7/users/health",
            "https://203.0.113.7/api/health",
        ]
        assert all(probe.verify_tls is False for probe in probes)

    def test_database_probes(self, stack, settings):
        monitor = HealthMonitor(stack, settings, DockerEngine(FakeRunner()))
        probes = monitor.database_probes()

        assert isinstance(probes[0], PostgresProbe)
        assert probes[0].database == "shivish_platform"
        assert isinstance(probes[1], RedisProbe)
        assert probes[1].container == "shivish-redis"

    def test_database_probes_without_docker(self, monitor):
        assert len(monitor.database_probes()) == 1


class TestRun:
    """Running probes into a report"""

    def test_report_and_metrics(self, stack, settings):
        session = FakeSession().add("http://localhost:3000/", FakeResponse(200))
        metrics = StackMetrics(CollectorRegistry())
        monitor = HealthMonitor(stack, settings, session=session, metrics=metrics)

        report = monitor.run(
            [HttpProbe("Grafana", "http://localhost:3000/", session=session),
             HttpProbe("Prometheus", "http://localhost:9090/", session=session)],
            title="Core",
        )

        assert report.title == "Core"
        assert report.healthy_count == 1
        registry = metrics.registry
        assert registry.get_sample_value("shivish_service_up", {"service": "Grafana", "kind": "http"}) == 1.0
        assert registry.get_sample_value("shivish_service_up", {"service": "Prometheus", "kind": "http"}) == 0.0


class TestSystemResources:
    def test_read_meminfo(self, tmp_path):
        path = tmp_path / "meminfo"
        path.write_text(MEMINFO)

        values = read_meminfo(path)

        assert values["MemTotal"] == 8000000 * 1024
        assert values["HugePages_Total"] == 0

    def test_missing_meminfo(self, tmp_path):
        assert read_meminfo(tmp_path / "absent") == {}

    def test_system_resources(self, stack, settings, tmp_path):
        path = tmp_path / "meminfo"
        path.write_text(MEMINFO)
        monitor = HealthMonitor(stack, settings, meminfo_path=path)

        resources = monitor.system_resources(str(tmp_path))

        assert resources.mem_used == 2000000 * 1024
        assert resources.mem_percent == 25.0
        assert resources.swap_free == resources.swap_total
        assert resources.disk_total > 0
        assert 0 <= resources.disk_percent <= 100

    def test_container_stats_need_engine(self, stack, settings):
        assert HealthMonitor(stack, settings).container_stats() == []


class TestStackMetrics:
    """Prometheus metrics for probe results"""

    @pytest.fixture
    def metrics(self):
        return StackMetrics(CollectorRegistry())

    def test_failure_counted_by_status(self, metrics):
        result = ProbeResult(name="Redis", target="docker://shivish-redis", status=HealthStatus.DEGRADED,
                             kind="redis", latency_ms=12.0)

        metrics.record(result)
        metrics.record(result)

        labels = {"service": "Redis", "kind": "redis", "status": "degraded"}
        assert metrics.registry.get_sample_value("shivish_probe_failures_total", labels) == 2.0
        assert metrics.registry.get_sample_value(
            "shivish_probe_duration_seconds_count", {"service": "Redis", "kind": "redis"}
        ) == 2.0

    def test_no_latency_no_observation(self, metrics):
        metrics.record(ProbeResult(name="x", target="t", status=HealthStatus.HEALTHY))

        assert metrics.registry.get_sample_value(
            "shivish_probe_duration_seconds_count", {"service": "x", "kind": "http"}
        ) is None

    def test_metrics_handler(self, metrics):
        metrics.record(ProbeResult(name="Grafana", target="t", status=HealthStatus.HEALTHY))

        body = get_metrics_handler(metrics.registry)().decode()

        samples = [
            (sample.labels, sample.value)
            for family in text_string_to_metric_families(body)
            for sample in family.samples
            if sample.name == "shivish_service_up"
        ]
        assert samples == [({"service": "Grafana", "kind": "http"}, 1.0)]

    def test_serve(self, metrics, monkeypatch):
        start = Mock()
        monkeypatch.setattr("shivish_deploy.metrics.prometheus_metrics.start_http_server", start)

        metrics.serve(9108)

        start.assert_called_once_with(9108, addr="0.0.0.0", registry=metrics.registry)
