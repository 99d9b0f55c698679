"""Bring the stack up and repair ClickHouse port conflicts."""

import time
from typing import Sequence

import structlog

from shivish_deploy.generators import (
    ensure_service,
    render_config_xml,
    render_users_xml,
    write_compose,
    write_text_file,
)
from shivish_deploy.generators.compose import CLICKHOUSE_TCP_HOST_PORT, clickhouse_service
from shivish_deploy.health import HttpProbe, wait_for
from shivish_deploy.models import HealthReport, ProbeResult
from shivish_deploy.network import (
    detect_external_ip,
    detect_internal_ip,
    kill_port_holders,
    listening_sockets,
    port_in_use,
)
from shivish_deploy.workflows.context import Context
from shivish_deploy.workflows.monitoring import show_production_urls

logger = structlog.get_logger(__name__)

PORT_RELEASE_TIMEOUT = 5.0


def activate_services(ctx: Context) -> HealthReport:
    """Start the production stack and check it through nginx."""
    console, settings = ctx.console, ctx.settings
    ctx.require_target_dir()

    external_ip = detect_external_ip(settings.ip_lookup_services, ctx.session, settings.probe_timeout)
    internal_ip = detect_internal_ip(ctx.runner)
    console.info(f"External IP: {external_ip or 'unknown'}")
    console.info(f"Internal IP: {internal_ip or 'unknown'}")
    host = external_ip or internal_ip or "localhost"

    console.info("Starting all services...")
    ctx.compose.up()

    gateway = ctx.stack.get(ctx.stack.gateway)
    http_probe = HttpProbe("HTTP connection", f"http://{host}{gateway.route}",
                           timeout=settings.probe_timeout, session=ctx.session)
    console.info(f"Waiting up to {settings.startup_timeout:.0f}s for services to start...")
    wait_for(http_probe, settings.startup_timeout, settings.poll_interval, sleep=ctx.sleep)

    console.heading("Service Status")
    console.text(ctx.compose.ps().stdout)

    health = ctx.health_monitor()
    https_probe = HttpProbe("HTTPS connection", f"https://{host}{gateway.route}", verify_tls=False,
                            timeout=settings.probe_timeout, session=ctx.session)
    report = health.run(
        [http_probe, https_probe] + health.gateway_probes(f"http://{host}"),
        title="Service Activation",
    )
    console.report(report)

    show_production_urls(ctx, host, ssl=report.results[1].healthy)
    console.success("Services activated")
    return report


def _wait_ports_released(ctx: Context, ports: Sequence[int], timeout: float = PORT_RELEASE_TIMEOUT) -> bool:
    deadline = time.monotonic() + timeout
    while any(port_in_use(port) for port in ports):
        if time.monotonic() >= deadline:
            return False
        ctx.sleep(0.5)
    return True


def _start_clickhouse(ctx: Context) -> ProbeResult:
    settings = ctx.settings
    ctx.dev_compose.up(["clickhouse"])
    probe = HttpProbe(
        "ClickHouse HTTP",
        f"http://localhost:{settings.clickhouse.http_port}",
        timeout=settings.probe_timeout,
        session=ctx.session,
    )
    return wait_for(probe, settings.clickhouse_timeout, settings.poll_interval, sleep=ctx.sleep)


def fix_port_conflicts(ctx: Context) -> ProbeResult:
    """
    Free the ClickHouse ports and restart ClickHouse with a known-good config.

    ClickHouse is started with the regular config first; when it does not
    answer within the budget its ``config.xml`` is replaced by the
    low-memory variant and it is restarted once more.
    """
    console, settings = ctx.console, ctx.settings
    ctx.require_project_files()
    console.info(f"Working in project root directory: {ctx.target_dir}")

    # host ports only; MinIO publishes 9000
    ports = (settings.clickhouse.http_port, CLICKHOUSE_TCP_HOST_PORT)
    port_list = " and ".join(map(str, ports))

    console.info("Step 1: Checking current port usage...")
    for line in listening_sockets(ctx.runner, ports) or [f"Ports {port_list} are free"]:
        console.text(line)

    console.info("Step 2: Checking current Docker container status...")
    if not settings.dev_compose_path.exists():
        console.warning(f"{settings.dev_compose_path.name} not found, generating the placeholder stack")
        write_compose(settings.dev_compose_path, ctx.stack, settings, placeholders=True)
    console.text(ctx.dev_compose.ps().stdout)

    console.info("Step 3: Stopping ClickHouse if running...")
    ctx.dev_compose.stop(["clickhouse"], check=False)
    ctx.dev_compose.rm(["clickhouse"], check=False)

    console.info("Step 4: Killing processes using conflicting ports...")
    for port in ports:
        pids = kill_port_holders(ctx.runner, port)
        if pids:
            console.success(f"Killed processes using port {port}: {', '.join(map(str, pids))}")
        else:
            console.info(f"No processes using port {port}")

    console.info("Step 5: Verifying ports are free...")
    if _wait_ports_released(ctx, ports):
        console.success(f"Ports {port_list} are free")
    else:
        console.warning(f"Ports {port_list} are still in use")

    console.info("Step 6: Ensuring ClickHouse configuration exists...")
    config_dir = settings.clickhouse_config_dir
    for name, content in (("config.xml", render_config_xml(settings)), ("users.xml", render_users_xml(settings))):
        if write_text_file(config_dir / name, content, overwrite=False):
            console.success(f"ClickHouse {name} created")
        else:
            console.info(f"ClickHouse {name} already exists")

    console.info("Step 7: Fixing ClickHouse data directory permissions...")
    data_dir = settings.data_dir / "clickhouse"
    ctx.runner.run(["rm", "-rf", str(data_dir)], sudo=True, check=False)
    data_dir.mkdir(parents=True, exist_ok=True)
    ctx.runner.run(["chown", "-R", "999:999", str(data_dir)], sudo=True)
    ctx.runner.run(["chmod", "-R", "755", str(data_dir)], sudo=True)
    console.success("ClickHouse data directory permissions fixed")

    console.info(f"Step 8: Updating {settings.dev_compose_file} for ClickHouse...")
    definition = clickhouse_service(settings, ctx.stack, custom_config=True)
    if ensure_service(settings.dev_compose_path, "clickhouse", definition):
        console.success(f"ClickHouse service added/updated in {settings.dev_compose_file}")
    else:
        console.info(f"ClickHouse service already up to date in {settings.dev_compose_file}")

    console.info("Step 9: Starting ClickHouse...")
    result = _start_clickhouse(ctx)
    if not result.healthy:
        console.warning(f"ClickHouse HTTP (port {settings.clickhouse.http_port}): DOWN ({result.detail})")
        console.text(ctx.dev_compose.logs("clickhouse", tail=10))

        console.info("Step 10: Retrying with the minimal ClickHouse configuration...")
        write_text_file(config_dir / "config.xml", render_config_xml(settings, minimal=True))
        ctx.dev_compose.stop(["clickhouse"], check=False)
        ctx.dev_compose.rm(["clickhouse"], check=False)
        result = _start_clickhouse(ctx)

    if result.healthy:
        console.success(f"ClickHouse HTTP (port {settings.clickhouse.http_port}): OK")
    else:
        console.error(f"ClickHouse HTTP (port {settings.clickhouse.http_port}): DOWN ({result.detail})")

    console.heading("Final Verification")
    console.text(ctx.dev_compose.ps(["clickhouse"]).stdout)
    for line in listening_sockets(ctx.runner, ports):
        console.text(line)
    console.text(ctx.dev_compose.logs("clickhouse", tail=10))

    host = detect_internal_ip(ctx.runner) or "localhost"
    console.urls(
        "ClickHouse",
        [
            ("HTTP", f"http://{host}:{settings.clickhouse.http_port}"),
            ("TCP", f"{host}:{CLICKHOUSE_TCP_HOST_PORT}"),
        ],
    )
    return result
