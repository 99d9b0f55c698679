"""Read-only workflows: health monitoring, network and port inspection, URLs."""

from typing import Dict, List, Optional, Tuple

import structlog

from shivish_deploy.cli.ui import format_bytes
from shivish_deploy.config import DeploySettings
from shivish_deploy.health import HealthMonitor, Probe
from shivish_deploy.models import HealthReport, ProbeMode, Stack
from shivish_deploy.network import (
    CRITICAL_PORTS,
    NetworkReport,
    Virtualization,
    detect_external_ip,
    detect_internal_ip,
    find_port_holders,
    inspect_network,
    kill_port_holders,
)
from shivish_deploy.workflows.context import Context

logger = structlog.get_logger(__name__)

QUICK_CORE_SERVICES = ("grafana", "minio", "clickhouse")


def production_urls(settings: DeploySettings, stack: Stack, host: str, ssl: bool) -> List[Tuple[str, str]]:
    """(label, URL) for every public nginx route on ``host``."""
    scheme = "https" if ssl else "http"
    return [(label, f"{scheme}://{host}{route}") for label, route in stack.public_routes()]


def show_production_urls(ctx: Context, host: str, ssl: bool) -> None:
    """Print the URLs an app client should use, HTTPS first when available."""
    console, gateway = ctx.console, ctx.stack.get(ctx.stack.gateway)
    if ssl:
        console.urls("HTTPS URLs (recommended)", production_urls(ctx.settings, ctx.stack, host, ssl=True))
    console.urls("HTTP URLs", production_urls(ctx.settings, ctx.stack, host, ssl=False))

    snippet = []
    if ssl:
        snippet += ["// For HTTPS (recommended)", f"const String API_BASE_URL = 'https://{host}{gateway.route}';", ""]
    snippet += ["// For HTTP", f"const String API_BASE_URL = 'http://{host}{gateway.route}';"]
    console.panel("\n".join(snippet), title="Flutter App Configuration")


def urls(ctx: Context, host: Optional[str] = None, ssl: bool = True) -> str:
    """Show the production URLs for ``host`` or the detected external address."""
    if host is None:
        host = detect_external_ip(ctx.settings.ip_lookup_services, ctx.session, ctx.settings.probe_timeout)
    if host is None:
        host = detect_internal_ip(ctx.runner) or "localhost"
        ctx.console.warning(f"External IP unavailable, using {host}")
    show_production_urls(ctx, host, ssl)
    return host


def _probe_mode(ctx: Context) -> ProbeMode:
    return ProbeMode.PRODUCTION if ctx.compose.path.exists() else ProbeMode.PLACEHOLDER


def monitor(ctx: Context, *, quick: bool = False, mode: Optional[ProbeMode] = None) -> HealthReport:
    """
    One monitoring pass over the stack.

    The full pass covers host resources, container stats, every
    microservice, the core services and both databases. ``quick`` keeps to
    the gateway and the admin UIs.
    """
    console = ctx.console
    mode = mode or _probe_mode(ctx)
    compose = ctx.compose if mode == ProbeMode.PRODUCTION else ctx.dev_compose
    health = ctx.health_monitor()

    console.heading("Container Status")
    console.text(compose.ps().stdout)

    probes: List[Probe]
    if quick:
        probes = health.microservice_probes(mode, names=[ctx.stack.gateway])
        probes += health.core_probes(names=QUICK_CORE_SERVICES)
        report = health.run(probes, title="Quick Service Test")
    else:
        _print_resources(ctx, health)
        report = health.run(
            health.microservice_probes(mode) + health.core_probes() + health.database_probes(),
            title="Service Health",
        )
    console.report(report)

    if not quick:
        host = detect_internal_ip(ctx.runner) or "localhost"
        gateway = ctx.stack.get(ctx.stack.gateway)
        port = gateway.host_port if mode == ProbeMode.PRODUCTION else gateway.placeholder_port
        rows = [(gateway.display_name, f"http://{host}:{port}")]
        rows += [(core.display_name, f"http://{host}:{core.port}") for core in ctx.stack.core_services]
        console.urls("Service URLs", rows)
    return report


def _print_resources(ctx: Context, health: HealthMonitor) -> None:
    console = ctx.console
    resources = health.system_resources()
    console.key_values(
        "System Resources",
        [
            (
                "Memory",
                f"{format_bytes(resources.mem_used)} / {format_bytes(resources.mem_total)} ({resources.mem_percent}%)",
            ),
            ("Swap", f"{format_bytes(resources.swap_total - resources.swap_free)} / {format_bytes(resources.swap_total)}"),
            (
                f"Disk {resources.disk_path}",
                f"{format_bytes(resources.disk_used)} / {format_bytes(resources.disk_total)} ({resources.disk_percent}%)",
            ),
        ],
    )
    stats = health.container_stats()
    if stats:
        console.key_values(
            "Docker Containers",
            [(s.name, f"CPU {s.cpu_percent}  MEM {s.mem_usage} ({s.mem_percent})") for s in stats],
        )


def check_network(ctx: Context) -> NetworkReport:
    """Report addresses and virtualization, with VirtualBox forwarding instructions."""
    console = ctx.console
    report = inspect_network(ctx.runner, ctx.settings, session=ctx.session, root=ctx.host_root)

    console.key_values(
        "Network",
        [
            ("Internal IP (VM)", report.internal_ip or "unknown"),
            ("External IP (Internet)", report.external_ip or "unknown"),
            ("Detected", report.virtualization.value),
        ],
    )

    if report.virtualization == Virtualization.CLOUD:
        console.success("Cloud VM: external access is usually configured automatically")
    elif report.virtualization == Virtualization.VIRTUALBOX:
        console.warning("VirtualBox VM: NAT port forwarding is required")
        console.key_values(
            "VirtualBox Port Forwarding (Settings > Network > Adapter 1 > Advanced)",
            [(rule.name, f"{rule.protocol} host {rule.host_port} -> guest {rule.guest_port}") for rule in report.forwarding_rules],
        )
    else:
        console.success("Physical machine or other virtualization: external access should work directly")

    if report.direct_access:
        console.success("Host has direct external access, no port forwarding needed")
    else:
        console.warning(f"Host has a private address; external devices cannot reach {report.internal_ip}")

    gateway = ctx.stack.get(ctx.stack.gateway)
    console.urls(
        "Test URLs",
        [
            ("From this host", f"http://{report.internal_ip or 'localhost'}{gateway.route}"),
            ("From outside", f"http://{report.external_ip or '<external-ip>'}{gateway.route}"),
        ],
    )
    return report


def check_ports(ctx: Context, *, kill: bool = False) -> Dict[int, List[int]]:
    """
    Show which critical ports are held and by which PIDs.

    With ``kill`` the holders are terminated.
    """
    console = ctx.console
    holders: Dict[int, List[int]] = {}
    for port, label in CRITICAL_PORTS.items():
        pids = kill_port_holders(ctx.runner, port) if kill else find_port_holders(ctx.runner, port)
        holders[port] = pids
        if not pids:
            console.success(f"Port {port} ({label}) is free")
        elif kill:
            console.warning(f"Killed processes using port {port} ({label}): {', '.join(map(str, pids))}")
        else:
            console.warning(f"Port {port} ({label}) is in use by: {', '.join(map(str, pids))}")
    return holders
