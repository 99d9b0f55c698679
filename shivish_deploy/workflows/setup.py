"""Production setup: build images, write configuration, start the stack."""

from pathlib import Path
from typing import List

import structlog

from shivish_deploy.builder import GO_ENV, MicroserviceBuilder
from shivish_deploy.errors import PrerequisiteError
from shivish_deploy.generators import (
    parse_env,
    render_config_xml,
    render_env,
    render_http_config,
    render_prometheus_config,
    render_users_xml,
    write_compose,
    write_env,
    write_text_file,
)
from shivish_deploy.health import HttpProbe, wait_for
from shivish_deploy.models import HealthReport, ProbeMode
from shivish_deploy.workflows.context import Context

logger = structlog.get_logger(__name__)

DATA_DIRS = ("postgres", "redis", "clickhouse", "minio", "grafana")
LOG_DIRS = ("clickhouse", "postgres", "redis", "minio")
CONFIG_DIRS = ("prometheus", "nginx", "clickhouse", "ssl")

# uid:gid each image runs as
DATA_OWNERS = {
    "postgres": "999:999",
    "clickhouse": "0:0",
    "grafana": "472:472",
    "minio": "1001:1001",
}


def prepare_directories(ctx: Context) -> None:
    """Create data, log, backup and config directories and hand data dirs to the container users."""
    settings = ctx.settings
    for name in DATA_DIRS:
        (settings.data_dir / name).mkdir(parents=True, exist_ok=True)
    for name in LOG_DIRS:
        (settings.logs_dir / name).mkdir(parents=True, exist_ok=True)
    for name in CONFIG_DIRS:
        (settings.configs_dir / name).mkdir(parents=True, exist_ok=True)
    (ctx.target_dir / "backups").mkdir(parents=True, exist_ok=True)

    for name, owner in DATA_OWNERS.items():
        ctx.runner.run(["chown", "-R", owner, str(settings.data_dir / name)], sudo=True)
    ctx.runner.run(["chmod", "-R", "755", str(settings.data_dir / "clickhouse")], sudo=True)
    logger.info("directories_prepared", target_dir=str(ctx.target_dir))


def write_configuration(ctx: Context) -> List[Path]:
    """
    Write every generated file under the target directory.

    ``nginx.conf`` and the ClickHouse XML files are only created when
    missing, so a TLS configuration installed by ``secure`` or hand-edited
    ClickHouse settings survive a re-run. An existing ``.env`` only gains the
    keys it lacks.
    """
    settings, stack = ctx.settings, ctx.stack
    written: List[Path] = []

    def _write(path: Path, content: str, **kwargs) -> None:
        if write_text_file(path, content, **kwargs):
            written.append(path)

    write_compose(settings.compose_path, stack, settings)
    written.append(settings.compose_path)
    write_compose(settings.dev_compose_path, stack, settings, placeholders=True)
    written.append(settings.dev_compose_path)

    http_config = render_http_config(stack)
    _write(settings.nginx_dir / "nginx-production.conf", http_config)
    _write(settings.nginx_dir / "nginx.conf", http_config, overwrite=False)

    _write(settings.clickhouse_config_dir / "config.xml", render_config_xml(settings), overwrite=False)
    _write(settings.clickhouse_config_dir / "users.xml", render_users_xml(settings), overwrite=False)

    _write(settings.configs_dir / "prometheus" / "prometheus.yml", render_prometheus_config(stack))

    env_path = ctx.target_dir / ".env"
    if env_path.exists():
        # keep operator-filled values, add keys introduced since
        existing = parse_env(env_path.read_text(encoding="utf-8"))
        defaults = parse_env(render_env(settings, stack))
        missing = {key: value for key, value in defaults.items() if key not in existing}
        if missing:
            written.append(write_env(env_path, missing))
    else:
        _write(env_path, render_env(settings, stack), mode=0o600)
    return written


def setup_production(ctx: Context, *, skip_build: bool = False) -> HealthReport:
    """
    Replace the placeholder stack with the production one.

    Stops whatever runs, builds every microservice image, writes the
    production configuration, starts the stack and probes it.
    """
    console, settings = ctx.console, ctx.settings
    ctx.require_target_dir()
    console.info(f"Working in project root directory: {ctx.target_dir}")

    console.info("Step 1: Stopping all existing Docker services...")
    ctx.dev_compose.down(check=False)
    if settings.compose_path.exists():
        ctx.compose.down(check=False)

    if skip_build:
        console.warning("Step 2: Skipping microservice builds (--skip-build)")
    else:
        console.info("Step 2: Building all microservices...")
        console.info("Go environment: " + " ".join(f"{k}={v}" for k, v in GO_ENV.items() if v))
        builder = MicroserviceBuilder(ctx.runner, ctx.engine, ctx.stack, settings.microservices_dir, ctx.session)
        if not settings.microservices_dir.is_dir():
            raise PrerequisiteError(
                f"Microservices directory not found: {settings.microservices_dir} "
                "(expected one sub-directory per service, e.g. auth-service/)"
            )
        go = builder.ensure_go()
        console.success(f"Go is working correctly ({go})")
        builder.clean()
        for result in builder.build_all():
            if result.scaffolded:
                console.warning(f"{result.service}: directory not found, placeholder created and built")
            elif result.fallback:
                console.warning(f"{result.service}: build failed, minimal version built instead")
            else:
                console.success(f"{result.service} built successfully")
        console.success("All microservices built successfully!")

    console.info("Step 3: Writing production configuration...")
    for path in write_configuration(ctx):
        console.success(f"Wrote {path}")
    ctx.compose.config()
    console.success(f"{settings.compose_file} is valid")

    console.info("Step 4: Setting up data directories and permissions...")
    prepare_directories(ctx)
    console.success("Data directories and permissions set!")

    console.info("Step 5: Starting production services...")
    ctx.compose.up()

    console.info(f"Step 6: Waiting up to {settings.startup_timeout:.0f}s for the API gateway...")
    gateway = ctx.stack.get(ctx.stack.gateway)
    probe = HttpProbe(
        gateway.display_name,
        f"http://localhost:{gateway.host_port}{gateway.health_path}",
        timeout=settings.probe_timeout,
        session=ctx.session,
    )
    ready = wait_for(probe, settings.startup_timeout, settings.poll_interval, sleep=ctx.sleep)
    if not ready.healthy:
        console.warning(f"{gateway.display_name} not responding yet ({ready.detail})")

    console.info("Step 7: Testing all services...")
    monitor = ctx.health_monitor()
    report = monitor.run(
        monitor.microservice_probes(ProbeMode.PRODUCTION) + monitor.core_probes(),
        title="Production Services",
    )
    console.report(report)
    for result in report.failed:
        console.warning(f"{result.name}: not responding yet (this is normal for new services)")

    console.heading("Container Status")
    console.text(ctx.compose.ps().stdout)
    console.success("Complete production setup finished")
    return report
