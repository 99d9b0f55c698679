"""``shivish-deploy`` command line entry point (Typer)."""

from pathlib import Path
from typing import Any, Callable, Optional

import typer
from prometheus_client import CollectorRegistry

from shivish_deploy import workflows
from shivish_deploy.cli.ui import StatusPrinter
from shivish_deploy.config import get_settings
from shivish_deploy.errors import DeployError
from shivish_deploy.generators import write_text_file
from shivish_deploy.logging import bind_context, clear_context, configure_logging, get_logger
from shivish_deploy.metrics import StackMetrics, get_metrics_handler
from shivish_deploy.models import ProbeMode

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Install, secure and monitor the Shivish Docker Compose stack.",
)

logger = get_logger(__name__)


@app.callback()
def main(
    ctx: typer.Context,
    target_dir: Optional[Path] = typer.Option(None, "--target-dir", help="Project root (default /opt/shivish)."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log external commands instead of running them."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit structured logs as JSON on stderr."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR."),
) -> None:
    """Global options shared by every command."""
    settings = get_settings()
    overrides: dict[str, Any] = {}
    if target_dir is not None:
        overrides["target_dir"] = target_dir
    if dry_run:
        overrides["dry_run"] = True
    if json_logs:
        overrides["json_logs"] = True
    if log_level:
        overrides["log_level"] = log_level.upper()
    if overrides:
        settings = settings.model_copy(update=overrides)

    clear_context()
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.json_logs,
        service_name="cli",
        environment=settings.environment,
        secrets=settings.secret_values(),
    )
    bind_context(command=ctx.invoked_subcommand, target_dir=str(settings.target_dir))
    ctx.obj = workflows.Context.from_settings(settings, StatusPrinter())


def _invoke(ctx: typer.Context, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a workflow, turning ``DeployError`` into a red line and exit status 1."""
    context: workflows.Context = ctx.obj
    try:
        return func(context, *args, **kwargs)
    except DeployError as e:
        logger.error("command_failed", error=str(e), error_type=type(e).__name__)
        context.console.error(str(e))
        raise typer.Exit(code=1) from e


@app.command()
def setup(
    ctx: typer.Context,
    skip_build: bool = typer.Option(False, "--skip-build", help="Reuse the existing shivish-* images."),
) -> None:
    """Build the microservices and start the production stack."""
    _invoke(ctx, workflows.setup_production, skip_build=skip_build)


@app.command()
def secure(ctx: typer.Context) -> None:
    """Firewall, TLS certificate, HTTPS nginx and certificate renewal."""
    _invoke(ctx, workflows.secure_production)


@app.command()
def activate(ctx: typer.Context) -> None:
    """Start all services and test them through nginx."""
    _invoke(ctx, workflows.activate_services)


@app.command("fix-ports")
def fix_ports(ctx: typer.Context) -> None:
    """Free the ClickHouse ports and restart ClickHouse."""
    _invoke(ctx, workflows.fix_port_conflicts)


@app.command("fix-nginx-ssl")
def fix_nginx_ssl(ctx: typer.Context) -> None:
    """Switch nginx to HTTPS with the self-signed certificate."""
    _invoke(ctx, workflows.fix_nginx_ssl)


@app.command()
def network(ctx: typer.Context) -> None:
    """Show addresses, virtualization and port forwarding needs."""
    _invoke(ctx, workflows.check_network)


@app.command()
def monitor(
    ctx: typer.Context,
    quick: bool = typer.Option(False, "--quick", help="Only the gateway and the admin UIs."),
    watch: bool = typer.Option(False, "--watch", help="Repeat until interrupted."),
    interval: float = typer.Option(30.0, "--interval", min=1.0, help="Seconds between passes with --watch."),
    metrics_port: Optional[int] = typer.Option(
        None, "--metrics-port", help="Expose probe results for Prometheus on this port."
    ),
    metrics_file: Optional[Path] = typer.Option(
        None, "--metrics-file", help="Write probe results in text exposition format after each pass."
    ),
    mode: Optional[ProbeMode] = typer.Option(
        None, "--mode", case_sensitive=False, help="Port layout to probe (default: detected)."
    ),
) -> None:
    """Container status, resources and service health."""
    context: workflows.Context = ctx.obj
    if metrics_port is not None or metrics_file is not None:
        context.metrics = StackMetrics(CollectorRegistry())
    if metrics_port is not None:
        context.metrics.serve(metrics_port)
        context.console.info(f"Serving metrics on :{metrics_port}/metrics")

    def run_pass() -> None:
        _invoke(ctx, workflows.monitor, quick=quick, mode=mode)
        if metrics_file is not None:
            # node_exporter textfile collector reads whole files only
            exposition = get_metrics_handler(context.metrics.registry)()
            write_text_file(metrics_file, exposition.decode("utf-8"), mode=0o644)

    if not watch:
        run_pass()
        return

    try:
        while True:
            run_pass()
            context.sleep(interval)
    except KeyboardInterrupt:
        context.console.info("Monitoring stopped")


@app.command()
def urls(
    ctx: typer.Context,
    host: Optional[str] = typer.Option(None, "--host", help="Public host name or IP (default: detected)."),
    http_only: bool = typer.Option(False, "--http-only", help="Only list HTTP URLs."),
) -> None:
    """Print the production URLs for app clients."""
    _invoke(ctx, workflows.urls, host=host, ssl=not http_only)


@app.command()
def ports(
    ctx: typer.Context,
    kill: bool = typer.Option(False, "--kill", help="Kill processes holding the ports."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask before killing."),
) -> None:
    """Check the ports the stack publishes."""
    if kill and not yes:
        typer.confirm("Kill every process holding a critical port?", abort=True)
    _invoke(ctx, workflows.check_ports, kill=kill)


@app.command()
def generate(ctx: typer.Context) -> None:
    """Write the configuration files without touching containers."""
    context: workflows.Context = ctx.obj
    paths = _invoke(ctx, workflows.write_configuration)
    for path in paths:
        context.console.success(f"Wrote {path}")


@app.command("renew-certs")
def renew_certs(ctx: typer.Context) -> None:
    """Renew the TLS certificate in use and restart nginx."""
    _invoke(ctx, workflows.renew_certificates)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
