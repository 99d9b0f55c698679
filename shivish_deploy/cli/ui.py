"""Console output for operators (Rich).

Status lines use the ``[INFO]``/``[SUCCESS]``/``[WARNING]``/``[ERROR]``
prefixes operators grep for; structured logs go to stderr separately.
"""

from typing import Iterable, Optional, Sequence, Tuple

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from shivish_deploy.models import HealthReport, HealthStatus

_STATUS_STYLE = {
    HealthStatus.HEALTHY: ("OK", "green"),
    HealthStatus.DEGRADED: ("DEGRADED", "yellow"),
    HealthStatus.UNHEALTHY: ("DOWN", "red"),
}


def format_bytes(value: int) -> str:
    """``1536`` -> ``1.5KiB``."""
    if value < 1024:
        return f"{value}B"
    size = float(value)
    for unit in ("KiB", "MiB", "GiB"):
        size /= 1024
        if size < 1024:
            return f"{size:.1f}{unit}"
    return f"{size / 1024:.1f}TiB"


class StatusPrinter:
    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console(highlight=False)

    def _status(self, label: str, style: str, message: str) -> None:
        self.console.print(Text.assemble((f"[{label}]", style), " ", message))

    def info(self, message: str) -> None:
        self._status("INFO", "blue", message)

    def success(self, message: str) -> None:
        self._status("SUCCESS", "green", message)

    def warning(self, message: str) -> None:
        self._status("WARNING", "yellow", message)

    def error(self, message: str) -> None:
        self._status("ERROR", "red", message)

    def heading(self, title: str) -> None:
        self.console.print()
        self.console.rule(f"[bold]{escape(title)}")

    def text(self, body: str) -> None:
        """Command output, printed verbatim."""
        if body.strip():
            self.console.print(Text(body.rstrip()))

    def health_table(self, report: HealthReport) -> Table:
        table = Table(title=report.title)
        table.add_column("Service", style="cyan", no_wrap=True)
        table.add_column("Status", no_wrap=True)
        table.add_column("Target", style="dim")
        table.add_column("Details", style="white")
        table.add_column("Latency", justify="right", style="dim")
        for result in report.results:
            label, style = _STATUS_STYLE[result.status]
            latency = f"{result.latency_ms:.0f} ms" if result.latency_ms is not None else "-"
            table.add_row(result.name, Text(label, style=style), Text(result.target), Text(result.detail), latency)
        return table

    def report(self, report: HealthReport) -> None:
        self.console.print(self.health_table(report))
        total = len(report.results)
        summary = f"{report.healthy_count}/{total} healthy"
        if report.all_healthy:
            self.success(f"{report.title}: {summary}")
        else:
            self.warning(f"{report.title}: {summary}")

    def key_values(self, title: str, rows: Iterable[Tuple[str, str]]) -> None:
        table = Table(title=title, show_header=False)
        table.add_column("Key", style="bright_green", no_wrap=True)
        table.add_column("Value", style="white")
        for key, value in rows:
            table.add_row(key, Text(value))
        self.console.print(table)

    def urls(self, title: str, rows: Sequence[Tuple[str, str]]) -> None:
        table = Table(title=title)
        table.add_column("Service", style="cyan", no_wrap=True)
        table.add_column("URL", style="magenta")
        for label, url in rows:
            table.add_row(label, Text(url))
        self.console.print(table)

    def panel(self, body: str, title: str, style: str = "cyan") -> None:
        self.console.print(Panel(Text(body), title=title, border_style=style))

