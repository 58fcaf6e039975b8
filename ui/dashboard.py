"""Real-time CLI dashboard for gateway monitoring."""

from datetime import datetime
from threading import Lock

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.config import Config
from ui.log_utils import write_cli_log, write_proxy_log

console = Console()


class RequestInfo:
    """Info about a single proxied request."""

    def __init__(self, service: str, method: str, path: str, status: int, timestamp: datetime):
        self.service = service
        self.method = method
        self.path = path[:60] + "..." if len(path) > 60 else path
        self.status = status
        self.timestamp = timestamp


class Dashboard:
    """Real-time dashboard showing recent proxied requests per service."""

    def __init__(self, config: Config):
        self.config = config
        self._lock = Lock()
        self._requests: list[RequestInfo] = []
        self._max_requests = 12
        self._counts = {"proxied": 0, "rejected": 0, "errors": 0}
        self._errors: list[str] = []
        self._live: Live | None = None

    def start(self) -> "Dashboard":
        """Start the live dashboard."""
        self._live = Live(
            self._build_layout(),
            console=console,
            refresh_per_second=4,
            screen=False,
        )
        self._live.start()
        return self

    def stop(self) -> None:
        """Stop the live dashboard."""
        if self._live:
            self._live.stop()

    def log_proxy(
        self,
        service: str,
        method: str,
        path: str,
        status: int,
        *,
        target: str,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Log a request forwarded to a backend."""
        with self._lock:
            self._counts["proxied"] += 1
            info = RequestInfo(service, method, path, status, datetime.now())
            self._requests.insert(0, info)
            self._requests = self._requests[: self._max_requests]

            write_proxy_log(service, method, path, status, target=target, headers=headers)
            write_cli_log("PROXY", f"{method} {path}", service=service, target=target, status=status)

            self._refresh()

    def log_rejected(self, service: str, method: str, path: str) -> None:
        """Log a request for an unknown or unhealthy service."""
        with self._lock:
            self._counts["rejected"] += 1
            self._requests.insert(0, RequestInfo(service, method, path, 404, datetime.now()))
            self._requests = self._requests[: self._max_requests]
            write_cli_log("REJECTED", f"{method} {path}", service=service)
            self._refresh()

    def log_error(self, service: str, stage: str, status: int, message: str) -> None:
        """Log an error."""
        with self._lock:
            self._counts["errors"] += 1
            truncated = message[:60] + "..." if len(message) > 60 else message
            self._errors.insert(0, f"{service} [{stage}] {status}: {truncated}")
            self._errors = self._errors[:3]
            self._refresh()
            write_cli_log("ERROR", message[:200], service=service, stage=stage, status=status)

    def _refresh(self) -> None:
        """Refresh the display."""
        if self._live:
            self._live.update(self._build_layout())

    def _build_layout(self) -> Layout:
        """Build the dashboard layout."""
        layout = Layout()

        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="body"),
            Layout(name="footer", size=5),
        )

        layout["header"].update(self._build_header())
        layout["body"].update(self._build_requests_panel())
        layout["footer"].update(self._build_footer())

        return layout

    def _build_header(self) -> Panel:
        """Build header with stats."""
        stats = Text()
        stats.append("Service Gateway", style="bold cyan")
        stats.append("  |  ")
        stats.append(f"Proxied: {self._counts['proxied']}", style="green")
        stats.append("  |  ")
        stats.append(f"Rejected: {self._counts['rejected']}", style="yellow")
        stats.append("  |  ")
        stats.append(f"Errors: {self._counts['errors']}", style="red")
        stats.append("  |  ")
        stats.append(f"Port: {self.config.gateway.port}", style="dim")

        return Panel(stats, style="cyan")

    def _build_requests_panel(self) -> Panel:
        """Build the recent requests panel."""
        if self._requests:
            table = Table(show_header=True, header_style="bold", expand=True, box=None)
            table.add_column("Time", style="dim", width=8)
            table.add_column("Service", width=20)
            table.add_column("Method", width=7)
            table.add_column("Path", ratio=2)
            table.add_column("Status", width=6)

            for req in self._requests:
                table.add_row(
                    req.timestamp.strftime("%H:%M:%S"),
                    req.service[:20],
                    req.method,
                    req.path,
                    Text(str(req.status), style=_status_style(req.status)),
                )

            content = table
        else:
            content = Text("Waiting for requests...", style="dim")

        return Panel(content, title="[green]Recent requests[/green]", border_style="green")

    def _build_footer(self) -> Panel:
        """Build footer with errors and help."""
        if self._errors:
            error_text = Text()
            for err in self._errors:
                error_text.append("! ", style="red bold")
                error_text.append(err + "\n", style="red")
            content = error_text
        else:
            content = Text(
                f"Registry: {self.config.registry.url}  |  "
                f"Open http://localhost:{self.config.gateway.port}/service/<name>/",
                style="dim",
            )

        return Panel(content, title="[dim]Status[/dim]", border_style="dim")


def _status_style(status: int) -> str:
    if status >= 500:
        return "red"
    if status >= 400:
        return "yellow"
    if status >= 300:
        return "cyan"
    return "green"
