"""CLI entry point for service-gateway."""

import asyncio
import sys
from datetime import datetime

from rich.console import Console
from rich.table import Table

from app import create_app
from core.config import CONFIG_FILE, REGISTRY_URL_ENV, Config, load_config
from core.exceptions import ConfigurationError, RegistryQueryFailed
from core.models import mount_prefix_for
from services.registry import ServiceResolver, create_registry_client, validate_registry_url
from ui.dashboard import Dashboard
from ui.log_utils import clear_logs, shutdown_log_executor, write_cli_log

console = Console()


def main():
    """Main CLI entry point."""
    config = load_config()

    # Handle CLI arguments
    if len(sys.argv) > 1:
        arg = sys.argv[1]

        if arg == "--config":
            console.print(f"[bold]Config:[/bold] {CONFIG_FILE}")
            console.print(f"[bold]Registry:[/bold] {config.registry.url}")
            return

        if arg in ("--help", "-h"):
            _print_help()
            return

    # An unusable registry URL is fatal
    try:
        validate_registry_url(config.registry)
    except ConfigurationError as e:
        console.print(f"[red][ERROR][/red] {e}")
        console.print(f"[dim]Set {REGISTRY_URL_ENV} or edit {CONFIG_FILE}[/dim]")
        sys.exit(1)

    if len(sys.argv) > 1 and sys.argv[1] == "--services":
        sys.exit(asyncio.run(_print_services(config)))

    # Clear previous logs and start dashboard
    clear_logs()
    dashboard = Dashboard(config)

    import uvicorn

    app = create_app(config, dashboard)

    # Run with dashboard
    uvicorn_config = uvicorn.Config(
        app,
        host=config.gateway.host,
        port=config.gateway.port,
        log_level="warning",
        proxy_headers=True,
        timeout_keep_alive=config.gateway.keep_alive_timeout,
    )
    server = uvicorn.Server(uvicorn_config)

    dashboard.start()
    start_time = datetime.now()
    write_cli_log("STARTUP", "Gateway started", port=config.gateway.port, registry=config.registry.url)
    try:
        server.run()
    finally:
        duration = datetime.now() - start_time
        write_cli_log("SHUTDOWN", "Gateway stopped", duration=str(duration))
        shutdown_log_executor()
        dashboard.stop()


class _ConsoleLogger:
    """Logger for one-shot CLI commands."""

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
        pass

    def log_rejected(self, service: str, method: str, path: str) -> None:
        pass

    def log_error(self, service: str, stage: str, status: int, message: str) -> None:
        console.print(f"[red][ERROR][/red] {message}")


async def _print_services(config: Config) -> int:
    """Print the registry snapshot as a table."""
    registry = create_registry_client(config.registry)
    resolver = ServiceResolver(registry, config.registry, _ConsoleLogger())
    try:
        services = await resolver.list_services()
    except RegistryQueryFailed as e:
        console.print(f"[red][ERROR][/red] {e}")
        return 1
    finally:
        await registry.aclose()

    table = Table(title=f"Services ({config.registry.url})")
    table.add_column("Name", style="bold")
    table.add_column("Status")
    table.add_column("Target", style="dim")
    table.add_column("Mount")
    for service in services:
        status = "[green]up[/green]" if service.status == "up" else "[red]down[/red]"
        mount = mount_prefix_for(service.name) if service.status == "up" else ""
        table.add_row(service.name, status, service.target, mount)
    console.print(table)
    return 0


def _print_help():
    """Print help message."""
    help_text = f"""
[bold cyan]Service Gateway[/bold cyan]

Exposes services registered in Prometheus under /service/<name> of one host.

[bold]Usage:[/bold]
    service-gateway              Start with live dashboard
    service-gateway --services   List services known to the registry
    service-gateway --config     Show config location and registry URL
    service-gateway --help       Show this help

[bold]Configuration:[/bold]
    {REGISTRY_URL_ENV} sets the Prometheus address (default http://localhost:9090).
    Other settings live in {CONFIG_FILE}.
"""
    console.print(help_text)


if __name__ == "__main__":
    main()
