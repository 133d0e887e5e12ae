"""
pagetap/scripts/monitor_page.py

Attach to an open Chrome page over CDP and print its network activity as it is correlated.
Press Ctrl+C to stop and print the captured history.
"""

import argparse
import asyncio
import sys

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from pagetap.cdp.async_cdp_session import AsyncCDPSession
from pagetap.config import Config
from pagetap.data_models.enums import ResourceType, StatusClass
from pagetap.data_models.network import NetworkRecord
from pagetap.engine.correlation_engine import NetworkCorrelationEngine
from pagetap.engine.notification_bus import AbstractNetworkObserver
from pagetap.utils.cdp_utils import get_browser_websocket_url
from pagetap.utils.exceptions import PagetapError
from pagetap.utils.logger import get_logger

logger = get_logger(__name__)

console = Console()

STATUS_STYLES: dict[StatusClass, str] = {
    StatusClass.PENDING: "dim",
    StatusClass.SUCCESS: "green",
    StatusClass.REDIRECT: "yellow",
    StatusClass.CLIENT_ERROR: "red",
    StatusClass.SERVER_ERROR: "bold red",
}


class ConsoleObserver(AbstractNetworkObserver):
    """Prints one line per capture and, optionally, per update."""

    def __init__(self, show_updates: bool = False, max_url_length: int = 100) -> None:
        self.show_updates = show_updates
        self.max_url_length = max_url_length

    def _format_line(self, marker: str, record: NetworkRecord) -> str:
        url = record.url if len(record.url) <= self.max_url_length else record.url[: self.max_url_length - 3] + "..."
        style = STATUS_STYLES[record.status_class]
        state = record.protocol_state.get("state")
        return (
            f"{marker} [dim]#{record.id}[/dim] [bold]{record.method:<11}[/bold] "
            f"[{style}]{record.status or '---':>3}[/{style}] "
            f"[cyan]{record.resource_type.label:<5}[/cyan] {escape(url)}"
            + (f" [dim]({escape(str(state))}, {record.formatted_size}, {record.formatted_duration})[/dim]" if state else "")
        )

    def on_captured(self, record: NetworkRecord) -> None:
        console.print(self._format_line("[green]+[/green]", record))

    def on_updated(self, record: NetworkRecord) -> None:
        if self.show_updates:
            console.print(self._format_line("[yellow]~[/yellow]", record))


def print_history(engine: NetworkCorrelationEngine, text: str = "", resource_type: ResourceType | None = None) -> None:
    """Print the (filtered) history and engine statistics."""
    records = engine.search(text=text, resource_type=resource_type)

    table = Table(box=box.SIMPLE, show_header=True, padding=(0, 1))
    table.add_column("#", style="dim", justify="right")
    table.add_column("Method", style="bold")
    table.add_column("Status", justify="right")
    table.add_column("Type", style="cyan")
    table.add_column("Domain", style="white")
    table.add_column("Size", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("State", style="dim")

    for record in records:
        style = STATUS_STYLES[record.status_class]
        table.add_row(
            str(record.id),
            record.method,
            f"[{style}]{record.status or '---'}[/{style}]",
            record.resource_type.label,
            escape(record.domain),
            record.formatted_size,
            record.formatted_duration,
            escape(str(record.protocol_state.get("state", ""))),
        )

    console.print(Panel(
        table,
        title=f"[bold cyan]Network History[/bold cyan] [dim]({len(records)} of {len(engine)} records)[/dim]",
        border_style="cyan",
        box=box.ROUNDED,
    ))

    stats = engine.stats()
    stats_table = Table(box=box.SIMPLE, show_header=False, padding=(0, 2))
    stats_table.add_column("Label", style="dim")
    stats_table.add_column("Value", style="white")
    stats_table.add_row("Created", str(stats["created"]))
    stats_table.add_row("Updated", str(stats["updated"]))
    stats_table.add_row("Ignored", str(stats["ignored"]))
    stats_table.add_row("Decode errors", str(stats["decode_errors"]))
    stats_table.add_row("Evicted", str(stats["evicted"]))
    stats_table.add_row("Navigations", str(stats["navigations"]))
    families_str = ", ".join(f"{f}: {c}" for f, c in sorted(stats["records_by_family"].items()))
    stats_table.add_row("Families", families_str or "-")
    console.print(Panel(stats_table, title="[bold magenta]Engine Stats[/bold magenta]", border_style="magenta", box=box.ROUNDED))


def parse_arguments() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Monitor the network activity of an open Chrome page (start Chrome with --remote-debugging-port).",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pagetap-monitor                                  # attach to the first page on 127.0.0.1:9222
  pagetap-monitor --port 9333 --show-updates
  pagetap-monitor --filter api --type xhr          # filter the history printed on exit
  pagetap-monitor --ws-url ws://127.0.0.1:9222/devtools/browser/<id>
        """,
    )
    parser.add_argument("--host", default="127.0.0.1", help="Chrome DevTools host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=9222, help="Chrome DevTools port (default: 9222)")
    parser.add_argument("--ws-url", help="Browser WebSocket URL (skips /json/version lookup)")
    parser.add_argument(
        "--capacity",
        type=int,
        default=Config.HISTORY_CAPACITY,
        help=f"History capacity (default: {Config.HISTORY_CAPACITY})",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=Config.EVICTION_BATCH_SIZE,
        help=f"Records evicted at once when the history is full (default: {Config.EVICTION_BATCH_SIZE})",
    )
    parser.add_argument("--show-updates", action="store_true", help="Print a line for every record update")
    parser.add_argument("--filter", default="", help="Only print history records matching this text on exit")
    parser.add_argument(
        "--type",
        choices=[resource_type.value for resource_type in ResourceType],
        help="Only print history records of this resource type on exit",
    )
    return parser.parse_args()


async def run_session(ws_url: str, engine: NetworkCorrelationEngine) -> None:
    session = AsyncCDPSession(ws_url=ws_url, engine=engine)
    try:
        await session.run()
    finally:
        logger.debug("Monitoring summary: %s", session.get_monitoring_summary())


def main() -> None:
    """Main function."""
    args = parse_arguments()
    logger.debug("Config: %s", Config.as_dict())

    try:
        ws_url = args.ws_url or get_browser_websocket_url(f"http://{args.host}:{args.port}")
        engine = NetworkCorrelationEngine(capacity=args.capacity, eviction_batch_size=args.batch_size)
    except PagetapError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(str(e))}")
        sys.exit(1)

    engine.subscribe(ConsoleObserver(show_updates=args.show_updates))
    console.print(f"[bold cyan]Monitoring[/bold cyan] {escape(ws_url)} [dim](Ctrl+C to stop)[/dim]")

    try:
        asyncio.run(run_session(ws_url, engine))
    except KeyboardInterrupt:
        logger.info("Session stopped by user")
    except PagetapError as e:
        logger.error("Session failed: %s", e)
        sys.exit(1)
    finally:
        print_history(
            engine,
            text=args.filter,
            resource_type=ResourceType(args.type) if args.type else None,
        )


if __name__ == "__main__":
    main()
