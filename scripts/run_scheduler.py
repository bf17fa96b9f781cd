"""Run the scan scheduler, or a single cycle, against the configured searches.

Environment is read from the project .env file (see ``lot_finder.config`` for
the recognised variables).
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, UTC
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Load .env file
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

from rich.console import Console
from rich.table import Table

from lot_finder.config import config
from lot_finder.db.operations import (
    close_db,
    create_search_task,
    get_db,
    get_due_search_tasks,
    get_findings,
    get_search_tasks,
)
from lot_finder.errors import ConfigurationError
from lot_finder.models.search import ScanCycleRecord
from lot_finder.notifications import ConsoleNotifier, NullClassifier
from lot_finder.scheduler import create_scheduler


console = Console()


def show_tasks():
    """Show configured searches and which ones could be due."""
    tasks = get_search_tasks()
    if not tasks:
        console.print("\n[dim]No searches configured yet. Add one with --add LABEL URL.[/dim]")
        return

    candidates = {t.id for t in get_due_search_tasks(datetime.now(UTC), config.scan.min_interval_minutes)}

    table = Table(title=f"Searches ({len(tasks)})")
    table.add_column("Label", style="cyan")
    table.add_column("Active")
    table.add_column("Last scanned")
    table.add_column("Threshold", justify="right")
    table.add_column("Candidate", justify="center")
    for task in tasks:
        table.add_row(
            task.label,
            "yes" if task.is_active else "no",
            task.last_scanned_at.strftime("%Y-%m-%d %H:%M") if task.last_scanned_at else "never",
            f"{task.confidence_threshold}%",
            "[green]✓[/green]" if task.id in candidates else "",
        )
    console.print(table)


def show_findings():
    findings = get_findings()
    if not findings:
        console.print("\n[dim]No active findings.[/dim]")
        return
    table = Table(title=f"Findings ({len(findings)})")
    table.add_column("Title", style="cyan", max_width=40)
    table.add_column("Price", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Advice")
    table.add_column("Alerted", justify="center")
    for finding in findings:
        table.add_row(
            finding.listing_title[:40],
            finding.price or "N/A",
            f"{finding.confidence}%",
            finding.advice.value,
            "✓" if finding.alert_sent else "",
        )
    console.print(table)


def print_cycle(record: ScanCycleRecord):
    console.print("\n" + "=" * 50)
    if record.dropped:
        console.print("[yellow]Another cycle was already running - nothing done[/yellow]")
        return
    if record.vetoed:
        console.print("[red]Health check failed - cycle skipped[/red]")
        return
    console.print("[bold]Cycle Statistics:[/bold]")
    console.print(f"  Considered: {record.considered}")
    console.print(f"  Processed:  {record.processed}")
    console.print(f"  Skipped:    {record.skipped}")
    console.print(f"  Failed:     {record.failed}")
    console.print(f"  New:        {record.new_results}")
    for err in record.errors:
        console.print(f"  [red]✗[/red] {err.url}")
        console.print(f"    {err.error_type}: {err.error_message}")


async def run(once: bool) -> None:
    scheduler = create_scheduler(NullClassifier(), ConsoleNotifier(console))
    if once:
        record = await scheduler.run_cycle()
        print_cycle(record)
        return

    scheduler.start()
    console.print("[bold blue]Scheduler running[/bold blue] - press Ctrl+C to stop")
    try:
        await asyncio.Event().wait()
    finally:
        await scheduler.stop()


def main():
    parser = argparse.ArgumentParser(description="Run the marketplace scan scheduler")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle now instead of starting the timer loop",
    )
    parser.add_argument(
        "--add",
        nargs=2,
        metavar=("LABEL", "URL"),
        help="Add a search task and exit",
    )
    parser.add_argument(
        "--threshold",
        type=int,
        default=70,
        help="Confidence threshold for --add (default: 70)",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Show searches and active findings, don't scan",
    )

    args = parser.parse_args()

    try:
        get_db(config.db_path)
        if args.add:
            label, url = args.add
            task = create_search_task(label, url, confidence_threshold=args.threshold)
            console.print(f"[green]Added[/green] {task.label} ({task.id})")
        elif args.list:
            show_tasks()
            show_findings()
        else:
            asyncio.run(run(once=args.once))
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")
    finally:
        close_db()


if __name__ == "__main__":
    main()
