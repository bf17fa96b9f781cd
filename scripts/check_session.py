"""Show where the marketplace session comes from and how old it is.

Usage:
    python scripts/check_session.py
"""

import logging
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

logging.basicConfig(level=logging.WARNING, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

from rich.console import Console

from lot_finder.config import config
from lot_finder.session import SessionStore


console = Console()


def main():
    store = SessionStore()
    info = store.info()

    console.print(f"\n[bold]Session file:[/bold] {store.path}")
    if not info.has_session:
        console.print("[red]No session found[/red] - scans will run unauthenticated")
        console.print("Run [cyan]python scripts/manual_login.py[/cyan] to log in")
        sys.exit(1)

    console.print(f"[bold]Source:[/bold]  {info.source}")
    console.print(f"[bold]Cookies:[/bold] {info.cookies}")

    if info.age_days is None:
        console.print("[yellow]Session has no save timestamp[/yellow]")
    elif info.age_days < 7:
        console.print(f"[green]Fresh[/green] - {info.age_days} days old")
    elif info.age_days <= config.session_stale_days:
        console.print(f"[yellow]Aging[/yellow] - {info.age_days} days old, consider refreshing soon")
    else:
        console.print(f"[red]Stale[/red] - {info.age_days} days old, log in again")


if __name__ == "__main__":
    main()
