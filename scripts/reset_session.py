"""Delete the persisted marketplace session.

Use this after repeated soft blocks; the next scan starts from a clean
identity (legacy cookie or unauthenticated) until you log in again.
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

from rich.console import Console

from lot_finder.session import SessionStore


console = Console()


def main():
    store = SessionStore()
    if store.clear():
        console.print(f"[green]Deleted[/green] {store.path}")
    else:
        console.print(f"[dim]No session file at {store.path}[/dim]")


if __name__ == "__main__":
    main()
