"""Fetch and classify a single listing page without storing anything.

Usage:
    python scripts/scan_listing.py https://www.vinted.nl/items/1234567890-gold-lot
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

from rich.console import Console
from rich.table import Table

from lot_finder.config import config
from lot_finder.errors import ScrapeFailure
from lot_finder.models.listing import buy_advice
from lot_finder.notifications import ConsoleNotifier, NullClassifier
from lot_finder.scheduler import create_scheduler


console = Console()


async def analyze(url: str) -> int:
    scheduler = create_scheduler(NullClassifier(), ConsoleNotifier(console))
    try:
        listing, analysis = await scheduler.scanner.analyze_listing(url)
    except ScrapeFailure as e:
        console.print(f"[red]✗[/red] {e}")
        return 1

    total_cost = (listing.price_amount or 0.0) + config.shipping_allowance
    table = Table(title=listing.title, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("ID", listing.listing_id)
    table.add_row("Price", listing.price or "N/A")
    table.add_row("Photos", str(len(listing.image_urls)))
    table.add_row("Confidence", f"{analysis.confidence}%")
    table.add_row("Material", analysis.material.value)
    table.add_row("Advice", buy_advice(analysis.confidence, total_cost).value)
    for reason in analysis.reasons:
        table.add_row("Reason", reason)
    console.print(table)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Analyze a single marketplace listing")
    parser.add_argument("url", help="Item page URL")
    args = parser.parse_args()

    sys.exit(asyncio.run(analyze(args.url)))


if __name__ == "__main__":
    main()
