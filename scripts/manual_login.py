"""Log in to the marketplace by hand and persist the session cookies.

Opens a visible browser on the site. Log in as you normally would; once the
account menu shows up the cookies are written to MARKET_SESSION_FILE and the
browser closes.

Usage:
    python scripts/manual_login.py [--timeout MINUTES]
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, UTC
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

from playwright.async_api import TimeoutError as PlaywrightTimeout, async_playwright
from rich.console import Console

from lot_finder.config import config
from lot_finder.models.session import Cookie, SessionState
from lot_finder.scrapers.base import BROWSER_ARGS, pick_user_agent
from lot_finder.session import SessionStore


console = Console()

LOGGED_IN_SELECTOR = '[data-testid="header-user-menu"], .user-menu, [href*="/account"]'


async def login(timeout_minutes: int) -> bool:
    store = SessionStore()
    user_agent = pick_user_agent()

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=False, args=BROWSER_ARGS)
        try:
            context = await browser.new_context(user_agent=user_agent)
            await context.add_cookies([c.to_playwright() for c in store.region_defaults()])
            page = await context.new_page()
            await page.goto(config.base_url, wait_until="domcontentloaded")

            console.print(f"[bold]Log in in the browser window[/bold] (waiting up to {timeout_minutes} minutes)")
            try:
                await page.wait_for_selector(LOGGED_IN_SELECTOR, timeout=timeout_minutes * 60 * 1000)
            except PlaywrightTimeout:
                console.print("[red]Timed out waiting for login[/red]")
                return False

            cookies = [Cookie.model_validate(c) for c in await context.cookies()]
        finally:
            await browser.close()

    state = SessionState(
        cookies=cookies,
        user_agent=user_agent,
        region=config.region,
        saved_at=datetime.now(UTC),
        source="file",
    )
    if not store.save(state):
        console.print(f"[red]Could not write {store.path}[/red]")
        return False
    console.print(f"[green]Saved {len(cookies)} cookies[/green] to {store.path}")
    return True


def main():
    parser = argparse.ArgumentParser(description="Log in manually and save the session")
    parser.add_argument(
        "--timeout",
        type=int,
        default=5,
        help="Minutes to wait for the login to complete (default: 5)",
    )
    args = parser.parse_args()

    if not asyncio.run(login(args.timeout)):
        sys.exit(1)


if __name__ == "__main__":
    main()
