"""Single-visit browser client.

Every call launches its own browser and context, loads one page under a
pool-random user agent and tears everything down again before returning.
Transport errors never escape: each visit ends in a classified FetchResult.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Protocol, TypeVar
from urllib.parse import urlparse

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Playwright,
    Route,
    TimeoutError as PlaywrightTimeout,
    async_playwright,
)

from ..clock import Clock, SystemClock
from ..config import Config, config as app_config
from ..errors import FailureClass
from ..models.session import SessionState
from ..session.store import region_defaults

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A parser receives the rendered HTML and the final URL
PageParser = Callable[[str, str], T]


# =============================================================================
# Identity and request filtering
# =============================================================================

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
)

EXTRA_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Upgrade-Insecure-Requests": "1",
}

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-blink-features=AutomationControlled",
    "--no-first-run",
    "--disable-gpu",
]

# Asset classes that never carry listing data
BLOCKED_RESOURCE_TYPES = frozenset({"image", "font", "stylesheet", "media"})

TRACKING_DOMAINS = (
    "google-analytics.com",
    "googletagmanager.com",
    "googlesyndication.com",
    "doubleclick.net",
    "facebook.net",
    "connect.facebook.com",
    "hotjar.com",
    "criteo.com",
    "criteo.net",
    "adnxs.com",
    "scorecardresearch.com",
    "taboola.com",
    "tiktok.com",
    "bing.com",
)


def pick_user_agent(rng: random.Random | None = None) -> str:
    """Pick a user agent from the pool. Not persisted anywhere."""
    return (rng or random).choice(USER_AGENTS)


def is_tracking_url(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return any(host == domain or host.endswith("." + domain) for domain in TRACKING_DOMAINS)


def should_block_request(resource_type: str, url: str) -> bool:
    """Whether a request can be aborted without affecting extracted data."""
    return resource_type in BLOCKED_RESOURCE_TYPES or is_tracking_url(url)


# =============================================================================
# Results
# =============================================================================

class FetchOutcome(str, Enum):
    SUCCESS = "success"
    SOFT_BLOCKED = "soft_blocked"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    TRANSIENT = "transient"


_OUTCOME_FAILURES = {
    FetchOutcome.SOFT_BLOCKED: FailureClass.SOFT_BLOCKED,
    FetchOutcome.RATE_LIMITED: FailureClass.RATE_LIMITED,
    FetchOutcome.TIMEOUT: FailureClass.TIMEOUT,
    FetchOutcome.TRANSIENT: FailureClass.TRANSIENT,
}


def classify_status(status: int | None) -> FetchOutcome | None:
    """Map a blocking HTTP status to its outcome, or None if the page is usable."""
    if status == 403:
        return FetchOutcome.SOFT_BLOCKED
    if status == 429:
        return FetchOutcome.RATE_LIMITED
    return None


@dataclass
class FetchResult(Generic[T]):
    """Outcome of one page visit. Transient, never persisted."""

    outcome: FetchOutcome
    url: str
    payload: T | None = None
    status: int | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is FetchOutcome.SUCCESS

    @property
    def failure(self) -> FailureClass | None:
        return _OUTCOME_FAILURES.get(self.outcome)

    @classmethod
    def success(cls, url: str, payload: T, status: int | None = None) -> "FetchResult[T]":
        return cls(FetchOutcome.SUCCESS, url, payload=payload, status=status)

    @classmethod
    def failed(
        cls, outcome: FetchOutcome, url: str, status: int | None = None, detail: str | None = None
    ) -> "FetchResult[T]":
        return cls(outcome, url, status=status, detail=detail)

    def __repr__(self) -> str:
        return f"FetchResult({self.outcome.value}, {self.url}, status={self.status})"


class PageFetcher(Protocol):
    """What the recovery controller and scheduler need from a fetch client."""

    async def fetch(
        self,
        url: str,
        session: SessionState,
        parse: PageParser,
        settle_delay: tuple[float, float] | None = None,
    ) -> FetchResult: ...

    async def recover(self, url: str, session: SessionState, parse: PageParser) -> FetchResult: ...

    async def probe(self, url: str | None = None) -> bool: ...


# =============================================================================
# Client
# =============================================================================

@dataclass
class _Browsing:
    """Resources held for the duration of one visit."""

    playwright: Playwright | None = None
    browser: Browser | None = None
    context: BrowserContext | None = None


class FetchClient:
    """Loads exactly one logical page per call."""

    def __init__(
        self,
        settings: Config | None = None,
        rng: random.Random | None = None,
        clock: Clock | None = None,
    ):
        self.config = settings or app_config
        self.rng = rng or random.Random()
        self.clock = clock or SystemClock()

    async def fetch(
        self,
        url: str,
        session: SessionState,
        parse: PageParser,
        settle_delay: tuple[float, float] | None = None,
    ) -> FetchResult:
        """Visit ``url`` with the session's cookies and parse the page."""
        delay_range = settle_delay or self.config.browser.search_settle_delay
        await self.clock.sleep(self.rng.uniform(*delay_range))
        return await self._visit(url, session, parse, via_root=False)

    async def recover(self, url: str, session: SessionState, parse: PageParser) -> FetchResult:
        """Visit the site root first, then ``url``, in a fresh context.

        The caller is expected to have cleared the session cookies; only the
        region defaults are carried into the new context.
        """
        return await self._visit(url, session, parse, via_root=True)

    async def probe(self, url: str | None = None) -> bool:
        """Lightweight HEAD request against the site.

        A bare 403 is normal for unauthenticated HEAD requests on this site;
        network errors, 429 and server errors count as unhealthy.
        """
        target = url or self.config.base_url
        playwright: Playwright | None = None
        try:
            playwright = await async_playwright().start()
            request = await playwright.request.new_context(
                user_agent=pick_user_agent(self.rng),
                timeout=self.config.browser.probe_timeout_ms,
            )
            try:
                response = await request.head(target)
                status = response.status
            finally:
                await request.dispose()
        except PlaywrightError as e:
            logger.warning(f"Session health check failed: {e}")
            return False
        finally:
            if playwright is not None:
                await playwright.stop()

        healthy = status < 400 or status == 403
        logger.info(f"Session health check: {'healthy' if healthy else 'issues detected'} (HTTP {status})")
        return healthy

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _setup(self, handle: _Browsing, session: SessionState) -> BrowserContext:
        """Fill ``handle`` as resources are created so a failure midway still tears down."""
        handle.playwright = await async_playwright().start()
        handle.browser = await handle.playwright.chromium.launch(
            headless=self.config.browser.headless,
            args=BROWSER_ARGS,
        )
        handle.context = await handle.browser.new_context(
            user_agent=pick_user_agent(self.rng),
            extra_http_headers=EXTRA_HEADERS,
        )
        cookies = region_defaults(session.region or self.config.region, self.config.cookie_domain)
        cookies += session.cookies
        await handle.context.add_cookies([c.to_playwright() for c in cookies])
        await handle.context.route("**/*", self._filter_route)
        handle.context.set_default_navigation_timeout(self.config.browser.navigation_timeout_ms)
        return handle.context

    async def _teardown(self, handle: _Browsing) -> None:
        """Release every browser resource, whatever state the visit ended in."""
        for close in (
            handle.context.close if handle.context else None,
            handle.browser.close if handle.browser else None,
            handle.playwright.stop if handle.playwright else None,
        ):
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.debug(f"Teardown error ignored: {e}")

    @staticmethod
    async def _filter_route(route: Route) -> None:
        request = route.request
        if should_block_request(request.resource_type, request.url):
            await route.abort()
        else:
            await route.continue_()

    async def _visit(self, url: str, session: SessionState, parse: PageParser, via_root: bool) -> FetchResult:
        handle = _Browsing()
        try:
            context = await self._setup(handle, session)
            page = await context.new_page()

            if via_root:
                logger.info(f"Re-navigating to {self.config.base_url} before retrying {url}")
                response = await page.goto(self.config.base_url, wait_until="domcontentloaded")
                status = response.status if response else None
                blocked = classify_status(status)
                if blocked is not None:
                    return FetchResult.failed(blocked, url, status=status, detail="site root")

            response = await page.goto(url, wait_until="networkidle")
            status = response.status if response else None
            blocked = classify_status(status)
            if blocked is not None:
                logger.warning(f"HTTP {status} for {url}")
                return FetchResult.failed(blocked, url, status=status)

            html = await page.content()
            payload = parse(html, page.url)
            logger.debug(f"Loaded {url} (HTTP {status})")
            return FetchResult.success(url, payload, status=status)
        except PlaywrightTimeout as e:
            logger.warning(f"Navigation timeout for {url}: {e}")
            return FetchResult.failed(FetchOutcome.TIMEOUT, url, detail=str(e))
        except Exception as e:
            logger.warning(f"Fetch error for {url}: {type(e).__name__}: {e}")
            return FetchResult.failed(FetchOutcome.TRANSIENT, url, detail=f"{type(e).__name__}: {e}")
        finally:
            await self._teardown(handle)
