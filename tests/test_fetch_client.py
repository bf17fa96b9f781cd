"""Tests for the single-visit fetch client.

Playwright is replaced by small fakes so every exit path can be checked for
teardown without launching a browser.
"""

import asyncio
import random

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

import lot_finder.scrapers.base as base
from lot_finder.models.session import Cookie, SessionState
from lot_finder.scrapers.base import (
    USER_AGENTS,
    FetchClient,
    FetchOutcome,
    classify_status,
    is_tracking_url,
    pick_user_agent,
    should_block_request,
)

from conftest import FakeClock


# =============================================================================
# Playwright fakes
# =============================================================================

class FakeResponse:
    def __init__(self, status):
        self.status = status


class FakePage:
    def __init__(self, statuses, html):
        self.statuses = statuses
        self.html = html
        self.url = "about:blank"
        self.visited = []

    async def goto(self, url, wait_until=None):
        self.visited.append((url, wait_until))
        self.url = url
        status = self.statuses.get(url, 200)
        if isinstance(status, Exception):
            raise status
        return FakeResponse(status)

    async def content(self):
        return self.html


class FakeContext:
    def __init__(self, page):
        self.page = page
        self.cookies = []
        self.routes = []
        self.timeout = None
        self.closed = False

    async def add_cookies(self, cookies):
        self.cookies.extend(cookies)

    async def route(self, pattern, handler):
        self.routes.append(pattern)

    def set_default_navigation_timeout(self, timeout):
        self.timeout = timeout

    async def new_page(self):
        return self.page

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, context):
        self.context = context
        self.context_kwargs = None
        self.closed = False

    async def new_context(self, **kwargs):
        self.context_kwargs = kwargs
        return self.context

    async def close(self):
        self.closed = True


class FakeChromium:
    def __init__(self, browser, launch_error=None):
        self.browser = browser
        self.launch_error = launch_error

    async def launch(self, **kwargs):
        if self.launch_error:
            raise self.launch_error
        return self.browser


class FakeRequestContext:
    def __init__(self, status=None, error=None):
        self.status = status
        self.error = error
        self.disposed = False
        self.heads = []

    async def head(self, url):
        self.heads.append(url)
        if self.error:
            raise self.error
        return FakeResponse(self.status)

    async def dispose(self):
        self.disposed = True


class FakeRequestFactory:
    def __init__(self, context):
        self.context = context

    async def new_context(self, **kwargs):
        return self.context


class FakePlaywright:
    def __init__(self, statuses=None, html="<html></html>", launch_error=None, request=None):
        self.page = FakePage(statuses or {}, html)
        self.context = FakeContext(self.page)
        self.browser = FakeBrowser(self.context)
        self.chromium = FakeChromium(self.browser, launch_error)
        self.request = FakeRequestFactory(request or FakeRequestContext(status=200))
        self.stopped = False

    async def stop(self):
        self.stopped = True


class FakeStarter:
    def __init__(self, playwright):
        self.playwright = playwright

    async def start(self):
        return self.playwright


@pytest.fixture
def fake_playwright(monkeypatch):
    """Install a FakePlaywright factory; returns a setter for the instance to use."""
    holder = {}

    def install(**kwargs):
        holder["pw"] = FakePlaywright(**kwargs)
        return holder["pw"]

    monkeypatch.setattr(base, "async_playwright", lambda: FakeStarter(holder["pw"]))
    return install


TARGET = "https://www.vinted.nl/catalog?search_text=goud"


def parse_title(html, url):
    return {"html": html, "url": url}


def run(coro):
    return asyncio.run(coro)


def assert_torn_down(pw):
    assert pw.context.closed
    assert pw.browser.closed
    assert pw.stopped


# =============================================================================
# Pure helpers
# =============================================================================

class TestRequestFiltering:
    @pytest.mark.parametrize("resource_type", ["image", "font", "stylesheet", "media"])
    def test_asset_classes_blocked(self, resource_type):
        assert should_block_request(resource_type, "https://www.vinted.nl/assets/x")

    @pytest.mark.parametrize("resource_type", ["document", "script", "xhr", "fetch"])
    def test_data_requests_allowed(self, resource_type):
        assert not should_block_request(resource_type, "https://www.vinted.nl/api/v2/catalog/items")

    def test_tracking_domains_blocked(self):
        assert should_block_request("script", "https://www.googletagmanager.com/gtm.js")
        assert should_block_request("xhr", "https://stats.g.doubleclick.net/collect")

    def test_lookalike_domain_not_blocked(self):
        assert not is_tracking_url("https://notdoubleclick.net.example.com/x")


class TestClassifyStatus:
    @pytest.mark.parametrize(
        "status, expected",
        [
            (403, FetchOutcome.SOFT_BLOCKED),
            (429, FetchOutcome.RATE_LIMITED),
            (200, None),
            (404, None),
            (None, None),
        ],
    )
    def test_classify(self, status, expected):
        assert classify_status(status) is expected


class TestUserAgent:
    def test_picked_from_pool(self):
        rng = random.Random(3)
        assert {pick_user_agent(rng) for _ in range(50)} <= set(USER_AGENTS)


# =============================================================================
# Visits
# =============================================================================

class TestFetch:
    """Tests for FetchClient.fetch."""

    def test_success_parses_and_tears_down(self, settings, fake_playwright):
        pw = fake_playwright(html="<html>lots</html>")
        clock = FakeClock()
        client = FetchClient(settings, rng=random.Random(1), clock=clock)

        result = run(client.fetch(TARGET, SessionState(), parse_title))

        assert result.ok
        assert result.payload == {"html": "<html>lots</html>", "url": TARGET}
        assert pw.page.visited == [(TARGET, "networkidle")]
        assert_torn_down(pw)
        # settle delay drawn from the search range before navigating
        assert len(clock.sleeps) == 1
        assert 2.0 <= clock.sleeps[0] <= 5.0

    def test_listing_settle_delay(self, settings, fake_playwright):
        fake_playwright()
        clock = FakeClock()
        client = FetchClient(settings, rng=random.Random(1), clock=clock)

        run(client.fetch(TARGET, SessionState(), parse_title, settle_delay=(1.0, 1.0)))

        assert clock.sleeps == [1.0]

    def test_context_identity_and_cookies(self, settings, fake_playwright):
        pw = fake_playwright()
        client = FetchClient(settings, rng=random.Random(1), clock=FakeClock())
        session = SessionState(cookies=[Cookie(name="access_token_web", value="t", domain=".vinted.nl")])

        run(client.fetch(TARGET, session, parse_title))

        assert pw.browser.context_kwargs["user_agent"] in USER_AGENTS
        names = [c["name"] for c in pw.context.cookies]
        assert names == ["country", "selected_country", "access_token_web"]
        assert pw.context.routes == ["**/*"]
        assert pw.context.timeout == settings.browser.navigation_timeout_ms

    @pytest.mark.parametrize(
        "status, outcome",
        [(403, FetchOutcome.SOFT_BLOCKED), (429, FetchOutcome.RATE_LIMITED)],
    )
    def test_blocking_status(self, settings, fake_playwright, status, outcome):
        pw = fake_playwright(statuses={TARGET: status})
        client = FetchClient(settings, rng=random.Random(1), clock=FakeClock())

        result = run(client.fetch(TARGET, SessionState(), parse_title))

        assert result.outcome is outcome
        assert result.status == status
        assert result.payload is None
        assert_torn_down(pw)

    def test_timeout(self, settings, fake_playwright):
        pw = fake_playwright(statuses={TARGET: PlaywrightTimeout("Timeout 15000ms exceeded")})
        client = FetchClient(settings, rng=random.Random(1), clock=FakeClock())

        result = run(client.fetch(TARGET, SessionState(), parse_title))

        assert result.outcome is FetchOutcome.TIMEOUT
        assert_torn_down(pw)

    def test_other_error_is_transient(self, settings, fake_playwright):
        pw = fake_playwright(statuses={TARGET: PlaywrightError("net::ERR_CONNECTION_RESET")})
        client = FetchClient(settings, rng=random.Random(1), clock=FakeClock())

        result = run(client.fetch(TARGET, SessionState(), parse_title))

        assert result.outcome is FetchOutcome.TRANSIENT
        assert "ERR_CONNECTION_RESET" in result.detail
        assert_torn_down(pw)

    def test_parser_error_is_transient(self, settings, fake_playwright):
        pw = fake_playwright()
        client = FetchClient(settings, rng=random.Random(1), clock=FakeClock())

        def broken(html, url):
            raise ValueError("unexpected markup")

        result = run(client.fetch(TARGET, SessionState(), broken))

        assert result.outcome is FetchOutcome.TRANSIENT
        assert_torn_down(pw)

    def test_launch_failure_still_stops_playwright(self, settings, fake_playwright):
        pw = fake_playwright(launch_error=PlaywrightError("Executable doesn't exist"))
        client = FetchClient(settings, rng=random.Random(1), clock=FakeClock())

        result = run(client.fetch(TARGET, SessionState(), parse_title))

        assert result.outcome is FetchOutcome.TRANSIENT
        assert pw.stopped
        assert not pw.browser.closed


class TestRecover:
    def test_visits_root_first(self, settings, fake_playwright):
        pw = fake_playwright()
        client = FetchClient(settings, rng=random.Random(1), clock=FakeClock())

        result = run(client.recover(TARGET, SessionState(), parse_title))

        assert result.ok
        assert [url for url, _ in pw.page.visited] == [settings.base_url, TARGET]
        assert_torn_down(pw)

    def test_blocked_root_stops_before_target(self, settings, fake_playwright):
        pw = fake_playwright(statuses={settings.base_url: 403})
        client = FetchClient(settings, rng=random.Random(1), clock=FakeClock())

        result = run(client.recover(TARGET, SessionState(), parse_title))

        assert result.outcome is FetchOutcome.SOFT_BLOCKED
        assert [url for url, _ in pw.page.visited] == [settings.base_url]
        assert_torn_down(pw)


class TestProbe:
    """Tests for the health probe."""

    @pytest.mark.parametrize(
        "status, healthy",
        [(200, True), (301, True), (403, True), (429, False), (503, False)],
    )
    def test_status(self, settings, fake_playwright, status, healthy):
        request = FakeRequestContext(status=status)
        pw = fake_playwright(request=request)
        client = FetchClient(settings, rng=random.Random(1), clock=FakeClock())

        assert run(client.probe()) is healthy
        assert request.heads == [settings.base_url]
        assert request.disposed
        assert pw.stopped

    def test_network_error_unhealthy(self, settings, fake_playwright):
        request = FakeRequestContext(error=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))
        pw = fake_playwright(request=request)
        client = FetchClient(settings, rng=random.Random(1), clock=FakeClock())

        assert run(client.probe("https://www.vinted.nl/")) is False
        assert request.disposed
        assert pw.stopped
