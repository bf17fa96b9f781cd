"""Shared test doubles."""

import asyncio
from collections import deque
from datetime import datetime, timedelta, UTC

import pytest

from lot_finder.config import Config
from lot_finder.models.listing import ListingAnalysis, Material
from lot_finder.scrapers.base import FetchOutcome, FetchResult


START = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)


class FakeClock:
    """Clock whose sleeps return immediately and advance ``now``."""

    def __init__(self, start: datetime = START):
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += timedelta(seconds=seconds)
        await asyncio.sleep(0)


def _as_result(item, url: str) -> FetchResult:
    if isinstance(item, FetchResult):
        return item
    if isinstance(item, FetchOutcome):
        status = {FetchOutcome.SOFT_BLOCKED: 403, FetchOutcome.RATE_LIMITED: 429}.get(item)
        return FetchResult.failed(item, url, status=status)
    return FetchResult.success(url, item, status=200)


class ScriptedFetcher:
    """PageFetcher that replays scripted outcomes.

    Each script entry is a FetchOutcome (failure) or a payload (success).
    Once a script runs out its last entry repeats.
    """

    def __init__(self, fetch=(), recover=(), healthy: bool = True):
        self.fetch_script = deque(fetch)
        self.recover_script = deque(recover)
        self.healthy = healthy
        self.fetch_calls: list[str] = []
        self.recover_calls: list[str] = []
        self.settle_delays: list = []
        self.probes: list = []

    @staticmethod
    def _next(script: deque):
        if len(script) > 1:
            return script.popleft()
        return script[0]

    async def fetch(self, url, session, parse, settle_delay=None):
        self.fetch_calls.append(url)
        self.settle_delays.append(settle_delay)
        return _as_result(self._next(self.fetch_script), url)

    async def recover(self, url, session, parse):
        self.recover_calls.append(url)
        return _as_result(self._next(self.recover_script), url)

    async def probe(self, url=None):
        self.probes.append(url)
        return self.healthy


class MemoryStore:
    """In-memory ScanStore."""

    def __init__(self, tasks=()):
        self.tasks = list(tasks)
        self.seen: dict[str, ListingAnalysis] = {}
        self.findings: dict[str, object] = {}
        self.alerted: set[str] = set()
        self.marked: list[tuple[str, datetime]] = []
        self.expired_calls: list[datetime] = []

    def list_active(self):
        return [t for t in self.tasks if t.is_active]

    def mark_scanned(self, task_id, scanned_at):
        self.marked.append((task_id, scanned_at))

    def is_seen(self, listing_id):
        return listing_id in self.seen

    def record_seen(self, listing_id, analysis, search_task_id):
        self.seen.setdefault(listing_id, analysis)

    def save_finding(self, finding, found_at=None):
        finding_id = f"finding-{len(self.findings) + 1}"
        self.findings[finding_id] = finding
        return finding_id

    def mark_alerted(self, finding_id):
        self.alerted.add(finding_id)

    def delete_expired_findings(self, now):
        self.expired_calls.append(now)
        return 0


class FakeClassifier:
    """Returns a fixed analysis per listing title, zero for anything else."""

    is_configured = True

    def __init__(self, by_title: dict[str, ListingAnalysis] | None = None):
        self.by_title = by_title or {}
        self.calls: list[str] = []

    async def classify(self, images, title, description):
        self.calls.append(title)
        if not images:
            return ListingAnalysis.empty()
        return self.by_title.get(title, ListingAnalysis(confidence=0))


class RecordingNotifier:
    def __init__(self, delivered: bool = True):
        self.delivered = delivered
        self.alerts: list[dict] = []

    async def notify(self, title, url, price, confidence, material, reasons):
        self.alerts.append(
            {"title": title, "url": url, "price": price, "confidence": confidence, "material": material, "reasons": reasons}
        )
        return self.delivered


def valuable(confidence: int = 85, material: Material = Material.GOLD) -> ListingAnalysis:
    return ListingAnalysis(confidence=confidence, is_valuable=True, material=material, reasons=["Hallmark visible"])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    """Config isolated from the environment and the project data dir."""
    return Config(
        data_dir=tmp_path,
        db_path=tmp_path / "test.db",
        session_file=tmp_path / "session.json",
        legacy_session_cookie=None,
    )
