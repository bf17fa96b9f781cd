"""Tests for the scan pipeline."""

import asyncio

import pytest

from lot_finder.errors import SoftBlockedError, StorageError
from lot_finder.models.listing import BuyAdvice, ListingAnalysis, MarketListing, Material
from lot_finder.models.search import SearchTask
from lot_finder.notifications import AlertRateLimiter, NullClassifier
from lot_finder.scanner import Scanner

from conftest import FakeClassifier, FakeClock, MemoryStore, RecordingNotifier, valuable


TASK = SearchTask(id="task-1", label="gold lots", search_url="https://www.vinted.nl/catalog?search_text=goud")


def listing(listing_id: str, title: str, price: str = "€10", images: int = 1) -> MarketListing:
    return MarketListing(
        listing_id=listing_id,
        title=title,
        price=price,
        image_urls=[f"https://img/{listing_id}-{i}.jpg" for i in range(images)],
        listing_url=f"https://www.vinted.nl/items/{listing_id}",
    )


class StaticRecovery:
    """Stands in for the recovery controller: returns a payload or raises."""

    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.calls = []

    async def fetch(self, url, parse, settle_delay=None):
        self.calls.append((url, settle_delay))
        if self.error:
            raise self.error
        return self.payload


class LockedStore(MemoryStore):
    """MemoryStore whose named operations fail like a locked database."""

    def __init__(self, *failing):
        super().__init__()
        self.failing = set(failing)

    def _check(self, name):
        if name in self.failing:
            raise StorageError("database is locked")

    def is_seen(self, listing_id):
        self._check("is_seen")
        return super().is_seen(listing_id)

    def record_seen(self, listing_id, analysis, search_task_id):
        self._check("record_seen")
        super().record_seen(listing_id, analysis, search_task_id)

    def save_finding(self, finding, found_at=None):
        self._check("save_finding")
        return super().save_finding(finding, found_at)

    def mark_alerted(self, finding_id):
        self._check("mark_alerted")
        super().mark_alerted(finding_id)


def make_scanner(settings, payload=None, error=None, classifier=None, notifier=None, store=None, limiter=None):
    clock = FakeClock()
    scanner = Scanner(
        StaticRecovery(payload, error),
        classifier or FakeClassifier(),
        notifier or RecordingNotifier(),
        store or MemoryStore(),
        settings=settings,
        clock=clock,
        alert_limiter=limiter,
    )
    return scanner, clock


def run(coro):
    return asyncio.run(coro)


class TestScan:
    """Tests for Scanner.scan."""

    def test_qualifying_listing_creates_finding_and_alert(self, settings):
        store = MemoryStore()
        notifier = RecordingNotifier()
        classifier = FakeClassifier({"Goud lot": valuable(85)})
        scanner, _ = make_scanner(
            settings, payload=[listing("1", "Goud lot")], classifier=classifier, notifier=notifier, store=store
        )

        assert run(scanner.scan(TASK)) == 1

        [finding] = store.findings.values()
        assert finding.listing_id == "1"
        assert finding.search_task_id == "task-1"
        # €10 plus the shipping allowance stays under the BUY ceiling
        assert finding.advice is BuyAdvice.BUY
        [alert] = notifier.alerts
        assert alert["confidence"] == 85
        assert alert["material"] is Material.GOLD
        assert alert["reasons"][-1] == "Advice: BUY"
        assert store.alerted == {"finding-1"}

    def test_seen_listings_skipped(self, settings):
        store = MemoryStore()
        store.seen["1"] = ListingAnalysis(confidence=10)
        classifier = FakeClassifier()
        scanner, _ = make_scanner(
            settings, payload=[listing("1", "Old"), listing("2", "New")], classifier=classifier, store=store
        )

        run(scanner.scan(TASK))

        assert classifier.calls == ["New"]
        assert set(store.seen) == {"1", "2"}

    def test_below_threshold_not_reported(self, settings):
        store = MemoryStore()
        notifier = RecordingNotifier()
        classifier = FakeClassifier({"Maybe gold": valuable(65)})
        scanner, _ = make_scanner(
            settings, payload=[listing("1", "Maybe gold")], classifier=classifier, notifier=notifier, store=store
        )

        assert run(scanner.scan(TASK)) == 0
        assert store.findings == {}
        assert notifier.alerts == []
        assert "1" in store.seen

    def test_not_valuable_not_reported(self, settings):
        store = MemoryStore()
        analysis = ListingAnalysis(confidence=95, is_valuable=False, material=Material.COSTUME)
        scanner, _ = make_scanner(
            settings, payload=[listing("1", "Costume")], classifier=FakeClassifier({"Costume": analysis}), store=store
        )

        assert run(scanner.scan(TASK)) == 0
        assert store.findings == {}

    def test_listing_without_images_scores_zero(self, settings):
        classifier = FakeClassifier({"No photos": valuable(99)})
        store = MemoryStore()
        scanner, _ = make_scanner(
            settings, payload=[listing("1", "No photos", images=0)], classifier=classifier, store=store
        )

        assert run(scanner.scan(TASK)) == 0
        assert store.seen["1"].confidence == 0

    def test_pauses_between_analyses(self, settings):
        scanner, clock = make_scanner(settings, payload=[listing("1", "A"), listing("2", "B")])

        run(scanner.scan(TASK))

        assert clock.sleeps == [settings.delay_between_analyses_seconds] * 2

    def test_alert_limiter_suppresses_notification(self, settings):
        store = MemoryStore()
        notifier = RecordingNotifier()
        classifier = FakeClassifier({"A": valuable(90), "B": valuable(90)})
        limiter = AlertRateLimiter(max_per_window=1, clock=FakeClock())
        scanner, _ = make_scanner(
            settings,
            payload=[listing("1", "A"), listing("2", "B")],
            classifier=classifier,
            notifier=notifier,
            store=store,
            limiter=limiter,
        )

        assert run(scanner.scan(TASK)) == 2
        assert len(store.findings) == 2
        assert len(notifier.alerts) == 1
        assert store.alerted == {"finding-1"}

    def test_failed_delivery_not_marked(self, settings):
        store = MemoryStore()
        scanner, _ = make_scanner(
            settings,
            payload=[listing("1", "A")],
            classifier=FakeClassifier({"A": valuable(90)}),
            notifier=RecordingNotifier(delivered=False),
            store=store,
        )

        run(scanner.scan(TASK))

        assert len(store.findings) == 1
        assert store.alerted == set()
        assert scanner.alert_limiter.current_count() == 0

    def test_fetch_failure_propagates(self, settings):
        store = MemoryStore()
        scanner, _ = make_scanner(settings, error=SoftBlockedError(TASK.search_url, 4), store=store)

        with pytest.raises(SoftBlockedError):
            run(scanner.scan(TASK))
        assert store.seen == {}

    def test_unconfigured_classifier_leaves_listings_unseen(self, settings):
        store = MemoryStore()
        scanner, _ = make_scanner(
            settings, payload=[listing("1", "A"), listing("2", "B")], classifier=NullClassifier(), store=store
        )

        assert run(scanner.scan(TASK)) == 0
        assert store.seen == {}
        assert not store.is_seen("1")


class TestStorageFailures:
    """A failing store is logged and never ends the scan."""

    def three_valuable(self):
        payload = [listing("1", "A"), listing("2", "B"), listing("3", "C")]
        classifier = FakeClassifier({"A": valuable(90), "B": valuable(90), "C": valuable(90)})
        return payload, classifier

    def test_record_seen_failure(self, settings):
        payload, classifier = self.three_valuable()
        store = LockedStore("record_seen")
        notifier = RecordingNotifier()
        scanner, _ = make_scanner(settings, payload=payload, classifier=classifier, notifier=notifier, store=store)

        assert run(scanner.scan(TASK)) == 3
        assert classifier.calls == ["A", "B", "C"]
        assert len(store.findings) == 3
        assert len(notifier.alerts) == 3

    def test_is_seen_failure_counts_as_unseen(self, settings):
        payload, classifier = self.three_valuable()
        store = LockedStore("is_seen")
        store.seen["1"] = ListingAnalysis(confidence=10)
        scanner, _ = make_scanner(settings, payload=payload, classifier=classifier, store=store)

        assert run(scanner.scan(TASK)) == 3
        assert classifier.calls == ["A", "B", "C"]

    def test_save_finding_failure_still_alerts(self, settings):
        payload, classifier = self.three_valuable()
        store = LockedStore("save_finding")
        notifier = RecordingNotifier()
        scanner, _ = make_scanner(settings, payload=payload, classifier=classifier, notifier=notifier, store=store)

        assert run(scanner.scan(TASK)) == 3
        assert store.findings == {}
        assert len(notifier.alerts) == 3
        assert store.alerted == set()

    def test_mark_alerted_failure(self, settings):
        payload, classifier = self.three_valuable()
        store = LockedStore("mark_alerted")
        scanner, _ = make_scanner(settings, payload=payload, classifier=classifier, store=store)

        assert run(scanner.scan(TASK)) == 3
        assert len(store.findings) == 3
        assert scanner.alert_limiter.current_count() == 3


class TestAnalyzeListing:
    def test_uses_listing_delay_and_stores_nothing(self, settings):
        store = MemoryStore()
        item = listing("98765", "Gouden ketting")
        scanner, _ = make_scanner(
            settings, payload=item, classifier=FakeClassifier({"Gouden ketting": valuable(75)}), store=store
        )

        result, analysis = run(scanner.analyze_listing(item.listing_url))

        assert result is item
        assert analysis.confidence == 75
        assert scanner.recovery.calls == [(item.listing_url, settings.browser.listing_settle_delay)]
        assert store.seen == {}
