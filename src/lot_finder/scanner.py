"""Scan pipeline: search page -> dedup -> classify -> finding -> alert."""

from __future__ import annotations

import logging

from .clock import Clock, SystemClock
from .config import Config, config as app_config
from .db.store import ScanStore
from .errors import StorageError
from .models.listing import FindingCreate, ListingAnalysis, MarketListing, buy_advice
from .models.search import SearchTask
from .notifications import AlertRateLimiter, Classifier, Notifier
from .scrapers.parsing import parse_listing_page, parse_search_page
from .scrapers.recovery import RecoveryController

logger = logging.getLogger(__name__)


class Scanner:
    """Runs one search task end to end.

    Fetching goes through the recovery controller, so ``scan`` either returns
    or raises a typed ScrapeFailure for the caller to react to.
    """

    def __init__(
        self,
        recovery: RecoveryController,
        classifier: Classifier,
        notifier: Notifier,
        store: ScanStore,
        settings: Config | None = None,
        clock: Clock | None = None,
        alert_limiter: AlertRateLimiter | None = None,
    ):
        self.recovery = recovery
        self.classifier = classifier
        self.notifier = notifier
        self.store = store
        self.config = settings or app_config
        self.clock = clock or SystemClock()
        self.alert_limiter = alert_limiter or AlertRateLimiter(clock=self.clock)

    def _parse_search(self, html: str, url: str) -> list[MarketListing]:
        return parse_search_page(html, self.config.base_url)

    async def scan(self, task: SearchTask) -> int:
        """Scan a search task.

        Args:
            task: The search to scan.

        Returns:
            Number of new qualifying findings.

        Raises:
            ScrapeFailure: If the search page could not be fetched.
        """
        logger.info(f"=== Starting scan for: {task.label} ===")
        listings: list[MarketListing] = await self.recovery.fetch(task.search_url, self._parse_search)
        logger.info(f"Found {len(listings)} listings for {task.label}")

        if not self.classifier.is_configured:
            logger.warning("No classifier configured - listings are scored 0 and not remembered as analyzed")

        new_findings = 0
        for listing in listings:
            if self._is_seen(listing.listing_id):
                logger.debug(f"Skipping already analyzed listing: {listing.listing_id}")
                continue

            logger.info(f"Analyzing new listing: {listing.title}")
            analysis = await self.classifier.classify(listing.image_urls, listing.title, listing.description or "")
            if self.classifier.is_configured:
                try:
                    self.store.record_seen(listing.listing_id, analysis, task.id)
                except StorageError as e:
                    logger.error(f"Could not record analysis of {listing.listing_id}: {e}")

            if analysis.confidence >= task.confidence_threshold and analysis.is_valuable:
                await self._report(listing, analysis, task)
                new_findings += 1
            else:
                logger.info(f"Item below threshold ({analysis.confidence}%) - not creating finding")

            await self.clock.sleep(self.config.delay_between_analyses_seconds)

        logger.info(f"=== Scan complete: {new_findings} new findings ===")
        return new_findings

    async def _report(self, listing: MarketListing, analysis: ListingAnalysis, task: SearchTask) -> None:
        logger.info(f"Valuable item found! Confidence: {analysis.confidence}%")
        total_cost = (listing.price_amount or 0.0) + self.config.shipping_allowance
        advice = buy_advice(analysis.confidence, total_cost)
        now = self.clock.now()
        finding = FindingCreate.from_analysis(
            listing,
            analysis,
            advice,
            search_task_id=task.id,
            ttl_days=self.config.scan.finding_ttl_days,
            now=now,
        )
        try:
            finding_id = self.store.save_finding(finding, found_at=now)
        except StorageError as e:
            logger.error(f"Could not save finding for {listing.listing_id}: {e}")
            finding_id = None

        if not self.alert_limiter.can_send(listing.listing_url):
            return
        delivered = await self.notifier.notify(
            listing.title,
            listing.listing_url,
            listing.price,
            analysis.confidence,
            analysis.material,
            analysis.reasons + [f"Advice: {advice.value}"],
        )
        if not delivered:
            logger.warning(f"Alert delivery failed for {listing.listing_url}")
            return
        self.alert_limiter.record(listing.listing_url)
        if finding_id is None:
            return
        try:
            self.store.mark_alerted(finding_id)
        except StorageError as e:
            logger.error(f"Could not mark finding {finding_id} as alerted: {e}")

    def _is_seen(self, listing_id: str) -> bool:
        """Dedup lookup; a failed lookup counts as not seen."""
        try:
            return self.store.is_seen(listing_id)
        except StorageError as e:
            logger.error(f"Could not check whether {listing_id} was analyzed: {e}")
            return False

    async def analyze_listing(self, url: str) -> tuple[MarketListing, ListingAnalysis]:
        """Fetch and classify a single item page without storing anything."""
        listing: MarketListing = await self.recovery.fetch(
            url,
            parse_listing_page,
            settle_delay=self.config.browser.listing_settle_delay,
        )
        analysis = await self.classifier.classify(listing.image_urls, listing.title, listing.description or "")
        return listing, analysis
