"""Scan scheduler.

One instance owns the control loop::

    Idle --(jittered tick)--> HealthCheck --blocked--> CoolDown --> Idle
                                   |
                                   +--ok--> Running --> cleanup --> Idle

Only one cycle runs at a time; a tick that arrives while a cycle is running
is dropped, not queued. Tasks inside a cycle are visited one after another
with human-like breaks in between, so the site only ever sees one visitor.
Missing a tick is harmless: due-ness is recomputed from each task's own
``last_scanned_at`` on the next cycle.
"""

from __future__ import annotations

import asyncio
import gc
import logging
import random
from pathlib import Path

from .clock import Clock, SystemClock
from .config import Config, ScanConfig, config as app_config
from .db.store import DatabaseStore, ScanStore
from .errors import RateLimitedError, ScrapeError, StorageError
from .models.search import ScanCycleRecord, SearchTask
from .notifications import Classifier, Notifier
from .scanner import Scanner
from .scrapers.base import FetchClient, PageFetcher
from .scrapers.recovery import RecoveryController
from .session.store import SessionStore

logger = logging.getLogger(__name__)

# Break lengths between tasks, in minutes
BREAK_PATTERNS_MINUTES = (2, 5, 15, 45)
# The two short breaks appear twice so they are drawn twice as often
WEIGHTED_BREAKS_MINUTES = BREAK_PATTERNS_MINUTES + BREAK_PATTERNS_MINUTES[:2]


def draw_interval_minutes(task: SearchTask, scan_config: ScanConfig, rng: random.Random) -> int:
    """Draw this cycle's required interval for a task, inclusive of both bounds."""
    lower, upper = task.interval_bounds(scan_config.min_interval_minutes, scan_config.max_interval_minutes)
    return rng.randint(lower, upper)


def human_like_delay_seconds(rng: random.Random) -> float:
    return rng.choice(WEIGHTED_BREAKS_MINUTES) * 60.0


def rate_limit_cooldown_seconds(scan_config: ScanConfig) -> float:
    """Longest ordinary break plus the rate-limit penalty."""
    return (max(BREAK_PATTERNS_MINUTES) + scan_config.rate_limit_penalty_minutes) * 60.0


class ScanScheduler:
    """Decides when to scan and paces the scans it runs."""

    def __init__(
        self,
        fetcher: PageFetcher,
        scanner: Scanner,
        store: ScanStore,
        settings: Config | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ):
        self.fetcher = fetcher
        self.scanner = scanner
        self.store = store
        self.config = settings or app_config
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random()

        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._triggers: set[asyncio.Task] = set()
        self.last_health_check_at = None
        self.last_cycle: ScanCycleRecord | None = None

    @property
    def scan_config(self) -> ScanConfig:
        return self.config.scan

    @property
    def is_running(self) -> bool:
        """True while a cycle (or a manual scan) holds the single-flight flag."""
        return self._running

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> bool:
        """Start the timer loop on the running event loop.

        Idempotent: returns False if the loop is already running.
        """
        if self._loop_task is not None and not self._loop_task.done():
            logger.info("Scheduler already started")
            return False

        self._loop_task = asyncio.get_running_loop().create_task(self._loop())
        cfg = self.scan_config
        logger.info("Scheduler started:")
        logger.info(f"  Random intervals: {cfg.min_interval_minutes}-{cfg.max_interval_minutes} minutes")
        logger.info(f"  Ticks every {cfg.trigger_period_minutes}m + up to {cfg.trigger_jitter_minutes}m jitter")
        logger.info(f"  Breaks between searches: {', '.join(f'{m}m' for m in BREAK_PATTERNS_MINUTES)}")
        return True

    async def stop(self) -> None:
        """Cancel the timer loop and any pending trigger."""
        tasks = [t for t in (self._loop_task, *self._triggers) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._triggers.clear()

    async def _loop(self) -> None:
        period = self.scan_config.trigger_period_minutes * 60.0
        while True:
            await self.clock.sleep(period)
            trigger = asyncio.get_running_loop().create_task(self._jittered_trigger())
            self._triggers.add(trigger)
            trigger.add_done_callback(self._triggers.discard)

    async def _jittered_trigger(self) -> None:
        jitter = self.rng.uniform(0, self.scan_config.trigger_jitter_minutes * 60.0)
        await self.clock.sleep(jitter)
        try:
            await self.run_cycle()
        except Exception as e:
            logger.error(f"Scheduler error: {e}", exc_info=True)

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    def is_due(self, task: SearchTask) -> tuple[bool, float, int | None]:
        """Whether ``task`` should be scanned in this cycle.

        Returns:
            Tuple of (due, minutes since last scan, drawn interval). A task that
            was never scanned is always due and draws no interval.
        """
        elapsed = task.minutes_since_scan(self.clock.now())
        if task.last_scanned_at is None:
            return True, elapsed, None
        required = draw_interval_minutes(task, self.scan_config, self.rng)
        return elapsed >= required, elapsed, required

    async def check_health(self) -> bool:
        self.last_health_check_at = self.clock.now()
        return await self.fetcher.probe(self.config.base_url)

    async def run_cycle(self) -> ScanCycleRecord:
        """Run one scheduled cycle over every active task."""
        if self._running:
            logger.info("Scan already running, skipping new cycle.")
            return ScanCycleRecord(started_at=self.clock.now(), dropped=True)

        self._running = True
        record = ScanCycleRecord(started_at=self.clock.now())
        logger.info("Running scheduled scans...")
        try:
            if not await self.check_health():
                record.vetoed = True
                cooldown = self.scan_config.health_cooldown_minutes
                logger.warning(f"Session health check failed, delaying scans by {cooldown} minutes")
                await self.clock.sleep(cooldown * 60.0)
                return record

            try:
                tasks = self.store.list_active()
            except StorageError as e:
                logger.error(f"Could not load search tasks: {e}")
                return record

            for task in tasks:
                await self._process(task, record)

            try:
                self.store.delete_expired_findings(self.clock.now())
            except StorageError as e:
                logger.error(f"Could not expire old findings: {e}")

            summary = f"Processed {record.processed} searches" if record.processed else "No searches processed"
            logger.info(f"Scheduled scans complete - {summary}")
            return record
        finally:
            record.finished_at = self.clock.now()
            self.last_cycle = record
            self._running = False

    async def _process(self, task: SearchTask, record: ScanCycleRecord) -> None:
        record.considered += 1
        due, elapsed, required = self.is_due(task)
        ago = "never" if task.last_scanned_at is None else f"{int(elapsed)}m ago"
        if not due:
            record.skipped += 1
            logger.info(f"Skipping {task.label} - scanned {ago} (need {required}m interval)")
            return

        interval = f"{required}m" if required is not None else "first scan"
        logger.info(f"Scanning: {task.label} (last scanned {ago}, interval: {interval})")
        try:
            found = await self.scanner.scan(task)
        except RateLimitedError as e:
            record.failed += 1
            record.errors.append(ScrapeError.from_exception(task.search_url, e))
            cooldown = rate_limit_cooldown_seconds(self.scan_config)
            logger.warning(f"Rate limit on {task.label}, cooling down {cooldown / 60:.0f} minutes")
            await self.clock.sleep(cooldown)
            return
        except Exception as e:
            record.failed += 1
            record.errors.append(ScrapeError.from_exception(task.search_url, e))
            logger.error(f"Error scanning {task.label}: {e}")
            return

        self._mark_scanned(task)
        record.processed += 1
        record.new_results += found
        logger.info(f"Completed: {task.label} ({found} new)")

        delay = human_like_delay_seconds(self.rng)
        logger.info(f"Taking {int(delay // 60)}m break...")
        await self.clock.sleep(delay)

        if self.scan_config.gc_every and record.processed % self.scan_config.gc_every == 0:
            collected = gc.collect()
            logger.info(f"Memory cleanup performed ({collected} objects)")

    def _mark_scanned(self, task: SearchTask) -> None:
        scanned_at = self.clock.now()
        task.last_scanned_at = scanned_at
        try:
            self.store.mark_scanned(task.id, scanned_at)
        except StorageError as e:
            logger.error(f"Could not record scan of {task.label}: {e}")

    # -------------------------------------------------------------------------
    # Manual scans
    # -------------------------------------------------------------------------

    async def trigger_scan(self, task: SearchTask) -> int:
        """Scan one task now, outside the timer.

        Shares the single-flight flag with scheduled cycles: if a cycle is in
        progress the request is refused and 0 is returned.

        Returns:
            Number of new qualifying results.
        """
        if self._running:
            logger.warning(f"Scan already running, not starting manual scan of {task.label}")
            return 0

        self._running = True
        try:
            found = await self.scanner.scan(task)
        except Exception as e:
            logger.error(f"Error scanning {task.label}: {e}")
            return 0
        finally:
            self._running = False

        self._mark_scanned(task)
        return found

    def trigger_scan_in_background(self, task: SearchTask) -> asyncio.Task:
        """Schedule ``trigger_scan`` without awaiting it."""
        background = asyncio.get_running_loop().create_task(self.trigger_scan(task))
        self._triggers.add(background)
        background.add_done_callback(self._triggers.discard)
        return background


def create_scheduler(
    classifier: Classifier,
    notifier: Notifier,
    settings: Config | None = None,
    store: ScanStore | None = None,
    db_path: Path | None = None,
    clock: Clock | None = None,
    rng: random.Random | None = None,
) -> ScanScheduler:
    """Wire session store, fetch client, recovery controller and scanner together."""
    settings = settings or app_config
    clock = clock or SystemClock()
    rng = rng or random.Random()

    session_store = SessionStore(settings)
    session = session_store.load()
    fetcher = FetchClient(settings, rng=rng, clock=clock)
    recovery = RecoveryController(
        fetcher,
        session,
        session_store=session_store,
        policy=settings.retry,
        clock=clock,
        rng=rng,
    )
    store = store or DatabaseStore(db_path or settings.db_path)
    scanner = Scanner(recovery, classifier, notifier, store, settings=settings, clock=clock)
    return ScanScheduler(fetcher, scanner, store, settings=settings, clock=clock, rng=rng)
