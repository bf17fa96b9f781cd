"""Classifier and alert collaborators.

The vision classifier and alert delivery live outside this package; only
their call shapes are fixed here, together with the hourly alert gate the
scanner applies before notifying.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from rich.console import Console
from rich.panel import Panel

from .clock import Clock, SystemClock
from .models.listing import ListingAnalysis, Material

logger = logging.getLogger(__name__)


class Classifier(Protocol):
    is_configured: bool

    async def classify(self, images: list[str], title: str, description: str) -> ListingAnalysis:
        """Classify a listing. Must return zero confidence for an empty image list."""
        ...


class Notifier(Protocol):
    async def notify(
        self,
        title: str,
        url: str,
        price: str | None,
        confidence: int,
        material: Material,
        reasons: list[str],
    ) -> bool:
        """Deliver an alert. Returns True if it was delivered."""
        ...


class NullClassifier:
    """Used when no vision backend is configured: every listing scores zero."""

    is_configured = False

    async def classify(self, images: list[str], title: str, description: str) -> ListingAnalysis:
        if not images:
            return ListingAnalysis.empty()
        return ListingAnalysis.empty("No classifier configured")


class ConsoleNotifier:
    """Prints alerts to the terminal."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    async def notify(
        self,
        title: str,
        url: str,
        price: str | None,
        confidence: int,
        material: Material,
        reasons: list[str],
    ) -> bool:
        body = "\n".join(
            [
                f"[bold]{title}[/bold]",
                f"Price: {price or 'n/a'}",
                f"Confidence: {confidence}%  Material: {material.value}",
                *(f"  - {reason}" for reason in reasons),
                url,
            ]
        )
        self.console.print(Panel(body, title="Valuable lot found", border_style="green"))
        return True


@dataclass
class _AlertRecord:
    sent_at: datetime
    listing_url: str


class AlertRateLimiter:
    """At most ``max_per_window`` alerts per rolling window, one per listing URL."""

    def __init__(self, max_per_window: int = 10, window: timedelta = timedelta(hours=1), clock: Clock | None = None):
        self.max_per_window = max_per_window
        self.window = window
        self.clock = clock or SystemClock()
        self._alerts: deque[_AlertRecord] = deque()

    def _prune(self) -> None:
        cutoff = self.clock.now() - self.window
        while self._alerts and self._alerts[0].sent_at <= cutoff:
            self._alerts.popleft()

    def can_send(self, listing_url: str) -> bool:
        self._prune()
        if len(self._alerts) >= self.max_per_window:
            logger.info(f"Alert limit reached: {len(self._alerts)}/{self.max_per_window} in the last window")
            return False
        if any(a.listing_url == listing_url for a in self._alerts):
            logger.info(f"Duplicate alert prevented for listing: {listing_url}")
            return False
        return True

    def record(self, listing_url: str) -> None:
        self._alerts.append(_AlertRecord(sent_at=self.clock.now(), listing_url=listing_url))

    def current_count(self) -> int:
        self._prune()
        return len(self._alerts)

    def clear(self) -> None:
        self._alerts.clear()
