"""Bounded retry around the fetch client.

Each failure class gets its own remedy:

- soft block (403): shed identity - clear cookies, visit the site root, retry
  the target once inside the same attempt
- rate limit (429): keep identity, wait an escalating 1-4 minutes
- timeout / transient error: exponential backoff with jitter

After ``max_attempts`` visits the last failure is raised as a typed
ScrapeFailure so the scheduler can react per class.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..clock import Clock, SystemClock
from ..config import RetryConfig, config as app_config
from ..errors import FailureClass, ScrapeFailure, error_for
from ..models.session import SessionState
from ..session.store import SessionStore
from .base import FetchResult, PageFetcher, PageParser

logger = logging.getLogger(__name__)


class RetryAction(str, Enum):
    RETRY = "retry"
    RECOVER_THEN_RETRY = "recover_then_retry"
    COOL_DOWN_THEN_RETRY = "cool_down_then_retry"


@dataclass(frozen=True)
class RetryPlan:
    action: RetryAction
    delay_seconds: float


def backoff_delay(attempt: int, policy: RetryConfig, rng: random.Random | None = None) -> float:
    """``base × 2^attempt`` plus up to ``jitter_seconds`` of noise."""
    jitter = (rng or random).uniform(0, policy.jitter_seconds)
    return policy.base_delay_seconds * (2 ** attempt) + jitter


def rate_limit_delay(attempt: int, policy: RetryConfig, rng: random.Random | None = None) -> float:
    """Grows linearly with the attempt index: ~1, 2, 3, 4 minutes plus jitter."""
    jitter = (rng or random).uniform(0, policy.rate_limit_jitter_seconds)
    return policy.rate_limit_step_seconds * (attempt + 1) + jitter


def plan_retry(
    failure: FailureClass,
    attempt: int,
    policy: RetryConfig | None = None,
    rng: random.Random | None = None,
) -> RetryPlan:
    """Decide what to do after a failed attempt.

    Args:
        failure: Classified failure of the attempt.
        attempt: Zero-based attempt index.
        policy: Retry settings, defaults to the global config.
        rng: Random source for jitter.

    Returns:
        The action to take and the wait before the next attempt.
    """
    policy = policy or app_config.retry
    if failure is FailureClass.SOFT_BLOCKED:
        return RetryPlan(RetryAction.RECOVER_THEN_RETRY, backoff_delay(attempt, policy, rng))
    if failure is FailureClass.RATE_LIMITED:
        return RetryPlan(RetryAction.COOL_DOWN_THEN_RETRY, rate_limit_delay(attempt, policy, rng))
    return RetryPlan(RetryAction.RETRY, backoff_delay(attempt, policy, rng))


@dataclass
class RecoveryStats:
    """Counters for one ``fetch`` call."""

    attempts: int = 0
    recoveries: int = 0
    waited_seconds: float = 0.0


class RecoveryController:
    """Turns fetch client failures into a bounded retry sequence."""

    def __init__(
        self,
        fetcher: PageFetcher,
        session: SessionState,
        session_store: SessionStore | None = None,
        policy: RetryConfig | None = None,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ):
        self.fetcher = fetcher
        self.session = session
        self.session_store = session_store
        self.policy = policy or app_config.retry
        self.clock = clock or SystemClock()
        self.rng = rng or random.Random()
        self.last_stats = RecoveryStats()

    async def fetch(self, url: str, parse: PageParser, settle_delay: tuple[float, float] | None = None) -> Any:
        """Fetch and parse ``url``, retrying per failure class.

        Returns:
            The parsed payload of the first successful visit.

        Raises:
            ScrapeFailure: Typed by the class of the last failure once every
                attempt is used up.
        """
        stats = RecoveryStats()
        self.last_stats = stats

        for attempt in range(self.policy.max_attempts):
            stats.attempts += 1
            result = await self.fetcher.fetch(url, self.session, parse, settle_delay=settle_delay)
            if result.ok:
                return result.payload

            plan = plan_retry(result.failure, attempt, self.policy, self.rng)

            if plan.action is RetryAction.RECOVER_THEN_RETRY:
                removed = self.session.clear_cookies()
                stats.recoveries += 1
                logger.warning(
                    f"Soft block on {url} (attempt {attempt + 1}/{self.policy.max_attempts}), "
                    f"cleared {removed} cookies and retrying via site root"
                )
                result = await self.fetcher.recover(url, self.session, parse)
                if result.ok:
                    logger.info(f"Recovered from soft block on {url}")
                    return result.payload
                if result.failure is not FailureClass.SOFT_BLOCKED:
                    # Wait according to what the retried page actually reported
                    plan = plan_retry(result.failure, attempt, self.policy, self.rng)

            if attempt + 1 >= self.policy.max_attempts:
                raise self._give_up(url, result, stats)

            if plan.action is RetryAction.COOL_DOWN_THEN_RETRY:
                logger.warning(f"Rate limited on {url}, cooling down {plan.delay_seconds / 60:.1f}m")
            else:
                logger.info(
                    f"{result.outcome.value} on {url}, retry {attempt + 2}/{self.policy.max_attempts} "
                    f"after {plan.delay_seconds:.1f}s"
                )
            stats.waited_seconds += plan.delay_seconds
            await self.clock.sleep(plan.delay_seconds)

    def _give_up(self, url: str, result: FetchResult, stats: RecoveryStats) -> ScrapeFailure:
        error = error_for(result.failure, url, stats.attempts, result.detail)
        logger.error(f"Giving up: {error}")
        if error.failure_class is FailureClass.SOFT_BLOCKED:
            self._reset_persisted_session()
        return error

    def _reset_persisted_session(self) -> None:
        if self.session_store is None or not self.policy.reset_session_on_block:
            return
        if self.session_store.clear():
            logger.warning("Persistent soft block, persisted session cleared - run manual login to restore it")
