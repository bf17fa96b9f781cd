"""Scrapers module."""

from .base import FetchClient, FetchOutcome, FetchResult, PageFetcher, classify_status, should_block_request
from .parsing import parse_listing_page, parse_search_page
from .recovery import RecoveryController, RecoveryStats, RetryAction, RetryPlan, plan_retry

__all__ = [
    "FetchClient",
    "FetchOutcome",
    "FetchResult",
    "PageFetcher",
    "classify_status",
    "should_block_request",
    "parse_listing_page",
    "parse_search_page",
    "RecoveryController",
    "RecoveryStats",
    "RetryAction",
    "RetryPlan",
    "plan_retry",
]
