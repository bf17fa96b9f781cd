"""Session module."""

from .store import SessionInfo, SessionStore, age_in_days, region_defaults

__all__ = [
    "SessionInfo",
    "SessionStore",
    "age_in_days",
    "region_defaults",
]
