"""Durable storage of the marketplace session.

Load order:
1. The session file written by ``scripts/manual_login.py``.
2. A single legacy session cookie supplied through ``MARKET_SESSION_COOKIE``.
3. An empty session - fetches proceed unauthenticated with reduced coverage.

Corrupt files are treated as absent, and write failures are logged and swallowed:
losing a session update must never take the scheduler down.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path

from pydantic import ValidationError

from ..config import Config, config as app_config
from ..errors import ConfigurationError
from ..models.session import Cookie, SessionState

logger = logging.getLogger(__name__)

# Cookie values may not contain separators or whitespace
_VALID_COOKIE_VALUE = re.compile(r"^[^\s;,]+$")


def region_defaults(region: str, domain: str) -> list[Cookie]:
    """Cookies that pin the site's country so the geo prompt never appears.

    Pure function, no I/O.
    """
    code = region.lower()
    return [
        Cookie(name="country", value=code, domain=domain, path="/", http_only=False, secure=True),
        Cookie(name="selected_country", value=code, domain=domain, path="/", http_only=False, secure=True),
    ]


def age_in_days(state: SessionState, now: datetime | None = None) -> float | None:
    """Age of a session in days, or None if it has no save timestamp."""
    if state.saved_at is None:
        return None
    now = now or datetime.now(UTC)
    saved_at = state.saved_at
    if saved_at.tzinfo is None:
        saved_at = saved_at.replace(tzinfo=UTC)
    return (now - saved_at).total_seconds() / 86400


@dataclass
class SessionInfo:
    """Summary of the loaded session for status output."""

    has_session: bool
    source: str
    cookies: int
    age_days: int | None = None
    is_stale: bool = False


class SessionStore:
    """Loads, saves and clears the persisted session."""

    def __init__(self, settings: Config | None = None):
        self.config = settings or app_config
        self.path = Path(self.config.session_file)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load(self) -> SessionState:
        """Load the session, falling back to the legacy cookie, then to empty."""
        state = self._load_file()
        if state is not None and state.cookies:
            age = age_in_days(state)
            if age is not None and age > self.config.session_stale_days:
                logger.warning(f"Session cookies are {int(age)} days old, may need refresh")
            elif age is not None:
                logger.info(f"Session cookies are {int(age)} days old")
            logger.info(f"Loaded {len(state.cookies)} cookies from persistent session file")
            return state

        try:
            legacy = self._legacy_session()
        except ConfigurationError as e:
            logger.warning(f"Ignoring legacy session cookie: {e}")
            legacy = None
        if legacy is not None:
            logger.info("Using legacy session cookie from environment variable")
            return legacy

        logger.warning("No valid session cookies found (file or environment), continuing unauthenticated")
        return SessionState(region=self.config.region)

    def _load_file(self) -> SessionState | None:
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            cookies = raw["cookies"]
            if not isinstance(cookies, list):
                raise ValueError("'cookies' is not a list")
            metadata = raw.get("metadata") or {}
            saved_at = metadata.get("savedAt")
            return SessionState(
                cookies=[Cookie.model_validate(c) for c in cookies],
                user_agent=metadata.get("userAgent"),
                region=metadata.get("region") or self.config.region,
                saved_at=datetime.fromisoformat(saved_at.replace("Z", "+00:00")) if saved_at else None,
                source="file",
            )
        except (OSError, ValueError, KeyError, TypeError, AttributeError, ValidationError) as e:
            logger.warning(f"Could not load session file {self.path}: {e}")
            return None

    def _legacy_session(self) -> SessionState | None:
        value = self.config.legacy_session_cookie
        if value is None:
            return None
        value = value.strip()
        if not value or not _VALID_COOKIE_VALUE.match(value):
            raise ConfigurationError("MARKET_SESSION_COOKIE is empty or not a valid cookie value")
        cookie = Cookie(
            name=self.config.legacy_cookie_name,
            value=value,
            domain=self.config.cookie_domain,
            path="/",
            http_only=True,
            secure=True,
        )
        return SessionState(
            cookies=[cookie],
            user_agent="legacy-session",
            region=self.config.region,
            saved_at=datetime.now(UTC),
            source="legacy-env",
        )

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save(self, state: SessionState) -> bool:
        """Persist a session. Returns False (and logs) on I/O failure."""
        payload = {
            "cookies": [c.model_dump(by_alias=True, exclude_none=True) for c in state.cookies],
            "metadata": {
                "savedAt": (state.saved_at or datetime.now(UTC)).isoformat(),
                "userAgent": state.user_agent or "",
                "region": state.region or self.config.region,
            },
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as e:
            logger.error(f"Could not save session file {self.path}: {e}")
            return False
        logger.info(f"Saved {len(state.cookies)} cookies to {self.path}")
        return True

    def clear(self) -> bool:
        """Delete the persisted session. Returns True if a file was removed."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Could not delete session file {self.path}: {e}")
            return False
        logger.info(f"Session file deleted: {self.path}")
        return True

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def age_in_days(self, state: SessionState) -> float | None:
        return age_in_days(state)

    def region_defaults(self, region: str | None = None) -> list[Cookie]:
        return region_defaults(region or self.config.region, self.config.cookie_domain)

    def info(self) -> SessionInfo:
        """Summarize the session that ``load()`` would return."""
        state = self.load()
        if not state.cookies:
            return SessionInfo(has_session=False, source="none", cookies=0)
        age = age_in_days(state)
        return SessionInfo(
            has_session=True,
            source=state.source,
            cookies=len(state.cookies),
            age_days=int(age) if age is not None else None,
            is_stale=age is not None and age > self.config.session_stale_days,
        )
