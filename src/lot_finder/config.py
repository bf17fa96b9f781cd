"""Configuration management."""

import os
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, Field, ValidationError, model_validator

from .errors import ConfigurationError


class ScanConfig(BaseModel):
    """Pacing settings for the scan scheduler."""

    # Per-task random interval bounds
    min_interval_minutes: int = Field(
        default=70,
        gt=0,
        description="Lower bound of the randomly drawn interval between scans of a task",
    )
    max_interval_minutes: int = Field(
        default=150,
        gt=0,
        description="Upper bound of the randomly drawn interval between scans of a task",
    )

    # Timer driving the cycles
    trigger_period_minutes: int = Field(default=20, gt=0, description="Base period of the scheduler timer")
    trigger_jitter_minutes: int = Field(default=15, ge=0, description="Max random offset added to each tick")

    # Cool-downs
    health_cooldown_minutes: int = Field(
        default=30,
        description="Wait after a failed health check before the next cycle can start",
    )
    rate_limit_penalty_minutes: int = Field(
        default=30,
        description="Extra cool-down on top of the longest break after a rate-limited task",
    )

    # Memory relief every N processed tasks
    gc_every: int = 3

    # Findings older than this are expired at the end of a cycle
    finding_ttl_days: int = 15

    @model_validator(mode="after")
    def _check_bounds(self) -> "ScanConfig":
        if self.min_interval_minutes > self.max_interval_minutes:
            raise ValueError(
                f"min_interval_minutes ({self.min_interval_minutes}) exceeds "
                f"max_interval_minutes ({self.max_interval_minutes})"
            )
        return self


class RetryConfig(BaseModel):
    """Recovery controller policy."""

    max_attempts: int = Field(default=4, ge=1)
    base_delay_seconds: float = Field(default=1.0, description="Base of the exponential backoff")
    jitter_seconds: float = Field(default=1.0, description="Max random jitter added to backoff")
    rate_limit_step_seconds: float = Field(
        default=60.0,
        description="Rate-limit wait grows by this much per attempt (~1-4 minutes over 4 attempts)",
    )
    rate_limit_jitter_seconds: float = 30.0
    reset_session_on_block: bool = Field(
        default=True,
        description="Delete the persisted session after a terminal soft block",
    )


class BrowserConfig(BaseModel):
    """Settings for the single-visit browser client."""

    headless: bool = True
    navigation_timeout_ms: int = 15_000
    probe_timeout_ms: int = 10_000
    # Randomized pause before each navigation, in seconds (min, max)
    search_settle_delay: tuple[float, float] = (2.0, 5.0)
    listing_settle_delay: tuple[float, float] = (1.0, 3.0)


class Config(BaseModel):
    """Application configuration."""

    # Project paths - config.py is at src/lot_finder/config.py, so 3 parents up
    project_root: Path = Path(__file__).parent.parent.parent
    data_dir: Path = project_root / "data"
    db_path: Path = data_dir / "lot_finder.db"

    # Target site
    base_url: str = "https://www.vinted.nl"

    # Session settings
    session_file: Path = data_dir / "market-session.json"
    region: str = "NL"
    legacy_session_cookie: str | None = None
    legacy_cookie_name: str = "_vinted_fr_session"
    session_stale_days: int = 30

    # Scanning
    delay_between_analyses_seconds: float = 3.0
    shipping_allowance: float = 4.0

    scan: ScanConfig = Field(default_factory=ScanConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)

    @property
    def cookie_domain(self) -> str:
        """Cookie domain covering every subdomain of the site, e.g. '.vinted.nl'."""
        host = urlparse(self.base_url).hostname or ""
        if host.startswith("www."):
            host = host[4:]
        return f".{host}"

    def ensure_dirs(self) -> None:
        """Ensure required directories exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.session_file.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Config":
        """Build a Config from environment variables.

        Unset variables keep their defaults.

        Raises:
            ConfigurationError: If a value is not a valid integer or the interval
                bounds are inconsistent.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        def _int(name: str, default: int) -> int:
            raw = env.get(name)
            if raw is None or raw.strip() == "":
                return default
            try:
                return int(raw)
            except ValueError:
                raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None

        try:
            scan = ScanConfig(
                min_interval_minutes=_int("SCAN_MIN_INTERVAL_MINUTES", defaults.scan.min_interval_minutes),
                max_interval_minutes=_int("SCAN_MAX_INTERVAL_MINUTES", defaults.scan.max_interval_minutes),
                trigger_period_minutes=_int("SCAN_TRIGGER_MINUTES", defaults.scan.trigger_period_minutes),
                trigger_jitter_minutes=_int("SCAN_TRIGGER_JITTER_MINUTES", defaults.scan.trigger_jitter_minutes),
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid scan interval settings: {e}") from e

        overrides: dict = {"scan": scan}
        if env.get("MARKET_BASE_URL"):
            overrides["base_url"] = env["MARKET_BASE_URL"].rstrip("/")
        if env.get("MARKET_SESSION_FILE"):
            overrides["session_file"] = Path(env["MARKET_SESSION_FILE"])
        if env.get("MARKET_REGION"):
            overrides["region"] = env["MARKET_REGION"]
        if env.get("MARKET_SESSION_COOKIE") is not None:
            overrides["legacy_session_cookie"] = env["MARKET_SESSION_COOKIE"]
        if env.get("LOT_FINDER_DB"):
            overrides["db_path"] = Path(env["LOT_FINDER_DB"])

        return defaults.model_copy(update=overrides)


# Global config instance
config = Config.from_env()
