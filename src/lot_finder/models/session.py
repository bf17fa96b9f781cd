"""Session identity models.

The on-disk layout matches what Playwright's ``context.cookies()`` returns, wrapped
with a small metadata block::

    {"cookies": [...], "metadata": {"savedAt": "...", "userAgent": "...", "region": "NL"}}
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Cookie(BaseModel):
    """A single browser cookie."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    value: str
    domain: str
    path: str = "/"
    expires: float | None = None
    http_only: bool = Field(False, alias="httpOnly")
    secure: bool = False
    same_site: Literal["Strict", "Lax", "None"] | None = Field(None, alias="sameSite")

    def to_playwright(self) -> dict[str, Any]:
        """Cookie dict accepted by ``BrowserContext.add_cookies``."""
        data: dict[str, Any] = {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "httpOnly": self.http_only,
            "secure": self.secure,
        }
        if self.expires is not None and self.expires > 0:
            data["expires"] = self.expires
        if self.same_site is not None:
            data["sameSite"] = self.same_site
        return data


class SessionState(BaseModel):
    """The mutable anti-blocking identity."""

    cookies: list[Cookie] = Field(default_factory=list)
    user_agent: str | None = None
    region: str | None = None
    saved_at: datetime | None = None
    source: Literal["file", "legacy-env", "none"] = "none"

    @property
    def is_authenticated(self) -> bool:
        return bool(self.cookies)

    def clear_cookies(self) -> int:
        """Drop every cookie in place. Returns how many were removed."""
        removed = len(self.cookies)
        self.cookies.clear()
        return removed
