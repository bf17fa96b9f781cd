"""Listing, analysis and finding data models."""

import re
from datetime import datetime, timedelta, UTC
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


class Material(str, Enum):
    """Material the classifier believes a lot contains."""

    GOLD = "gold"
    SILVER = "silver"
    PLATINUM = "platinum"
    MIXED = "mixed"
    COSTUME = "costume"
    UNKNOWN = "unknown"


class BuyAdvice(str, Enum):
    BUY = "BUY"
    MAYBE = "MAYBE"
    SKIP = "SKIP"


class MarketListing(BaseModel):
    """A listing as extracted from a search-results or item page."""

    listing_id: str = Field(..., description="ID from the marketplace")
    title: str = Field(..., description="Listing title")
    price: str | None = Field(None, description="Price as displayed, e.g. '€12.50'")
    image_urls: list[str] = Field(default_factory=list, description="Photo URLs")
    listing_url: str = Field(..., description="Listing URL")
    description: str | None = Field(None, description="Listing description (item pages only)")

    @property
    def price_amount(self) -> float | None:
        """Numeric price parsed from the display string."""
        if not self.price:
            return None
        cleaned = re.sub(r"[^\d.,]", "", self.price).replace(",", ".")
        # '1.234.50' -> keep the last separator as the decimal point
        if cleaned.count(".") > 1:
            head, _, tail = cleaned.rpartition(".")
            cleaned = head.replace(".", "") + "." + tail
        try:
            return float(cleaned)
        except ValueError:
            return None


class ListingAnalysis(BaseModel):
    """Result of the vision classifier for one listing."""

    confidence: int = Field(0, ge=0, le=100, description="Confidence (0-100) that the lot hides valuable items")
    is_valuable: bool = False
    material: Material = Material.UNKNOWN
    reasons: list[str] = Field(default_factory=list)

    @classmethod
    def empty(cls, reason: str = "No images to analyze") -> "ListingAnalysis":
        """Zero-confidence analysis used when there is nothing to classify."""
        return cls(confidence=0, is_valuable=False, material=Material.UNKNOWN, reasons=[reason])


def buy_advice(confidence: int, total_cost: float) -> BuyAdvice:
    """Turn a confidence score and total cost into a purchase recommendation."""
    if confidence >= 80 and total_cost <= 20:
        return BuyAdvice.BUY
    if confidence >= 60 and total_cost <= 40:
        return BuyAdvice.MAYBE
    return BuyAdvice.SKIP


class FindingCreate(BaseModel):
    """Data for creating a new finding."""

    listing_id: str
    listing_url: str
    listing_title: str
    price: str | None = None
    confidence: int
    material: Material = Material.UNKNOWN
    reasons: list[str] = Field(default_factory=list)
    advice: BuyAdvice = BuyAdvice.SKIP
    search_task_id: str | None = None
    expires_at: datetime

    @classmethod
    def from_analysis(
        cls,
        listing: MarketListing,
        analysis: ListingAnalysis,
        advice: BuyAdvice,
        search_task_id: str | None,
        ttl_days: int,
        now: datetime | None = None,
    ) -> "FindingCreate":
        found_at = now or _utc_now()
        return cls(
            listing_id=listing.listing_id,
            listing_url=listing.listing_url,
            listing_title=listing.title,
            price=listing.price,
            confidence=analysis.confidence,
            material=analysis.material,
            reasons=analysis.reasons,
            advice=advice,
            search_task_id=search_task_id,
            expires_at=found_at + timedelta(days=ttl_days),
        )


class Finding(FindingCreate):
    """Full finding model with database fields."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique finding ID")
    found_at: datetime = Field(default_factory=_utc_now)
    alert_sent: bool = False
