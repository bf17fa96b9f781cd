"""Extraction of listing data from rendered marketplace pages.

The site embeds its data as JSON inside ``<script>`` tags, which is far more
stable than its CSS classes. Only that JSON is read here; anything that
cannot be decoded is skipped rather than guessed at.
"""

import json
import logging
import re
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from ..models.listing import MarketListing

logger = logging.getLogger(__name__)

_CATALOG_ITEMS_KEY = '"catalog_items"'
_INITIAL_DATA_KEY = "window.__INITIAL_DATA__"
_ITEM_ID_RE = re.compile(r"/items/(\d+)")


def _scripts(soup: BeautifulSoup) -> list[str]:
    return [script.string for script in soup.find_all("script") if script.string]


def _decode_from(content: str, start: int, label: str) -> Any:
    """Decode the JSON value starting at ``start``; None if it is not valid JSON."""
    try:
        value, _ = json.JSONDecoder().raw_decode(content, start)
    except json.JSONDecodeError as e:
        logger.debug(f"Could not decode {label}: {e}")
        return None
    return value


def _decode_array_after(content: str, key: str) -> list[Any] | None:
    """Decode the JSON array that follows ``key:`` in a script body."""
    idx = content.find(key)
    if idx < 0:
        return None
    start = content.find("[", idx + len(key))
    if start < 0:
        return None
    value = _decode_from(content, start, f"{key} array")
    return value if isinstance(value, list) else None


def _decode_assignment(content: str, name: str) -> dict[str, Any] | None:
    """Decode the object assigned to ``name = {...}`` in a script body."""
    idx = content.find(name)
    if idx < 0:
        return None
    equals = content.find("=", idx + len(name))
    if equals < 0:
        return None
    start = content.find("{", equals)
    if start < 0:
        return None
    value = _decode_from(content, start, name)
    return value if isinstance(value, dict) else None


def _photo_urls(photos: Any) -> list[str]:
    urls = []
    for photo in photos or []:
        if isinstance(photo, dict):
            url = photo.get("url") or photo.get("full_size_url")
            if url:
                urls.append(url)
    return urls


def _format_price(price: Any) -> str | None:
    if price is None or price == "":
        return None
    if isinstance(price, dict):
        amount = price.get("amount")
        currency = price.get("currency_code") or price.get("currency") or ""
        return f"{amount} {currency}".strip() if amount is not None else None
    return f"€{price}"


def parse_search_page(html: str, base_url: str) -> list[MarketListing]:
    """Extract listings from a search-results page.

    Args:
        html: Rendered page HTML.
        base_url: Site root used to build item URLs missing from the data.

    Returns:
        Listings in page order, de-duplicated by ID.
    """
    soup = BeautifulSoup(html, "html.parser")
    listings: list[MarketListing] = []
    seen: set[str] = set()
    for content in _scripts(soup):
        items = _decode_array_after(content, _CATALOG_ITEMS_KEY)
        if not items:
            continue
        for item in items:
            if not isinstance(item, dict) or not item.get("id") or not item.get("title"):
                continue
            listing_id = str(item["id"])
            if listing_id in seen:
                continue
            seen.add(listing_id)
            listings.append(
                MarketListing(
                    listing_id=listing_id,
                    title=item["title"],
                    price=_format_price(item.get("price")) or "Price not available",
                    image_urls=_photo_urls(item.get("photos")),
                    listing_url=item.get("url") or urljoin(base_url, f"/items/{listing_id}"),
                )
            )
    return listings


def parse_listing_page(html: str, url: str) -> MarketListing:
    """Extract a single listing from an item page.

    Falls back to the ``<h1>`` for the title when the embedded data is missing.
    """
    soup = BeautifulSoup(html, "html.parser")
    id_match = _ITEM_ID_RE.search(url)
    listing_id = id_match.group(1) if id_match else "unknown"

    title = ""
    price = None
    image_urls: list[str] = []
    description = None

    for content in _scripts(soup):
        data = _decode_assignment(content, _INITIAL_DATA_KEY)
        if data is None:
            continue
        item = (data.get("item") or {}).get("item")
        if isinstance(item, dict):
            title = item.get("title") or ""
            price = _format_price(item.get("price"))
            image_urls = _photo_urls(item.get("photos"))
            description = item.get("description")
            break

    if not title:
        h1 = soup.find("h1")
        title = " ".join(h1.get_text().split()) if h1 else ""
        title = title or "Untitled"

    return MarketListing(
        listing_id=listing_id,
        title=title,
        price=price or "Price not available",
        image_urls=image_urls,
        listing_url=url,
        description=description,
    )
