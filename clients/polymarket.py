import json
import logging

import requests

from errors import CollaboratorUnavailable
from models import MarketSummary, Venue
from similarity import query_relevance

logger = logging.getLogger(__name__)

BASE_URL = "https://gamma-api.polymarket.com"
MARKET_URL = "https://polymarket.com/event"

MIN_RELEVANCE = 80.0


def _first(m: dict, *keys):
    for key in keys:
        val = m.get(key)
        if val is not None:
            return val
    return None


def _safe_float(val, default=None):
    try:
        return float(val)
    except (TypeError, ValueError):
        return default


def _outcome_prices(m: dict) -> list:
    # outcomePrices is a JSON-encoded string, e.g. '["0.65", "0.35"]'
    raw = m.get("outcomePrices", [])
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            raw = []
    return raw or []


def normalize_market(m: dict, event: dict | None = None) -> MarketSummary:
    """Adapter: raw Gamma market JSON -> MarketSummary."""
    event = event or {}
    prices = _outcome_prices(m)

    # Prefer lastTradePrice (most current), fall back to outcomePrices[0]
    yes_price = _safe_float(m.get("lastTradePrice"))
    if yes_price is None and prices:
        yes_price = _safe_float(prices[0])

    tags = [t.get("label", "") for t in event.get("tags", [])]
    close = _first(m, "endDate", "closeTime") or event.get("endDate") or ""
    slug = event.get("slug") or m.get("slug") or ""

    return MarketSummary(
        venue=Venue.POLYMARKET,
        id=str(_first(m, "conditionId", "id") or ""),
        question=_first(m, "question", "title") or event.get("title", ""),
        category=_first(m, "category") or event.get("category") or (tags[0] if tags else None),
        close_time=close[:10] or None,
        observed_price=yes_price,
        description=_first(m, "description") or event.get("description"),
        resolution_source=_first(m, "resolutionSource") or event.get("resolutionSource") or None,
        volume=_safe_float(m.get("volume"), 0.0),
        url=f"{MARKET_URL}/{slug}" if slug else "",
    )


def _is_settled(m: MarketSummary) -> bool:
    """True if the market has already resolved (price pinned at 0 or 1)."""
    return m.observed_price is not None and (m.observed_price <= 0.001 or m.observed_price >= 0.999)


def fetch_open_markets(max_events: int = 200) -> list[MarketSummary]:
    markets: list[MarketSummary] = []
    offset = 0
    page_size = min(max_events, 100)
    seen_events = 0

    while seen_events < max_events:
        params: dict = {
            "limit": page_size,
            "offset": offset,
            "active": "true",
            "closed": "false",
            "order": "volume24hr",
            "ascending": "false",
        }
        try:
            resp = requests.get(f"{BASE_URL}/events", params=params, timeout=15)
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as exc:
            raise CollaboratorUnavailable("polymarket", f"Polymarket API error: {exc}") from exc

        if not data:
            break
        for e in data:
            seen_events += 1
            for m in e.get("markets", []):
                if m.get("closed", False):
                    continue
                summary = normalize_market(m, e)
                if not _is_settled(summary):
                    markets.append(summary)
            if seen_events >= max_events:
                break
        if len(data) < page_size:
            break
        offset += page_size

    return markets


class PolymarketDiscovery:
    """Discovery collaborator for Polymarket: keyword search over active markets."""

    venue = Venue.POLYMARKET

    def __init__(self, max_events: int = 200):
        self.max_events = max_events

    def search(self, query: str, limit: int = 20) -> list[MarketSummary]:
        markets = fetch_open_markets(self.max_events)
        q = query.strip().lower()
        scored = []
        for m in markets:
            score = 100.0 if m.id.lower() == q else query_relevance(query, m.question)
            if score >= MIN_RELEVANCE:
                scored.append((score, m))
        scored.sort(key=lambda item: -item[0])
        logger.debug("polymarket search %r: %d of %d markets relevant", query, len(scored), len(markets))
        return [m for _, m in scored[:limit]]
