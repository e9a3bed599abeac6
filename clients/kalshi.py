import logging

import requests

import config
from errors import CollaboratorUnavailable
from models import MarketSummary, Venue
from similarity import query_relevance

logger = logging.getLogger(__name__)

# NOTE: api.kalshi.com has moved; use api.elections.kalshi.com for public access
BASE_URL = "https://api.elections.kalshi.com/trade-api/v2"
MARKET_URL = "https://kalshi.com/markets"

MIN_RELEVANCE = 80.0


def _first(m: dict, *keys):
    """First non-null value among keys, in priority order."""
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


def _build_question(m: dict, event_title: str) -> str:
    """
    Kalshi's multi-market events share the same `title` across sub-markets.
    The distinguishing field is `no_sub_title` (e.g. "Before Jan 1, 2027"),
    so append it when it adds something the title does not already say.
    """
    title = (_first(m, "title", "subtitle") or event_title or m.get("ticker") or "").strip()
    no_sub = (m.get("no_sub_title") or "").strip()
    if no_sub and no_sub.lower() not in title.lower():
        return f"{title}: {no_sub}"
    return title


def normalize_market(m: dict, event: dict | None = None) -> MarketSummary:
    """Adapter: raw Kalshi market JSON -> MarketSummary."""
    event = event or {}
    # Prices are in cents (0-100); convert to probability (0.0-1.0)
    cents = _safe_float(_first(m, "price", "yes_bid", "last_price"))
    rules = tuple(r for r in (m.get("rules_primary"), m.get("rules_secondary")) if r)
    close = _first(m, "close_time", "expiration_time") or ""
    ticker = m.get("ticker", "")

    return MarketSummary(
        venue=Venue.KALSHI,
        id=ticker,
        question=_build_question(m, event.get("title", "")),
        category=_first(m, "category") or event.get("category"),
        close_time=close[:10] or None,
        observed_price=cents / 100.0 if cents is not None else None,
        description=_first(m, "subtitle", "yes_sub_title") or event.get("sub_title"),
        resolution_source=m.get("settlement_source") or None,
        rules=rules or None,
        volume=_safe_float(m.get("volume"), 0.0),
        url=f"{MARKET_URL}/{ticker.lower()}" if ticker else "",
    )


def _get_headers() -> dict:
    headers = {"Content-Type": "application/json"}
    if config.KALSHI_API_KEY:
        headers["Authorization"] = f"Bearer {config.KALSHI_API_KEY}"
    return headers


def _get(path: str, params: dict | None = None) -> dict:
    try:
        resp = requests.get(f"{BASE_URL}{path}", params=params, headers=_get_headers(), timeout=15)
        resp.raise_for_status()
        return resp.json()
    except requests.HTTPError as exc:
        status_code = exc.response.status_code if exc.response is not None else None
        if status_code == 401:
            raise CollaboratorUnavailable(
                "kalshi", "Kalshi requires authentication. Set KALSHI_API_KEY in your .env file."
            ) from exc
        if status_code == 403:
            raise CollaboratorUnavailable(
                "kalshi", "Kalshi access forbidden. Check your KALSHI_API_KEY permissions."
            ) from exc
        raise CollaboratorUnavailable("kalshi", f"Kalshi API error: {exc}") from exc
    except requests.RequestException as exc:
        raise CollaboratorUnavailable("kalshi", f"Kalshi API error: {exc}") from exc


def fetch_open_markets(max_events: int = 200) -> list[MarketSummary]:
    """Page through open events (with nested markets) and flatten their active markets."""
    markets: list[MarketSummary] = []
    cursor: str | None = None
    seen_events = 0
    page_size = min(max_events, 200)

    while seen_events < max_events:
        params: dict = {"limit": page_size, "with_nested_markets": "true", "status": "open"}
        if cursor:
            params["cursor"] = cursor
        body = _get("/events", params)
        page = body.get("events", [])
        if not page:
            break
        for e in page:
            seen_events += 1
            for m in e.get("markets", []):
                if m.get("status") == "active":
                    markets.append(normalize_market(m, e))
            if seen_events >= max_events:
                break
        cursor = body.get("cursor")
        if not cursor or len(page) < page_size:
            break

    return markets


class KalshiDiscovery:
    """Discovery collaborator for Kalshi: keyword search over open markets."""

    venue = Venue.KALSHI

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
        logger.debug("kalshi search %r: %d of %d markets relevant", query, len(scored), len(markets))
        return [m for _, m in scored[:limit]]
