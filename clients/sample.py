"""Static demo markets. Only used when the caller explicitly asks for sample data."""

from models import MarketSummary, Venue
from similarity import query_relevance

SAMPLE_MARKETS: list[MarketSummary] = [
    MarketSummary(
        venue=Venue.KALSHI,
        id="FED-26JAN-T4.50",
        question="Will the Fed cut rates at the January 2026 meeting?",
        category="Economics",
        close_time="2026-01-28",
        observed_price=0.42,
        resolution_source="Federal Reserve FOMC statement",
        rules=("Resolves YES if the upper bound of the target range is lowered.",),
    ),
    MarketSummary(
        venue=Venue.KALSHI,
        id="KXBTC-26DEC31-T150000",
        question="Will Bitcoin be above $150,000 on Dec 31, 2026?",
        category="Crypto",
        close_time="2026-12-31",
        observed_price=0.31,
        resolution_source="CF Benchmarks BRTI",
    ),
    MarketSummary(
        venue=Venue.KALSHI,
        id="CPI-26MAR-T3.0",
        question="Will March 2026 CPI inflation be above 3.0%?",
        category="Economics",
        close_time="2026-04-10",
        observed_price=0.55,
        resolution_source="Bureau of Labor Statistics",
    ),
    MarketSummary(
        venue=Venue.POLYMARKET,
        id="fed-rate-cut-jan-2026",
        question="Fed rate cut in January 2026?",
        category="Economics",
        close_time="2026-01-28",
        observed_price=0.50,
        resolution_source="Federal Reserve press release",
    ),
    MarketSummary(
        venue=Venue.POLYMARKET,
        id="btc-150k-2026",
        question="Will Bitcoin reach $150,000 by December 31, 2026?",
        category="Crypto",
        close_time="2026-12-31",
        observed_price=0.38,
        resolution_source="Binance BTC/USDT 1-minute candle",
    ),
    MarketSummary(
        venue=Venue.POLYMARKET,
        id="us-inflation-march-2026",
        question="US inflation above 3% in March 2026?",
        category="Economics",
        close_time="2026-04-10",
        observed_price=0.52,
        resolution_source="Bureau of Labor Statistics",
    ),
]


class SampleDiscovery:
    """Discovery over SAMPLE_MARKETS for one venue."""

    def __init__(self, venue: Venue, markets: list[MarketSummary] | None = None, min_relevance: float = 50.0):
        self.venue = venue
        pool = SAMPLE_MARKETS if markets is None else markets
        self._markets = [m for m in pool if m.venue is venue]
        self.min_relevance = min_relevance

    def search(self, query: str, limit: int = 20) -> list[MarketSummary]:
        q = query.strip().lower()
        hits = [
            m for m in self._markets
            if m.id.lower() == q or query_relevance(query, m.question) >= self.min_relevance
        ]
        return hits[:limit]
