from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Venue(str, Enum):
    """Trading venue on either side of a compared pair (A = Kalshi, B = Polymarket)."""
    KALSHI = "KALSHI"
    POLYMARKET = "POLYMARKET"

    @property
    def label(self) -> str:
        return "Kalshi" if self is Venue.KALSHI else "Polymarket"


class MisalignmentType(str, Enum):
    RESOLUTION_DATE = "RESOLUTION_DATE"
    RESOLUTION_SOURCE = "RESOLUTION_SOURCE"
    SCOPE = "SCOPE"
    THRESHOLD = "THRESHOLD"
    DEFINITION = "DEFINITION"
    EDGE_CASE = "EDGE_CASE"


class Severity(str, Enum):
    """Ordered LOW < MEDIUM < HIGH < CRITICAL. Also used as the pair-level RiskLevel."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, other: "Severity") -> bool:
        return self.rank >= other.rank


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2, Severity.CRITICAL: 3}

RiskLevel = Severity


class Recommendation(str, Enum):
    # No caution ordering: AVOID is "known bad", MANUAL_REVIEW is "unknown".
    SAFE_TO_TRADE = "SAFE_TO_TRADE"
    PROCEED_WITH_CAUTION = "PROCEED_WITH_CAUTION"
    AVOID = "AVOID"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class HeuristicVerdict(str, Enum):
    """Outcome of the pre-filter short-circuit. Not a Recommendation."""
    UNLIKELY = "heuristic-unlikely"
    POSSIBLE = "heuristic-possible"


class SimilarityBand(str, Enum):
    HIGH = "HIGH"        # >= 0.85, likely same market
    MEDIUM = "MEDIUM"    # [0.70, 0.85)
    LOW = "LOW"          # [0.50, 0.70)
    NONE = "NONE"        # < 0.50


class TriageVerdict(str, Enum):
    LIKELY_MATCH = "LIKELY_MATCH"
    POSSIBLE_MATCH = "POSSIBLE_MATCH"
    UNLIKELY_MATCH = "UNLIKELY_MATCH"


class CachePolicy(str, Enum):
    LOOSE = "loose"    # trust the market id, ignore text changes
    STRICT = "strict"  # re-embed when the text differs from what was embedded


class SimilaritySource(str, Enum):
    AUTO = "auto"            # embedding similarity when a cache is wired, else token
    TOKEN = "token"
    EMBEDDING = "embedding"


# ── Market records ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MarketResolutionCriteria:
    venue: Venue
    market_id: str
    question: str
    description: str | None = None
    resolution_source: str | None = None
    resolution_date: str | None = None   # ISO-8601
    rules: tuple[str, ...] | None = None
    category: str | None = None


@dataclass(frozen=True)
class MarketSummary:
    """A discovered market, normalised from whatever shape the venue returned."""
    venue: Venue
    id: str
    question: str
    category: str | None = None
    close_time: str | None = None        # ISO date "YYYY-MM-DD"
    observed_price: float | None = None  # probability 0.0 - 1.0
    description: str | None = None
    resolution_source: str | None = None
    rules: tuple[str, ...] | None = None
    volume: float = 0.0
    url: str = ""

    def to_criteria(self) -> MarketResolutionCriteria:
        return MarketResolutionCriteria(
            venue=self.venue,
            market_id=self.id,
            question=self.question,
            description=self.description or None,
            resolution_source=self.resolution_source or None,
            resolution_date=self.close_time or None,
            rules=self.rules or None,
            category=self.category or None,
        )


# ── Verification results ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Misalignment:
    type: MisalignmentType
    severity: Severity
    description: str
    potential_impact: str
    value_a: str | None = None
    value_b: str | None = None


@dataclass(frozen=True)
class DetailedAnalysis:
    question_match: bool
    date_match: bool
    source_match: bool
    rules_match: bool
    scope_match: bool


@dataclass(frozen=True)
class VerificationResult:
    is_match: bool
    match_confidence: float
    semantic_similarity: float
    misalignments: tuple[Misalignment, ...]   # emission order, never re-sorted
    risk_level: Severity
    recommendation: Recommendation
    reasoning: str
    detailed_analysis: DetailedAnalysis
    # Set only when the spread rule replaced the collaborator's recommendation
    judge_recommendation: Recommendation | None = None
    prefilter_similarity: float | None = None

    @property
    def was_adjusted(self) -> bool:
        return self.judge_recommendation is not None


@dataclass(frozen=True)
class HeuristicResult:
    """Local-only outcome returned when the judgment call was skipped."""
    similarity: float
    method: str                 # "embedding_only" or "token_only"
    verdict: HeuristicVerdict
    reasoning: str
    is_match: bool = False
    should_trade: bool = False


@dataclass(frozen=True)
class PrefilterResult:
    similarity: float
    source: SimilaritySource    # TOKEN or EMBEDDING, never AUTO
    band: SimilarityBand
    should_escalate: bool


@dataclass(frozen=True)
class TriageResult:
    id_a: str
    id_b: str
    similarity: float
    verdict: TriageVerdict

    @property
    def needs_detailed_verification(self) -> bool:
        return self.verdict is not TriageVerdict.UNLIKELY_MATCH


# ── Embeddings ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EmbeddingVector:
    values: tuple[float, ...]
    source_text: str
    model: str
    generated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class CacheEntry:
    vector: EmbeddingVector
    venue: Venue


@dataclass(frozen=True)
class CacheStats:
    size: int
    hits: int
    misses: int
    generated: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


# ── Batch / agent results ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class CandidatePair:
    """A pairing proposed by the matching request, before verification."""
    market_a: MarketSummary
    market_b: MarketSummary
    similarity: float
    reason: str = ""


@dataclass(frozen=True)
class MatchedPairResult:
    market_a: MarketSummary
    market_b: MarketSummary
    verification: VerificationResult
    price_spread: float | None    # cents, abs(price_a - price_b) * 100
    min_viable_spread: float = 3.0

    @property
    def arbitrage_opportunity(self) -> bool:
        return (
            self.verification.recommendation is Recommendation.SAFE_TO_TRADE
            and self.price_spread is not None
            and self.price_spread > self.min_viable_spread
        )


@dataclass(frozen=True)
class PairFailure:
    market_a_id: str
    market_b_id: str
    error: str
    error_type: str


@dataclass
class BatchStatistics:
    markets_scanned_a: int = 0
    markets_scanned_b: int = 0
    matches_found: int = 0
    safe_to_trade: int = 0
    proceed_with_caution: int = 0
    avoid: int = 0
    needs_review: int = 0


@dataclass
class AgentResult:
    topic: str
    timestamp: str
    matched_pairs: list = field(default_factory=list)        # list[MatchedPairResult]
    summary: str = ""
    statistics: BatchStatistics = field(default_factory=BatchStatistics)
    discovery_failures: list = field(default_factory=list)   # list[DiscoveryPartialFailure]
    pair_failures: list = field(default_factory=list)        # list[PairFailure]
    screened_out: list = field(default_factory=list)         # list[CandidatePair]

    @property
    def best_opportunity(self) -> MatchedPairResult | None:
        ranked = ranked_opportunities(self.matched_pairs)
        return ranked[0] if ranked else None


@dataclass(frozen=True)
class QuickVerifyResult:
    verified: bool
    confidence: float
    recommendation: Recommendation
    top_misalignment: str | None = None


@dataclass(frozen=True)
class ArbitrageOpportunity:
    id_a: str
    id_b: str
    price_a: float | None
    price_b: float | None
    spread: float
    verified: bool
    recommendation: Recommendation


def ranked_opportunities(pairs: list[MatchedPairResult]) -> list[MatchedPairResult]:
    """Arbitrage pairs by descending spread; sort is stable so ties keep input order."""
    arbs = [p for p in pairs if p.arbitrage_opportunity]
    return sorted(arbs, key=lambda p: -(p.price_spread or 0.0))
