"""Topic-level batch flow: discover -> pair -> verify each pair -> aggregate.

Discovery for the two venues runs concurrently; a venue that fails counts as
zero results and is reported in AgentResult.discovery_failures. Each pair is
verified independently: a failing pair is recorded and the loop moves on.
"""

import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Protocol

import config
from errors import (
    CollaboratorUnavailable,
    DiscoveryPartialFailure,
    MarketNotFound,
    VerificationError,
    VerifierError,
)
from judgment import parse_candidate_pairs
from models import (
    AgentResult,
    ArbitrageOpportunity,
    BatchStatistics,
    CandidatePair,
    HeuristicResult,
    MarketSummary,
    MatchedPairResult,
    PairFailure,
    QuickVerifyResult,
    Recommendation,
    SimilaritySource,
    Venue,
    ranked_opportunities,
)
from prompts import MATCHING_SYSTEM_PROMPT, build_matching_prompt
from verifier import Verifier, VerifyOptions

logger = logging.getLogger(__name__)


class DiscoveryService(Protocol):
    venue: Venue

    def search(self, query: str, limit: int = 20) -> list[MarketSummary]: ...


def price_spread(a: MarketSummary, b: MarketSummary) -> float | None:
    """Absolute price difference in cents, or None if either side has no price."""
    if a.observed_price is None or b.observed_price is None:
        return None
    return abs(a.observed_price - b.observed_price) * 100.0


# ── Discovery ─────────────────────────────────────────────────────────────────


def _search(discovery: DiscoveryService, query: str, limit: int) -> list[MarketSummary]:
    try:
        return discovery.search(query, limit=limit)
    except Exception as exc:
        raise DiscoveryPartialFailure(discovery.venue.value, exc) from exc


def discover_both(
    query: str,
    discovery_a: DiscoveryService,
    discovery_b: DiscoveryService,
    limit: int = config.DISCOVERY_LIMIT,
) -> tuple[list[MarketSummary], list[MarketSummary], list[DiscoveryPartialFailure]]:
    """Search both venues in parallel. A failed venue contributes no markets."""
    failures: list[DiscoveryPartialFailure] = []
    results: list[list[MarketSummary]] = []
    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(_search, d, query, limit) for d in (discovery_a, discovery_b)]
        for fut in futures:
            try:
                results.append(fut.result())
            except DiscoveryPartialFailure as exc:
                logger.warning("%s", exc)
                failures.append(exc)
                results.append([])
    return results[0], results[1], failures


# ── Pairing ───────────────────────────────────────────────────────────────────


def find_matching_pairs(
    verifier: Verifier,
    topic: str,
    markets_a: list[MarketSummary],
    markets_b: list[MarketSummary],
    min_similarity: float = config.MATCH_MIN_SIMILARITY,
) -> list[CandidatePair]:
    """Ask the judgment collaborator which cross-venue markets look like the same question."""
    if not markets_a or not markets_b:
        return []
    prompt = build_matching_prompt(topic, markets_a, markets_b, min_similarity)
    try:
        raw = verifier.judge.judge(MATCHING_SYSTEM_PROMPT, prompt, config.JUDGE_MAX_OUTPUT_TOKENS)
    except VerificationError:
        raise
    except Exception as exc:
        raise CollaboratorUnavailable("judgment", str(exc)) from exc
    pairs = parse_candidate_pairs(raw, markets_a, markets_b, min_similarity)
    logger.info("matching proposed %d candidate pair(s) for %r", len(pairs), topic)
    return pairs


def _prefetch_embeddings(verifier: Verifier, candidates: list[CandidatePair], opts: VerifyOptions) -> None:
    """Embed every market the pre-filter pass will touch in one batched request."""
    if not (opts.use_prefilter or opts.skip_judgment):
        return
    if verifier.resolve_source(SimilaritySource(opts.similarity_source)) is not SimilaritySource.EMBEDDING:
        return
    markets: dict[str, tuple[str, str, Venue]] = {}
    for cand in candidates:
        for m in (cand.market_a, cand.market_b):
            markets.setdefault(m.id, (m.id, m.question, m.venue))
    if not markets:
        return
    try:
        verifier.cache.batch_get(list(markets.values()))
    except VerifierError as exc:
        logger.warning("batched embedding failed, pairs will embed individually: %s", exc)


# ── Aggregation ───────────────────────────────────────────────────────────────


def compute_statistics(
    matched: list[MatchedPairResult],
    scanned_a: int,
    scanned_b: int,
) -> BatchStatistics:
    def count(rec: Recommendation) -> int:
        return sum(1 for p in matched if p.verification.recommendation is rec)

    return BatchStatistics(
        markets_scanned_a=scanned_a,
        markets_scanned_b=scanned_b,
        matches_found=len(matched),
        safe_to_trade=count(Recommendation.SAFE_TO_TRADE),
        proceed_with_caution=count(Recommendation.PROCEED_WITH_CAUTION),
        avoid=count(Recommendation.AVOID),
        needs_review=count(Recommendation.MANUAL_REVIEW),
    )


def build_summary(
    topic: str,
    matched: list[MatchedPairResult],
    stats: BatchStatistics,
    min_viable_spread: float = config.MIN_VIABLE_SPREAD,
) -> str:
    summary = f'Found {len(matched)} potential market matches for "{topic}". '
    arbs = ranked_opportunities(matched)
    if arbs:
        best = arbs[0]
        summary += (
            f"{len(arbs)} verified arbitrage opportunities with >{min_viable_spread:g}¢ spread. "
            f"Best: {best.market_a.id} vs {best.market_b.id} "
            f"({round(best.price_spread or 0)}¢ spread)."
        )
    elif stats.safe_to_trade > 0:
        summary += f"{stats.safe_to_trade} pairs verified safe but spreads are tight."
    elif matched:
        summary += "All matches have resolution criteria differences - review carefully."
    else:
        summary += "No equivalent market pairs found."
    return summary


# ── Batch ─────────────────────────────────────────────────────────────────────


def run_batch(
    topic: str,
    discovery_a: DiscoveryService,
    discovery_b: DiscoveryService,
    verifier: Verifier,
    max_pairs: int = config.MAX_PAIRS_PER_BATCH,
    min_similarity: float = config.MATCH_MIN_SIMILARITY,
    limit: int = config.DISCOVERY_LIMIT,
    options: VerifyOptions | None = None,
) -> AgentResult:
    """
    Discover, pair and verify markets for a topic.

    Candidates come from the matching request, so per-pair verification skips
    the local pre-filter unless options says otherwise.
    """
    base = options or VerifyOptions(use_prefilter=False)
    timestamp = datetime.now(timezone.utc).isoformat()

    markets_a, markets_b, discovery_failures = discover_both(topic, discovery_a, discovery_b, limit)
    logger.info("discovered %d %s and %d %s markets for %r",
                len(markets_a), discovery_a.venue.value, len(markets_b), discovery_b.venue.value, topic)

    if not markets_a and not markets_b:
        return AgentResult(
            topic=topic,
            timestamp=timestamp,
            summary=f'No markets found for topic: "{topic}"',
            discovery_failures=discovery_failures,
        )

    candidates = find_matching_pairs(verifier, topic, markets_a, markets_b, min_similarity)
    _prefetch_embeddings(verifier, candidates[:max_pairs], base)

    matched: list[MatchedPairResult] = []
    failures: list[PairFailure] = []
    screened: list[CandidatePair] = []
    for cand in candidates[:max_pairs]:
        spread = price_spread(cand.market_a, cand.market_b)
        opts = dataclasses.replace(base, price_spread=spread)
        try:
            outcome = verifier.verify(cand.market_a.to_criteria(), cand.market_b.to_criteria(), opts)
        except VerifierError as exc:
            logger.warning("verification failed for %s vs %s: %s", cand.market_a.id, cand.market_b.id, exc)
            failures.append(PairFailure(
                market_a_id=cand.market_a.id,
                market_b_id=cand.market_b.id,
                error=str(exc),
                error_type=type(exc).__name__,
            ))
            continue
        if isinstance(outcome, HeuristicResult):
            screened.append(cand)
            continue
        matched.append(MatchedPairResult(
            market_a=cand.market_a,
            market_b=cand.market_b,
            verification=outcome,
            price_spread=spread,
            min_viable_spread=base.min_viable_spread,
        ))

    stats = compute_statistics(matched, len(markets_a), len(markets_b))
    return AgentResult(
        topic=topic,
        timestamp=timestamp,
        matched_pairs=matched,
        summary=build_summary(topic, matched, stats, base.min_viable_spread),
        statistics=stats,
        discovery_failures=discovery_failures,
        pair_failures=failures,
        screened_out=screened,
    )


def verified_arbitrage_opportunities(
    topic: str,
    discovery_a: DiscoveryService,
    discovery_b: DiscoveryService,
    verifier: Verifier,
    **batch_kwargs,
) -> tuple[list[ArbitrageOpportunity], str]:
    """Tradeable (SAFE or CAUTION) pairs for a topic, widest spread first."""
    result = run_batch(topic, discovery_a, discovery_b, verifier, **batch_kwargs)
    tradeable = {Recommendation.SAFE_TO_TRADE, Recommendation.PROCEED_WITH_CAUTION}
    opportunities = [
        ArbitrageOpportunity(
            id_a=p.market_a.id,
            id_b=p.market_b.id,
            price_a=p.market_a.observed_price,
            price_b=p.market_b.observed_price,
            spread=p.price_spread or 0.0,
            verified=p.verification.is_match,
            recommendation=p.verification.recommendation,
        )
        for p in result.matched_pairs
        if p.verification.recommendation in tradeable
    ]
    opportunities.sort(key=lambda o: -o.spread)
    return opportunities, result.summary


# ── Single pair by id ─────────────────────────────────────────────────────────


def _lookup(discovery: DiscoveryService, identifier: str) -> MarketSummary:
    markets = discovery.search(identifier, limit=5)
    needle = identifier.lower()
    for m in markets:
        if m.id == identifier or needle in m.question.lower():
            return m
    raise MarketNotFound(discovery.venue.value, identifier)


def quick_verify(
    id_a: str,
    id_b: str,
    discovery_a: DiscoveryService,
    discovery_b: DiscoveryService,
    verifier: Verifier,
) -> QuickVerifyResult:
    """Find two specific markets by id and run a full judgment on them."""
    with ThreadPoolExecutor(max_workers=2) as pool:
        fut_a = pool.submit(_lookup, discovery_a, id_a)
        fut_b = pool.submit(_lookup, discovery_b, id_b)
        market_a, market_b = fut_a.result(), fut_b.result()

    opts = VerifyOptions(use_prefilter=False, price_spread=price_spread(market_a, market_b))
    result = verifier.verify(market_a.to_criteria(), market_b.to_criteria(), opts)
    return QuickVerifyResult(
        verified=result.is_match,
        confidence=result.match_confidence,
        recommendation=result.recommendation,
        top_misalignment=result.misalignments[0].description if result.misalignments else None,
    )
