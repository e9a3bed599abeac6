import json

import pytest

from batch import (
    build_summary,
    compute_statistics,
    discover_both,
    price_spread,
    quick_verify,
    run_batch,
    verified_arbitrage_opportunities,
)
from conftest import FakeDiscovery, FakeEmbedder, FakeJudge, judgment_json, misalignment, summary
from embedding_cache import EmbeddingCache
from errors import CollaboratorUnavailable, MarketNotFound
from models import Recommendation, SimilaritySource, Venue, ranked_opportunities
from verifier import Verifier, VerifyOptions

K = Venue.KALSHI
P = Venue.POLYMARKET

SAFE = judgment_json()
CAUTION = judgment_json(
    riskLevel="MEDIUM",
    recommendation="PROCEED_WITH_CAUTION",
    misalignments=[misalignment("RESOLUTION_SOURCE", "LOW")],
)


def _matching(*pairs) -> str:
    return "Pairs:\n" + json.dumps([
        {"aIndex": a, "bIndex": b, "similarity": 0.9, "reason": "same event"} for a, b in pairs
    ])


def _markets(venue: Venue, prices: list[float | None], prefix: str):
    return [summary(venue, f"{prefix}{i}", f"Fed question {i}", price) for i, price in enumerate(prices, 1)]


class TestPriceSpread:
    def test_cents(self):
        a = summary(K, "K1", "q", 0.42)
        b = summary(P, "P1", "q", 0.50)
        assert price_spread(a, b) == pytest.approx(8.0)

    def test_missing_price(self):
        assert price_spread(summary(K, "K1", "q", None), summary(P, "P1", "q", 0.5)) is None


class TestDiscovery:
    def test_one_venue_failing_is_partial(self):
        ok = FakeDiscovery(P, _markets(P, [0.5], "P"))
        broken = FakeDiscovery(K, error=CollaboratorUnavailable("kalshi", "503"))
        a, b, failures = discover_both("fed", broken, ok)
        assert a == []
        assert len(b) == 1
        assert len(failures) == 1
        assert failures[0].venue == "KALSHI"
        assert isinstance(failures[0].cause, CollaboratorUnavailable)

    def test_unexpected_error_is_partial(self):
        ok = FakeDiscovery(P, _markets(P, [0.5], "P"))
        broken = FakeDiscovery(K, error=ValueError("Expecting value: line 1 column 1 (char 0)"))
        a, b, failures = discover_both("fed", broken, ok)
        assert a == []
        assert [m.id for m in b] == ["P1"]
        assert failures[0].venue == "KALSHI"
        assert isinstance(failures[0].cause, ValueError)


class TestRunBatch:
    def test_both_venues_empty_short_circuits(self):
        judge = FakeJudge(SAFE)
        result = run_batch("nothing", FakeDiscovery(K), FakeDiscovery(P), Verifier(judge))
        assert result.summary == 'No markets found for topic: "nothing"'
        assert result.matched_pairs == []
        assert judge.calls == []

    def test_one_empty_venue_makes_no_matching_call(self):
        judge = FakeJudge(SAFE, matching=_matching((1, 1)))
        result = run_batch(
            "fed",
            FakeDiscovery(K, _markets(K, [0.4], "K")),
            FakeDiscovery(P),
            Verifier(judge),
        )
        assert judge.matching_calls == 0
        assert result.statistics.markets_scanned_a == 1
        assert result.statistics.matches_found == 0
        assert "No equivalent market pairs found." in result.summary

    def test_discovery_failure_is_reported_not_fatal(self):
        judge = FakeJudge(SAFE, matching=_matching((1, 1)))
        result = run_batch(
            "fed",
            FakeDiscovery(K, error=CollaboratorUnavailable("kalshi", "down")),
            FakeDiscovery(P, _markets(P, [0.5], "P")),
            Verifier(judge),
        )
        assert len(result.discovery_failures) == 1
        assert result.matched_pairs == []

    def test_unexpected_discovery_error_does_not_abort_batch(self):
        judge = FakeJudge(SAFE, matching=_matching((1, 1)))
        result = run_batch(
            "fed",
            FakeDiscovery(K, _markets(K, [0.4], "K")),
            FakeDiscovery(P, error=KeyError("markets")),
            Verifier(judge),
        )
        assert result.statistics.markets_scanned_a == 1
        assert result.discovery_failures[0].venue == "POLYMARKET"
        assert judge.matching_calls == 0

    def test_prefilter_embeds_all_candidates_in_one_batch(self):
        embedder = FakeEmbedder()
        judge = FakeJudge(SAFE, matching=_matching((1, 1), (2, 2), (3, 3)))
        result = run_batch(
            "fed",
            FakeDiscovery(K, _markets(K, [0.40, 0.40, 0.40], "K")),
            FakeDiscovery(P, _markets(P, [0.50, 0.50, 0.50], "P")),
            Verifier(judge, cache=EmbeddingCache(embedder)),
            options=VerifyOptions(use_prefilter=True, similarity_source=SimilaritySource.EMBEDDING),
        )
        assert embedder.batch_calls == 1
        assert embedder.batch_sizes == [6]
        assert embedder.embed_calls == 0
        assert judge.verification_calls == 3
        assert len(result.matched_pairs) == 3

    def test_equal_spreads_keep_input_order(self):
        judge = FakeJudge(SAFE, matching=_matching((1, 1), (2, 2), (3, 3)))
        result = run_batch(
            "fed",
            FakeDiscovery(K, _markets(K, [0.40, 0.40, 0.40], "K")),
            FakeDiscovery(P, _markets(P, [0.50, 0.50, 0.50], "P")),
            Verifier(judge),
        )
        assert [p.market_a.id for p in ranked_opportunities(result.matched_pairs)] == ["K1", "K2", "K3"]
        assert result.best_opportunity.market_a.id == "K1"
        assert result.summary.endswith("Best: K1 vs P1 (10¢ spread).")

    def test_verifies_at_most_max_pairs(self):
        judge = FakeJudge(SAFE, matching=_matching(*[(i, i) for i in range(1, 8)]))
        result = run_batch(
            "fed",
            FakeDiscovery(K, _markets(K, [0.40] * 7, "K")),
            FakeDiscovery(P, _markets(P, [0.50] * 7, "P")),
            Verifier(judge),
        )
        assert judge.verification_calls == 5
        assert len(result.matched_pairs) == 5

    def test_statistics_and_summary_with_opportunity(self):
        judge = FakeJudge([SAFE, CAUTION, SAFE], matching=_matching((1, 1), (2, 2), (3, 3)))
        result = run_batch(
            "fed",
            FakeDiscovery(K, _markets(K, [0.40, 0.40, 0.40], "K")),
            FakeDiscovery(P, _markets(P, [0.45, 0.50, 0.41], "P")),
            Verifier(judge),
        )
        stats = result.statistics
        assert stats.matches_found == 3
        assert stats.safe_to_trade == 2
        assert stats.proceed_with_caution == 1
        assert [p.arbitrage_opportunity for p in result.matched_pairs] == [True, False, False]
        assert result.best_opportunity.market_a.id == "K1"
        assert result.summary == (
            'Found 3 potential market matches for "fed". '
            "1 verified arbitrage opportunities with >3¢ spread. "
            "Best: K1 vs P1 (5¢ spread)."
        )

    def test_pair_spread_feeds_the_downgrade(self):
        judge = FakeJudge(CAUTION, matching=_matching((1, 1)))
        result = run_batch(
            "fed",
            FakeDiscovery(K, _markets(K, [0.50], "K")),
            FakeDiscovery(P, _markets(P, [0.51], "P")),
            Verifier(judge),
        )
        verification = result.matched_pairs[0].verification
        assert verification.recommendation is Recommendation.AVOID
        assert verification.judge_recommendation is Recommendation.PROCEED_WITH_CAUTION
        assert result.statistics.avoid == 1

    def test_failing_pair_does_not_abort_batch(self):
        judge = FakeJudge(
            [SAFE, "not json at all", SAFE],
            matching=_matching((1, 1), (2, 2), (3, 3)),
        )
        result = run_batch(
            "fed",
            FakeDiscovery(K, _markets(K, [0.4, 0.4, 0.4], "K")),
            FakeDiscovery(P, _markets(P, [0.5, 0.5, 0.5], "P")),
            Verifier(judge),
        )
        assert [p.market_a.id for p in result.matched_pairs] == ["K1", "K3"]
        assert len(result.pair_failures) == 1
        assert result.pair_failures[0].market_a_id == "K2"
        assert result.pair_failures[0].error_type == "MalformedJudgment"

    def test_prefilter_screening_is_opt_in(self):
        judge = FakeJudge(SAFE, matching=_matching((1, 1)))
        kalshi = FakeDiscovery(K, [summary(K, "K1", "Bitcoin above 150k by December", 0.3)])
        poly = FakeDiscovery(P, [summary(P, "P1", "Lakers win the championship", 0.6)])
        result = run_batch("x", kalshi, poly, Verifier(judge), options=VerifyOptions(use_prefilter=True))
        assert result.matched_pairs == []
        assert len(result.screened_out) == 1
        assert judge.verification_calls == 0


class TestSummaryTemplate:
    def test_tight_spreads(self):
        judge = FakeJudge(SAFE, matching=_matching((1, 1)))
        result = run_batch(
            "fed",
            FakeDiscovery(K, _markets(K, [0.50], "K")),
            FakeDiscovery(P, _markets(P, [0.52], "P")),
            Verifier(judge),
        )
        assert result.summary.endswith("1 pairs verified safe but spreads are tight.")

    def test_no_matches(self):
        stats = compute_statistics([], 1, 1)
        assert build_summary("fed", [], stats).endswith("No equivalent market pairs found.")


class TestArbitrageList:
    def test_tradeable_pairs_sorted_by_spread(self):
        avoid = judgment_json(isMatch=False, riskLevel="HIGH", recommendation="AVOID")
        judge = FakeJudge([CAUTION, SAFE, avoid], matching=_matching((1, 1), (2, 2), (3, 3)))
        opportunities, summary_text = verified_arbitrage_opportunities(
            "fed",
            FakeDiscovery(K, _markets(K, [0.40, 0.40, 0.40], "K")),
            FakeDiscovery(P, _markets(P, [0.45, 0.60, 0.90], "P")),
            Verifier(judge),
        )
        assert [o.id_a for o in opportunities] == ["K2", "K1"]
        assert opportunities[0].spread == pytest.approx(20.0)
        assert summary_text.startswith('Found 3 potential market matches for "fed".')


class TestQuickVerify:
    def test_found_by_id_and_phrase(self):
        kalshi = FakeDiscovery(K, [summary(K, "FED-26JAN", "Will the Fed cut in January?", 0.40)])
        poly = FakeDiscovery(P, [summary(P, "0xabc", "Fed rate cut in January?", 0.50)])
        judge = FakeJudge(CAUTION)
        result = quick_verify("FED-26JAN", "fed rate cut", kalshi, poly, Verifier(judge))
        assert result.verified is True
        assert result.recommendation is Recommendation.PROCEED_WITH_CAUTION
        assert result.top_misalignment == "Markets resolve on different dates"
        assert judge.verification_calls == 1

    def test_missing_market_raises(self):
        kalshi = FakeDiscovery(K, [summary(K, "FED-26JAN", "Will the Fed cut?", 0.40)])
        poly = FakeDiscovery(P, [])
        with pytest.raises(MarketNotFound) as info:
            quick_verify("FED-26JAN", "0xmissing", kalshi, poly, Verifier(FakeJudge(SAFE)))
        assert info.value.venue == "POLYMARKET"
