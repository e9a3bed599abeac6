import dataclasses

import pytest

from conftest import FakeEmbedder, FakeJudge, judgment_json, misalignment
from embedding_cache import EmbeddingCache
from errors import CollaboratorUnavailable, InvalidJudgment, MalformedJudgment
from judgment import parse_verification
from models import (
    HeuristicResult,
    HeuristicVerdict,
    MarketResolutionCriteria,
    Recommendation,
    Severity,
    SimilaritySource,
    VerificationResult,
    Venue,
)
from prompts import VERIFICATION_SYSTEM_PROMPT
from verifier import Verifier, VerifyOptions, finalize, is_arbitrage_opportunity

DATE_MISMATCH = judgment_json(
    isMatch=True,
    matchConfidence=0.8,
    riskLevel="MEDIUM",
    recommendation="PROCEED_WITH_CAUTION",
    reasoning="Same question but the settlement dates differ by three days.",
    misalignments=[misalignment("RESOLUTION_DATE", "MEDIUM")],
    detailedAnalysis={
        "questionMatch": True,
        "dateMatch": False,
        "sourceMatch": True,
        "rulesMatch": True,
        "scopeMatch": True,
    },
)


def _unrelated():
    a = MarketResolutionCriteria(Venue.KALSHI, "K-BTC", "Will Bitcoin close above 150000 dollars?")
    b = MarketResolutionCriteria(Venue.POLYMARKET, "P-NBA", "Will the Lakers win the championship?")
    return a, b


class TestPrefilter:
    def test_low_token_similarity_short_circuits(self):
        judge = FakeJudge(judgment_json())
        verifier = Verifier(judge)
        result = verifier.verify(*_unrelated(), VerifyOptions(similarity_source=SimilaritySource.TOKEN))

        assert isinstance(result, HeuristicResult)
        assert result.method == "token_only"
        assert result.verdict is HeuristicVerdict.UNLIKELY
        assert result.is_match is False
        assert result.should_trade is False
        assert judge.calls == []

    def test_embedding_similarity_short_circuits_with_cache(self):
        judge = FakeJudge(judgment_json())
        cache = EmbeddingCache(FakeEmbedder({
            "Will Bitcoin close above 150000 dollars?": [1.0, 0.0],
            "Will the Lakers win the championship?": [0.0, 1.0],
        }))
        verifier = Verifier(judge, cache=cache)
        result = verifier.verify(*_unrelated())

        assert isinstance(result, HeuristicResult)
        assert result.method == "embedding_only"
        assert result.similarity == pytest.approx(0.0)
        assert judge.calls == []
        assert cache.stats().generated == 2

    def test_skip_judgment_never_calls_judge(self, fed_pair):
        judge = FakeJudge(judgment_json())
        result = Verifier(judge).verify(*fed_pair, VerifyOptions(skip_judgment=True))
        assert isinstance(result, HeuristicResult)
        assert result.verdict is HeuristicVerdict.POSSIBLE
        assert judge.calls == []

    def test_similar_pair_escalates(self, fed_pair):
        judge = FakeJudge(judgment_json())
        result = Verifier(judge).verify(*fed_pair)
        assert isinstance(result, VerificationResult)
        assert result.prefilter_similarity == pytest.approx(1.0)
        assert len(judge.calls) == 1

    def test_prefilter_disabled_always_judges(self):
        judge = FakeJudge(judgment_json(isMatch=False, riskLevel="HIGH", recommendation="AVOID"))
        result = Verifier(judge).verify(*_unrelated(), VerifyOptions(use_prefilter=False))
        assert isinstance(result, VerificationResult)
        assert result.prefilter_similarity is None
        assert len(judge.calls) == 1

    def test_embedding_source_without_cache_is_rejected(self, fed_pair):
        verifier = Verifier(FakeJudge(judgment_json()))
        with pytest.raises(ValueError):
            verifier.prefilter(*fed_pair, VerifyOptions(similarity_source=SimilaritySource.EMBEDDING))


class TestJudgment:
    def test_request_uses_verification_instructions(self, fed_pair):
        judge = FakeJudge(judgment_json())
        Verifier(judge).verify(*fed_pair, VerifyOptions(use_prefilter=False, max_output_tokens=1234))
        system, prompt, max_tokens = judge.calls[0]
        assert system == VERIFICATION_SYSTEM_PROMPT
        assert "FED-26JAN" in prompt and "0xfed" in prompt
        assert max_tokens == 1234

    def test_date_mismatch_scenario(self, fed_pair):
        judge = FakeJudge(DATE_MISMATCH)
        result = Verifier(judge).verify(*fed_pair, VerifyOptions(price_spread=10.0))
        assert result.is_match is True
        assert result.risk_level is Severity.MEDIUM
        assert result.recommendation is Recommendation.PROCEED_WITH_CAUTION
        assert result.detailed_analysis.date_match is False
        assert not result.was_adjusted

    def test_malformed_response_propagates(self, fed_pair):
        verifier = Verifier(FakeJudge("Sorry, I can't help with that."))
        with pytest.raises(MalformedJudgment):
            verifier.verify(*fed_pair, VerifyOptions(use_prefilter=False))

    def test_invariant_violation_propagates(self, fed_pair):
        verifier = Verifier(FakeJudge(judgment_json(isMatch=True, riskLevel="CRITICAL")))
        with pytest.raises(InvalidJudgment):
            verifier.verify(*fed_pair, VerifyOptions(use_prefilter=False))

    def test_collaborator_failure_is_typed(self, fed_pair):
        verifier = Verifier(FakeJudge(TimeoutError("read timed out")))
        with pytest.raises(CollaboratorUnavailable) as info:
            verifier.verify(*fed_pair, VerifyOptions(use_prefilter=False))
        assert info.value.collaborator == "judgment"

    def test_typed_collaborator_failure_passes_through(self, fed_pair):
        original = CollaboratorUnavailable("judgment", "401 unauthorized")
        verifier = Verifier(FakeJudge(original))
        with pytest.raises(CollaboratorUnavailable) as info:
            verifier.verify(*fed_pair, VerifyOptions(use_prefilter=False))
        assert info.value is original


class TestSpreadRule:
    def test_thin_spread_with_misalignment_downgrades(self, fed_pair):
        result = Verifier(FakeJudge(DATE_MISMATCH)).verify(*fed_pair, VerifyOptions(price_spread=2.0))
        assert result.recommendation is Recommendation.AVOID
        assert result.judge_recommendation is Recommendation.PROCEED_WITH_CAUTION
        assert result.is_match is True
        assert result.was_adjusted

    def test_wide_spread_keeps_recommendation(self, fed_pair):
        result = Verifier(FakeJudge(DATE_MISMATCH)).verify(*fed_pair, VerifyOptions(price_spread=10.0))
        assert result.recommendation is Recommendation.PROCEED_WITH_CAUTION

    def test_zero_spread_counts_as_thin(self, fed_pair):
        result = Verifier(FakeJudge(DATE_MISMATCH)).verify(*fed_pair, VerifyOptions(price_spread=0.0))
        assert result.recommendation is Recommendation.AVOID

    def test_spread_at_threshold_is_not_thin(self, fed_pair):
        result = Verifier(FakeJudge(DATE_MISMATCH)).verify(*fed_pair, VerifyOptions(price_spread=3.0))
        assert result.recommendation is Recommendation.PROCEED_WITH_CAUTION

    def test_thin_spread_without_misalignments_untouched(self, fed_pair):
        result = Verifier(FakeJudge(judgment_json())).verify(*fed_pair, VerifyOptions(price_spread=1.0))
        assert result.recommendation is Recommendation.SAFE_TO_TRADE

    def test_no_spread_means_no_adjustment(self, fed_pair):
        result = Verifier(FakeJudge(DATE_MISMATCH)).verify(*fed_pair)
        assert result.recommendation is Recommendation.PROCEED_WITH_CAUTION

    def test_finalize_never_upgrades(self):
        base = parse_verification(DATE_MISMATCH)
        avoid = dataclasses.replace(base, is_match=False, recommendation=Recommendation.AVOID)
        assert finalize(avoid, 1.0) is avoid
        review = dataclasses.replace(base, recommendation=Recommendation.MANUAL_REVIEW)
        assert finalize(review, 1.0).recommendation is Recommendation.AVOID


class TestArbitrageFlag:
    def test_safe_and_wide_is_opportunity(self):
        result = parse_verification(judgment_json())
        assert is_arbitrage_opportunity(result, 5.0)

    def test_threshold_is_strict(self):
        result = parse_verification(judgment_json())
        assert not is_arbitrage_opportunity(result, 3.0)

    def test_caution_is_never_opportunity(self):
        result = parse_verification(DATE_MISMATCH)
        assert not is_arbitrage_opportunity(result, 50.0)

    def test_missing_spread_is_never_opportunity(self):
        assert not is_arbitrage_opportunity(parse_verification(judgment_json()), None)


class TestScenarios:
    def test_safe_with_one_misalignment_downgrades_only_when_thin(self, fed_pair):
        safe_but_noted = judgment_json(misalignments=[misalignment("EDGE_CASE", "LOW")])
        thin = Verifier(FakeJudge(safe_but_noted)).verify(*fed_pair, VerifyOptions(price_spread=2.0))
        wide = Verifier(FakeJudge(safe_but_noted)).verify(*fed_pair, VerifyOptions(price_spread=10.0))
        assert thin.recommendation is Recommendation.AVOID
        assert wide.recommendation is Recommendation.SAFE_TO_TRADE

    def test_different_deadlines_are_not_a_match(self):
        a = MarketResolutionCriteria(Venue.KALSHI, "K-X", "Will X happen by Jan 31, 2026?",
                                     resolution_date="2026-01-31")
        b = MarketResolutionCriteria(Venue.POLYMARKET, "P-X", "Will X happen by Dec 31, 2026?",
                                     resolution_date="2026-12-31")
        judge = FakeJudge(judgment_json(
            isMatch=False,
            matchConfidence=0.2,
            riskLevel="HIGH",
            recommendation="AVOID",
            misalignments=[misalignment("RESOLUTION_DATE", "HIGH", valueA="2026-01-31", valueB="2026-12-31")],
        ))
        result = Verifier(judge).verify(a, b, VerifyOptions(use_prefilter=False, price_spread=8.0))

        assert result.is_match is False
        assert result.recommendation in {Recommendation.AVOID, Recommendation.MANUAL_REVIEW}
        date_issues = [m for m in result.misalignments if m.type.value == "RESOLUTION_DATE"]
        assert date_issues and date_issues[0].severity.at_least(Severity.HIGH)
        assert "Resolution Date: 2026-01-31" in judge.calls[0][1]

    def test_identical_markets_with_wide_spread_are_an_opportunity(self):
        a = MarketResolutionCriteria(Venue.KALSHI, "K-X", "Will X happen?", resolution_source="AP",
                                     resolution_date="2026-06-30")
        b = MarketResolutionCriteria(Venue.POLYMARKET, "P-X", "Will X happen?", resolution_source="AP",
                                     resolution_date="2026-06-30")
        result = Verifier(FakeJudge(judgment_json())).verify(a, b, VerifyOptions(price_spread=8.0))
        assert result.recommendation is Recommendation.SAFE_TO_TRADE
        assert is_arbitrage_opportunity(result, 8.0)
