"""Verification decision core.

verify(a, b) runs one pair through:
  pre-filter -> (short-circuit | comparison request -> judgment -> parse/validate)
  -> spread adjustment

Nothing is persisted between calls. A failed judgment raises; no result is
ever made up locally, so a missing result means "unknown", never "safe".
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Protocol

import config
from embedding_cache import EmbeddingCache
from errors import CollaboratorUnavailable, VerificationError
from judgment import parse_verification
from models import (
    HeuristicResult,
    HeuristicVerdict,
    MarketResolutionCriteria,
    PrefilterResult,
    Recommendation,
    SimilaritySource,
    VerificationResult,
)
from prompts import VERIFICATION_SYSTEM_PROMPT, build_comparison_prompt
from similarity import classify_similarity, embedding_similarity, token_similarity

logger = logging.getLogger(__name__)


class JudgmentService(Protocol):
    def judge(self, system_instructions: str, prompt: str, max_output_tokens: int) -> str: ...


@dataclass(frozen=True)
class VerifyOptions:
    skip_judgment: bool = False
    use_prefilter: bool = True
    similarity_threshold: float = config.SIMILARITY_THRESHOLD
    similarity_source: SimilaritySource = SimilaritySource(config.SIMILARITY_SOURCE)
    price_spread: float | None = None            # cents
    min_viable_spread: float = config.MIN_VIABLE_SPREAD
    max_output_tokens: int = config.JUDGE_MAX_OUTPUT_TOKENS


def finalize(
    result: VerificationResult,
    price_spread: float | None,
    min_viable_spread: float = config.MIN_VIABLE_SPREAD,
) -> VerificationResult:
    """
    Apply the spread rule: a spread thinner than min_viable_spread cannot
    absorb any rule risk, so a result with misalignments becomes AVOID.
    Only ever downgrades.
    """
    if price_spread is None or price_spread >= min_viable_spread:
        return result
    if not result.misalignments or result.recommendation is Recommendation.AVOID:
        return result
    logger.info(
        "spread %.2f below %.2f with %d misalignment(s): %s -> AVOID",
        price_spread, min_viable_spread, len(result.misalignments), result.recommendation.value,
    )
    return dataclasses.replace(
        result,
        recommendation=Recommendation.AVOID,
        judge_recommendation=result.recommendation,
    )


def is_arbitrage_opportunity(
    result: VerificationResult,
    price_spread: float | None,
    min_viable_spread: float = config.MIN_VIABLE_SPREAD,
) -> bool:
    return (
        result.recommendation is Recommendation.SAFE_TO_TRADE
        and price_spread is not None
        and price_spread > min_viable_spread
    )


class Verifier:
    """Decides whether two markets from different venues can be traded as one."""

    def __init__(
        self,
        judge: JudgmentService,
        cache: EmbeddingCache | None = None,
        options: VerifyOptions | None = None,
    ):
        self.judge = judge
        self.cache = cache
        self.options = options or VerifyOptions()

    # ── Pre-filter ───────────────────────────────────────────────────────────

    def resolve_source(self, source: SimilaritySource) -> SimilaritySource:
        if source is SimilaritySource.AUTO:
            return SimilaritySource.EMBEDDING if self.cache is not None else SimilaritySource.TOKEN
        if source is SimilaritySource.EMBEDDING and self.cache is None:
            raise ValueError("embedding similarity requested but no EmbeddingCache is wired")
        return source

    def prefilter(
        self,
        market_a: MarketResolutionCriteria,
        market_b: MarketResolutionCriteria,
        options: VerifyOptions | None = None,
    ) -> PrefilterResult:
        opts = options or self.options
        source = self.resolve_source(SimilaritySource(opts.similarity_source))
        if source is SimilaritySource.EMBEDDING:
            vec_a = self.cache.get(market_a.market_id, market_a.question, market_a.venue)
            vec_b = self.cache.get(market_b.market_id, market_b.question, market_b.venue)
            sim = embedding_similarity(vec_a.values, vec_b.values)
        else:
            sim = token_similarity(market_a.question, market_b.question)
        band, _ = classify_similarity(sim)
        escalate = sim >= opts.similarity_threshold
        logger.debug(
            "prefilter %s/%s: %s similarity %.3f (%s), escalate=%s",
            market_a.market_id, market_b.market_id, source.value, sim, band.value, escalate,
        )
        return PrefilterResult(similarity=sim, source=source, band=band, should_escalate=escalate)

    # ── Verification ─────────────────────────────────────────────────────────

    def verify(
        self,
        market_a: MarketResolutionCriteria,
        market_b: MarketResolutionCriteria,
        options: VerifyOptions | None = None,
    ) -> VerificationResult | HeuristicResult:
        """
        Verify a pair. Returns a HeuristicResult when the judgment call was
        skipped, a finalized VerificationResult otherwise.

        Raises MalformedJudgment, InvalidJudgment or CollaboratorUnavailable.
        """
        opts = options or self.options

        pre: PrefilterResult | None = None
        if opts.use_prefilter or opts.skip_judgment:
            pre = self.prefilter(market_a, market_b, opts)
            if opts.skip_judgment or not pre.should_escalate:
                return self._short_circuit(pre, opts)

        raw = self.request_judgment(market_a, market_b, opts.max_output_tokens)
        result = parse_verification(raw)
        if pre is not None:
            result = dataclasses.replace(result, prefilter_similarity=pre.similarity)
        logger.info(
            "judged %s vs %s: match=%s risk=%s rec=%s (%d misalignments)",
            market_a.market_id, market_b.market_id, result.is_match,
            result.risk_level.value, result.recommendation.value, len(result.misalignments),
        )
        return finalize(result, opts.price_spread, opts.min_viable_spread)

    def request_judgment(
        self,
        market_a: MarketResolutionCriteria,
        market_b: MarketResolutionCriteria,
        max_output_tokens: int = config.JUDGE_MAX_OUTPUT_TOKENS,
    ) -> str:
        prompt = build_comparison_prompt(market_a, market_b)
        try:
            return self.judge.judge(VERIFICATION_SYSTEM_PROMPT, prompt, max_output_tokens)
        except VerificationError:
            raise
        except Exception as exc:
            raise CollaboratorUnavailable("judgment", str(exc)) from exc

    @staticmethod
    def _short_circuit(pre: PrefilterResult, opts: VerifyOptions) -> HeuristicResult:
        verdict = HeuristicVerdict.UNLIKELY if pre.similarity < 0.5 else HeuristicVerdict.POSSIBLE
        method = "embedding_only" if pre.source is SimilaritySource.EMBEDDING else "token_only"
        if opts.skip_judgment:
            reasoning = "Judgment skipped by request"
        else:
            reasoning = (
                f"{pre.source.value.title()} similarity ({pre.similarity * 100:.1f}%) below "
                f"threshold ({opts.similarity_threshold * 100:.0f}%) - judgment skipped"
            )
        return HeuristicResult(
            similarity=pre.similarity,
            method=method,
            verdict=verdict,
            reasoning=reasoning,
        )
