"""Extract -> strict parse -> validate pipeline for judgment responses.

The judgment collaborator answers in free text that should contain one JSON
object. We take the first balanced {...} in the text, parse it, validate every
field against the declared schema, and check the cross-field rule that a match
can only carry LOW/MEDIUM risk and a non-AVOID recommendation.
"""

import json
import logging
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError
from pydantic.alias_generators import to_camel

from errors import InvalidJudgment, MalformedJudgment
from models import (
    CandidatePair,
    DetailedAnalysis,
    MarketSummary,
    Misalignment,
    MisalignmentType,
    Recommendation,
    Severity,
    VerificationResult,
)

logger = logging.getLogger(__name__)

Probability = Annotated[float, Field(ge=0.0, le=1.0, strict=True)]
Text = Annotated[str, Field(min_length=1, strict=True)]

_MATCH_RISK = {Severity.LOW, Severity.MEDIUM}


# ── Wire schema ───────────────────────────────────────────────────────────────


class _Wire(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MisalignmentPayload(_Wire):
    type: MisalignmentType
    severity: Severity
    description: Text
    value_a: Optional[StrictStr] = None
    value_b: Optional[StrictStr] = None
    potential_impact: Text


class DetailedAnalysisPayload(_Wire):
    question_match: StrictBool
    date_match: StrictBool
    source_match: StrictBool
    rules_match: StrictBool
    scope_match: StrictBool


class VerificationPayload(_Wire):
    is_match: StrictBool
    match_confidence: Probability
    semantic_similarity: Probability
    misalignments: list[MisalignmentPayload]
    risk_level: Severity
    recommendation: Recommendation
    reasoning: StrictStr
    detailed_analysis: DetailedAnalysisPayload


class CandidatePayload(BaseModel):
    a_index: int = Field(alias="aIndex")
    b_index: int = Field(alias="bIndex")
    similarity: float
    reason: str = ""


# ── Extraction ────────────────────────────────────────────────────────────────


def _balanced_from(text: str, start: int, open_ch: str, close_ch: str) -> str | None:
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def extract_json_object(text: str) -> str | None:
    """Return the first balanced {...} span in text, or None."""
    start = text.find("{")
    if start < 0:
        return None
    return _balanced_from(text, start, "{", "}")


def extract_json_array(text: str) -> list | None:
    """Return the first balanced [...] span in text that parses as a JSON list."""
    start = text.find("[")
    while start >= 0:
        span = _balanced_from(text, start, "[", "]")
        if span is not None:
            try:
                value = json.loads(span)
            except json.JSONDecodeError:
                value = None
            if isinstance(value, list):
                return value
        start = text.find("[", start + 1)
    return None


# ── Verification response ─────────────────────────────────────────────────────


def _field_name(error: dict) -> str:
    loc = error.get("loc") or ()
    return ".".join(str(part) for part in loc) or "response"


def parse_verification(raw: str) -> VerificationResult:
    """
    Turn a raw judgment response into a VerificationResult.

    Raises MalformedJudgment when no JSON object can be extracted and parsed,
    and InvalidJudgment (naming the field) on any schema or invariant violation.
    """
    span = extract_json_object(raw)
    if span is None:
        raise MalformedJudgment("No JSON object found in judgment response", raw)
    try:
        data = json.loads(span)
    except json.JSONDecodeError as exc:
        raise MalformedJudgment(f"Judgment JSON did not parse: {exc}", raw) from exc

    try:
        payload = VerificationPayload.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        raise InvalidJudgment(_field_name(first), first.get("msg", "invalid value")) from exc

    for i, m in enumerate(payload.misalignments):
        if not m.description.strip():
            raise InvalidJudgment(f"misalignments.{i}.description", "must not be blank")
        if not m.potential_impact.strip():
            raise InvalidJudgment(f"misalignments.{i}.potentialImpact", "must not be blank")

    if payload.is_match:
        if payload.risk_level not in _MATCH_RISK:
            raise InvalidJudgment(
                "riskLevel",
                f"isMatch=true requires LOW or MEDIUM risk, got {payload.risk_level.value}",
            )
        if payload.recommendation is Recommendation.AVOID:
            raise InvalidJudgment("recommendation", "isMatch=true is incompatible with AVOID")

    da = payload.detailed_analysis
    return VerificationResult(
        is_match=payload.is_match,
        match_confidence=float(payload.match_confidence),
        semantic_similarity=float(payload.semantic_similarity),
        misalignments=tuple(
            Misalignment(
                type=m.type,
                severity=m.severity,
                description=m.description,
                potential_impact=m.potential_impact,
                value_a=m.value_a,
                value_b=m.value_b,
            )
            for m in payload.misalignments
        ),
        risk_level=payload.risk_level,
        recommendation=payload.recommendation,
        reasoning=payload.reasoning,
        detailed_analysis=DetailedAnalysis(
            question_match=da.question_match,
            date_match=da.date_match,
            source_match=da.source_match,
            rules_match=da.rules_match,
            scope_match=da.scope_match,
        ),
    )


# ── Matching response ─────────────────────────────────────────────────────────


def parse_candidate_pairs(
    raw: str,
    markets_a: list[MarketSummary],
    markets_b: list[MarketSummary],
    min_similarity: float,
) -> list[CandidatePair]:
    """
    Map the matching response's 1-based indexes back onto the two market lists.
    No array in the response means no candidates; unusable items are skipped.
    """
    items = extract_json_array(raw)
    if items is None:
        logger.info("matching response contained no JSON array; no candidates")
        return []

    pairs: list[CandidatePair] = []
    for item in items:
        try:
            cand = CandidatePayload.model_validate(item)
        except ValidationError as exc:
            logger.warning("skipping malformed candidate %r: %s", item, exc.errors()[0].get("msg"))
            continue
        if cand.similarity < min_similarity:
            continue
        if not (1 <= cand.a_index <= len(markets_a) and 1 <= cand.b_index <= len(markets_b)):
            logger.warning("skipping candidate with out-of-range index: %r", item)
            continue
        pairs.append(CandidatePair(
            market_a=markets_a[cand.a_index - 1],
            market_b=markets_b[cand.b_index - 1],
            similarity=cand.similarity,
            reason=cand.reason,
        ))
    return pairs
