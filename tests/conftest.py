import json
import threading

import pytest

from models import MarketResolutionCriteria, MarketSummary, Venue
from prompts import MATCHING_SYSTEM_PROMPT


# ── Fakes ─────────────────────────────────────────────────────────────────────


class FakeJudge:
    """
    Scripted judgment collaborator.

    verification: response text (or exception) for comparison requests,
    either one value or a list consumed in order.
    matching: response text for the matching request.
    """

    def __init__(self, verification="", matching="[]"):
        self._verification = list(verification) if isinstance(verification, list) else [verification]
        self.matching = matching
        self.calls: list[tuple[str, str, int]] = []
        self.matching_calls = 0
        self.verification_calls = 0

    def judge(self, system_instructions: str, prompt: str, max_output_tokens: int) -> str:
        self.calls.append((system_instructions, prompt, max_output_tokens))
        if system_instructions == MATCHING_SYSTEM_PROMPT:
            self.matching_calls += 1
            return self.matching
        self.verification_calls += 1
        response = self._verification[0] if len(self._verification) == 1 else self._verification.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class FakeEmbedder:
    """Embedding collaborator returning fixed vectors; unknown texts get a hashed vector."""

    model = "fake-embedding"

    def __init__(self, vectors: dict[str, list[float]] | None = None, gate: threading.Event | None = None):
        self.vectors = vectors or {}
        self.gate = gate
        self.embed_calls = 0
        self.batch_calls = 0
        self.batch_sizes: list[int] = []
        self._lock = threading.Lock()

    def _vector(self, text: str) -> list[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        seed = sum(ord(c) for c in text)
        return [float((seed * (i + 7)) % 13 + 1) for i in range(4)]

    def embed(self, text: str) -> list[float]:
        with self._lock:
            self.embed_calls += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        return self._vector(text)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        with self._lock:
            self.batch_calls += 1
            self.batch_sizes.append(len(texts))
        return [self._vector(t) for t in texts]


class FakeDiscovery:
    def __init__(self, venue: Venue, markets=None, error: Exception | None = None):
        self.venue = venue
        self.markets = markets or []
        self.error = error
        self.queries: list[str] = []

    def search(self, query: str, limit: int = 20):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self.markets[:limit]


# ── Builders ──────────────────────────────────────────────────────────────────


def judgment_json(**overrides) -> str:
    body = {
        "isMatch": True,
        "matchConfidence": 0.92,
        "semanticSimilarity": 0.95,
        "misalignments": [],
        "riskLevel": "LOW",
        "recommendation": "SAFE_TO_TRADE",
        "reasoning": "Same question, same date, same source.",
        "detailedAnalysis": {
            "questionMatch": True,
            "dateMatch": True,
            "sourceMatch": True,
            "rulesMatch": True,
            "scopeMatch": True,
        },
    }
    body.update(overrides)
    return json.dumps(body)


def misalignment(type_="RESOLUTION_DATE", severity="MEDIUM", **overrides) -> dict:
    m = {
        "type": type_,
        "severity": severity,
        "description": "Markets resolve on different dates",
        "valueA": "2026-01-28",
        "valueB": "2026-01-31",
        "potentialImpact": "One side can resolve before the other",
    }
    m.update(overrides)
    return m


def summary(venue: Venue, market_id: str, question: str, price: float | None = 0.5, **kw) -> MarketSummary:
    return MarketSummary(venue=venue, id=market_id, question=question, observed_price=price, **kw)


@pytest.fixture
def fed_pair():
    a = MarketResolutionCriteria(
        venue=Venue.KALSHI,
        market_id="FED-26JAN",
        question="Will the Fed cut interest rates in January 2026?",
        resolution_source="Federal Reserve",
        resolution_date="2026-01-28",
    )
    b = MarketResolutionCriteria(
        venue=Venue.POLYMARKET,
        market_id="0xfed",
        question="Will the Fed cut interest rates in January 2026?",
        resolution_source="Federal Reserve",
        resolution_date="2026-01-31",
    )
    return a, b
