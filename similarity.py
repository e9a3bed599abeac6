"""Cheap similarity scores used to decide whether a pair is worth judging.

Token similarity is pure and offline. Embedding similarity works on vectors
supplied by the embedding collaborator (usually via EmbeddingCache).
"""

import re
from typing import Sequence

import numpy as np
from rapidfuzz import fuzz

from errors import DimensionMismatch
from models import SimilarityBand, TriageResult, TriageVerdict

ESCALATION_THRESHOLD = 0.65

# (lower bound, band, guidance) checked top-down
_BANDS: list[tuple[float, SimilarityBand, str]] = [
    (0.85, SimilarityBand.HIGH, "Likely same market - proceed to judgment"),
    (0.70, SimilarityBand.MEDIUM, "Possibly same market - judgment recommended"),
    (0.50, SimilarityBand.LOW, "Unlikely same market - judge only if spread is large"),
]
_NONE_GUIDANCE = "Different markets - skip judgment"


def _clean(text: str) -> str:
    """Lowercase and strip punctuation for fuzzy matching."""
    return re.sub(r"[^a-z0-9 ]", " ", text.lower()).strip()


def _tokens(text: str) -> set[str]:
    stripped = re.sub(r"[^\w\s]", "", text.lower())
    return {w for w in stripped.split() if len(w) > 2}


def token_similarity(text_a: str, text_b: str) -> float:
    """Jaccard index of the word sets (words of length <= 2 dropped)."""
    words_a = _tokens(text_a)
    words_b = _tokens(text_b)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def embedding_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """
    Cosine similarity in [-1, 1]. A zero-magnitude vector on either side gives 0.
    Raises DimensionMismatch when the lengths differ.
    """
    if len(vec_a) != len(vec_b):
        raise DimensionMismatch(len(vec_a), len(vec_b))
    a = np.asarray(vec_a, dtype=np.float64)
    b = np.asarray(vec_b, dtype=np.float64)
    magnitude = float(np.linalg.norm(a) * np.linalg.norm(b))
    if magnitude == 0.0:
        return 0.0
    sim = float(np.dot(a, b) / magnitude)
    # Float noise can push identical vectors a hair past 1
    return max(-1.0, min(1.0, sim))


def cosine_similarity_matrix(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Compute cosine similarity between every row of A and every row of B.
    Returns an (len(a), len(b)) matrix with values in [-1, 1].
    """
    if a.shape[1] != b.shape[1]:
        raise DimensionMismatch(a.shape[1], b.shape[1])
    a_norm = a / (np.linalg.norm(a, axis=1, keepdims=True) + 1e-10)
    b_norm = b / (np.linalg.norm(b, axis=1, keepdims=True) + 1e-10)
    return a_norm @ b_norm.T


def classify_similarity(similarity: float) -> tuple[SimilarityBand, str]:
    """Band an embedding similarity and return the guidance text for it."""
    for lower, band, guidance in _BANDS:
        if similarity >= lower:
            return band, guidance
    return SimilarityBand.NONE, _NONE_GUIDANCE


def should_escalate(similarity: float, threshold: float = ESCALATION_THRESHOLD) -> bool:
    return similarity >= threshold


def query_relevance(query: str, text: str) -> float:
    """0-100 score of how well a search query is covered by a market question."""
    return fuzz.token_set_ratio(_clean(query), _clean(text))


# ── Quick triage (token-based, no collaborator) ──────────────────────────────


def triage_pair(id_a: str, question_a: str, id_b: str, question_b: str) -> TriageResult:
    sim = token_similarity(question_a, question_b)
    if sim > 0.8:
        verdict = TriageVerdict.LIKELY_MATCH
    elif sim > 0.5:
        verdict = TriageVerdict.POSSIBLE_MATCH
    else:
        verdict = TriageVerdict.UNLIKELY_MATCH
    return TriageResult(id_a=id_a, id_b=id_b, similarity=sim, verdict=verdict)


def triage_pairs(pairs: list[tuple[str, str, str, str]]) -> tuple[list[TriageResult], dict]:
    """
    Triage (id_a, question_a, id_b, question_b) tuples.
    Returns the per-pair results and a summary count dict.
    """
    results = [triage_pair(*p) for p in pairs]
    summary = {
        "total": len(results),
        "likely_matches": sum(r.verdict is TriageVerdict.LIKELY_MATCH for r in results),
        "possible_matches": sum(r.verdict is TriageVerdict.POSSIBLE_MATCH for r in results),
        "needing_detailed_verification": sum(r.needs_detailed_verification for r in results),
    }
    return results, summary
