#!/usr/bin/env python3
"""
FastAPI wrapper around the cross-venue verifier.
Serves REST on port 8081.

Endpoints:
  GET    /health
  POST   /verify        one pair, criteria supplied by the caller
  POST   /batch         discover + pair + verify for a topic
  GET    /cache/stats
  DELETE /cache

The app owns a single EmbeddingCache for its lifetime; handlers reach it
through FastAPI dependencies so tests can swap in fakes.
"""

import asyncio
import dataclasses
from typing import Any

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

import config
from batch import run_batch
from embedding_cache import EmbeddingCache
from errors import CollaboratorUnavailable, MarketNotFound, VerificationError, VerifierError
from models import CachePolicy, HeuristicResult, MarketResolutionCriteria, SimilaritySource, Venue
from verifier import Verifier, VerifyOptions

app = FastAPI(title="Cross-Venue Verifier API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Serialization ──────────────────────────────────────────────────────────────


def _serialize(obj: Any) -> Any:
    """Recursively convert dataclasses / lists / dicts to JSON-safe types."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {k: _serialize(v) for k, v in dataclasses.asdict(obj).items()}
    if isinstance(obj, list):
        return [_serialize(i) for i in obj]
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, tuple):
        return [_serialize(i) for i in obj]
    return obj


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, MarketNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, CollaboratorUnavailable):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, VerificationError):
        # Malformed or invalid judgment: the upstream answered, badly
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


# ── Request bodies ─────────────────────────────────────────────────────────────


class MarketIn(BaseModel):
    venue: Venue
    market_id: str = Field(min_length=1)
    question: str = Field(min_length=1)
    description: str | None = None
    resolution_source: str | None = None
    resolution_date: str | None = None
    rules: list[str] | None = None
    category: str | None = None

    def to_criteria(self) -> MarketResolutionCriteria:
        return MarketResolutionCriteria(
            venue=self.venue,
            market_id=self.market_id,
            question=self.question,
            description=self.description,
            resolution_source=self.resolution_source,
            resolution_date=self.resolution_date,
            rules=tuple(self.rules) if self.rules else None,
            category=self.category,
        )


class VerifyRequest(BaseModel):
    market_a: MarketIn
    market_b: MarketIn
    skip_judgment: bool = False
    use_prefilter: bool = True
    similarity_threshold: float = Field(config.SIMILARITY_THRESHOLD, ge=0, le=1)
    similarity_source: SimilaritySource = SimilaritySource(config.SIMILARITY_SOURCE)
    price_spread: float | None = Field(None, ge=0)
    min_viable_spread: float = Field(config.MIN_VIABLE_SPREAD, ge=0)

    def options(self) -> VerifyOptions:
        return VerifyOptions(
            skip_judgment=self.skip_judgment,
            use_prefilter=self.use_prefilter,
            similarity_threshold=self.similarity_threshold,
            similarity_source=self.similarity_source,
            price_spread=self.price_spread,
            min_viable_spread=self.min_viable_spread,
        )


class BatchRequest(BaseModel):
    topic: str = Field(min_length=1)
    max_pairs: int = Field(config.MAX_PAIRS_PER_BATCH, ge=1)
    min_similarity: float = Field(config.MATCH_MIN_SIMILARITY, ge=0, le=1)
    limit: int = Field(config.DISCOVERY_LIMIT, ge=1)
    sample: bool = False


# ── Dependencies ───────────────────────────────────────────────────────────────


_cache: EmbeddingCache | None = None


def get_cache() -> EmbeddingCache:
    global _cache
    if _cache is None:
        from clients.embeddings import GeminiEmbedder
        _cache = EmbeddingCache(GeminiEmbedder(), policy=CachePolicy(config.CACHE_TEXT_POLICY))
    return _cache


def get_verifier(cache: EmbeddingCache = Depends(get_cache)) -> Verifier:
    from clients.judge import GeminiJudge
    return Verifier(GeminiJudge(), cache=cache)


def get_discovery(sample: bool = False):
    if sample:
        from clients.sample import SampleDiscovery
        return SampleDiscovery(Venue.KALSHI), SampleDiscovery(Venue.POLYMARKET)
    from clients.kalshi import KalshiDiscovery
    from clients.polymarket import PolymarketDiscovery
    return KalshiDiscovery(), PolymarketDiscovery()


def get_discovery_factory():
    return get_discovery


# ── REST endpoints ─────────────────────────────────────────────────────────────


@app.get("/health")
async def health():
    return {"status": "ok", "service": "cross-venue-verifier-api"}


@app.post("/verify")
async def verify_pair(body: VerifyRequest, verifier: Verifier = Depends(get_verifier)):
    try:
        outcome = await asyncio.to_thread(
            verifier.verify, body.market_a.to_criteria(), body.market_b.to_criteria(), body.options()
        )
    except (VerifierError, ValueError) as exc:
        raise _http_error(exc)
    kind = "heuristic" if isinstance(outcome, HeuristicResult) else "verification"
    return {"kind": kind, "result": _serialize(outcome)}


@app.post("/batch")
async def batch(
    body: BatchRequest,
    verifier: Verifier = Depends(get_verifier),
    discovery_factory=Depends(get_discovery_factory),
):
    kalshi, polymarket = discovery_factory(body.sample)
    try:
        result = await asyncio.to_thread(
            run_batch,
            body.topic,
            kalshi,
            polymarket,
            verifier,
            max_pairs=body.max_pairs,
            min_similarity=body.min_similarity,
            limit=body.limit,
        )
    except (VerifierError, ValueError) as exc:
        raise _http_error(exc)

    return {
        "topic": result.topic,
        "timestamp": result.timestamp,
        "summary": result.summary,
        "statistics": _serialize(result.statistics),
        "matched_pairs": [
            {**_serialize(p), "arbitrage_opportunity": p.arbitrage_opportunity}
            for p in result.matched_pairs
        ],
        "best_opportunity": _serialize(result.best_opportunity),
        "pair_failures": _serialize(result.pair_failures),
        "screened_out": _serialize(result.screened_out),
        # exceptions, not dataclasses
        "discovery_failures": [
            {"venue": f.venue, "error": str(f.cause)} for f in result.discovery_failures
        ],
    }


@app.get("/cache/stats")
async def get_cache_stats(cache: EmbeddingCache = Depends(get_cache)):
    stats = cache.stats()
    return {**_serialize(stats), "hit_rate": stats.hit_rate, "policy": cache.policy.value}


@app.delete("/cache", status_code=204)
async def clear_cache_endpoint(cache: EmbeddingCache = Depends(get_cache)):
    cache.clear()


# ── Entry point ────────────────────────────────────────────────────────────────


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8081, log_level="info")
