"""In-process cache of market embeddings, keyed by market id.

Avoids re-embedding the same market question across repeated comparisons in
one process. The cache is an explicit object: whoever wires the system
together owns it and passes it down, so tests get a fresh one each time.

Concurrent misses for the same market id are collapsed into one compute call
(singleflight): the first caller computes, later callers wait on its Future.

Text policy:
  loose   a hit is a hit, even if the caller passes different text for the id
  strict  a hit whose source_text differs from the caller's text is re-embedded,
          and in-flight work is shared only between callers with the same text

serialize()/deserialize() dump and restore a flat {market_id: entry} JSON
mapping; restoring merges into the current entries, last writer wins.
"""

import json
import logging
import threading
from concurrent.futures import Future
from typing import Iterable, MutableMapping, Protocol

import numpy as np

from errors import CollaboratorUnavailable
from models import CacheEntry, CachePolicy, CacheStats, EmbeddingVector, Venue
from similarity import cosine_similarity_matrix, embedding_similarity

logger = logging.getLogger(__name__)


class EmbeddingService(Protocol):
    model: str

    def embed(self, text: str) -> list[float]: ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


class EmbeddingCache:
    def __init__(
        self,
        embedder: EmbeddingService,
        storage: MutableMapping[str, CacheEntry] | None = None,
        policy: CachePolicy = CachePolicy.LOOSE,
    ):
        self._embedder = embedder
        self._entries: MutableMapping[str, CacheEntry] = storage if storage is not None else {}
        self._policy = CachePolicy(policy)
        self._lock = threading.Lock()
        self._inflight: dict[str | tuple[str, str], Future] = {}
        self._hits = 0
        self._misses = 0
        self._generated = 0

    @property
    def policy(self) -> CachePolicy:
        return self._policy

    @property
    def model(self) -> str:
        return getattr(self._embedder, "model", "unknown")

    def _usable(self, entry: CacheEntry | None, text: str) -> bool:
        if entry is None:
            return False
        return self._policy is CachePolicy.LOOSE or entry.vector.source_text == text

    def _flight_key(self, market_id: str, text: str) -> str | tuple[str, str]:
        return (market_id, text) if self._policy is CachePolicy.STRICT else market_id

    def _make_vector(self, values: Iterable[float], text: str) -> EmbeddingVector:
        return EmbeddingVector(
            values=tuple(float(v) for v in values),
            source_text=text,
            model=self.model,
        )

    # ── Lookup ───────────────────────────────────────────────────────────────

    def get(self, market_id: str, text: str, venue: Venue) -> EmbeddingVector:
        """Return the cached vector for market_id, computing it on a miss."""
        with self._lock:
            entry = self._entries.get(market_id)
            if self._usable(entry, text):
                self._hits += 1
                logger.debug("embedding cache hit: %s", market_id)
                return entry.vector
            key = self._flight_key(market_id, text)
            pending = self._inflight.get(key)
            if pending is None:
                pending = Future()
                self._inflight[key] = pending
                self._misses += 1
                owner = True
            else:
                self._hits += 1
                owner = False

        if not owner:
            logger.debug("waiting on in-flight embedding: %s", market_id)
            return pending.result()

        logger.debug("embedding cache miss: %s", market_id)
        try:
            vector = self._make_vector(self._embedder.embed(text), text)
        except BaseException as exc:
            with self._lock:
                self._inflight.pop(key, None)
            pending.set_exception(exc)
            raise

        with self._lock:
            self._entries[market_id] = CacheEntry(vector=vector, venue=Venue(venue))
            self._generated += 1
            self._inflight.pop(key, None)
        pending.set_result(vector)
        return vector

    def batch_get(self, markets: list[tuple[str, str, Venue]]) -> dict[str, EmbeddingVector]:
        """
        Resolve (market_id, text, venue) triples with at most one embed_batch call.

        Cached ids are served from the cache, ids another caller is already
        computing are awaited, and everything else goes out in a single
        order-preserving batch request.
        """
        results: dict[str, EmbeddingVector] = {}
        to_compute: list[tuple[str, str, Venue]] = []
        waiting: dict[str, Future] = {}
        owned: dict[str, Future] = {}

        with self._lock:
            for market_id, text, venue in markets:
                if market_id in results or market_id in owned or market_id in waiting:
                    continue
                entry = self._entries.get(market_id)
                if self._usable(entry, text):
                    self._hits += 1
                    results[market_id] = entry.vector
                    continue
                key = self._flight_key(market_id, text)
                if key in self._inflight:
                    self._hits += 1
                    waiting[market_id] = self._inflight[key]
                else:
                    self._misses += 1
                    fut: Future = Future()
                    self._inflight[key] = fut
                    owned[market_id] = fut
                    to_compute.append((market_id, text, venue))

        if to_compute:
            logger.debug("embedding %d uncached markets in one batch", len(to_compute))
            try:
                raw = self._embedder.embed_batch([text for _, text, _ in to_compute])
                if len(raw) != len(to_compute):
                    raise CollaboratorUnavailable(
                        "embedding",
                        f"returned {len(raw)} vectors for {len(to_compute)} texts",
                    )
            except BaseException as exc:
                with self._lock:
                    for market_id, text, _ in to_compute:
                        self._inflight.pop(self._flight_key(market_id, text), None)
                for fut in owned.values():
                    fut.set_exception(exc)
                raise

            computed = [
                (market_id, venue, self._make_vector(values, text))
                for (market_id, text, venue), values in zip(to_compute, raw)
            ]
            with self._lock:
                for market_id, venue, vector in computed:
                    self._entries[market_id] = CacheEntry(vector=vector, venue=Venue(venue))
                    self._generated += 1
                    self._inflight.pop(self._flight_key(market_id, vector.source_text), None)
            for market_id, _, vector in computed:
                results[market_id] = vector
                owned[market_id].set_result(vector)

        for market_id, fut in waiting.items():
            results[market_id] = fut.result()

        return results

    # ── Comparison helpers ───────────────────────────────────────────────────

    def compare(
        self,
        market_a: tuple[str, str, Venue],
        market_b: tuple[str, str, Venue],
    ) -> tuple[float, bool, bool]:
        """Return (cosine similarity, a_was_cached, b_was_cached)."""
        a_cached = self.is_cached(market_a[0])
        b_cached = self.is_cached(market_b[0])
        vec_a = self.get(*market_a)
        vec_b = self.get(*market_b)
        return embedding_similarity(vec_a.values, vec_b.values), a_cached, b_cached

    def find_similar(
        self,
        source: tuple[str, str, Venue],
        candidates: list[tuple[str, str, Venue]],
        top_k: int = 5,
        min_similarity: float = 0.5,
    ) -> list[tuple[str, float]]:
        """Rank candidates by similarity to source; returns (market_id, similarity)."""
        source_vec = self.get(*source)
        vectors = self.batch_get(candidates)
        ids = [market_id for market_id, _, _ in candidates if market_id in vectors]
        if not ids:
            return []
        row = cosine_similarity_matrix(
            np.array([source_vec.values], dtype=np.float64),
            np.array([vectors[market_id].values for market_id in ids], dtype=np.float64),
        )[0]
        scored = [(market_id, float(sim)) for market_id, sim in zip(ids, row) if sim >= min_similarity]
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:top_k]

    # ── Bookkeeping ──────────────────────────────────────────────────────────

    def is_cached(self, market_id: str) -> bool:
        with self._lock:
            return market_id in self._entries

    def cached_ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        """Drop all entries and reset hit/miss counters."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._generated = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                generated=self._generated,
            )

    # ── Serialization ────────────────────────────────────────────────────────

    def serialize(self) -> bytes:
        with self._lock:
            data = {
                market_id: {
                    "vector": list(e.vector.values),
                    "model": e.vector.model,
                    "sourceText": e.vector.source_text,
                    "generatedAt": e.vector.generated_at,
                    "venue": e.venue.value,
                }
                for market_id, e in self._entries.items()
            }
        return json.dumps(data).encode("utf-8")

    def deserialize(self, payload: bytes) -> int:
        """Merge a serialize() dump into this cache. Returns the number of entries read."""
        data = json.loads(payload.decode("utf-8"))
        with self._lock:
            for market_id, raw in data.items():
                self._entries[market_id] = CacheEntry(
                    vector=EmbeddingVector(
                        values=tuple(float(v) for v in raw["vector"]),
                        source_text=raw["sourceText"],
                        model=raw["model"],
                        generated_at=raw["generatedAt"],
                    ),
                    venue=Venue(raw["venue"]),
                )
        logger.info("loaded %d embeddings into cache", len(data))
        return len(data)
