"""
Semantic cache.

Bounded in-memory index of previously answered questions, backed by the
knowledge_entry table. Lookups embed the incoming question and scan the
index linearly for the most similar stored question.
"""

import logging
import math
import sqlite3
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ..sdk.embeddings import DEFAULT_EMBEDDING_DIMENSIONS, EmbeddingResult
from ..storage.db import DEFAULT_DB_PATH
from ..storage.knowledge import (
    adjust_quality_score,
    insert_cache_miss,
    insert_knowledge_entry,
    load_top_entries,
    record_entry_hit,
)
from ..storage.models import DEFAULT_QUALITY_SCORE, CacheEntry, CacheMiss

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.92
DEFAULT_MAX_ENTRIES = 10000

FEEDBACK_DELTAS: Dict[str, float] = {
    "positive": 0.1,
    "neutral": 0.0,
    "negative": -0.2,
}


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Defined as 0 when either norm is 0 or when the lengths differ.
    """
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    magnitude = math.sqrt(norm_a) * math.sqrt(norm_b)
    if magnitude == 0:
        return 0.0
    return dot / magnitude


@dataclass(frozen=True)
class CacheLookup:
    """Outcome of a cache lookup.

    `similarity` is the score of the returned entry on a hit; on a miss
    `best_similarity` still reports the closest score seen.
    """
    hit: bool
    entry: Optional[CacheEntry] = None
    similarity: float = 0.0
    best_similarity: float = 0.0
    embedding: Optional[List[float]] = None
    embedding_cost: float = 0.0


class SemanticCache:
    """Similarity cache over answered questions.

    The in-memory index is owned by the instance; a lock makes the capacity
    check and the append a single step and guards the mutable counters.
    Scans run on a snapshot taken under the lock.
    """

    def __init__(
        self,
        embedder: Any,
        db_path: str = DEFAULT_DB_PATH,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS
    ):
        """Initialize an empty cache.

        Args:
            embedder: Object with `embed(text) -> EmbeddingResult`
            db_path: Path to SQLite database file
            similarity_threshold: Minimum cosine similarity for a hit
            max_entries: Capacity of the in-memory index
            dimensions: Expected embedding length
        """
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self.embedder = embedder
        self.db_path = db_path
        self.similarity_threshold = similarity_threshold
        self.max_entries = max_entries
        self.dimensions = dimensions
        self._entries: List[CacheEntry] = []
        self._lock = threading.Lock()
        self.loaded = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def load(self) -> int:
        """Reload the index from the durable store.

        Entries are ranked by use count then quality and truncated to
        capacity, which is how rarely used entries are evicted.

        Returns:
            Number of entries loaded
        """
        entries = load_top_entries(self.max_entries, self.db_path)
        with self._lock:
            self._entries = entries
            self.loaded = True
        logger.info(f"Semantic cache loaded {len(entries)} entries")
        return len(entries)

    def _embed(self, text: str) -> Optional[EmbeddingResult]:
        try:
            return self.embedder.embed(text)
        except Exception as e:
            logger.warning(f"Embedding unavailable, treating as cache miss: {e}")
            return None

    def lookup(self, question: str) -> CacheLookup:
        """Find the stored answer most similar to `question`.

        The embedding cost is charged whether or not the lookup hits. If
        the embedder fails the lookup is a miss that cost nothing.
        """
        result = self._embed(question)
        if result is None:
            return CacheLookup(hit=False)

        query = result.vector
        with self._lock:
            snapshot = list(self._entries)

        best_entry = None
        best_similarity = 0.0
        for entry in snapshot:
            if len(entry.embedding) != len(query):
                continue
            similarity = cosine_similarity(query, entry.embedding)
            if similarity > best_similarity:
                best_similarity = similarity
                best_entry = entry

        if best_entry is not None and best_similarity >= self.similarity_threshold:
            logger.info(
                f"Cache hit: similarity {best_similarity * 100:.1f}% | entry {best_entry.id}"
            )
            return CacheLookup(
                hit=True,
                entry=best_entry,
                similarity=best_similarity,
                best_similarity=best_similarity,
                embedding=query,
                embedding_cost=result.cost
            )

        logger.info(f"Cache miss: best similarity {best_similarity * 100:.1f}%")
        self._log_miss(question, best_similarity)
        return CacheLookup(
            hit=False,
            best_similarity=best_similarity,
            embedding=query,
            embedding_cost=result.cost
        )

    def _log_miss(self, question: str, best_similarity: float) -> None:
        try:
            insert_cache_miss(
                CacheMiss(question=question, best_similarity=best_similarity,
                          created_at=datetime.now()),
                self.db_path
            )
        except sqlite3.Error as e:
            logger.error(f"Could not log cache miss: {e}")

    def store(
        self,
        question: str,
        answer: str,
        category: str,
        model: Optional[str] = None,
        cost: float = 0.0,
        user_id: Optional[str] = None,
        language: str = "en",
        embedding: Optional[List[float]] = None
    ) -> Optional[str]:
        """Persist a new question/answer pair and index it if there is room.

        Args:
            question: The user's question
            answer: The provider's answer
            category: Task category of the question
            model: Model that produced the answer
            cost: Provider cost of the answer in USD
            user_id: User who asked
            language: Language of the exchange
            embedding: Question embedding from the lookup, computed if None

        Returns:
            The new entry id, or None if no usable embedding was available

        Raises:
            sqlite3.Error: If the durable write fails
        """
        if embedding is None:
            result = self._embed(question)
            if result is None:
                return None
            embedding = result.vector

        if len(embedding) != self.dimensions:
            logger.warning(
                f"Embedding has {len(embedding)} dimensions, expected {self.dimensions}; not cached"
            )
            return None

        entry = CacheEntry(
            id=uuid.uuid4().hex,
            question=question,
            answer=answer,
            embedding=list(embedding),
            category=category,
            quality_score=DEFAULT_QUALITY_SCORE,
            language=language or "en",
            original_model=model,
            original_cost=cost,
            created_by_user_id=user_id
        )
        insert_knowledge_entry(entry, self.db_path)

        with self._lock:
            indexed = len(self._entries) < self.max_entries
            if indexed:
                self._entries.append(entry)

        if indexed:
            logger.info(f"Cache stored entry {entry.id}")
        else:
            logger.info(f"Cache index full, entry {entry.id} stored durably only")
        return entry.id

    def record_hit(self, entry_id: str) -> None:
        """Increment use count and refresh last-used time."""
        now = datetime.now()
        record_entry_hit(entry_id, now, self.db_path)
        self._update_in_memory(
            entry_id,
            lambda e: replace(e, use_count=e.use_count + 1, last_used_at=now)
        )

    def record_feedback(self, entry_id: str, feedback: str) -> Optional[float]:
        """Apply user feedback to an entry's quality score.

        Args:
            entry_id: Cache entry id
            feedback: "positive", "neutral" or "negative"

        Returns:
            The new quality score, or None if the entry doesn't exist

        Raises:
            ValueError: If feedback is not recognised
        """
        if feedback not in FEEDBACK_DELTAS:
            raise ValueError(f"feedback must be one of: {list(FEEDBACK_DELTAS)}")

        score = adjust_quality_score(entry_id, FEEDBACK_DELTAS[feedback], self.db_path)
        if score is not None:
            self._update_in_memory(entry_id, lambda e: replace(e, quality_score=score))
        return score

    def _update_in_memory(self, entry_id: str, update) -> None:
        with self._lock:
            for i, entry in enumerate(self._entries):
                if entry.id == entry_id:
                    self._entries[i] = update(entry)
                    return

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            size = len(self._entries)
        return {
            "entries_in_memory": size,
            "loaded": self.loaded,
            "similarity_threshold": self.similarity_threshold,
            "max_entries": self.max_entries,
            "dimensions": self.dimensions,
        }
