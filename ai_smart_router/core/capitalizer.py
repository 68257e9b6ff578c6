"""
Knowledge capitalization.

Batch and administrative jobs over the knowledge base: quality rescoring,
fine-tuning exports, gap analysis, metrics and cleanup. Never runs on the
request path.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .catalog import CostTier, get_model
from ..sdk.providers import DEFAULT_SYSTEM_PROMPT
from ..storage.db import DEFAULT_DB_PATH
from ..storage.knowledge import (
    category_statistics,
    delete_entries,
    fetch_entries_ranked,
    fetch_qualifying_entries,
    fetch_recent_cache_misses,
    find_stale_entries,
    get_knowledge_entry,
    knowledge_totals,
    list_entry_ids,
    set_quality_score,
)
from ..storage.models import DEFAULT_QUALITY_SCORE, CacheEntry

logger = logging.getLogger(__name__)

QUALITY_WEIGHTS = {
    "reuse": 0.6,
    "answer_length": 0.2,
    "model_tier": 0.2,
}

# Share of the recomputed score in the new score; the rest is the old one
MOMENTUM = 0.7

REUSE_SATURATION = 100
GOOD_ANSWER_LENGTH = (100, 2000)

MODEL_TIER_FACTORS = {
    CostTier.PREMIUM: 1.0,
    CostTier.MID: 0.8,
    CostTier.CHEAP: 0.6,
    CostTier.FREE: 0.6,
}
UNKNOWN_MODEL_FACTOR = 0.6

LOW_QUALITY_THRESHOLD = 0.5
MIN_CATEGORY_ENTRIES = 10

# Rough provider cost avoided by each reuse, in USD
SAVINGS_PER_REUSE = 0.001


class ExportFormat(str, Enum):
    """Output shapes for fine-tuning exports."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    JSONL = "jsonl"


@dataclass(frozen=True)
class FineTuningExport:
    format: ExportFormat
    data: str
    stats: Dict[str, Any]
    filename: str


@dataclass(frozen=True)
class Recommendation:
    type: str
    category: str
    message: str


@dataclass(frozen=True)
class GapReport:
    category_stats: List[Dict[str, Any]]
    recent_misses: List[Dict[str, Any]]
    recommendations: List[Recommendation] = field(default_factory=list)


@dataclass(frozen=True)
class CleanupResult:
    dry_run: bool
    matched: int
    deleted: int
    candidates: List[CacheEntry] = field(default_factory=list)


def compute_quality(entry: CacheEntry) -> float:
    """Quality score of an entry, blended with its previous score.

    Combines normalized reuse, answer-length suitability and the tier of
    the model that produced the answer, then keeps 30% of the old score so
    a single update can't swing it.
    """
    reuse = min(entry.use_count / REUSE_SATURATION, 1.0)

    low, high = GOOD_ANSWER_LENGTH
    length = 1.0 if low <= len(entry.answer or "") <= high else 0.5

    model = get_model(entry.original_model) if entry.original_model else None
    tier = MODEL_TIER_FACTORS[model.tier] if model else UNKNOWN_MODEL_FACTOR

    fresh = (
        reuse * QUALITY_WEIGHTS["reuse"]
        + length * QUALITY_WEIGHTS["answer_length"]
        + tier * QUALITY_WEIGHTS["model_tier"]
    )
    previous = entry.quality_score if entry.quality_score is not None else DEFAULT_QUALITY_SCORE
    score = fresh * MOMENTUM + previous * (1 - MOMENTUM)
    return max(0.0, min(1.0, score))


def _format_entry(entry: CacheEntry, export_format: ExportFormat) -> Dict[str, Any]:
    if export_format == ExportFormat.OPENAI:
        return {
            "messages": [
                {"role": "system", "content": DEFAULT_SYSTEM_PROMPT},
                {"role": "user", "content": entry.question},
                {"role": "assistant", "content": entry.answer},
            ]
        }
    if export_format == ExportFormat.ANTHROPIC:
        return {
            "prompt": f"\n\nHuman: {entry.question}\n\nAssistant:",
            "completion": f" {entry.answer}",
        }
    return {
        "input": entry.question,
        "output": entry.answer,
        "metadata": {
            "category": entry.category,
            "quality": entry.quality_score,
            "use_count": entry.use_count,
        },
    }


class KnowledgeCapitalizer:
    """Turns accumulated answers into reusable knowledge."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def update_quality_score(self, entry_id: str) -> Optional[float]:
        """Recompute and persist the quality score of one entry.

        Returns:
            The new score, or None if the entry doesn't exist
        """
        entry = get_knowledge_entry(entry_id, self.db_path)
        if entry is None:
            return None
        score = compute_quality(entry)
        set_quality_score(entry_id, score, self.db_path)
        return score

    def rescore_all(self) -> int:
        """Recompute every entry's quality score; returns entries updated."""
        count = 0
        for entry_id in list_entry_ids(self.db_path):
            if self.update_quality_score(entry_id) is not None:
                count += 1
        logger.info(f"Rescored {count} knowledge entries")
        return count

    def export_for_fine_tuning(
        self,
        min_quality: float = 0.6,
        min_use_count: int = 2,
        export_format: str = "openai",
        max_entries: int = 10000,
        categories: Optional[Sequence[str]] = None
    ) -> FineTuningExport:
        """Serialize qualifying entries as question/answer pairs, one JSON per line.

        Args:
            min_quality: Minimum quality score
            min_use_count: Minimum number of reuses
            export_format: "openai", "anthropic" or "jsonl"
            max_entries: Maximum entries exported
            categories: Optional category filter

        Returns:
            FineTuningExport with the JSONL payload and summary stats

        Raises:
            ValueError: If export_format is not supported
        """
        try:
            fmt = ExportFormat(export_format)
        except ValueError:
            valid = [f.value for f in ExportFormat]
            raise ValueError(f"export format must be one of: {valid}")

        entries = fetch_qualifying_entries(
            min_quality, min_use_count, categories, max_entries, self.db_path
        )
        data = "\n".join(
            json.dumps(_format_entry(e, fmt), ensure_ascii=False) for e in entries
        )

        by_category: Dict[str, int] = {}
        for e in entries:
            by_category[e.category] = by_category.get(e.category, 0) + 1

        count = len(entries)
        stats = {
            "total_entries": count,
            "avg_quality": sum(e.quality_score for e in entries) / count if count else 0.0,
            "avg_use_count": sum(e.use_count for e in entries) / count if count else 0.0,
            "by_category": by_category,
        }
        logger.info(f"Exported {count} entries for fine-tuning ({fmt.value})")

        return FineTuningExport(
            format=fmt,
            data=data,
            stats=stats,
            filename=f"finetune_{fmt.value}_{date.today().isoformat()}.jsonl"
        )

    def analyze_gaps(self, recent_miss_limit: int = 100) -> GapReport:
        """Flag categories with low quality or too few entries. Read-only."""
        stats = category_statistics(self.db_path)
        misses = fetch_recent_cache_misses(recent_miss_limit, self.db_path)
        return GapReport(
            category_stats=stats,
            recent_misses=[
                {
                    "question": m.question,
                    "best_similarity": m.best_similarity,
                    "created_at": m.created_at.isoformat(),
                }
                for m in misses
            ],
            recommendations=generate_recommendations(stats)
        )

    def get_metrics(self) -> Dict[str, Any]:
        """Dashboard view of the knowledge base."""
        totals = knowledge_totals(self.db_path)
        return {
            **totals,
            "estimated_savings": totals["total_reuses"] * SAVINGS_PER_REUSE,
            "top_entries": fetch_entries_ranked("use_count", 10, self.db_path),
            "recent_entries": fetch_entries_ranked("created_at", 10, self.db_path),
            "ready_for_fine_tuning": (
                totals["total_entries"] >= 1000 and totals["avg_quality"] >= 0.7
            ),
        }

    def cleanup(
        self,
        max_age_days: int = 90,
        min_quality: float = 0.3,
        dry_run: bool = True,
        now: Optional[datetime] = None
    ) -> CleanupResult:
        """Remove old entries that are both low quality and rarely used.

        Entries are stale when quality < min_quality, use count < 2 and they
        are older than max_age_days. With dry_run nothing is deleted.
        """
        cutoff = (now or datetime.now()) - timedelta(days=max_age_days)
        stale = find_stale_entries(cutoff, min_quality, db_path=self.db_path)

        if dry_run:
            return CleanupResult(dry_run=True, matched=len(stale), deleted=0,
                                 candidates=stale[:10])

        deleted = delete_entries([e.id for e in stale], self.db_path)
        logger.info(f"Cleanup removed {deleted} knowledge entries")
        return CleanupResult(dry_run=False, matched=len(stale), deleted=deleted)


def generate_recommendations(category_stats: List[Dict[str, Any]]) -> List[Recommendation]:
    recommendations = []
    for stat in category_stats:
        if stat["avg_quality"] < LOW_QUALITY_THRESHOLD:
            recommendations.append(Recommendation(
                type="improve_quality",
                category=stat["category"],
                message=(
                    f"Category '{stat['category']}' has low average quality "
                    f"({stat['avg_quality'] * 100:.0f}%). Review and improve its entries."
                )
            ))
        if stat["total_entries"] < MIN_CATEGORY_ENTRIES:
            recommendations.append(Recommendation(
                type="add_content",
                category=stat["category"],
                message=(
                    f"Category '{stat['category']}' has few entries ({stat['total_entries']}). "
                    "More diverse examples would improve the cache hit rate."
                )
            ))
    return recommendations
