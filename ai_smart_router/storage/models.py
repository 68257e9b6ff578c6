"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional

DEFAULT_QUALITY_SCORE = 0.5


@dataclass
class CacheEntry:
    """A previously answered question kept for reuse.

    Question, answer and embedding are fixed at creation; only the usage
    counters and the quality score change afterwards.
    """
    id: str
    question: str
    answer: str
    embedding: List[float]
    category: str
    quality_score: float = DEFAULT_QUALITY_SCORE
    use_count: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    last_used_at: Optional[datetime] = None
    language: str = "en"
    original_model: Optional[str] = None
    original_cost: float = 0.0
    created_by_user_id: Optional[str] = None


@dataclass(frozen=True)
class CacheMiss:
    """A question that found no close enough cached answer."""
    question: str
    best_similarity: float
    created_at: datetime


@dataclass(frozen=True)
class CostRecord:
    """Immutable record of what one request cost and what it was charged.

    Append-only events that create an auditable ledger of AI costs.
    Once written, these records must never be modified.
    """
    id: str
    user_id: Optional[str]
    request_type: str
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    cost: float
    price: float
    margin: float
    margin_percent: float
    from_cache: bool = False
    cache_entry_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class DailyAggregate:
    """Running totals for one calendar day."""
    date: date
    total_requests: int = 0
    total_cost: float = 0.0
    total_revenue: float = 0.0
    total_margin: float = 0.0
    cache_hits: int = 0
    cache_misses: int = 0
    cache_savings: float = 0.0
    provider_costs: Dict[str, float] = field(default_factory=dict)
