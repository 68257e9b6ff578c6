"""
Cost ledger.

Turns provider usage into cost, price and margin, persists one cost record
per request and keeps the daily aggregates up to date.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Optional

from .pricing import (
    DEFAULT_TARGET_MARGIN,
    CostExtras,
    calculate_cost,
    calculate_price,
    validate_margin,
)
from ..storage.db import DEFAULT_DB_PATH
from ..storage.models import CostRecord
from ..storage.repository import record_cost, summarize_daily_aggregates

CACHE_PROVIDER = "cache"
CACHE_MODEL = "knowledge-cache"


@dataclass(frozen=True)
class LedgerStats:
    """Totals over a period of days."""
    days: int
    total_requests: int
    total_cost: float
    total_revenue: float
    total_margin: float
    margin_percent: float
    target_margin_percent: float
    cache_hits: int
    cache_misses: int
    cache_hit_rate: float
    cache_savings: float
    by_provider: Dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class CostEstimate:
    """Pre-request cost estimate for a model."""
    model: str
    estimated_cost: float
    estimated_price: float
    estimated_margin: float
    margin_percent: float


class CostLedger:
    """Accounting for every answer the router produces."""

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        target_margin: float = DEFAULT_TARGET_MARGIN
    ):
        """Initialize the ledger.

        Args:
            db_path: Path to SQLite database file
            target_margin: Fraction of the price kept as margin, in [0, 1)

        Raises:
            ValueError: If target_margin is outside [0, 1)
        """
        self.db_path = db_path
        self.target_margin = validate_margin(target_margin)

    def track_request(
        self,
        provider: str,
        model: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        user_id: Optional[str] = None,
        request_type: str = "chat",
        extras: Optional[CostExtras] = None,
        from_cache: bool = False,
        cache_entry_id: Optional[str] = None,
        embedding_cost: float = 0.0,
        cache_savings: float = 0.0,
        when: Optional[datetime] = None
    ) -> CostRecord:
        """Record what a request cost and what it is charged.

        Answers from a provider cost their token usage plus the lookup
        embedding and are priced for the target margin. Cache hits cost the
        embedding only and carry no price.

        Args:
            provider: Provider that answered ("cache" for hits)
            model: Model that answered
            input_tokens: Input tokens reported by the provider
            output_tokens: Output tokens reported by the provider
            user_id: User the request belongs to
            request_type: Kind of request, e.g. "chat"
            extras: Item counts for image/audio/speech models
            from_cache: Whether the answer came from the semantic cache
            cache_entry_id: Cache entry served, for hits
            embedding_cost: Cost of embedding the question
            cache_savings: Provider cost avoided by a hit
            when: Timestamp of the request (defaults to now)

        Returns:
            The persisted cost record

        Raises:
            sqlite3.Error: If the ledger write fails
        """
        if from_cache:
            cost = embedding_cost
            price = 0.0
        else:
            cost = calculate_cost(model, input_tokens, output_tokens, extras) + embedding_cost
            price = calculate_price(cost, self.target_margin)

        margin = price - cost
        margin_percent = (margin / price) * 100 if price > 0 else 0.0

        record = CostRecord(
            id=uuid.uuid4().hex,
            user_id=user_id,
            request_type=request_type,
            provider=provider,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost,
            price=price,
            margin=margin,
            margin_percent=margin_percent,
            from_cache=from_cache,
            cache_entry_id=cache_entry_id,
            created_at=when or datetime.now()
        )
        record_cost(record, cache_savings if from_cache else 0.0, self.db_path)
        return record

    def get_stats(self, days: int = 30, today: Optional[date] = None) -> LedgerStats:
        """Summarize the last `days` days of activity."""
        totals = summarize_daily_aggregates(days=days, today=today, db_path=self.db_path)

        lookups = totals.cache_hits + totals.cache_misses
        hit_rate = (totals.cache_hits / lookups) * 100 if lookups > 0 else 0.0
        margin_percent = (
            (totals.total_margin / totals.total_revenue) * 100
            if totals.total_revenue > 0 else 0.0
        )

        return LedgerStats(
            days=days,
            total_requests=totals.total_requests,
            total_cost=totals.total_cost,
            total_revenue=totals.total_revenue,
            total_margin=totals.total_margin,
            margin_percent=margin_percent,
            target_margin_percent=self.target_margin * 100,
            cache_hits=totals.cache_hits,
            cache_misses=totals.cache_misses,
            cache_hit_rate=hit_rate,
            cache_savings=totals.cache_savings,
            by_provider=totals.provider_costs
        )

    def estimate_cost(
        self,
        model: str,
        input_tokens: int,
        output_tokens: Optional[int] = None
    ) -> CostEstimate:
        """Estimate cost and price before calling a model.

        Output tokens default to twice the input.
        """
        if output_tokens is None:
            output_tokens = input_tokens * 2
        cost = calculate_cost(model, input_tokens, output_tokens)
        price = calculate_price(cost, self.target_margin)
        return CostEstimate(
            model=model,
            estimated_cost=cost,
            estimated_price=price,
            estimated_margin=price - cost,
            margin_percent=self.target_margin * 100
        )
