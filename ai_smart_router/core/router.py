"""
Request router.

Orchestrates one request end to end:

1. CacheCheck  - answer from the semantic cache when a close question exists
2. Classify    - task category of the message
3. SelectModel - cheapest capable model for the user's tier (or a forced one)
4. Invoke      - primary provider, then the fallback chain
5. Account     - cost record and daily aggregates
6. Populate    - store the new answer in the cache
"""

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .cache import SemanticCache
from .catalog import ModelDescriptor, ProviderName, get_model
from .classifier import classify_complexity
from .ledger import CACHE_MODEL, CACHE_PROVIDER, CostLedger
from .selector import DEFAULT_USER_TIER, allowed_cost_tiers, equivalent_model, select_model
from ..config.loader import RouterConfig
from ..sdk.embeddings import OpenAIEmbedder
from ..sdk.providers import ProviderInvoker, ProviderResponse, default_invokers
from ..storage.repository import initialize_schema

logger = logging.getLogger(__name__)


class UnknownModelError(ValueError):
    """Raised when a forced model is not in the provider catalog."""


class AllProvidersFailedError(Exception):
    """Raised when the primary provider and every fallback failed.

    Callers should turn this into a "please try again" message.
    """

    def __init__(self, attempts: List[str], last_error: Optional[BaseException]):
        super().__init__(
            f"All providers failed ({', '.join(attempts) or 'none attempted'}): {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RouteOptions:
    """Per-request routing options."""
    user_tier: str = DEFAULT_USER_TIER
    user_id: Optional[str] = None
    system_prompt: Optional[str] = None
    language: str = "en"
    force_model: Optional[str] = None
    skip_cache: bool = False


@dataclass(frozen=True)
class RoutingInfo:
    category: str
    tier: str
    user_tier: str
    latency_ms: float


@dataclass(frozen=True)
class RouteResult:
    """Answer plus cost and routing metadata."""
    success: bool
    content: str
    model: str
    provider: str
    cost: float
    from_cache: bool
    routing: RoutingInfo
    similarity: Optional[float] = None
    input_tokens: int = 0
    output_tokens: int = 0
    cache_entry_id: Optional[str] = None
    cost_record_id: Optional[str] = None
    attempts: List[str] = field(default_factory=list)


class Router:
    """Entry point of the routing core.

    All collaborators are injected so each router owns its cache and its
    provider registry; nothing is shared through module state.
    """

    def __init__(
        self,
        ledger: CostLedger,
        cache: Optional[SemanticCache] = None,
        invokers: Optional[Dict[ProviderName, ProviderInvoker]] = None,
        config: Optional[RouterConfig] = None
    ):
        self.config = config or RouterConfig()
        self.ledger = ledger
        self.cache = cache if self.config.cache_enabled else None
        self.invokers = invokers if invokers is not None else default_invokers()

    def route(
        self,
        message: str,
        history: Optional[List[Dict[str, str]]] = None,
        options: Optional[RouteOptions] = None
    ) -> RouteResult:
        """Answer a user message as cheaply as possible.

        Args:
            message: The user's message
            history: Prior conversation turns as {"role", "content"} dicts
            options: Tier, user, prompt and override settings

        Returns:
            RouteResult with the answer, cost and routing metadata

        Raises:
            UnknownModelError: If options.force_model is not in the catalog
            AllProvidersFailedError: If no provider could answer
        """
        options = options or RouteOptions()
        started = time.perf_counter()
        use_cache = self.cache is not None and not options.skip_cache

        # 1. CacheCheck
        lookup = None
        if use_cache:
            lookup = self.cache.lookup(message)
            if lookup.hit:
                return self._answer_from_cache(lookup, options, started)

        # 2. Classify
        category = classify_complexity(message)

        # 3. SelectModel
        if options.force_model:
            selected = get_model(options.force_model)
            if selected is None:
                raise UnknownModelError(f"Invalid model: {options.force_model}")
        else:
            selected = select_model(category, options.user_tier)

        logger.info(
            f"Category: {category.value} -> model: {selected.provider.value}/{selected.name}"
        )

        # 4. Invoke
        messages = list(history or []) + [{"role": "user", "content": message}]
        response, attempts = self._invoke_with_fallback(
            selected, messages, options.system_prompt, options.user_tier
        )

        # 5. Account
        embedding_cost = lookup.embedding_cost if lookup else 0.0
        cost = embedding_cost
        cost_record_id = None
        try:
            record = self.ledger.track_request(
                provider=response.provider.value,
                model=response.model,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                user_id=options.user_id,
                embedding_cost=embedding_cost
            )
            cost = record.cost
            cost_record_id = record.id
        except sqlite3.Error:
            logger.exception("Cost tracking failed, answer returned without attribution")

        # 6. Populate, only with the embedding already paid for at lookup
        cache_entry_id = None
        if use_cache and lookup.embedding is not None:
            try:
                cache_entry_id = self.cache.store(
                    question=message,
                    answer=response.content,
                    category=category.value,
                    model=response.model,
                    cost=cost - embedding_cost,
                    user_id=options.user_id,
                    language=options.language,
                    embedding=lookup.embedding
                )
            except sqlite3.Error:
                logger.exception("Cache store failed, answer not cached")

        latency_ms = (time.perf_counter() - started) * 1000
        answered_by = get_model(response.model)
        logger.info(
            f"Response in {latency_ms:.0f}ms | cost: ${cost:.6f} | model: {response.model}"
        )

        return RouteResult(
            success=True,
            content=response.content,
            model=response.model,
            provider=response.provider.value,
            cost=cost,
            from_cache=False,
            routing=RoutingInfo(
                category=category.value,
                tier=(answered_by or selected).tier.value,
                user_tier=options.user_tier,
                latency_ms=latency_ms
            ),
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            cache_entry_id=cache_entry_id,
            cost_record_id=cost_record_id,
            attempts=attempts
        )

    def _answer_from_cache(self, lookup, options: RouteOptions, started: float) -> RouteResult:
        entry = lookup.entry
        cost_record_id = None
        try:
            self.cache.record_hit(entry.id)
        except sqlite3.Error:
            logger.exception(f"Could not record hit on entry {entry.id}")

        try:
            record = self.ledger.track_request(
                provider=CACHE_PROVIDER,
                model=CACHE_MODEL,
                user_id=options.user_id,
                from_cache=True,
                cache_entry_id=entry.id,
                embedding_cost=lookup.embedding_cost,
                cache_savings=entry.original_cost
            )
            cost_record_id = record.id
        except sqlite3.Error:
            logger.exception("Cost tracking failed for cache hit")

        latency_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"Cache hit ({lookup.similarity * 100:.1f}%) - cost: ${lookup.embedding_cost:.6f}"
        )
        return RouteResult(
            success=True,
            content=entry.answer,
            model=CACHE_MODEL,
            provider=CACHE_PROVIDER,
            cost=lookup.embedding_cost,
            from_cache=True,
            routing=RoutingInfo(
                category=entry.category or "cached",
                tier=CACHE_PROVIDER,
                user_tier=options.user_tier,
                latency_ms=latency_ms
            ),
            similarity=lookup.similarity,
            cache_entry_id=entry.id,
            cost_record_id=cost_record_id
        )

    def fallback_chain(self, primary: ProviderName) -> List[ProviderName]:
        """Primary provider first, then the configured order without it."""
        return [primary] + [p for p in self.config.fallback_order if p != primary]

    def _invoke_with_fallback(
        self,
        selected: ModelDescriptor,
        messages: List[Dict[str, str]],
        system_prompt: Optional[str],
        user_tier: str
    ):
        allowed = allowed_cost_tiers(user_tier)
        attempts: List[str] = []
        last_error: Optional[Exception] = None

        for provider in self.fallback_chain(selected.provider):
            invoke = self.invokers.get(provider)
            if invoke is None:
                continue

            if provider == selected.provider:
                model = selected
            else:
                model = equivalent_model(provider, selected.tier, allowed)
                if model is None:
                    continue

            attempts.append(f"{provider.value}/{model.name}")
            try:
                response: ProviderResponse = invoke(
                    model.name,
                    messages,
                    system_prompt,
                    timeout=self.config.provider_timeout,
                    max_tokens=self.config.max_tokens
                )
                return response, attempts
            except Exception as e:
                logger.warning(f"{provider.value}/{model.name} failed: {e}")
                last_error = e

        raise AllProvidersFailedError(attempts, last_error) from last_error


def build_router(config: Optional[RouterConfig] = None) -> Router:
    """Wire a Router from configuration.

    Creates the schema if needed, then loads the cache index from the
    knowledge base when caching is enabled.
    """
    config = config or RouterConfig()
    initialize_schema(config.db_path)

    cache = None
    if config.cache_enabled:
        cache = SemanticCache(
            embedder=OpenAIEmbedder(
                model=config.embedding_model,
                dimensions=config.embedding_dimensions
            ),
            db_path=config.db_path,
            similarity_threshold=config.similarity_threshold,
            max_entries=config.max_cache_entries,
            dimensions=config.embedding_dimensions
        )
        cache.load()

    return Router(
        ledger=CostLedger(config.db_path, config.target_margin),
        cache=cache,
        config=config
    )
