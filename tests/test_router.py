"""
Unit tests for the request router.

Tests the end-to-end flow with fake providers: selection, caching,
fallback, accounting and failure handling.
"""

import os
import sqlite3
import tempfile
import threading
from unittest.mock import patch

import pytest

from ai_smart_router.config.loader import RouterConfig
from ai_smart_router.core.cache import SemanticCache
from ai_smart_router.core.catalog import Capability, CostTier, ProviderName, get_model
from ai_smart_router.core.ledger import CACHE_MODEL, CostLedger
from ai_smart_router.core.pricing import calculate_cost
from ai_smart_router.core.router import (
    AllProvidersFailedError,
    RouteOptions,
    Router,
    UnknownModelError,
)
from ai_smart_router.core.token_counter import TokenUsage
from ai_smart_router.sdk.embeddings import EmbeddingResult, EmbeddingUnavailableError
from ai_smart_router.sdk.providers import ProviderError, ProviderResponse
from ai_smart_router.storage.knowledge import list_entry_ids
from ai_smart_router.storage.repository import fetch_recent_cost_records, initialize_schema

DIMENSIONS = 8


class OneHotEmbedder:
    """Equal texts get equal vectors, different texts orthogonal ones."""

    def __init__(self):
        self._axes = {}
        self._lock = threading.Lock()

    def embed(self, text):
        with self._lock:
            axis = self._axes.setdefault(text, len(self._axes) % DIMENSIONS)
        vector = [0.0] * DIMENSIONS
        vector[axis] = 1.0
        return EmbeddingResult(vector=vector, tokens=5, cost=0.0000001)


class DownEmbedder:
    """Embedder whose service is unreachable."""

    def __init__(self):
        self.calls = 0

    def embed(self, text):
        self.calls += 1
        raise EmbeddingUnavailableError("connection refused")


class FakeProvider:
    """Invoker that answers or fails and records every call."""

    def __init__(self, provider, answer="ok", fail=False, error=None):
        self.provider = provider
        self.answer = answer
        self.fail = fail
        self.error = error
        self.calls = []

    def __call__(self, model, messages, system_prompt=None, timeout=60.0, max_tokens=4096):
        self.calls.append({"model": model, "messages": messages,
                           "system_prompt": system_prompt, "timeout": timeout})
        if self.error is not None:
            raise self.error
        if self.fail:
            raise ProviderError(self.provider, model, "unavailable")
        return ProviderResponse(
            content=self.answer,
            model=model,
            provider=self.provider,
            usage=TokenUsage(input_tokens=100, output_tokens=50)
        )


class TestRouter:
    """Test routing end to end."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.config = RouterConfig(db_path=self.db_path, embedding_dimensions=DIMENSIONS)
        self.providers = {
            p: FakeProvider(p, answer=f"answer from {p.value}") for p in ProviderName
        }

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _router(self, cache=True, config=None, embedder=None):
        config = config or self.config
        semantic_cache = None
        if cache:
            semantic_cache = SemanticCache(embedder or OneHotEmbedder(), self.db_path,
                                           dimensions=DIMENSIONS)
        return Router(
            ledger=CostLedger(self.db_path, config.target_margin),
            cache=semantic_cache,
            invokers=self.providers,
            config=config
        )

    def test_greeting_goes_to_free_model(self):
        """Test that "hi" from a free user uses a free-tier model."""
        result = self._router().route("hi", options=RouteOptions(user_tier="free"))

        assert result.success is True
        assert result.from_cache is False
        assert result.routing.category == "simple"
        assert result.model == "gemini-1.5-flash"
        assert result.provider == "google"
        assert result.routing.tier == CostTier.FREE.value
        assert result.content == "answer from google"
        assert result.input_tokens == 100
        assert result.output_tokens == 50

    def test_code_request_for_pro_user(self):
        """Test that code requests reach a code-capable model."""
        result = self._router().route(
            "Write a Python function to parse JSON",
            options=RouteOptions(user_tier="pro")
        )
        assert result.routing.category == "code"
        assert get_model(result.model).supports(Capability.CODE)

    def test_repeated_question_served_from_cache(self):
        """Test a miss followed by a hit with the same answer."""
        router = self._router()
        first = router.route("What is your refund policy?")
        second = router.route("What is your refund policy?")

        assert first.from_cache is False
        assert second.from_cache is True
        assert second.content == first.content
        assert second.model == CACHE_MODEL
        assert second.similarity == pytest.approx(1.0)
        assert second.cache_entry_id == first.cache_entry_id
        assert len(self.providers[ProviderName.GOOGLE].calls) == 1

        stats = router.ledger.get_stats()
        assert stats.cache_hits == 1
        assert stats.cache_misses == 1
        assert stats.cache_savings == pytest.approx(first.cost - 0.0000001)

    def test_cache_hit_costs_only_the_embedding(self):
        """Test that hits are not priced."""
        router = self._router()
        router.route("What is your refund policy?")
        hit = router.route("What is your refund policy?")

        records = fetch_recent_cost_records(db_path=self.db_path)
        hit_record = [r for r in records if r.from_cache][0]
        assert hit.cost == pytest.approx(0.0000001)
        assert hit_record.price == 0.0

    def test_cost_is_recorded(self):
        """Test that every answered miss produces a cost record."""
        result = self._router().route("hi", options=RouteOptions(user_id="user-7"))

        records = fetch_recent_cost_records(db_path=self.db_path)
        assert len(records) == 1
        assert records[0].id == result.cost_record_id
        assert records[0].user_id == "user-7"
        assert records[0].provider == "google"
        assert records[0].margin_percent == pytest.approx(30.0, abs=0.01)

    def test_fallback_to_next_provider(self):
        """Test that a failing primary is replaced by the next provider."""
        self.providers[ProviderName.GOOGLE].fail = True
        result = self._router().route("hi")

        assert result.provider == "anthropic"
        assert result.model == "claude-3-5-haiku-20241022"
        assert result.attempts == [
            "google/gemini-1.5-flash",
            "anthropic/claude-3-5-haiku-20241022",
        ]

    def test_timeout_falls_back_to_next_provider(self):
        """Test that a provider timeout runs the fallback chain."""
        self.providers[ProviderName.GOOGLE].error = TimeoutError("read timed out")
        result = self._router().route("hi")

        assert result.provider == "anthropic"
        assert result.attempts == [
            "google/gemini-1.5-flash",
            "anthropic/claude-3-5-haiku-20241022",
        ]

    def test_embedding_outage_still_answers(self):
        """Test that an unreachable embedder degrades to an uncached answer."""
        embedder = DownEmbedder()
        result = self._router(embedder=embedder).route("hi", options=RouteOptions(user_id="u1"))

        assert result.success is True
        assert result.from_cache is False
        assert result.content == "answer from google"
        assert embedder.calls == 1
        assert result.cost == pytest.approx(calculate_cost("gemini-1.5-flash", 100, 50))

        records = fetch_recent_cost_records(db_path=self.db_path)
        assert len(records) == 1
        assert records[0].cost == pytest.approx(result.cost)
        assert list_entry_ids(self.db_path) == []

    def test_hit_accounted_when_hit_count_update_fails(self):
        """Test that a failed use-count update still records the hit's cost."""
        router = self._router()
        router.route("What is your refund policy?")

        with patch('ai_smart_router.core.cache.record_entry_hit',
                   side_effect=sqlite3.OperationalError("database is locked")):
            hit = router.route("What is your refund policy?")

        assert hit.from_cache is True
        assert hit.cost_record_id is not None
        assert len(fetch_recent_cost_records(db_path=self.db_path)) == 2
        assert router.ledger.get_stats().cache_hits == 1

    def test_all_providers_fail(self):
        """Test that total failure raises and writes nothing."""
        for provider in self.providers.values():
            provider.fail = True

        with pytest.raises(AllProvidersFailedError) as exc_info:
            self._router().route("hi")

        assert len(exc_info.value.attempts) == 4
        assert isinstance(exc_info.value.last_error, ProviderError)
        assert fetch_recent_cost_records(db_path=self.db_path) == []
        assert list_entry_ids(self.db_path) == []

    def test_free_user_fallback_never_premium(self):
        """Test that failover respects the user's cost tiers."""
        self.providers[ProviderName.GOOGLE].fail = True
        self.providers[ProviderName.ANTHROPIC].fail = True
        self.providers[ProviderName.OPENAI].fail = True
        self.providers[ProviderName.MISTRAL].fail = True

        with pytest.raises(AllProvidersFailedError) as exc_info:
            self._router().route("Design a step by step architecture",
                                 options=RouteOptions(user_tier="free"))

        for attempt in exc_info.value.attempts:
            model = get_model(attempt.split("/", 1)[1])
            assert model.tier != CostTier.PREMIUM

    def test_forced_model(self):
        """Test that a forced model bypasses selection."""
        result = self._router().route("hi", options=RouteOptions(force_model="gpt-4o"))
        assert result.model == "gpt-4o"
        assert result.provider == "openai"

    def test_unknown_forced_model(self):
        """Test that an unknown forced model is rejected before any call."""
        with pytest.raises(UnknownModelError):
            self._router().route("hi", options=RouteOptions(force_model="gpt-99"))
        assert all(not p.calls for p in self.providers.values())

    def test_history_and_system_prompt_forwarded(self):
        """Test that the conversation reaches the provider."""
        history = [
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "hi there"},
        ]
        self._router().route("thanks", history=history,
                             options=RouteOptions(system_prompt="Be brief."))

        call = self.providers[ProviderName.GOOGLE].calls[0]
        assert call["messages"] == history + [{"role": "user", "content": "thanks"}]
        assert call["system_prompt"] == "Be brief."
        assert call["timeout"] == self.config.provider_timeout

    def test_skip_cache(self):
        """Test that skipping the cache neither reads nor writes it."""
        router = self._router()
        router.route("hi", options=RouteOptions(skip_cache=True))
        assert list_entry_ids(self.db_path) == []

    def test_cache_disabled_by_config(self):
        """Test routing without a cache."""
        config = RouterConfig(db_path=self.db_path, cache_enabled=False)
        router = self._router(config=config)
        assert router.cache is None

        router.route("hi")
        result = router.route("hi")
        assert result.from_cache is False
        assert len(self.providers[ProviderName.GOOGLE].calls) == 2

    def test_fallback_chain_order(self):
        """Test that the primary provider leads the configured order."""
        chain = self._router().fallback_chain(ProviderName.MISTRAL)
        assert chain == [
            ProviderName.MISTRAL,
            ProviderName.ANTHROPIC,
            ProviderName.OPENAI,
            ProviderName.GOOGLE,
        ]
