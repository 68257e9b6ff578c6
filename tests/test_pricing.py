"""
Unit tests for pricing calculations.

Tests cost calculation accuracy and margin pricing.
"""

from decimal import Decimal

import pytest

from ai_smart_router.core.catalog import MODELS
from ai_smart_router.core.pricing import (
    PRICING_TABLE,
    CostExtras,
    ModelPricing,
    PricingTable,
    calculate_cost,
    calculate_price,
    validate_margin,
)
from ai_smart_router.core.token_counter import TokenUsage


class TestPricingTable:
    """Test pricing table functionality."""

    def test_catalog_models_are_priced(self):
        """Test that every catalog model has a price."""
        for name, model in MODELS.items():
            pricing = PRICING_TABLE.get_pricing(name)
            assert pricing.input_per_1m == Decimal(str(model.input_price_per_1m))
            assert pricing.output_per_1m == Decimal(str(model.output_price_per_1m))

    def test_get_pricing_unknown_model(self):
        """Test error handling for unsupported models."""
        with pytest.raises(ValueError, match="Unsupported model: unknown-model"):
            PRICING_TABLE.get_pricing("unknown-model")


class TestCalculateCost:
    """Test cost calculation functionality."""

    def test_token_cost(self):
        """Test basic token cost calculation."""
        # gpt-4o-mini: $0.15 input, $0.60 output per 1M tokens
        cost = calculate_cost("gpt-4o-mini", 1000, 500)
        assert cost == pytest.approx(0.00045)

    def test_zero_tokens(self):
        """Test cost calculation with zero tokens."""
        assert calculate_cost("gpt-4o", 0, 0) == 0.0

    def test_unknown_model_costs_zero(self):
        """Test that unknown models degrade to zero cost."""
        assert calculate_cost("not-a-model", 1000, 1000) == 0.0

    def test_embedding_cost(self):
        """Test embedding models priced on input only."""
        assert calculate_cost("text-embedding-3-small", 1_000_000, 0) == pytest.approx(0.02)

    def test_image_cost(self):
        """Test per-image pricing."""
        cost = calculate_cost("dall-e-3", 0, 0, CostExtras(image_count=3))
        assert cost == pytest.approx(0.12)

    def test_audio_cost(self):
        """Test per-minute pricing."""
        cost = calculate_cost("whisper-1", 0, 0, CostExtras(audio_minutes=2.5))
        assert cost == pytest.approx(0.015)

    def test_speech_cost(self):
        """Test per-character pricing."""
        cost = calculate_cost("elevenlabs", 0, 0, CostExtras(characters=1000))
        assert cost == pytest.approx(0.03)

    def test_custom_table(self):
        """Test cost calculation with an explicit table."""
        table = PricingTable({"m": ModelPricing(input_per_1m=Decimal("1"),
                                                output_per_1m=Decimal("2"))})
        assert calculate_cost("m", 1_000_000, 1_000_000, table=table) == pytest.approx(3.0)


class TestMarginPricing:
    """Test price derivation from a target margin."""

    def test_thirty_percent_margin(self):
        """Test price = cost / (1 - margin)."""
        assert calculate_price(0.007, 0.30) == pytest.approx(0.01)

    def test_margin_share_of_price(self):
        """Test that the margin is the requested share of the price."""
        price = calculate_price(1.0, 0.25)
        assert (price - 1.0) / price == pytest.approx(0.25)

    def test_zero_margin(self):
        """Test that a zero margin charges the cost."""
        assert calculate_price(0.5, 0.0) == pytest.approx(0.5)

    @pytest.mark.parametrize("margin", [-0.1, 1.0, 1.5])
    def test_invalid_margin(self, margin):
        """Test that margins outside [0, 1) are rejected."""
        with pytest.raises(ValueError):
            validate_margin(margin)


class TestTokenUsage:
    """Test usage normalization."""

    def test_total_tokens(self):
        """Test total token calculation."""
        assert TokenUsage(input_tokens=100, output_tokens=50).total_tokens == 150

    def test_missing_usage(self):
        """Test that a missing usage block counts as zero."""
        assert TokenUsage.from_openai(None) == TokenUsage()
        assert TokenUsage.from_anthropic(None) == TokenUsage()
