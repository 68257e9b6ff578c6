"""
Pricing calculations and rate management.

Handles cost computations for chat, embedding, image and audio models and
the price needed to reach a target margin.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

from .catalog import MODELS

logger = logging.getLogger(__name__)

DEFAULT_TARGET_MARGIN = 0.30

_PER_MILLION = Decimal("1000000")


@dataclass(frozen=True)
class ModelPricing:
    """Pricing for a specific model.

    Token-priced models set the per-1M fields; image, audio and speech
    models set one of the per-item fields instead.
    """
    input_per_1m: Decimal = Decimal("0")
    output_per_1m: Decimal = Decimal("0")
    per_image: Optional[Decimal] = None
    per_minute: Optional[Decimal] = None
    per_character: Optional[Decimal] = None


@dataclass(frozen=True)
class CostExtras:
    """Non-token usage for per-item priced models."""
    image_count: int = 0
    audio_minutes: float = 0.0
    characters: int = 0


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model

        Raises:
            ValueError: If model is not supported
        """
        if model not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[model]


def _build_pricing_table() -> PricingTable:
    prices = {
        name: ModelPricing(
            input_per_1m=Decimal(str(descriptor.input_price_per_1m)),
            output_per_1m=Decimal(str(descriptor.output_price_per_1m))
        )
        for name, descriptor in MODELS.items()
    }
    prices.update({
        # Embeddings
        "text-embedding-3-small": ModelPricing(input_per_1m=Decimal("0.02")),
        "text-embedding-3-large": ModelPricing(input_per_1m=Decimal("0.13")),
        # Images
        "dall-e-3": ModelPricing(per_image=Decimal("0.04")),
        "dall-e-3-hd": ModelPricing(per_image=Decimal("0.08")),
        "stable-diffusion-xl": ModelPricing(per_image=Decimal("0.002")),
        # Audio
        "whisper-1": ModelPricing(per_minute=Decimal("0.006")),
        "elevenlabs": ModelPricing(per_character=Decimal("0.00003")),
    })
    return PricingTable(prices)


# Chat models mirror the provider catalog; no dynamic fetching
PRICING_TABLE = _build_pricing_table()


def calculate_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    extras: Optional[CostExtras] = None,
    table: PricingTable = PRICING_TABLE
) -> float:
    """Calculate the provider cost of a request in USD.

    Unknown models are logged and cost 0 so that accounting degrades
    before answering does.

    Args:
        model: Model identifier
        input_tokens: Input (prompt) tokens
        output_tokens: Output (completion) tokens
        extras: Item counts for image/audio/speech models
        table: Pricing table to use

    Returns:
        Cost in USD
    """
    try:
        pricing = table.get_pricing(model)
    except ValueError:
        logger.warning(f"Unknown model pricing: {model}, cost recorded as 0")
        return 0.0

    extras = extras or CostExtras()

    if pricing.per_image is not None and extras.image_count:
        return float(pricing.per_image * extras.image_count)

    if pricing.per_minute is not None and extras.audio_minutes:
        return float(pricing.per_minute * Decimal(str(extras.audio_minutes)))

    if pricing.per_character is not None and extras.characters:
        return float(pricing.per_character * extras.characters)

    input_cost = (Decimal(input_tokens) / _PER_MILLION) * pricing.input_per_1m
    output_cost = (Decimal(output_tokens) / _PER_MILLION) * pricing.output_per_1m
    return float(input_cost + output_cost)


def validate_margin(target_margin: float) -> float:
    """Reject margins that would make the price undefined or negative.

    Raises:
        ValueError: If target_margin is outside [0, 1)
    """
    if target_margin < 0 or target_margin >= 1:
        raise ValueError(f"target margin must be in [0, 1), got {target_margin}")
    return target_margin


def calculate_price(cost: float, target_margin: float = DEFAULT_TARGET_MARGIN) -> float:
    """Price to charge so that `target_margin` of it is profit.

    price = cost / (1 - margin); for a 30% margin, price = cost / 0.70.
    The margin is validated when configuration is built, not here.
    """
    return cost / (1 - target_margin)
