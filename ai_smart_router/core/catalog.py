"""
Provider catalog.

Static registry of the providers the router can call and the models each
one exposes, tagged with a cost tier and a capability set.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional


class ProviderName(str, Enum):
    """Providers the router knows how to invoke."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    MISTRAL = "mistral"
    GOOGLE = "google"


class CostTier(str, Enum):
    """Coarse pricing class, ordered from cheapest to most expensive."""
    FREE = "free"
    CHEAP = "cheap"
    MID = "mid"
    PREMIUM = "premium"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER = [CostTier.FREE, CostTier.CHEAP, CostTier.MID, CostTier.PREMIUM]


class Capability(str, Enum):
    """Kind of task a model is fit for."""
    CHAT = "chat"
    CODE = "code"
    CODE_SIMPLE = "code-simple"
    ANALYSIS = "analysis"
    COMPLEX = "complex"
    TRANSLATE = "translate"
    LONG_CONTEXT = "long-context"


@dataclass(frozen=True)
class ModelDescriptor:
    """A single model offered by a provider."""
    provider: ProviderName
    name: str
    tier: CostTier
    capabilities: FrozenSet[Capability]
    input_price_per_1m: float  # USD per 1M input tokens
    output_price_per_1m: float  # USD per 1M output tokens

    @property
    def unit_cost(self) -> float:
        """Combined input+output price, used to rank candidates."""
        return self.input_price_per_1m + self.output_price_per_1m

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities


def _model(provider, name, tier, capabilities, input_price, output_price):
    return ModelDescriptor(
        provider=provider,
        name=name,
        tier=tier,
        capabilities=frozenset(capabilities),
        input_price_per_1m=input_price,
        output_price_per_1m=output_price
    )


_C = Capability

# Prices in USD per 1M tokens
MODELS: Dict[str, ModelDescriptor] = {m.name: m for m in [
    # Anthropic
    _model(ProviderName.ANTHROPIC, "claude-3-5-haiku-20241022", CostTier.CHEAP,
           [_C.CHAT, _C.CODE_SIMPLE], 0.80, 4.00),
    _model(ProviderName.ANTHROPIC, "claude-3-5-sonnet-20241022", CostTier.MID,
           [_C.CHAT, _C.CODE, _C.ANALYSIS], 3.00, 15.00),
    _model(ProviderName.ANTHROPIC, "claude-opus-4-5", CostTier.PREMIUM,
           [_C.CHAT, _C.CODE, _C.ANALYSIS, _C.COMPLEX], 15.00, 75.00),

    # OpenAI
    _model(ProviderName.OPENAI, "gpt-4o-mini", CostTier.CHEAP,
           [_C.CHAT, _C.CODE_SIMPLE], 0.15, 0.60),
    _model(ProviderName.OPENAI, "gpt-4o", CostTier.MID,
           [_C.CHAT, _C.CODE, _C.ANALYSIS], 2.50, 10.00),
    _model(ProviderName.OPENAI, "gpt-4-turbo-preview", CostTier.PREMIUM,
           [_C.CHAT, _C.CODE, _C.ANALYSIS, _C.COMPLEX], 10.00, 30.00),

    # Mistral
    _model(ProviderName.MISTRAL, "mistral-small-latest", CostTier.FREE,
           [_C.CHAT, _C.TRANSLATE], 0.10, 0.30),
    _model(ProviderName.MISTRAL, "mistral-medium-latest", CostTier.CHEAP,
           [_C.CHAT, _C.CODE_SIMPLE], 0.27, 0.81),
    _model(ProviderName.MISTRAL, "mistral-large-latest", CostTier.MID,
           [_C.CHAT, _C.CODE, _C.ANALYSIS], 2.00, 6.00),

    # Google
    _model(ProviderName.GOOGLE, "gemini-1.5-flash", CostTier.FREE,
           [_C.CHAT, _C.CODE_SIMPLE], 0.075, 0.30),
    _model(ProviderName.GOOGLE, "gemini-1.5-pro", CostTier.MID,
           [_C.CHAT, _C.CODE, _C.ANALYSIS, _C.LONG_CONTEXT], 1.25, 5.00),
]}

# Cheapest chat-capable model, open to every user tier
SAFE_DEFAULT_MODEL = "gemini-1.5-flash"


def get_model(name: str) -> Optional[ModelDescriptor]:
    """Look up a model by name, None if it is not in the catalog."""
    return MODELS.get(name)


def models_for_provider(provider: ProviderName) -> List[ModelDescriptor]:
    """All catalog models of a provider, cheapest first."""
    return sorted(
        (m for m in MODELS.values() if m.provider == provider),
        key=lambda m: m.unit_cost
    )
