"""
Model selection.

Picks the cheapest catalog model that can handle a task category and that
the user's subscription tier is allowed to use.
"""

from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

from .catalog import (
    MODELS,
    SAFE_DEFAULT_MODEL,
    Capability,
    CostTier,
    ModelDescriptor,
    ProviderName,
    models_for_provider,
)
from .classifier import Category

CATEGORY_CAPABILITY: Dict[Category, Capability] = {
    Category.SIMPLE: Capability.CHAT,
    Category.TRANSLATE: Capability.TRANSLATE,
    Category.CODE: Capability.CODE,
    Category.WEBSITE: Capability.CODE,
    Category.ANALYSIS: Capability.ANALYSIS,
    Category.COMPLEX: Capability.COMPLEX,
}

# Categories where a generic chat model is not an acceptable substitute
STRICT_CATEGORIES: FrozenSet[Category] = frozenset({
    Category.CODE,
    Category.WEBSITE,
    Category.ANALYSIS,
    Category.COMPLEX,
})

DEFAULT_USER_TIER = "free"

# Cost tiers each subscription tier may use; add entries to support more tiers
TIER_ACCESS: Dict[str, FrozenSet[CostTier]] = {
    "free": frozenset({CostTier.FREE, CostTier.CHEAP, CostTier.MID}),
    "pro": frozenset({CostTier.FREE, CostTier.CHEAP, CostTier.MID, CostTier.PREMIUM}),
}


def required_capability(category: Category) -> Capability:
    return CATEGORY_CAPABILITY.get(category, Capability.CHAT)


def allowed_cost_tiers(
    user_tier: str,
    access: Mapping[str, FrozenSet[CostTier]] = TIER_ACCESS
) -> FrozenSet[CostTier]:
    """Cost tiers open to a user tier; unknown user tiers get the free policy."""
    return access.get(user_tier, access[DEFAULT_USER_TIER])


def select_model(
    category: Category,
    user_tier: str = DEFAULT_USER_TIER,
    catalog: Optional[Iterable[ModelDescriptor]] = None,
    access: Mapping[str, FrozenSet[CostTier]] = TIER_ACCESS
) -> ModelDescriptor:
    """Select the cheapest model able to handle `category`.

    Exact capability matches rank first. For non-strict categories a plain
    chat model is an acceptable fallback, ranked after exact matches.
    Within a rank, models are ordered by combined input+output price.

    Args:
        category: Task category from the classifier
        user_tier: Subscription tier of the user
        catalog: Models to choose from (defaults to the provider catalog)
        access: Cost tiers allowed per user tier

    Returns:
        The selected model, or the safe default when nothing qualifies
    """
    models = list(catalog) if catalog is not None else list(MODELS.values())
    allowed = allowed_cost_tiers(user_tier, access)
    capability = required_capability(category)
    accept_chat = category not in STRICT_CATEGORIES

    ranked = []
    for model in models:
        if model.tier not in allowed:
            continue
        if model.supports(capability):
            ranked.append((0, model.unit_cost, model.name, model))
        elif accept_chat and model.supports(Capability.CHAT):
            ranked.append((1, model.unit_cost, model.name, model))

    if not ranked:
        return MODELS[SAFE_DEFAULT_MODEL]

    ranked.sort(key=lambda item: item[:3])
    return ranked[0][3]


def equivalent_model(
    provider: ProviderName,
    tier: CostTier,
    allowed: Optional[FrozenSet[CostTier]] = None
) -> Optional[ModelDescriptor]:
    """The model of `provider` closest to `tier`, used when failing over.

    Prefers the cheapest model in the same cost tier; otherwise the most
    expensive tier below it, otherwise the cheapest allowed model of the
    provider. Never returns a tier outside `allowed`.
    """
    candidates: List[ModelDescriptor] = [
        m for m in models_for_provider(provider)
        if allowed is None or m.tier in allowed
    ]
    if not candidates:
        return None

    same_tier = [m for m in candidates if m.tier == tier]
    if same_tier:
        return same_tier[0]

    lower = [m for m in candidates if m.tier.rank < tier.rank]
    if lower:
        best_rank = max(m.tier.rank for m in lower)
        return [m for m in lower if m.tier.rank == best_rank][0]

    return candidates[0]
