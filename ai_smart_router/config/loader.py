"""
Configuration management and loading.

Handles router settings: margin target, cache tuning, provider timeouts
and fallback order, storage location.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml

from ai_smart_router.core.catalog import ProviderName
from ai_smart_router.core.pricing import DEFAULT_TARGET_MARGIN, validate_margin
from ai_smart_router.storage.db import DEFAULT_DB_PATH

DEFAULT_FALLBACK_ORDER: Tuple[ProviderName, ...] = (
    ProviderName.ANTHROPIC,
    ProviderName.OPENAI,
    ProviderName.MISTRAL,
    ProviderName.GOOGLE,
)


@dataclass(frozen=True)
class RouterConfig:
    """Complete router configuration.

    Every field has a working default so the router can be built without a
    config file; values are validated on construction so a bad margin or
    threshold fails at startup, never mid-request.
    """
    target_margin: float = DEFAULT_TARGET_MARGIN
    cache_enabled: bool = True
    similarity_threshold: float = 0.92
    max_cache_entries: int = 10000
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536
    provider_timeout: float = 60.0
    max_tokens: int = 4096
    fallback_order: Tuple[ProviderName, ...] = DEFAULT_FALLBACK_ORDER
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        """Validate ranges."""
        validate_margin(self.target_margin)
        if not 0 < self.similarity_threshold <= 1:
            raise ValueError("similarity_threshold must be in (0, 1]")
        if self.max_cache_entries <= 0:
            raise ValueError("max_cache_entries must be > 0")
        if self.embedding_dimensions <= 0:
            raise ValueError("embedding dimensions must be > 0")
        if self.provider_timeout <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if not self.fallback_order:
            raise ValueError("fallback_order cannot be empty")
        if len(set(self.fallback_order)) != len(self.fallback_order):
            raise ValueError("fallback_order contains duplicate providers")


_ALLOWED_SECTIONS = {
    "margin": {"target"},
    "cache": {"enabled", "similarity_threshold", "max_entries"},
    "embeddings": {"model", "dimensions"},
    "providers": {"timeout_seconds", "max_tokens", "fallback_order"},
    "storage": {"db_path"},
}


def load_router_config(path: str) -> RouterConfig:
    """Load and validate router configuration from YAML file.

    Strict validation ensures no silent misconfigurations, e.g. a typo in a
    key silently falling back to a default margin.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated RouterConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Router config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_ALLOWED_SECTIONS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {}
    for name, allowed in _ALLOWED_SECTIONS.items():
        sections[name] = _parse_section(raw_config.get(name, {}), name, allowed)

    kwargs: Dict[str, Any] = {}

    margin = sections["margin"]
    if "target" in margin:
        kwargs["target_margin"] = _number(margin["target"], "margin.target")

    cache = sections["cache"]
    if "enabled" in cache:
        if not isinstance(cache["enabled"], bool):
            raise ValueError("'cache.enabled' must be true or false")
        kwargs["cache_enabled"] = cache["enabled"]
    if "similarity_threshold" in cache:
        kwargs["similarity_threshold"] = _number(
            cache["similarity_threshold"], "cache.similarity_threshold"
        )
    if "max_entries" in cache:
        kwargs["max_cache_entries"] = _integer(cache["max_entries"], "cache.max_entries")

    embeddings = sections["embeddings"]
    if "model" in embeddings:
        kwargs["embedding_model"] = _string(embeddings["model"], "embeddings.model")
    if "dimensions" in embeddings:
        kwargs["embedding_dimensions"] = _integer(
            embeddings["dimensions"], "embeddings.dimensions"
        )

    providers = sections["providers"]
    if "timeout_seconds" in providers:
        kwargs["provider_timeout"] = _number(
            providers["timeout_seconds"], "providers.timeout_seconds"
        )
    if "max_tokens" in providers:
        kwargs["max_tokens"] = _integer(providers["max_tokens"], "providers.max_tokens")
    if "fallback_order" in providers:
        kwargs["fallback_order"] = _parse_fallback_order(providers["fallback_order"])

    storage = sections["storage"]
    if "db_path" in storage:
        kwargs["db_path"] = _string(storage["db_path"], "storage.db_path")

    return RouterConfig(**kwargs)


def _parse_section(data: Any, path: str, allowed_keys: set) -> Dict:
    """Check a config section is a dictionary with only known keys.

    Raises:
        ValueError: If the section is malformed
    """
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
    return data


def _number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{path}' must be a number")
    return float(value)


def _integer(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{path}' must be an integer")
    return value


def _string(value: Any, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{path}' must be a non-empty string")
    return value


def _parse_fallback_order(value: Any) -> Tuple[ProviderName, ...]:
    if not isinstance(value, list):
        raise ValueError("'providers.fallback_order' must be a list")
    order = []
    for name in value:
        try:
            order.append(ProviderName(str(name).lower()))
        except ValueError:
            valid = [p.value for p in ProviderName]
            raise ValueError(f"Unknown provider '{name}' in fallback_order, must be one of: {valid}")
    return tuple(order)
