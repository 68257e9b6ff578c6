"""
Token counting and usage tracking.

Normalizes the usage blocks returned by the different provider SDKs.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.

    Contains exact token counts as reported by the provider, no estimation.
    """
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + output)."""
        return self.input_tokens + self.output_tokens

    @classmethod
    def from_openai(cls, usage: Any) -> "TokenUsage":
        """Build usage from an OpenAI-compatible `usage` block (may be None)."""
        if usage is None:
            return cls()
        return cls(
            input_tokens=usage.prompt_tokens or 0,
            output_tokens=usage.completion_tokens or 0
        )

    @classmethod
    def from_anthropic(cls, usage: Any) -> "TokenUsage":
        """Build usage from an Anthropic `usage` block (may be None)."""
        if usage is None:
            return cls()
        return cls(
            input_tokens=usage.input_tokens or 0,
            output_tokens=usage.output_tokens or 0
        )
