"""
Provider invokers.

One function per provider, all satisfying the same invoke contract, bound
to the ProviderName enum in an invoker registry. Anthropic is called
through its own SDK; OpenAI, Mistral and Google through the OpenAI SDK
(the latter two via their OpenAI-compatible endpoints).
"""

import os
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from anthropic import Anthropic, AnthropicError
from openai import OpenAI, OpenAIError

from ..core.catalog import ProviderName
from ..core.token_counter import TokenUsage

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."


class ProviderError(Exception):
    """Raised when a single provider fails to answer."""

    def __init__(self, provider: ProviderName, model: str, message: str):
        super().__init__(f"{provider.value}/{model}: {message}")
        self.provider = provider
        self.model = model


@dataclass(frozen=True)
class ProviderResponse:
    """Answer returned by a provider."""
    content: str
    model: str
    provider: ProviderName
    usage: TokenUsage


# invoke(model, messages, system_prompt, timeout, max_tokens) -> ProviderResponse
ProviderInvoker = Callable[..., ProviderResponse]


def _require_key(provider: ProviderName, model: str, env_var: str) -> str:
    api_key = os.getenv(env_var)
    if not api_key:
        raise ProviderError(provider, model, f"{env_var} not configured")
    return api_key


def invoke_anthropic(
    model: str,
    messages: List[Dict[str, str]],
    system_prompt: Optional[str] = None,
    timeout: float = 60.0,
    max_tokens: int = 4096
) -> ProviderResponse:
    """Call the Anthropic Messages API.

    Raises:
        ProviderError: If the key is missing or the API call fails
    """
    api_key = _require_key(ProviderName.ANTHROPIC, model, "ANTHROPIC_API_KEY")
    # Retries would multiply the timeout; the fallback chain retries instead
    client = Anthropic(api_key=api_key, max_retries=0)

    try:
        response = client.messages.create(
            model=model,
            max_tokens=max_tokens,
            system=system_prompt or DEFAULT_SYSTEM_PROMPT,
            messages=[
                {
                    "role": "user" if m["role"] == "user" else "assistant",
                    "content": m["content"]
                }
                for m in messages
            ],
            timeout=timeout
        )
    except AnthropicError as e:
        raise ProviderError(ProviderName.ANTHROPIC, model, str(e)) from e

    content = "".join(
        block.text for block in response.content
        if getattr(block, "type", None) == "text"
    )
    return ProviderResponse(
        content=content,
        model=model,
        provider=ProviderName.ANTHROPIC,
        usage=TokenUsage.from_anthropic(response.usage)
    )


# env var holding the key, base URL (None = OpenAI default)
_OPENAI_COMPATIBLE = {
    ProviderName.OPENAI: ("OPENAI_API_KEY", None),
    ProviderName.MISTRAL: ("MISTRAL_API_KEY", "https://api.mistral.ai/v1"),
    ProviderName.GOOGLE: (
        "GOOGLE_API_KEY",
        "https://generativelanguage.googleapis.com/v1beta/openai/"
    ),
}


def _invoke_openai_compatible(
    provider: ProviderName,
    model: str,
    messages: List[Dict[str, str]],
    system_prompt: Optional[str],
    timeout: float,
    max_tokens: int
) -> ProviderResponse:
    env_var, base_url = _OPENAI_COMPATIBLE[provider]
    api_key = _require_key(provider, model, env_var)
    # No SDK retries, see invoke_anthropic
    client = OpenAI(api_key=api_key, base_url=base_url, max_retries=0)

    try:
        response = client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            messages=[
                {"role": "system", "content": system_prompt or DEFAULT_SYSTEM_PROMPT},
                *messages
            ],
            timeout=timeout
        )
    except OpenAIError as e:
        raise ProviderError(provider, model, str(e)) from e

    if not response.choices:
        raise ProviderError(provider, model, "response contained no choices")

    return ProviderResponse(
        content=response.choices[0].message.content or "",
        model=model,
        provider=provider,
        usage=TokenUsage.from_openai(response.usage)
    )


def invoke_openai(model, messages, system_prompt=None, timeout=60.0, max_tokens=4096):
    return _invoke_openai_compatible(
        ProviderName.OPENAI, model, messages, system_prompt, timeout, max_tokens
    )


def invoke_mistral(model, messages, system_prompt=None, timeout=60.0, max_tokens=4096):
    return _invoke_openai_compatible(
        ProviderName.MISTRAL, model, messages, system_prompt, timeout, max_tokens
    )


def invoke_google(model, messages, system_prompt=None, timeout=60.0, max_tokens=4096):
    return _invoke_openai_compatible(
        ProviderName.GOOGLE, model, messages, system_prompt, timeout, max_tokens
    )


def default_invokers() -> Dict[ProviderName, ProviderInvoker]:
    """Registry of the built-in invokers, one per provider."""
    return {
        ProviderName.ANTHROPIC: invoke_anthropic,
        ProviderName.OPENAI: invoke_openai,
        ProviderName.MISTRAL: invoke_mistral,
        ProviderName.GOOGLE: invoke_google,
    }
