"""Anthropic client factory."""
from __future__ import annotations

from traverse.config import settings
from traverse.errors import ConfigurationError


def get_client():
    """Build an AsyncAnthropic client from settings.

    Raises ConfigurationError when no API key is configured, so a missing key
    surfaces on the first backend call rather than at import time.
    """
    import anthropic

    if not settings.anthropic_api_key:
        raise ConfigurationError("ANTHROPIC_API_KEY is not configured")
    return anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)


def get_model() -> str:
    return settings.anthropic_model


def get_advisory_model() -> str:
    return settings.advisory_model or settings.anthropic_model


def thinking_config() -> dict:
    return {"type": "enabled", "budget_tokens": settings.thinking_budget_tokens}


# Singleton
_client = None


def client():
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client


def reset_client() -> None:
    global _client
    _client = None
