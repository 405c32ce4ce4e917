"""AI completion module.

Usage:
    from chatnest.ai import OpenRouterProvider

    provider = OpenRouterProvider(api_key="sk-or-...", model="openai/gpt-4o")
    reply = await provider.complete("What is DuckDB?")
"""
from .provider import (
    CompletionError,
    CompletionProvider,
    OpenRouterProvider,
    create_provider_from_config,
    get_provider,
    set_provider,
)

__all__ = [
    "CompletionError",
    "CompletionProvider",
    "OpenRouterProvider",
    "create_provider_from_config",
    "get_provider",
    "set_provider",
]
