"""Clients for the LLM provider, GitHub and ticket/chat systems."""

from .llm_client import LLMClient, LLMResult
from .github_client import SourceControlClient
from .context_providers import ContextProvider, build_context_providers

__all__ = [
    "LLMClient",
    "LLMResult",
    "SourceControlClient",
    "ContextProvider",
    "build_context_providers",
]
