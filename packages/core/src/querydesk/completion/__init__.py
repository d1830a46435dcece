"""SQL completion: suggestion providers and the engine that runs them."""

from querydesk.completion.engine import CompletionEngine
from querydesk.completion.providers import DEFAULT_PROVIDERS, Provider

__all__ = ["DEFAULT_PROVIDERS", "CompletionEngine", "Provider"]
