"""Completion engine."""

import logging
from collections.abc import Callable, Sequence

from querydesk.completion.providers import DEFAULT_PROVIDERS, Provider
from querydesk.completion.tokens import analyze
from querydesk_models import DocumentPosition, SchemaSnapshot, Suggestion

logger = logging.getLogger(__name__)


class CompletionEngine:
    """Runs suggestion providers in priority order and merges their output.

    The first provider of a context that matches ends the search for that
    context; providers of other contexts still run. Results are deduplicated
    by (label, kind) and capped at max_suggestions.

    The schema comes from ``schema_source``, which must not do I/O (pass
    ``SchemaCache.peek``).
    """

    def __init__(
        self,
        schema_source: Callable[[], SchemaSnapshot | None],
        providers: Sequence[Provider] = DEFAULT_PROVIDERS,
        max_suggestions: int = 50,
    ) -> None:
        self._schema_source = schema_source
        self._providers = tuple(providers)
        self.max_suggestions = max_suggestions

    @property
    def providers(self) -> tuple[Provider, ...]:
        return self._providers

    def complete(self, text: str, cursor_offset: int) -> list[Suggestion]:
        """Suggestions for the cursor position. Never raises."""
        cursor = min(max(cursor_offset, 0), len(text))
        doc = DocumentPosition(text=text, cursor_offset=cursor)
        if analyze(doc).in_literal:
            return []

        schema = self._schema_source()
        matched_contexts: set[str] = set()
        seen: set[tuple[str, str]] = set()
        suggestions: list[Suggestion] = []

        for provider in self._providers:
            if provider.context in matched_contexts:
                continue
            try:
                proposals = provider.propose(doc, schema)
            except Exception:
                logger.exception("Suggestion provider %s failed", provider.name)
                continue
            if not proposals:
                continue

            matched_contexts.add(provider.context)
            for suggestion in proposals:
                key = (suggestion.label, suggestion.kind.value)
                if key in seen:
                    continue
                seen.add(key)
                suggestions.append(suggestion)
                if len(suggestions) >= self.max_suggestions:
                    return suggestions

        return suggestions
