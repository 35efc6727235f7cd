"""Grounding retrieval and knowledge search."""

from copilot_automation.retrieval.context import (
    CalendarSnippet,
    ContactSnippet,
    ContextRetriever,
    EmailSnippet,
    RetrievalContext,
    SemanticSearcher,
)
from copilot_automation.retrieval.knowledge import KnowledgeSearch

__all__ = [
    "CalendarSnippet",
    "ContactSnippet",
    "ContextRetriever",
    "EmailSnippet",
    "KnowledgeSearch",
    "RetrievalContext",
    "SemanticSearcher",
]
