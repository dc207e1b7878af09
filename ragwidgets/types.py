"""Shared type declarations for request payloads and saved results."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, TypedDict


class CitationMetadata(TypedDict, total=False):
    """Source reference attached to a finished answer."""

    id: str
    quote: str
    score: float


class HistoryEntry(TypedDict, total=False):
    """Single finished search kept in the local history file."""

    query: str
    timestamp: int
    summary: str
    hits: List[Dict[str, Any]]
    citations: List[CitationMetadata]


class QueryPayload(TypedDict, total=False):
    """The `query` member of a streaming request body."""

    full_text_search: Any
    semantic_search: Optional[str]
    indexes: List[str]
    limit: int
    fields: List[str]
    filter_query: Any
    exclusion_query: Any


class RAGRequest(TypedDict, total=False):
    """Body posted to the streaming endpoint."""

    query: QueryPayload
    summarizer: Dict[str, Any]
    system_prompt: str
