"""Inline citation parsing for streamed answers.

Answers cite sources as ``[doc_id 1, 2]`` (the format the service is told to
use) or the shorthand ``[1, 2]``. Identifiers may contain any character except
a closing bracket or a comma.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, List, Sequence

CITATION_PATTERN = re.compile(r"\[(?:doc_id\s+)?([^\]]+)\]")

CitationRenderer = Callable[[List[str], List[str]], str]


@dataclass(frozen=True)
class Citation:
    """One citation marker found in a piece of text."""

    original_text: str
    ids: List[str]
    start_index: int
    end_index: int


def _split_ids(raw: str) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def parse_citations(text: str) -> List[Citation]:
    """Every citation marker in ``text``, left to right, with its offsets.

    Brackets holding no identifier, such as ``[ ]`` or ``[,]``, are not
    citations.
    """
    citations: List[Citation] = []
    for match in CITATION_PATTERN.finditer(text):
        ids = _split_ids(match.group(1))
        if not ids:
            continue
        citations.append(
            Citation(
                original_text=match.group(0),
                ids=ids,
                start_index=match.start(),
                end_index=match.end(),
            )
        )
    return citations


def get_cited_document_ids(text: str) -> List[str]:
    """Unique cited ids in order of first appearance."""
    seen: List[str] = []
    for citation in parse_citations(text):
        for doc_id in citation.ids:
            if doc_id not in seen:
                seen.append(doc_id)
    return seen


def replace_citations(text: str, render: CitationRenderer) -> str:
    """Substitute every marker with ``render(ids, all_ids)``.

    ``all_ids`` is the de-duplicated list of every cited id in ``text`` in
    first-appearance order, computed once for the whole call, which lets a
    renderer number sources sequentially.
    """
    all_ids = get_cited_document_ids(text)

    def substitute(match: "re.Match[str]") -> str:
        ids = _split_ids(match.group(1))
        if not ids:
            return match.group(0)
        return render(ids, all_ids)

    return CITATION_PATTERN.sub(substitute, text)


def render_as_markdown_links(ids: List[str], _all_ids: Sequence[str] = ()) -> str:
    """Render ids as markdown links that point at the matching hit anchors."""
    return ", ".join(f"[[{doc_id}]](#hit-{doc_id})" for doc_id in ids)


def render_as_sequential_links(ids: List[str], all_ids: List[str]) -> str:
    """Like ``render_as_markdown_links`` but labelled by first-appearance number."""
    return ", ".join(f"[[{all_ids.index(doc_id) + 1}]](#hit-{doc_id})" for doc_id in ids)
