"""Structured query variants and the composer that builds them from text."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .registry import Registry


@dataclass(frozen=True)
class MatchAll:
    """Matches every document."""

    def to_wire(self) -> Dict[str, Any]:
        return {"match_all": {}}


@dataclass(frozen=True)
class MatchNone:
    """Matches no document."""

    def to_wire(self) -> Dict[str, Any]:
        return {"match_none": {}}


@dataclass(frozen=True)
class FieldMatch:
    """Full-text match of ``text`` against one field."""

    field: str
    text: str

    def to_wire(self) -> Dict[str, Any]:
        return {"match": self.text, "field": self.field}


@dataclass(frozen=True)
class Disjunction:
    """Any of the clauses must match."""

    clauses: Tuple["Query", ...]

    def to_wire(self) -> Dict[str, Any]:
        return {"disjuncts": [to_wire(clause) for clause in self.clauses]}


@dataclass(frozen=True)
class Conjunction:
    """All of the clauses must match."""

    clauses: Tuple["Query", ...]

    def to_wire(self) -> Dict[str, Any]:
        return {"conjuncts": [to_wire(clause) for clause in self.clauses]}


@dataclass(frozen=True)
class SemanticText:
    """Raw text handed to the server for vector search."""

    text: str

    def to_wire(self) -> str:
        return self.text


@dataclass(frozen=True)
class Opaque:
    """Caller-built query passed through untouched."""

    value: Any

    def to_wire(self) -> Any:
        return self.value


Query = Union[MatchAll, MatchNone, FieldMatch, Disjunction, Conjunction, SemanticText, Opaque]
CustomQuery = Callable[[str], Any]

_VARIANTS = (MatchAll, MatchNone, FieldMatch, Disjunction, Conjunction, SemanticText, Opaque)


def to_wire(value: Any) -> Any:
    """Serialize a query variant; any other value is returned as is."""
    if isinstance(value, _VARIANTS):
        return value.to_wire()
    return value


def compose_query(
    raw_text: str,
    fields: Optional[Sequence[str]] = None,
    custom_query: Optional[CustomQuery] = None,
    semantic: bool = False,
) -> Query:
    """Build the query a text widget contributes for ``raw_text``.

    Precedence: semantic mode, then a custom query function, then one match
    clause per field joined by OR. Blank text never produces an empty
    disjunction; it matches everything instead.
    """
    if semantic:
        return SemanticText(raw_text)
    if custom_query is not None:
        return Opaque(custom_query(raw_text))
    if fields:
        if not raw_text:
            return MatchAll()
        return Disjunction(tuple(FieldMatch(field, raw_text) for field in fields))
    return MatchAll()


def _is_bare_match_all(query: Any) -> bool:
    if isinstance(query, MatchAll):
        return True
    return isinstance(query, dict) and list(query) == ["match_all"]


def conjuncts_from(queries: Optional[Union[Mapping[str, Any], Sequence[Any]]]) -> Any:
    """AND the given queries together, ignoring bare match-all members."""
    if queries is None:
        return MatchAll()
    items: List[Any] = list(queries.values()) if isinstance(queries, Mapping) else list(queries)
    if not items:
        return MatchNone()
    if len(items) == 1:
        return items[0]
    kept = [item for item in items if not _is_bare_match_all(item)]
    if not kept:
        return MatchAll()
    if len(kept) == 1:
        return kept[0]
    return Conjunction(tuple(kept))


def disjuncts_from(queries: Optional[Sequence[Any]]) -> Any:
    """OR the given queries together, ignoring bare match-all members."""
    if queries is None:
        return MatchAll()
    items = list(queries)
    if not items:
        return MatchNone()
    if len(items) == 1:
        return items[0]
    kept = [item for item in items if not _is_bare_match_all(item)]
    if not kept:
        return MatchAll()
    if len(kept) == 1:
        return kept[0]
    return Disjunction(tuple(kept))


def to_term_queries(fields: Sequence[str] = (), values: Sequence[str] = ()) -> List[Query]:
    """One match clause per (field, value) pair.

    A ``.keyword`` suffix selects the exact-match field of the same name.
    """
    queries: List[Query] = []
    for field in fields:
        target = field[: -len(".keyword")] if field.endswith(".keyword") else field
        for value in values:
            queries.append(FieldMatch(target, value))
    if not queries:
        return [MatchAll()]
    return queries


def facet_filter(registry: Registry) -> Optional[Any]:
    """Conjunction of every facet widget's query, in registry order."""
    queries = [widget.query for widget in registry.where(lambda w: w.is_facet) if widget.query is not None]
    if not queries:
        return None
    return conjuncts_from(queries)
