"""Widget registry and the pure reducer that drives it."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WidgetState:
    """Everything one widget publishes to the shared registry."""

    key: str
    needs_query: bool = False
    needs_configuration: bool = False
    is_facet: bool = False
    root_query: bool = False
    is_semantic: bool = False
    want_results: bool = False
    is_loading: bool = False
    query: Any = None
    semantic_query: Optional[str] = None
    value: Any = None
    submitted_at: Optional[int] = None
    table: Union[str, List[str], None] = None
    filter_query: Any = None
    exclusion_query: Any = None
    configuration: Optional[Mapping[str, Any]] = None
    result: Any = None


@dataclass(frozen=True)
class SetWidget:
    """Replace (or create) the record stored under ``widget.key``."""

    widget: WidgetState

    @property
    def key(self) -> str:
        return self.widget.key


@dataclass(frozen=True)
class DeleteWidget:
    """Remove the record stored under ``key``."""

    key: str


Command = Union[SetWidget, DeleteWidget]


def set_widget(key: str, **fields: Any) -> SetWidget:
    """Build a ``SetWidget`` command from keyword fields."""
    return SetWidget(WidgetState(key=key, **fields))


class Registry(Mapping[str, WidgetState]):
    """Read-only, insertion-ordered mapping of widget key to state.

    Every change produces a new ``Registry``; holders of an older instance
    never observe the update.
    """

    __slots__ = ("_items",)

    def __init__(self, items: Optional[Mapping[str, WidgetState]] = None) -> None:
        self._items: Dict[str, WidgetState] = dict(items or {})

    def __getitem__(self, key: str) -> WidgetState:
        return self._items[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"Registry({list(self._items)!r})"

    def with_widget(self, widget: WidgetState) -> "Registry":
        """Return a copy where ``widget.key`` maps to ``widget``.

        An existing key keeps its position in iteration order.
        """
        items = dict(self._items)
        items[widget.key] = widget
        return Registry(items)

    def without(self, key: str) -> "Registry":
        """Return a copy without ``key``, or ``self`` when it is absent."""
        if key not in self._items:
            return self
        items = dict(self._items)
        del items[key]
        return Registry(items)

    def where(self, predicate: Callable[[WidgetState], bool]) -> List[WidgetState]:
        """Widgets matching ``predicate`` in registry order."""
        return [widget for widget in self._items.values() if predicate(widget)]


def _warn_if_malformed(widget: WidgetState) -> None:
    """Log records that will probably misbehave downstream."""
    if not widget.key:
        logger.warning("Widget registered with an empty key")
    if widget.needs_query and widget.query is None and not widget.is_semantic:
        logger.warning("Widget %r needs a query but published none", widget.key)
    if widget.is_semantic and not widget.semantic_query and widget.value:
        logger.warning("Semantic widget %r has a value but no semantic query", widget.key)


def reduce(registry: Registry, command: Command) -> Registry:
    """Apply one command and return the next registry."""
    if isinstance(command, SetWidget):
        _warn_if_malformed(command.widget)
        return registry.with_widget(command.widget)
    if isinstance(command, DeleteWidget):
        return registry.without(command.key)
    raise TypeError(f"Unknown registry command: {command!r}")
