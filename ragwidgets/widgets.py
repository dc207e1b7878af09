"""Headless widget controllers built on the shared search context."""
from __future__ import annotations

import logging
import threading
import time
from functools import partial
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .citations import (
    Citation,
    CitationRenderer,
    get_cited_document_ids,
    parse_citations,
    render_as_sequential_links,
    replace_citations,
)
from .context import SearchContext, Snapshot
from .history import SearchHistory
from .query import CustomQuery, compose_query, facet_filter
from .registry import DeleteWidget, WidgetState, set_widget
from .streaming import (
    DEFAULT_LIMIT,
    DEFAULT_TIMEOUT,
    StreamCallbacks,
    StreamingSession,
    build_rag_request,
    rag_endpoint,
    resolve_table,
)
from .types import HistoryEntry

logger = logging.getLogger(__name__)

MODES = ("live", "submit")


class QueryBox:
    """Text input that publishes its value and composed query.

    In ``live`` mode every edit is published; in ``submit`` mode the value is
    only published by ``submit()``, stamped with a fresh submission marker.
    """

    def __init__(
        self,
        context: SearchContext,
        key: str,
        mode: str = "submit",
        initial_value: str = "",
        fields: Optional[Sequence[str]] = None,
        custom_query: Optional[CustomQuery] = None,
        semantic: bool = False,
        semantic_indexes: Optional[Sequence[str]] = None,
        limit: int = DEFAULT_LIMIT,
        table: Optional[str] = None,
        filter_query: Any = None,
        exclusion_query: Any = None,
    ) -> None:
        if mode not in MODES:
            raise ValueError(f"Unsupported query box mode: {mode}")
        self.context = context
        self.key = key
        self.mode = mode
        self.fields = list(fields or [])
        self.custom_query = custom_query
        self.semantic = semantic
        self.semantic_indexes = list(semantic_indexes or [])
        self.limit = limit
        self.table = table
        self.filter_query = filter_query
        self.exclusion_query = exclusion_query
        self.value = initial_value
        self._publish(initial_value)

    def _publish(self, value: str, submitted_at: Optional[int] = None) -> None:
        self.context.dispatch(
            set_widget(
                self.key,
                needs_query=self.mode == "live",
                needs_configuration=self.semantic,
                root_query=True,
                is_semantic=self.semantic,
                query=compose_query(value, self.fields, self.custom_query, self.semantic),
                semantic_query=value if self.semantic else None,
                value=value,
                submitted_at=submitted_at,
                table=self.table,
                filter_query=self.filter_query,
                exclusion_query=self.exclusion_query,
                configuration={"indexes": list(self.semantic_indexes), "limit": self.limit},
            )
        )

    def set_value(self, value: str) -> None:
        """Record an edit; live boxes publish it right away."""
        self.value = value
        if self.mode == "live":
            self._publish(value)

    def submit(self, value: Optional[str] = None) -> int:
        """Publish the current value as a new submission and return its stamp."""
        if value is not None:
            self.value = value
        stamp = self.context.next_submission()
        self._publish(self.value, submitted_at=stamp)
        return stamp

    def clear(self) -> None:
        """Empty the box; submit boxes also submit the empty value."""
        self.value = ""
        if self.mode == "live":
            self._publish("")
        else:
            self._publish("", submitted_at=self.context.next_submission())

    def close(self) -> None:
        self.context.dispatch(DeleteWidget(self.key))


class AnswerResults:
    """Streams an answer every time the watched query box is submitted.

    Holds a single streaming slot: a new submission aborts the running
    session and resets the displayed answer before the next one starts.
    """

    def __init__(
        self,
        context: SearchContext,
        key: str,
        query_box_key: str,
        summarizer: Mapping[str, Any],
        system_prompt: Optional[str] = None,
        fields: Optional[Sequence[str]] = None,
        table: Optional[str] = None,
        filter_query: Any = None,
        exclusion_query: Any = None,
        http: Optional[Any] = None,
        background: bool = True,
        timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
        history: Optional[SearchHistory] = None,
        on_chunk: Optional[Callable[[str], None]] = None,
        on_complete: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.context = context
        self.key = key
        self.query_box_key = query_box_key
        self.summarizer = dict(summarizer)
        self.system_prompt = system_prompt
        self.fields = list(fields or [])
        self.table = table
        self.filter_query = filter_query
        self.exclusion_query = exclusion_query
        self.http = http
        self.background = background
        self.timeout = timeout
        self.history = history
        self._on_chunk = on_chunk
        self._on_complete = on_complete
        self._on_error = on_error

        self._lock = threading.RLock()
        self._session: Optional[StreamingSession] = None
        self._last_submission = 0
        self._parts: List[str] = []
        self._closed = False
        self.query = ""
        self.error: Optional[str] = None
        self.is_streaming = False
        self.result: Optional[Dict[str, Any]] = None

        self._publish()
        self._unsubscribe = context.subscribe(self._on_snapshot)
        context.on_teardown(self.close)
        self._on_snapshot(context.get_snapshot())

    @property
    def summary(self) -> str:
        with self._lock:
            return "".join(self._parts)

    @property
    def session(self) -> Optional[StreamingSession]:
        return self._session

    def _publish(self) -> None:
        self.context.dispatch(
            set_widget(self.key, table=self.table, value=self.summary, result=self.result)
        )

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        widget = snapshot.registry.get(self.query_box_key)
        if widget is None or not widget.value or not widget.submitted_at:
            return
        with self._lock:
            if self._closed or widget.submitted_at <= self._last_submission:
                return
            self._last_submission = widget.submitted_at
            previous, self._session = self._session, None
        if previous is not None:
            previous.abort()
        self._start(snapshot, widget)

    def _start(self, snapshot: Snapshot, widget: WidgetState) -> None:
        stamp = widget.submitted_at
        table = resolve_table(self.table, widget.table, snapshot.table)
        filter_query = self.filter_query
        if filter_query is None:
            filter_query = widget.filter_query if widget.filter_query is not None else facet_filter(snapshot.registry)
        exclusion_query = self.exclusion_query if self.exclusion_query is not None else widget.exclusion_query
        request = build_rag_request(
            widget,
            self.summarizer,
            system_prompt=self.system_prompt,
            fields=self.fields,
            filter_query=filter_query,
            exclusion_query=exclusion_query,
        )
        callbacks = StreamCallbacks(
            on_chunk=partial(self._handle_chunk, stamp),
            on_complete=partial(self._handle_complete, stamp),
            on_error=partial(self._handle_error, stamp),
        )
        session = StreamingSession(
            rag_endpoint(snapshot.url, table),
            request,
            headers=snapshot.headers,
            callbacks=callbacks,
            http=self.http,
            timeout=self.timeout,
        )
        with self._lock:
            if self._closed or stamp != self._last_submission:
                return
            stale, self._session = self._session, session
            self._parts = []
            self.error = None
            self.result = None
            self.query = str(widget.value)
            self.is_streaming = True
        if stale is not None:
            stale.abort()
        logger.debug("Streaming answer for %r from %s", self.query, session.url)
        if self.background:
            session.start()
        else:
            session.run()

    def _handle_chunk(self, stamp: int, text: str) -> None:
        with self._lock:
            if stamp != self._last_submission:
                return
            self._parts.append(text)
        if self._on_chunk is not None:
            self._on_chunk(text)

    def _handle_complete(self, stamp: int) -> None:
        with self._lock:
            if stamp != self._last_submission:
                return
            self.is_streaming = False
            summary = "".join(self._parts)
            self.result = {"query": self.query, "summary": summary}
        self._publish()
        if self.history is not None and summary:
            self.history.save(self._history_entry(summary))
        if self._on_complete is not None:
            self._on_complete(summary)

    def _handle_error(self, stamp: int, message: str) -> None:
        with self._lock:
            if stamp != self._last_submission:
                return
            self.is_streaming = False
            self.error = message
            self.result = {"query": self.query, "error": message}
        self._publish()
        if self._on_error is not None:
            self._on_error(message)

    def _history_entry(self, summary: str) -> HistoryEntry:
        return {
            "query": self.query,
            "timestamp": int(time.time() * 1000),
            "summary": summary,
            "hits": [],
            "citations": [{"id": doc_id} for doc_id in get_cited_document_ids(summary)],
        }

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the current session, if any, has finished."""
        session = self._session
        if session is None:
            return True
        return session.wait(timeout)

    def stop(self) -> None:
        """Abort the running session, keeping whatever text has arrived."""
        with self._lock:
            session = self._session
            self.is_streaming = False
        if session is not None:
            session.abort()

    def citations(self) -> List[Citation]:
        return parse_citations(self.summary)

    def cited_ids(self) -> List[str]:
        return get_cited_document_ids(self.summary)

    def render(self, renderer: CitationRenderer = render_as_sequential_links) -> str:
        """The answer with its citation markers rendered by ``renderer``."""
        return replace_citations(self.summary, renderer)

    def close(self) -> None:
        """Abort streaming, stop listening and remove this widget."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            session, self._session = self._session, None
            self.is_streaming = False
        if session is not None:
            session.abort()
        self._unsubscribe()
        self.context.dispatch(DeleteWidget(self.key))
