"""Streaming client for the RAG answer endpoint."""
from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import quote

import requests

from .query import to_wire
from .registry import WidgetState
from .sse import Chunk, Done, Failure, FrameDecoder, StreamEvent, classify_payload
from .types import QueryPayload, RAGRequest

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_TIMEOUT: Tuple[float, float] = (10.0, 300.0)


class SessionState(enum.Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


@dataclass
class StreamCallbacks:
    """Hooks invoked while a session runs; any of them may be omitted."""

    on_chunk: Optional[Callable[[str], None]] = None
    on_complete: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[str], None]] = None


def resolve_table(*candidates: Union[str, Sequence[str], None]) -> Optional[str]:
    """Return the first non-empty table name; a list contributes its first entry."""
    for candidate in candidates:
        if not candidate:
            continue
        if isinstance(candidate, str):
            return candidate
        for name in candidate:
            if name:
                return name
    return None


def rag_endpoint(base_url: str, table: Optional[str] = None) -> str:
    """Full URL of the streaming resource, table-scoped when a table is given."""
    base = base_url.rstrip("/")
    if table:
        return f"{base}/table/{quote(table, safe='')}/rag"
    return f"{base}/rag"


def build_headers(headers: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Protocol headers with caller headers merged on top."""
    merged = {"Content-Type": "application/json", "Accept": "text/event-stream"}
    merged.update(headers or {})
    return merged


def build_rag_request(
    widget: WidgetState,
    summarizer: Mapping[str, Any],
    system_prompt: Optional[str] = None,
    fields: Optional[Sequence[str]] = None,
    filter_query: Any = None,
    exclusion_query: Any = None,
) -> RAGRequest:
    """Build the request body for the question published by ``widget``."""
    configuration = widget.configuration or {}
    query: QueryPayload = {
        "limit": configuration.get("limit") or DEFAULT_LIMIT,
        "fields": list(fields or []),
    }
    if widget.is_semantic:
        query["semantic_search"] = widget.semantic_query or str(widget.value or "")
    else:
        if widget.query is not None:
            query["full_text_search"] = to_wire(widget.query)
        if widget.semantic_query:
            query["semantic_search"] = widget.semantic_query
    indexes = configuration.get("indexes")
    if indexes:
        query["indexes"] = list(indexes)
    if filter_query is not None:
        query["filter_query"] = to_wire(filter_query)
    if exclusion_query is not None:
        query["exclusion_query"] = to_wire(exclusion_query)

    request: RAGRequest = {"query": query, "summarizer": dict(summarizer)}
    if system_prompt:
        request["system_prompt"] = system_prompt
    return request


class StreamingSession:
    """One request/response exchange with the answer endpoint.

    ``run()`` drives the exchange in the calling thread, ``start()`` on a
    worker thread. ``abort()`` may be called from any thread; once it
    returns no callback of this session fires again.
    """

    def __init__(
        self,
        url: str,
        request: Mapping[str, Any],
        headers: Optional[Mapping[str, str]] = None,
        callbacks: Optional[StreamCallbacks] = None,
        http: Optional[Any] = None,
        timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
    ) -> None:
        self.url = url
        self.request = dict(request)
        self.headers = build_headers(headers)
        self.callbacks = callbacks or StreamCallbacks()
        self.timeout = timeout
        self._owns_http = http is None
        self._http = http if http is not None else requests.Session()
        self._lock = threading.RLock()
        self._finished = threading.Event()
        self._state = SessionState.IDLE
        self._parts: List[str] = []
        self._error: Optional[str] = None
        self._response: Any = None
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def text(self) -> str:
        """Answer text accumulated so far."""
        with self._lock:
            return "".join(self._parts)

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def cancelled(self) -> bool:
        return self._state is SessionState.CANCELLED

    def start(self) -> "StreamingSession":
        """Run the exchange on a daemon worker thread."""
        self._thread = threading.Thread(target=self.run, name=f"rag-stream-{id(self):x}", daemon=True)
        self._thread.start()
        return self

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the exchange has finished; ``False`` on timeout."""
        return self._finished.wait(timeout)

    def abort(self) -> None:
        """Cancel the session and close the transport."""
        with self._lock:
            if self._state is SessionState.IDLE:
                self._state = SessionState.CANCELLED
                self._finished.set()
                return
            if self._state is not SessionState.ACTIVE:
                return
            self._state = SessionState.CANCELLED
            response = self._response
        logger.debug("Aborting stream to %s", self.url)
        if response is not None:
            response.close()

    def run(self) -> SessionState:
        """Execute the exchange and return the terminal state."""
        with self._lock:
            if self._state is SessionState.CANCELLED:
                self._finished.set()
                return self._state
            if self._state is not SessionState.IDLE:
                raise RuntimeError("A streaming session can only run once")
            self._state = SessionState.ACTIVE
        try:
            self._exchange()
        finally:
            if self._owns_http:
                self._http.close()
            self._finished.set()
        return self._state

    def _exchange(self) -> None:
        try:
            response = self._http.post(
                self.url,
                json=self.request,
                headers=self.headers,
                stream=True,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            self._fail(f"RAG request failed: {exc}")
            return

        with self._lock:
            if self._state is not SessionState.ACTIVE:
                response.close()
                return
            self._response = response
        try:
            self._consume(response)
        except Exception as exc:
            if self.cancelled:
                logger.debug("Read loop stopped after abort", exc_info=True)
            else:
                logger.exception("Unexpected failure while reading %s", self.url)
                self._fail(f"Stream interrupted: {exc}")
        finally:
            response.close()

    @staticmethod
    def _error_body(response: Any) -> str:
        try:
            return (response.text or "").strip()
        except (requests.RequestException, OSError) as exc:
            logger.debug("Could not read error body: %s", exc)
            return ""

    def _consume(self, response: Any) -> None:
        if not response.ok:
            body = self._error_body(response)
            message = f"RAG request failed: {response.status_code} {response.reason or ''}".rstrip()
            self._fail(f"{message}: {body}" if body else message)
            return
        if getattr(response, "raw", None) is None:
            self._fail("Response body is null")
            return

        decoder = FrameDecoder()
        try:
            for data in response.iter_content(chunk_size=None):
                if self._state is not SessionState.ACTIVE:
                    return
                if not data:
                    continue
                for payload in decoder.feed(data):
                    if not self._handle(classify_payload(payload)):
                        return
        except (requests.RequestException, OSError) as exc:
            if self.cancelled:
                return
            self._fail(f"Stream interrupted: {exc}")
            return

        leftover = decoder.close()
        if leftover.strip():
            logger.debug("Discarding unterminated frame at end of stream: %.200s", leftover)
        self._complete()

    def _handle(self, event: StreamEvent) -> bool:
        """Deliver ``event``; return whether reading should continue."""
        if isinstance(event, Chunk):
            with self._lock:
                if self._state is not SessionState.ACTIVE:
                    return False
                self._parts.append(event.text)
                self._deliver(self.callbacks.on_chunk, event.text)
            return True
        if isinstance(event, Done):
            self._complete()
            return False
        if isinstance(event, Failure):
            self._fail(event.message)
            return False
        return True

    def _complete(self) -> None:
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return
            self._state = SessionState.COMPLETED
            self._deliver(self.callbacks.on_complete)

    def _fail(self, message: str) -> None:
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return
            self._state = SessionState.ERRORED
            self._error = message
            logger.debug("Stream to %s failed: %s", self.url, message)
            self._deliver(self.callbacks.on_error, message)

    @staticmethod
    def _deliver(callback: Optional[Callable[..., None]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Streaming callback raised")


def stream_answer(
    url: str,
    request: Mapping[str, Any],
    headers: Optional[Mapping[str, str]] = None,
    callbacks: Optional[StreamCallbacks] = None,
    table: Optional[str] = None,
    http: Optional[Any] = None,
    timeout: Tuple[float, float] = DEFAULT_TIMEOUT,
) -> StreamingSession:
    """Start streaming an answer in the background and return the session.

    The returned session doubles as the abort handle.
    """
    session = StreamingSession(
        rag_endpoint(url, table),
        request,
        headers=headers,
        callbacks=callbacks,
        http=http,
        timeout=timeout,
    )
    return session.start()
