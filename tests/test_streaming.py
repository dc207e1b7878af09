from __future__ import annotations

import threading
from typing import List

import requests

from ragwidgets.query import Disjunction, FieldMatch
from ragwidgets.registry import WidgetState
from ragwidgets.streaming import (
    SessionState,
    StreamCallbacks,
    StreamingSession,
    build_headers,
    build_rag_request,
    rag_endpoint,
    resolve_table,
    stream_answer,
)

URL = "http://host/api/v1/table/docs/rag"
REQUEST = {"query": {"full_text_search": {"match_all": {}}}, "summarizer": {"provider": "ollama"}}


class Recorder:
    def __init__(self) -> None:
        self.events: List[tuple] = []

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_chunk=lambda text: self.events.append(("chunk", text)),
            on_complete=lambda: self.events.append(("complete",)),
            on_error=lambda message: self.events.append(("error", message)),
        )


def test_stream_delivers_chunks_then_completes(fake_http, fake_response, frames) -> None:
    recorder = Recorder()
    body = frames('{"chunk": "Hello "}', '{"chunk": "world"}', "[DONE]")
    http = fake_http(fake_response([body[:10], body[10:]]))
    session = StreamingSession(URL, REQUEST, callbacks=recorder.callbacks(), http=http)

    state = session.run()

    assert state is SessionState.COMPLETED
    assert recorder.events == [("chunk", "Hello "), ("chunk", "world"), ("complete",)]
    assert session.text == "Hello world"
    assert session.wait(0)


def test_stream_error_event_stops_reading(fake_http, fake_response, frames) -> None:
    recorder = Recorder()
    body = frames('{"error": "boom"}', '{"chunk": "ignored"}', "[DONE]")
    session = StreamingSession(URL, REQUEST, callbacks=recorder.callbacks(), http=fake_http(fake_response([body])))

    assert session.run() is SessionState.ERRORED
    assert recorder.events == [("error", "boom")]
    assert session.error == "boom"


def test_stream_skips_malformed_frames(fake_http, fake_response, frames) -> None:
    recorder = Recorder()
    body = b"data: not json\n\n" + frames('{"chunk": "ok"}', "[DONE]")
    session = StreamingSession(URL, REQUEST, callbacks=recorder.callbacks(), http=fake_http(fake_response([body])))

    session.run()

    assert recorder.events == [("chunk", "ok"), ("complete",)]


def test_stream_end_without_sentinel_completes(fake_http, fake_response, frames) -> None:
    recorder = Recorder()
    body = frames('{"chunk": "partial"}') + b'data: {"chunk": "lost'
    session = StreamingSession(URL, REQUEST, callbacks=recorder.callbacks(), http=fake_http(fake_response([body])))

    assert session.run() is SessionState.COMPLETED
    assert recorder.events == [("chunk", "partial"), ("complete",)]


def test_http_error_status_is_reported_once(fake_http, fake_response) -> None:
    recorder = Recorder()
    response = fake_response(status_code=500, reason="Internal Server Error", text="table missing")
    session = StreamingSession(URL, REQUEST, callbacks=recorder.callbacks(), http=fake_http(response))

    session.run()

    assert recorder.events == [("error", "RAG request failed: 500 Internal Server Error: table missing")]
    assert response.closed


def test_missing_body_is_reported(fake_http, fake_response) -> None:
    recorder = Recorder()
    session = StreamingSession(URL, REQUEST, callbacks=recorder.callbacks(), http=fake_http(fake_response(raw=None)))

    session.run()

    assert recorder.events == [("error", "Response body is null")]


def test_transport_failure_is_reported(fake_http) -> None:
    recorder = Recorder()
    http = fake_http(requests.ConnectionError("connection refused"))
    session = StreamingSession(URL, REQUEST, callbacks=recorder.callbacks(), http=http)

    assert session.run() is SessionState.ERRORED
    assert recorder.events == [("error", "RAG request failed: connection refused")]


def test_interrupted_read_is_reported(fake_http, fake_response, frames) -> None:
    recorder = Recorder()
    response = fake_response([frames('{"chunk": "a"}')], error=requests.ConnectionError("reset"))
    session = StreamingSession(URL, REQUEST, callbacks=recorder.callbacks(), http=fake_http(response))

    session.run()

    assert recorder.events == [("chunk", "a"), ("error", "Stream interrupted: reset")]


def test_request_carries_protocol_and_caller_headers(fake_http, fake_response, frames) -> None:
    http = fake_http(fake_response([frames("[DONE]")]))
    session = StreamingSession(URL, REQUEST, headers={"X-API-Key": "secret"}, http=http, timeout=(1.0, 2.0))

    session.run()

    call = http.calls[0]
    assert call["url"] == URL
    assert call["json"] == REQUEST
    assert call["stream"] is True
    assert call["timeout"] == (1.0, 2.0)
    assert call["headers"] == {
        "Content-Type": "application/json",
        "Accept": "text/event-stream",
        "X-API-Key": "secret",
    }


def test_caller_headers_override_protocol_headers() -> None:
    assert build_headers({"Accept": "*/*"})["Accept"] == "*/*"


def test_failing_callback_does_not_stop_stream(fake_http, fake_response, frames) -> None:
    completed: List[bool] = []

    def broken(_text: str) -> None:
        raise RuntimeError("callback boom")

    callbacks = StreamCallbacks(on_chunk=broken, on_complete=lambda: completed.append(True))
    body = frames('{"chunk": "a"}', "[DONE]")
    session = StreamingSession(URL, REQUEST, callbacks=callbacks, http=fake_http(fake_response([body])))

    session.run()

    assert completed == [True]


def test_abort_before_start_prevents_request(fake_http) -> None:
    recorder = Recorder()
    http = fake_http()
    session = StreamingSession(URL, REQUEST, callbacks=recorder.callbacks(), http=http)

    session.abort()

    assert session.run() is SessionState.CANCELLED
    assert http.calls == []
    assert recorder.events == []
    assert session.wait(0)


def test_abort_mid_stream_silences_callbacks(fake_http, fake_response, frames) -> None:
    recorder = Recorder()
    gate = threading.Event()
    first_chunk = threading.Event()
    response = fake_response(
        [frames('{"chunk": "one"}'), frames('{"chunk": "two"}', "[DONE]")],
        gate=gate,
    )
    callbacks = recorder.callbacks()
    on_chunk = callbacks.on_chunk

    def record_and_signal(text: str) -> None:
        on_chunk(text)
        first_chunk.set()

    callbacks.on_chunk = record_and_signal
    session = StreamingSession(URL, REQUEST, callbacks=callbacks, http=fake_http(response))

    session.start()
    assert first_chunk.wait(5)
    session.abort()
    gate.set()

    assert session.wait(5)
    assert session.state is SessionState.CANCELLED
    assert session.cancelled
    assert response.closed
    assert recorder.events == [("chunk", "one")]


def test_abort_after_completion_keeps_state(fake_http, fake_response, frames) -> None:
    session = StreamingSession(URL, REQUEST, http=fake_http(fake_response([frames("[DONE]")])))
    session.run()

    session.abort()

    assert session.state is SessionState.COMPLETED


def test_stream_answer_targets_table_resource(fake_http, fake_response, frames) -> None:
    http = fake_http(fake_response([frames('{"chunk": "x"}', "[DONE]")]))

    session = stream_answer("http://host/api/v1/", REQUEST, table="my docs", http=http)

    assert session.wait(5)
    assert session.text == "x"
    assert http.calls[0]["url"] == "http://host/api/v1/table/my%20docs/rag"


def test_rag_endpoint_without_table() -> None:
    assert rag_endpoint("http://host/api/v1") == "http://host/api/v1/rag"


def test_resolve_table_prefers_first_non_empty() -> None:
    assert resolve_table(None, "", ["", "products"], "docs") == "products"
    assert resolve_table("override", "widget", "default") == "override"
    assert resolve_table(None, None) is None


def test_build_rag_request_for_full_text_widget() -> None:
    widget = WidgetState(
        key="question",
        query=Disjunction((FieldMatch("content", "shoes"),)),
        value="shoes",
        configuration={"indexes": [], "limit": 5},
    )

    request = build_rag_request(
        widget,
        {"provider": "ollama", "model": "gemma3:4b"},
        system_prompt="Be brief.",
        fields=["content"],
        filter_query=FieldMatch("brand", "acme"),
    )

    assert request == {
        "query": {
            "full_text_search": {"disjuncts": [{"match": "shoes", "field": "content"}]},
            "limit": 5,
            "fields": ["content"],
            "filter_query": {"match": "acme", "field": "brand"},
        },
        "summarizer": {"provider": "ollama", "model": "gemma3:4b"},
        "system_prompt": "Be brief.",
    }


def test_build_rag_request_for_semantic_widget() -> None:
    widget = WidgetState(
        key="question",
        is_semantic=True,
        semantic_query="cats",
        value="cats",
        configuration={"indexes": ["embeddings"]},
    )

    request = build_rag_request(widget, {"provider": "ollama"})

    assert request["query"] == {
        "semantic_search": "cats",
        "indexes": ["embeddings"],
        "limit": 10,
        "fields": [],
    }
    assert "system_prompt" not in request


def test_unparsable_frame_before_done_completes_cleanly(fake_http, fake_response) -> None:
    recorder = Recorder()
    body = b"data: {not json}\n\ndata: [DONE]\n\n"
    session = StreamingSession(URL, REQUEST, callbacks=recorder.callbacks(), http=fake_http(fake_response([body])))

    assert session.run() is SessionState.COMPLETED
    assert recorder.events == [("complete",)]


class UnreadableErrorResponse:
    status_code = 502
    reason = "Bad Gateway"
    ok = False
    raw = object()

    def __init__(self) -> None:
        self.closed = False

    @property
    def text(self) -> str:
        raise requests.exceptions.ChunkedEncodingError("connection reset while draining")

    def close(self) -> None:
        self.closed = True


def test_error_body_read_failure_falls_back_to_status(fake_http) -> None:
    recorder = Recorder()
    response = UnreadableErrorResponse()
    session = StreamingSession(URL, REQUEST, callbacks=recorder.callbacks(), http=fake_http(response))

    assert session.run() is SessionState.ERRORED
    assert recorder.events == [("error", "RAG request failed: 502 Bad Gateway")]
    assert response.closed
    assert session.wait(0)


def test_unexpected_read_failure_ends_in_error_state(fake_http, fake_response, frames, caplog) -> None:
    recorder = Recorder()
    response = fake_response([frames('{"chunk": "a"}')], error=ValueError("decoder exploded"))
    session = StreamingSession(URL, REQUEST, callbacks=recorder.callbacks(), http=fake_http(response))

    session.start()

    assert session.wait(5)
    assert session.state is SessionState.ERRORED
    assert recorder.events == [("chunk", "a"), ("error", "Stream interrupted: decoder exploded")]
    assert "Unexpected failure" in caplog.text


class TrackingSession:
    created: List["TrackingSession"] = []

    def __init__(self) -> None:
        self.closed = False
        TrackingSession.created.append(self)

    def post(self, url: str, **kwargs) -> UnreadableErrorResponse:
        del url, kwargs
        return UnreadableErrorResponse()

    def close(self) -> None:
        self.closed = True


def test_default_http_session_is_closed_after_run(monkeypatch) -> None:
    TrackingSession.created = []
    monkeypatch.setattr(requests, "Session", TrackingSession)

    for _ in range(3):
        StreamingSession("http://host/rag", {}).run()

    assert [s.closed for s in TrackingSession.created] == [True, True, True]


def test_injected_http_session_is_left_open(fake_http, fake_response, frames) -> None:
    http = fake_http(fake_response([frames("[DONE]")]))
    http.closed = False
    http.close = lambda: setattr(http, "closed", True)

    StreamingSession(URL, REQUEST, http=http).run()

    assert http.closed is False
