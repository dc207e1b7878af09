"""Shared fakes for the HTTP transport.

The streaming client only needs ``post`` from the session and ``ok``,
``status_code``, ``reason``, ``text``, ``raw``, ``iter_content`` and ``close``
from the response, so small fakes stand in for ``requests``.
"""
from __future__ import annotations

import threading
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

import pytest

_BODY = object()


class FakeResponse:
    def __init__(
        self,
        chunks: Sequence[bytes] = (),
        status_code: int = 200,
        reason: str = "OK",
        text: str = "",
        raw: Any = _BODY,
        gate: Optional[threading.Event] = None,
        gate_after: int = 1,
        error: Optional[Exception] = None,
    ) -> None:
        self.chunks = list(chunks)
        self.status_code = status_code
        self.reason = reason
        self.text = text
        self.raw = raw
        self.gate = gate
        self.gate_after = gate_after
        self.error = error
        self.closed = False
        self.read_started = threading.Event()

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def iter_content(self, chunk_size: Optional[int] = None) -> Iterator[bytes]:
        del chunk_size
        self.read_started.set()
        for idx, chunk in enumerate(self.chunks):
            if self.gate is not None and idx == self.gate_after:
                self.gate.wait(5)
            if self.closed:
                return
            yield chunk
        if self.error is not None:
            raise self.error

    def close(self) -> None:
        self.closed = True


class FakeHTTP:
    def __init__(self, *outcomes: Union[FakeResponse, Exception]) -> None:
        self.outcomes = list(outcomes)
        self.calls: List[Dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def sse(*payloads: str) -> bytes:
    """Encode payloads as complete ``data:`` frames."""
    return "".join(f"data: {payload}\n\n" for payload in payloads).encode("utf-8")


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def fake_http():
    return FakeHTTP


@pytest.fixture
def frames():
    return sse
