"""Incremental framing and classification of the answer event stream.

The service answers with ``data: <payload>`` frames separated by a blank
line. Bytes arrive in arbitrary pieces, so a read may end inside a UTF-8
sequence or inside a frame; both are buffered until the next read.
"""
from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
DATA_PREFIX = "data:"


@dataclass(frozen=True)
class Done:
    """The server finished the answer."""


@dataclass(frozen=True)
class Chunk:
    """One fragment of answer text."""

    text: str


@dataclass(frozen=True)
class Failure:
    """The server reported an error inside the stream."""

    message: str


@dataclass(frozen=True)
class Malformed:
    """A payload that is neither the sentinel nor a known JSON event."""

    payload: str


StreamEvent = Union[Done, Chunk, Failure, Malformed]


class FrameDecoder:
    """Turns raw body bytes into frame payloads."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> List[str]:
        """Decode ``data`` and return the payload of every completed frame."""
        self._buffer += self._decoder.decode(data)
        self._buffer = self._buffer.replace("\r\n", "\n")
        payloads: List[str] = []
        while "\n\n" in self._buffer:
            frame, self._buffer = self._buffer.split("\n\n", 1)
            payload = frame_payload(frame)
            if payload is not None:
                payloads.append(payload)
        return payloads

    @property
    def pending(self) -> str:
        """Text received after the last complete frame."""
        return self._buffer

    def close(self) -> str:
        """Flush the decoder at end of stream and drop the partial frame.

        Returns the discarded text so callers can log it.
        """
        leftover = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return leftover


def frame_payload(frame: str) -> Optional[str]:
    """Join the ``data:`` lines of a frame; ``None`` when there are none."""
    lines: List[str] = []
    for line in frame.split("\n"):
        if not line.startswith(DATA_PREFIX):
            continue
        value = line[len(DATA_PREFIX):]
        if value.startswith(" "):
            value = value[1:]
        lines.append(value)
    if not lines:
        return None
    return "\n".join(lines)


def classify_payload(payload: str) -> StreamEvent:
    """Map one frame payload to a stream event."""
    if payload.strip() == DONE_SENTINEL:
        return Done()
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed stream frame: %.200s", payload)
        return Malformed(payload)
    if isinstance(data, dict):
        chunk = data.get("chunk")
        if isinstance(chunk, str):
            return Chunk(chunk)
        error = data.get("error")
        if isinstance(error, str):
            return Failure(error)
    logger.warning("Skipping unrecognized stream frame: %.200s", payload)
    return Malformed(payload)
