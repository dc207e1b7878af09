from __future__ import annotations

import logging
from typing import List

import pytest

from ragwidgets.context import SearchContext, Snapshot
from ragwidgets.registry import DeleteWidget, set_widget


def test_context_requires_url() -> None:
    with pytest.raises(ValueError):
        SearchContext("")


def test_snapshot_carries_connection_settings() -> None:
    context = SearchContext("http://host/api/v1/", headers={"X-API-Key": "k"}, table="docs")

    snapshot = context.get_snapshot()

    assert snapshot.url == "http://host/api/v1"
    assert snapshot.headers == {"X-API-Key": "k"}
    assert snapshot.table == "docs"
    assert len(snapshot.registry) == 0


def test_dispatch_notifies_before_returning() -> None:
    context = SearchContext("http://host")
    seen: List[Snapshot] = []
    context.subscribe(seen.append)

    returned = context.dispatch(set_widget("search", value="q"))

    assert len(seen) == 1
    assert seen[0] == returned
    assert context.get_snapshot().registry["search"].value == "q"


def test_listener_sees_committed_registry() -> None:
    context = SearchContext("http://host")
    observed: List[str] = []
    context.subscribe(lambda _snap: observed.append(context.get_snapshot().registry["search"].value))

    context.dispatch(set_widget("search", value="first"))
    context.dispatch(set_widget("search", value="second"))

    assert observed == ["first", "second"]


def test_noop_dispatch_does_not_notify() -> None:
    context = SearchContext("http://host")
    seen: List[Snapshot] = []
    context.subscribe(seen.append)

    context.dispatch(DeleteWidget("missing"))

    assert seen == []


def test_unsubscribe_stops_notifications() -> None:
    context = SearchContext("http://host")
    seen: List[Snapshot] = []
    unsubscribe = context.subscribe(seen.append)

    unsubscribe()
    unsubscribe()
    context.dispatch(set_widget("search"))

    assert seen == []


def test_failing_listener_does_not_block_others(caplog) -> None:
    context = SearchContext("http://host")
    seen: List[Snapshot] = []

    def broken(_snapshot: Snapshot) -> None:
        raise RuntimeError("listener boom")

    context.subscribe(broken)
    context.subscribe(seen.append)

    with caplog.at_level(logging.ERROR, logger="ragwidgets.context"):
        context.dispatch(set_widget("search"))

    assert len(seen) == 1
    assert "listener failed" in caplog.text


def test_listener_may_dispatch_again() -> None:
    context = SearchContext("http://host")

    def mirror(snapshot: Snapshot) -> None:
        source = snapshot.registry.get("source")
        if source is not None and "mirror" not in snapshot.registry:
            context.dispatch(set_widget("mirror", value=source.value))

    context.subscribe(mirror)
    context.dispatch(set_widget("source", value=42))

    assert context.get_snapshot().registry["mirror"].value == 42


def test_next_submission_is_strictly_increasing() -> None:
    context = SearchContext("http://host")

    stamps = [context.next_submission() for _ in range(50)]

    assert all(later > earlier for earlier, later in zip(stamps, stamps[1:]))


def test_close_runs_teardown_and_discards_state() -> None:
    calls: List[str] = []
    seen: List[Snapshot] = []
    with SearchContext("http://host") as context:
        context.on_teardown(lambda: calls.append("torn down"))
        context.subscribe(seen.append)
        context.dispatch(set_widget("search"))

    assert calls == ["torn down"]
    assert context.closed
    assert len(context.get_snapshot().registry) == 0

    context.dispatch(set_widget("late"))
    context.close()

    assert len(seen) == 1
    assert calls == ["torn down"]
    assert "late" not in context.get_snapshot().registry


def test_teardown_hook_may_dispatch() -> None:
    context = SearchContext("http://host")
    context.dispatch(set_widget("search"))
    removed: List[bool] = []

    def remove() -> None:
        snapshot = context.dispatch(DeleteWidget("search"))
        removed.append("search" not in snapshot.registry)

    context.on_teardown(remove)
    context.close()

    assert removed == [True]
