from __future__ import annotations

from typing import List

import pytest

from state import Derived, Writable


def test_subscribe_calls_back_immediately_and_on_change() -> None:
    store = Writable(1)
    seen: List[int] = []

    unsubscribe = store.subscribe(seen.append)
    store.set(2)
    store.update(lambda value: value * 10)
    unsubscribe()
    store.set(99)

    assert seen == [1, 2, 20]
    assert store.get() == 99


def test_unsubscribe_twice_is_harmless() -> None:
    store = Writable("a")
    unsubscribe = store.subscribe(lambda _: None)

    unsubscribe()
    unsubscribe()

    assert store.subscriber_count() == 0


def test_subscriber_removed_during_notification_is_skipped() -> None:
    store = Writable(0)
    calls: List[str] = []
    handles = {}

    def first(value: int) -> None:
        calls.append(f"first:{value}")
        if value == 1:
            handles["second"]()

    def second(value: int) -> None:
        calls.append(f"second:{value}")

    store.subscribe(first)
    handles["second"] = store.subscribe(second)
    store.set(1)

    assert calls == ["first:0", "second:0", "first:1"]


def test_derived_recomputes_from_all_sources() -> None:
    numbers = Writable([3, 1, 2])
    reverse = Writable(False)
    view = Derived([numbers, reverse], lambda values, desc: sorted(values, reverse=desc))
    seen: List[List[int]] = []

    view.subscribe(seen.append)
    reverse.set(True)
    numbers.update(lambda values: values + [5])

    assert view.get() == [5, 3, 2, 1]
    assert seen == [[1, 2, 3], [3, 2, 1], [5, 3, 2, 1]]


def test_derived_dispose_stops_updates() -> None:
    source = Writable(1)
    doubled = Derived([source], lambda value: value * 2)

    doubled.dispose()
    source.set(5)

    assert doubled.get() == 2
    assert source.subscriber_count() == 0


def test_failing_subscriber_is_logged_and_others_still_run(caplog: pytest.LogCaptureFixture) -> None:
    store = Writable(0)
    seen: List[int] = []

    def broken(value: int) -> None:
        if value:
            raise RuntimeError("view torn down")

    store.subscribe(broken)
    store.subscribe(seen.append)
    with caplog.at_level("ERROR", logger="state"):
        store.set(1)

    assert store.get() == 1
    assert seen == [0, 1]
    assert "Subscriber" in caplog.text
