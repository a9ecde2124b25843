from __future__ import annotations

from typing import Callable, List, Tuple

import pytest

from notifications import NotificationAction, NotificationCenter


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.callback()


class FakeScheduler:
    def __init__(self) -> None:
        self.timers: List[FakeTimer] = []

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def center(scheduler: FakeScheduler) -> NotificationCenter:
    return NotificationCenter(scheduler=scheduler)


def test_default_durations(center: NotificationCenter, scheduler: FakeScheduler) -> None:
    center.success("Saved", "ok")
    center.info("FYI", "note")
    center.warning("Careful", "hmm")
    center.error("Broken", "bad")

    assert [timer.delay for timer in scheduler.timers] == [4.0, 4.0, 6.0]
    assert [item.duration for item in center.items.get()] == [4.0, 4.0, 6.0, 0.0]
    assert center.count() == 4
    assert center.has_errors()


def test_auto_dismiss_removes_notification(center: NotificationCenter, scheduler: FakeScheduler) -> None:
    notification_id = center.success("Saved", "ok")

    scheduler.timers[0].fire()

    assert center.get(notification_id) is None
    assert center.count() == 0


def test_loading_completes_in_place_and_auto_dismisses(
    center: NotificationCenter, scheduler: FakeScheduler
) -> None:
    center.info("Before", "x")
    notification_id = center.loading("Importing", "Working", progress=10)
    loading = center.get(notification_id)
    assert loading.dismissible is False
    assert loading.duration == 0

    center.update_progress(notification_id, 55, "Halfway")
    assert center.get(notification_id).progress == 55
    assert center.get(notification_id).message == "Halfway"

    center.complete_loading(notification_id, "Imported", "All done")
    done = center.get(notification_id)
    assert done.type == "success"
    assert done.title == "Imported"
    assert done.dismissible is True
    assert done.progress is None
    assert [item.id for item in center.items.get()][1] == notification_id

    completion_timer = scheduler.timers[-1]
    assert completion_timer.delay == 3.0
    completion_timer.fire()
    assert center.get(notification_id) is None


def test_fail_loading_keeps_identity_without_timer(
    center: NotificationCenter, scheduler: FakeScheduler
) -> None:
    notification_id = center.loading("Exporting", "Working")

    center.fail_loading(notification_id)

    failed = center.get(notification_id)
    assert failed.type == "error"
    assert failed.title == "Failed"
    assert failed.message == "Operation failed"
    assert failed.dismissible is True
    assert scheduler.timers == []


def test_progress_updates_ignore_non_loading(center: NotificationCenter) -> None:
    notification_id = center.warning("Careful", "hmm")

    center.update_progress(notification_id, 50)

    assert center.get(notification_id).progress is None


def test_dismiss_cancels_timer(center: NotificationCenter, scheduler: FakeScheduler) -> None:
    notification_id = center.success("Saved", "ok")

    center.dismiss(notification_id)

    assert scheduler.timers[0].cancelled
    assert center.count() == 0


def test_dismiss_by_type_and_all(center: NotificationCenter, scheduler: FakeScheduler) -> None:
    center.error("A", "a")
    center.error("B", "b")
    center.info("C", "c")

    center.dismiss_by_type("error")
    assert [item.title for item in center.items.get()] == ["C"]
    assert not center.has_errors()

    center.dismiss_all()
    assert center.count() == 0
    assert all(timer.cancelled for timer in scheduler.timers)


def test_ids_are_unique(center: NotificationCenter) -> None:
    ids = {center.info("x", str(index)) for index in range(5)}
    assert len(ids) == 5
    assert all(value.startswith("notification-") for value in ids)


@pytest.mark.parametrize(
    "operation,success,expected",
    [
        ("create", True, ("success", "Success", "Dune added successfully")),
        ("delete", True, ("success", "Success", "Dune deleted successfully")),
        ("update", False, ("error", "Error", "Failed to update Dune")),
        ("import", True, ("success", "Success", "Data imported successfully")),
    ],
)
def test_operation_feedback(
    center: NotificationCenter, operation: str, success: bool, expected: Tuple[str, str, str]
) -> None:
    notification_id = center.operation_feedback(operation, success, "Dune")
    item = center.get(notification_id)
    assert (item.type, item.title, item.message) == expected


def test_operation_feedback_prefers_error_text(center: NotificationCenter) -> None:
    item = center.get(center.operation_feedback("create", False, "Dune", "Server down"))
    assert item.message == "Server down"


def test_canned_messages(center: NotificationCenter) -> None:
    validation = center.get(center.validation_error("title", "is required"))
    offline = center.get(center.network_status(False))
    online = center.get(center.network_status(True))

    assert (validation.type, validation.message) == ("error", "title: is required")
    assert (offline.type, offline.title) == ("warning", "Offline")
    assert (online.type, online.title) == ("success", "Connected")


def test_error_action_is_kept(center: NotificationCenter) -> None:
    clicked: List[bool] = []
    action = NotificationAction("Retry", lambda: clicked.append(True))

    item = center.get(center.error("Broken", "bad", action=action))
    item.action.handler()

    assert item.action.label == "Retry"
    assert clicked == [True]
