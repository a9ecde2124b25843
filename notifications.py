from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from state import Writable

logger = logging.getLogger(__name__)

SUCCESS = "success"
ERROR = "error"
WARNING = "warning"
INFO = "info"
LOADING = "loading"
NOTIFICATION_TYPES = (SUCCESS, ERROR, WARNING, INFO, LOADING)

# Seconds before auto-dismiss; 0 keeps the notification until dismissed.
SUCCESS_DURATION = 4.0
INFO_DURATION = 4.0
WARNING_DURATION = 6.0
ERROR_DURATION = 0.0
COMPLETED_DURATION = 3.0

OPERATION_SUCCESS = {
    "create": "{item} added successfully",
    "update": "{item} updated successfully",
    "delete": "{item} deleted successfully",
    "import": "Data imported successfully",
    "export": "Data exported successfully",
}

OPERATION_FAILURE = {
    "create": "Failed to add {item}",
    "update": "Failed to update {item}",
    "delete": "Failed to delete {item}",
    "import": "Failed to import data",
    "export": "Failed to export data",
}


@dataclass(frozen=True)
class NotificationAction:
    label: str
    handler: Callable[[], None]


@dataclass(frozen=True)
class Notification:
    id: str
    type: str
    title: str
    message: str
    action: Optional[NotificationAction] = None
    duration: float = 0.0
    dismissible: bool = True
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    progress: Optional[float] = None


def _timer_scheduler(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class NotificationCenter:
    """Ordered list of transient user-facing messages with auto-dismiss timers.

    ``scheduler(delay, callback)`` must return an object with ``cancel()``.
    """

    def __init__(self, scheduler: Optional[Callable[[float, Callable[[], None]], Any]] = None):
        self.items: Writable[List[Notification]] = Writable([])
        self._scheduler = scheduler or _timer_scheduler
        self._timers: Dict[str, Any] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def _next_id(self) -> str:
        return f"notification-{int(time.time() * 1000)}-{next(self._counter)}"

    def _schedule_dismiss(self, notification_id: str, delay: float) -> None:
        if delay <= 0:
            return
        self._cancel_timer(notification_id)
        handle = self._scheduler(delay, lambda: self.dismiss(notification_id))
        with self._lock:
            self._timers[notification_id] = handle

    def _cancel_timer(self, notification_id: str) -> None:
        with self._lock:
            handle = self._timers.pop(notification_id, None)
        if handle is not None:
            handle.cancel()

    def _add(
        self,
        type_: str,
        title: str,
        message: str,
        *,
        duration: float,
        action: Optional[NotificationAction] = None,
        dismissible: bool = True,
        progress: Optional[float] = None,
    ) -> str:
        notification = Notification(
            id=self._next_id(),
            type=type_,
            title=title,
            message=message,
            action=action,
            duration=duration,
            dismissible=dismissible,
            progress=progress,
        )
        self.items.update(lambda current: current + [notification])
        logger.debug("Notification %s [%s] %s: %s", notification.id, type_, title, message)
        self._schedule_dismiss(notification.id, duration)
        return notification.id

    def _transform(self, notification_id: str, fn: Callable[[Notification], Notification]) -> bool:
        changed = False

        def apply(current: List[Notification]) -> List[Notification]:
            nonlocal changed
            result = []
            for item in current:
                if item.id == notification_id and item.type == LOADING:
                    item = fn(item)
                    changed = True
                result.append(item)
            return result

        self.items.update(apply)
        return changed

    # --------------------------------------------------------------------- #
    # Emitters
    # --------------------------------------------------------------------- #
    def success(self, title: str, message: str, duration: float = SUCCESS_DURATION) -> str:
        return self._add(SUCCESS, title, message, duration=duration)

    def error(self, title: str, message: str, action: Optional[NotificationAction] = None) -> str:
        return self._add(ERROR, title, message, duration=ERROR_DURATION, action=action)

    def warning(self, title: str, message: str, duration: float = WARNING_DURATION) -> str:
        return self._add(WARNING, title, message, duration=duration)

    def info(self, title: str, message: str, duration: float = INFO_DURATION) -> str:
        return self._add(INFO, title, message, duration=duration)

    def loading(self, title: str, message: str, progress: Optional[float] = None) -> str:
        return self._add(LOADING, title, message, duration=0.0, dismissible=False, progress=progress)

    def update_progress(self, notification_id: str, progress: float, message: Optional[str] = None) -> None:
        self._transform(
            notification_id,
            lambda item: replace(item, progress=progress, message=message or item.message),
        )

    def complete_loading(
        self,
        notification_id: str,
        title: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        """Turn a loading notification into a success in place, then auto-dismiss it."""
        changed = self._transform(
            notification_id,
            lambda item: replace(
                item,
                type=SUCCESS,
                title=title or "Completed",
                message=message or "Operation completed successfully",
                duration=COMPLETED_DURATION,
                dismissible=True,
                progress=None,
            ),
        )
        if changed:
            self._schedule_dismiss(notification_id, COMPLETED_DURATION)

    def fail_loading(
        self,
        notification_id: str,
        title: Optional[str] = None,
        message: Optional[str] = None,
        action: Optional[NotificationAction] = None,
    ) -> None:
        self._transform(
            notification_id,
            lambda item: replace(
                item,
                type=ERROR,
                title=title or "Failed",
                message=message or "Operation failed",
                action=action,
                duration=ERROR_DURATION,
                dismissible=True,
                progress=None,
            ),
        )

    # --------------------------------------------------------------------- #
    # Dismissal and queries
    # --------------------------------------------------------------------- #
    def dismiss(self, notification_id: str) -> None:
        self._cancel_timer(notification_id)
        self.items.update(lambda current: [item for item in current if item.id != notification_id])

    def dismiss_all(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for handle in timers:
            handle.cancel()
        self.items.set([])

    def dismiss_by_type(self, type_: str) -> None:
        for item in self.items.get():
            if item.type == type_:
                self._cancel_timer(item.id)
        self.items.update(lambda current: [item for item in current if item.type != type_])

    def get(self, notification_id: str) -> Optional[Notification]:
        for item in self.items.get():
            if item.id == notification_id:
                return item
        return None

    def count(self) -> int:
        return len(self.items.get())

    def has_errors(self) -> bool:
        return any(item.type == ERROR for item in self.items.get())

    def subscribe(self, callback: Callable[[List[Notification]], None]):
        return self.items.subscribe(callback)

    # --------------------------------------------------------------------- #
    # Canned messages
    # --------------------------------------------------------------------- #
    def operation_feedback(
        self,
        operation: str,
        success: bool,
        item_name: Optional[str] = None,
        error: Optional[str] = None,
    ) -> str:
        item = item_name or "item"
        if success:
            return self.success("Success", OPERATION_SUCCESS[operation].format(item=item))
        return self.error("Error", error or OPERATION_FAILURE[operation].format(item=item))

    def validation_error(self, field_name: str, message: str) -> str:
        return self.error("Validation Error", f"{field_name}: {message}")

    def network_status(self, online: bool) -> str:
        if online:
            return self.success("Connected", "Internet connection restored")
        return self.warning("Offline", "No internet connection - working offline")
