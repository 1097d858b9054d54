"""
Status-change notifications for the reimbursement workflow.

Every committed transition produces a ``StatusChangeEvent``. Events are
kept in an in-memory queue (for pull-style consumers) and pushed to any
subscribed listener. A failing listener is logged and skipped: the
transition it reports on has already been committed.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from receiptflow.models.reimbursement import ReimbursementStatus

logger = logging.getLogger("receiptflow.workflow.events")


@dataclass(frozen=True)
class StatusChangeEvent:
    reimbursement_id: str
    status: ReimbursementStatus
    previous_status: ReimbursementStatus | None = None
    actor: str | None = None
    comment: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def summary(self) -> str:
        text = f"Reimbursement {self.reimbursement_id} is now {self.status.value}"
        if self.actor:
            text += f" (by {self.actor})"
        if self.comment:
            text += f": {self.comment}"
        return text


StatusListener = Callable[[StatusChangeEvent], None]


class StatusNotifier:
    """Fan-out of status-change events to listeners."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: list[StatusListener] = []
        self._events: list[StatusChangeEvent] = []

    @property
    def events(self) -> list[StatusChangeEvent]:
        """Events not yet drained, oldest first."""
        with self._lock:
            return list(self._events)

    def subscribe(self, listener: StatusListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: StatusListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def drain(self) -> list[StatusChangeEvent]:
        """Return and clear the queued events."""
        with self._lock:
            events, self._events = self._events, []
        return events

    def publish(self, event: StatusChangeEvent) -> None:
        with self._lock:
            self._events.append(event)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Status listener failed for %s", event.reimbursement_id)
