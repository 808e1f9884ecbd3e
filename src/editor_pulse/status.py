#!/usr/bin/env python3
"""
Delivery status reporting for editor-pulse.
Collects the outcome of delivery attempts for display by the editor.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, List, Optional

from .errors import ErrorKind

logger = logging.getLogger(__name__)


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


@dataclass(frozen=True)
class DeliveryStatus:
    """Snapshot of the delivery state shown to the user."""

    last_sent_at: Optional[float] = None
    sent_count: int = 0
    failed_attempts: int = 0
    error: Optional[ErrorKind] = None
    failing_since: Optional[float] = None
    message: str = ""
    dropped_count: int = 0
    auth_blocked: bool = False

    @property
    def healthy(self) -> bool:
        return self.error is None

    def describe(self) -> str:
        """Short human readable status line."""
        if self.error is not None and self.failing_since is not None:
            text = f"{self.error.value} failing since {_format_time(self.failing_since)}"
            if self.auth_blocked:
                text += " (delivery paused until the API key changes)"
            return text
        if self.last_sent_at is not None:
            return f"last heartbeat sent at {_format_time(self.last_sent_at)}"
        return "no heartbeats sent yet"


class StatusTracker:
    """Thread-safe collector of delivery outcomes.

    Listeners are called with the new snapshot after every change.
    """

    def __init__(self, listener: Optional[Callable[[DeliveryStatus], None]] = None):
        self._lock = threading.Lock()
        self._status = DeliveryStatus()
        self._listeners: List[Callable[[DeliveryStatus], None]] = []
        if listener is not None:
            self._listeners.append(listener)

    def add_listener(self, listener: Callable[[DeliveryStatus], None]) -> None:
        """Register a callback for status changes."""
        self._listeners.append(listener)

    def record_success(self, at: float, count: int) -> None:
        """Record heartbeats accepted by the transmission collaborator."""

        def changes(current: DeliveryStatus) -> dict:
            if current.error is not None:
                logger.info(f"Heartbeat delivery recovered after {current.error.value} errors")
            return dict(
                last_sent_at=at,
                sent_count=current.sent_count + count,
                failed_attempts=0,
                error=None,
                failing_since=None,
                message="",
                auth_blocked=False,
            )

        self._update(changes)

    def record_failure(self, kind: ErrorKind, at: float, message: str = "") -> None:
        """Record a failed delivery attempt.

        ``failing_since`` keeps the time of the first failure of the current
        streak of the same kind.
        """

        def changes(current: DeliveryStatus) -> dict:
            failing_since = current.failing_since
            if current.error != kind or failing_since is None:
                failing_since = at
            return dict(
                failed_attempts=current.failed_attempts + 1,
                error=kind,
                failing_since=failing_since,
                message=message,
            )

        self._update(changes)

    def record_auth_blocked(self, blocked: bool) -> None:
        """Mark delivery as paused (or resumed) because of authentication."""
        self._update(lambda current: dict(auth_blocked=blocked))

    def record_dropped(self, count: int, reason: str = "") -> None:
        """Record heartbeats discarded without delivery."""
        if count <= 0:
            return
        logger.warning(f"Dropped {count} heartbeat(s){': ' + reason if reason else ''}")
        self._update(lambda current: dict(dropped_count=current.dropped_count + count))

    def snapshot(self) -> DeliveryStatus:
        """Current status."""
        with self._lock:
            return self._status

    def _update(self, compute: Callable[[DeliveryStatus], dict]) -> None:
        with self._lock:
            self._status = replace(self._status, **compute(self._status))
            status = self._status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Status listener failed: {e}", exc_info=True)
