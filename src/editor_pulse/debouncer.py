#!/usr/bin/env python3
"""
Heartbeat debouncing for editor-pulse.
Decides which activity events are worth a heartbeat.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional

from .errors import MalformedEventError
from .models import ActivityEvent, Heartbeat

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 120
DEFAULT_IDLE_EXPIRY = 3600
GC_EVERY_SECONDS = 300
MAX_LINE_COUNT_BYTES = 2 * 1024 * 1024


def count_lines(path: str, max_bytes: int = MAX_LINE_COUNT_BYTES) -> Optional[int]:
    """Count lines of a file on disk.

    Returns None if the file cannot be read or is larger than ``max_bytes``.
    """
    try:
        if os.path.getsize(path) > max_bytes:
            return None
        with open(path, "rb") as f:
            count = 0
            last = b""
            for chunk in iter(lambda: f.read(64 * 1024), b""):
                count += chunk.count(b"\n")
                last = chunk
    except OSError:
        return None
    if last and not last.endswith(b"\n"):
        count += 1
    return count or None


@dataclass
class FileState:
    """Debounce state for a single file."""

    last_sent: Optional[float] = None
    was_write: bool = False
    lineno: Optional[int] = None
    cursor_pos: Optional[int] = None
    last_seen: float = 0.0


class HeartbeatDebouncer:
    """Turns a stream of activity events into a rate-limited heartbeat stream.

    A heartbeat is emitted when the user switches files, when a file flips
    between editing and saving, or when the heartbeat interval has elapsed
    since the last heartbeat for that file. Runs on the caller's thread and
    never performs network I/O.
    """

    def __init__(
        self,
        interval: int = DEFAULT_HEARTBEAT_INTERVAL,
        clock: Callable[[], float] = time.time,
        idle_expiry: float = DEFAULT_IDLE_EXPIRY,
        line_counter: Optional[Callable[[str], Optional[int]]] = count_lines,
    ):
        self.interval = interval
        self.clock = clock
        self.idle_expiry = idle_expiry
        self.line_counter = line_counter

        self._lock = threading.Lock()
        self._files: Dict[str, FileState] = {}
        self._last_path: Optional[str] = None
        self._last_gc = clock()

    @property
    def last_path(self) -> Optional[str]:
        return self._last_path

    def set_interval(self, interval: int) -> None:
        """Apply a new heartbeat interval from a configuration reload."""
        with self._lock:
            self.interval = interval

    def state_for(self, file_path: str) -> Optional[FileState]:
        """Copy of the recorded state for a file, if any."""
        with self._lock:
            state = self._files.get(file_path)
            return FileState(**vars(state)) if state else None

    def evaluate(self, event: ActivityEvent) -> Optional[Heartbeat]:
        """Return a heartbeat for this event, or None if it is redundant.

        Malformed events are logged and dropped.
        """
        try:
            event.validate()
        except MalformedEventError as e:
            logger.warning(f"Dropping malformed activity event: {e}")
            return None

        now = float(event.timestamp)
        path = event.file_path

        with self._lock:
            state = self._files.get(path)
            if state is None:
                state = FileState(last_seen=now)
                self._files[path] = state
            state.last_seen = max(state.last_seen, now)

            # Remember the cursor so saves without position reuse the last edit
            if event.lineno is not None:
                state.lineno = event.lineno
            if event.cursor_pos is not None:
                state.cursor_pos = event.cursor_pos

            reason = self._emit_reason(event, state, now)
            if reason is None:
                logger.debug(
                    f"Skipping heartbeat for {path}, last sent at {state.last_sent}, "
                    "interval not reached"
                )
                self._maybe_collect(now)
                return None

            state.last_sent = now
            state.was_write = event.is_write
            self._last_path = path
            lineno, cursor_pos = state.lineno, state.cursor_pos
            self._maybe_collect(now)

        lines = self.line_counter(path) if self.line_counter else None
        heartbeat = Heartbeat.from_event(event, lines_in_file=lines)
        if heartbeat.lineno is None or heartbeat.cursor_pos is None:
            heartbeat = replace(
                heartbeat,
                lineno=heartbeat.lineno if heartbeat.lineno is not None else lineno,
                cursor_pos=(
                    heartbeat.cursor_pos if heartbeat.cursor_pos is not None else cursor_pos
                ),
            )
        logger.debug(f"Heartbeat for {path} ({reason})")
        return heartbeat

    def _emit_reason(
        self, event: ActivityEvent, state: FileState, now: float
    ) -> Optional[str]:
        """Why this event deserves a heartbeat, or None."""
        if state.last_sent is None:
            return "first activity"
        if event.is_write != state.was_write:
            return "write state changed"
        if event.file_path != self._last_path:
            return "file changed"
        if now - state.last_sent >= self.interval:
            return "interval reached"
        return None

    def _maybe_collect(self, now: float) -> None:
        if now - self._last_gc >= GC_EVERY_SECONDS:
            self._collect(now)

    def collect_garbage(self, now: Optional[float] = None) -> int:
        """Forget files idle longer than ``idle_expiry`` or the heartbeat interval.

        Returns the number of files forgotten.
        """
        with self._lock:
            return self._collect(self.clock() if now is None else now)

    def _collect(self, now: float) -> int:
        expiry = max(self.idle_expiry, self.interval)
        stale = [
            path
            for path, state in self._files.items()
            if now - state.last_seen > expiry
        ]
        for path in stale:
            del self._files[path]
        self._last_gc = now
        return len(stale)
