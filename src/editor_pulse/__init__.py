"""
editor-pulse - heartbeat delivery core for editor time tracking.

Editors report file activity; editor-pulse turns it into a rate-limited
stream of heartbeats, keeps them in a durable on-disk spool and delivers
them to the tracking service in the background:

- Per-file heartbeat debouncing (file switches, saves, interval)
- Crash-safe FIFO spool with acknowledgement
- Delivery through wakatime-cli or the HTTP API with backoff
- Status reporting for editor status bars
"""

__version__ = "0.3.0"
__license__ = "MIT"

from .config import Settings
from .models import ActivityEvent, Heartbeat
from .tracker import HeartbeatTracker

__all__ = [
    "ActivityEvent",
    "Heartbeat",
    "HeartbeatTracker",
    "Settings",
]
