#!/usr/bin/env python3
"""
Editor heartbeat tracker.
Wires the debouncer, the durable queue and the delivery dispatcher together.
"""

import logging
from pathlib import Path
from typing import Optional

from .config import Settings, get_data_directory
from .debouncer import HeartbeatDebouncer
from .dispatcher import DeliveryDispatcher, FlushOutcome
from .models import ActivityEvent, Heartbeat
from .queue import HeartbeatQueue
from .status import DeliveryStatus, StatusTracker
from .transmission import CliTransmitter, HttpTransmitter, TransmissionCollaborator

logger = logging.getLogger(__name__)


def default_transmitter(settings: Settings) -> TransmissionCollaborator:
    """Use the command-line tool when configured, the HTTP API otherwise."""
    if settings.cli_path:
        return CliTransmitter(cli_path=settings.cli_path, plugin=settings.plugin)
    return HttpTransmitter()


class HeartbeatTracker:
    """
    Editor heartbeat tracker - orchestrates the heartbeat pipeline.

    Activity events are debounced on the caller's thread and spooled to disk;
    a background dispatcher delivers them. Nothing raised inside the pipeline
    reaches the caller of ``record``.
    """

    def __init__(
        self,
        settings: Settings,
        data_dir: Optional[str] = None,
        transmitter: Optional[TransmissionCollaborator] = None,
        status: Optional[StatusTracker] = None,
        debouncer: Optional[HeartbeatDebouncer] = None,
    ):
        """
        Initialize the tracker.

        Args:
            settings: Configuration snapshot
            data_dir: Directory holding the spool. If None, uses the user data directory.
            transmitter: Delivery collaborator. If None, chosen from settings.
            status: Status reporter shared with the editor integration
            debouncer: Pre-built debouncer, mainly for tests
        """
        self.settings = settings
        self.data_dir = Path(data_dir) if data_dir else get_data_directory()

        # Use composition - inject specialized components
        self.status = status or StatusTracker()
        self.debouncer = debouncer or HeartbeatDebouncer(interval=settings.heartbeat_interval)
        self.queue = HeartbeatQueue(
            self.data_dir / "spool",
            max_pending=settings.max_pending,
            on_overflow=lambda count: self.status.record_dropped(count, "queue over capacity"),
        )
        # An injected collaborator is kept across reloads
        self._chooses_transmitter = transmitter is None
        self.dispatcher = DeliveryDispatcher(
            self.queue,
            transmitter or default_transmitter(settings),
            settings,
            status=self.status,
        )

    def record(self, event: ActivityEvent) -> Optional[Heartbeat]:
        """Observe an activity event; returns the queued heartbeat, if any."""
        try:
            heartbeat = self.debouncer.evaluate(event)
            if heartbeat is None:
                return None
            return self.queue.enqueue(heartbeat)
        except Exception as e:
            logger.error(f"Failed to record activity for {event.file_path!r}: {e}", exc_info=True)
            return None

    def reload(self, settings: Settings) -> None:
        """Apply a new configuration snapshot."""
        logger.info(f"Reloading settings: {settings.masked()}")
        transmitter = None
        if self._chooses_transmitter and (
            settings.cli_path != self.settings.cli_path or settings.plugin != self.settings.plugin
        ):
            transmitter = default_transmitter(settings)
        self.settings = settings
        self.debouncer.set_interval(settings.heartbeat_interval)
        self.queue.max_pending = settings.max_pending
        self.dispatcher.reload(settings, transmitter=transmitter)

    def flush(self) -> FlushOutcome:
        """Deliver pending heartbeats now, on the calling thread."""
        outcome = self.dispatcher.flush_once()
        while outcome == FlushOutcome.DELIVERED and self.queue.size():
            outcome = self.dispatcher.flush_once()
        return outcome

    def pending(self) -> int:
        """Number of heartbeats waiting for delivery."""
        return self.queue.size()

    def get_status(self) -> DeliveryStatus:
        """Current delivery status for display."""
        return self.status.snapshot()

    def start(self) -> None:
        """Start background delivery."""
        logger.info(f"Starting heartbeat tracker, spool at {self.queue.spool_dir}")
        if not self.settings.has_api_key:
            logger.warning("No API key configured; heartbeats will be queued only")
        self.dispatcher.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop background delivery after a bounded final flush."""
        logger.info("Stopping heartbeat tracker...")
        self.dispatcher.stop(flush=True, timeout=timeout)
