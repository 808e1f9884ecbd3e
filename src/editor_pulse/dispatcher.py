"""Background delivery of queued heartbeats."""

import logging
import random
import threading
import time
from enum import Enum
from typing import Callable, Optional

from .config import Settings
from .errors import ErrorKind
from .queue import HeartbeatQueue
from .status import StatusTracker
from .transmission import DeliveryResult, TransmissionCollaborator

logger = logging.getLogger(__name__)

ERROR_PAUSE_SECONDS = 5


class FlushOutcome(str, Enum):
    """Result of a single delivery attempt."""

    IDLE = "idle"
    DELIVERED = "delivered"
    RETRY = "retry"
    AUTH_BLOCKED = "auth_blocked"


class Backoff:
    """Exponential backoff with proportional jitter.

    Delays grow as ``base * factor ** attempt`` up to ``max_delay``; jitter
    shortens each delay by up to ``jitter`` of its value.
    """

    def __init__(
        self,
        base: float = 1.0,
        factor: float = 2.0,
        max_delay: float = 300.0,
        jitter: float = 0.5,
        rng: Callable[[], float] = random.random,
    ):
        self.base = base
        self.factor = factor
        self.max_delay = max_delay
        self.jitter = jitter
        self.rng = rng
        self.attempts = 0

    def next_delay(self) -> float:
        """Delay before the next attempt; advances the attempt counter."""
        delay = min(self.max_delay, self.base * self.factor ** min(self.attempts, 64))
        self.attempts += 1
        return delay * (1 - self.jitter * self.rng())

    def reset(self) -> None:
        self.attempts = 0


class DeliveryDispatcher:
    """Drains the heartbeat queue into a transmission collaborator.

    Transient failures are retried with backoff for as long as it takes;
    heartbeats are never dropped because of a retry count. Repeated
    authentication failures pause delivery until the settings change.
    """

    def __init__(
        self,
        queue: HeartbeatQueue,
        transmitter: TransmissionCollaborator,
        settings: Settings,
        status: Optional[StatusTracker] = None,
        backoff: Optional[Backoff] = None,
        clock: Callable[[], float] = time.time,
        batch_size: Optional[int] = None,
        cadence: Optional[float] = None,
        auth_retry_limit: Optional[int] = None,
    ):
        self.queue = queue
        self.transmitter = transmitter
        self.status = status or StatusTracker()
        self.backoff = backoff or Backoff(
            base=settings.backoff_base, max_delay=settings.backoff_max
        )
        self.clock = clock
        self._overrides = (batch_size, cadence, auth_retry_limit)
        self._apply_tuning(settings)

        self._settings = settings
        self._settings_lock = threading.Lock()
        self._flush_lock = threading.Lock()

        self._auth_failures = 0
        self._auth_blocked = False
        self._retry_at: Optional[float] = None

        self._stop = threading.Event()
        self._wake = threading.Event()
        self._final_deadline: Optional[float] = None
        self.thread: Optional[threading.Thread] = None

    def _apply_tuning(self, settings: Settings) -> None:
        batch_size, cadence, auth_retry_limit = self._overrides
        self.batch_size = batch_size or settings.batch_size
        self.cadence = cadence or settings.flush_interval
        self.auth_retry_limit = auth_retry_limit or settings.auth_retry_limit

    @property
    def settings(self) -> Settings:
        with self._settings_lock:
            return self._settings

    @property
    def auth_blocked(self) -> bool:
        return self._auth_blocked

    @property
    def running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    # ------------------------------------------------------------------
    # Single delivery attempt
    # ------------------------------------------------------------------

    def flush_once(self) -> FlushOutcome:
        """Try to deliver the oldest batch of pending heartbeats."""
        with self._flush_lock:
            if self._auth_blocked:
                return FlushOutcome.AUTH_BLOCKED

            batch = self.queue.peek_batch(self.batch_size)
            if not batch:
                return FlushOutcome.IDLE

            settings = self.settings
            if not settings.has_api_key:
                result = DeliveryResult.failed(ErrorKind.AUTH, "No API key configured")
            else:
                result = self._send(batch, settings)

            return self._apply_result(batch, result)

    def _send(self, batch, settings: Settings) -> DeliveryResult:
        """Hand a batch to the collaborator, halving it when refused as a whole.

        A refusal without per-heartbeat detail says nothing about any single
        heartbeat, so only a heartbeat refused on its own counts as rejected.
        """
        try:
            result = self.transmitter.send(batch, settings)
        except Exception as e:
            logger.error(f"Transmission collaborator failed: {e}", exc_info=True)
            return DeliveryResult.failed(ErrorKind.NETWORK, str(e))

        refused_whole = (
            result.error == ErrorKind.MALFORMED
            and not result.accepted_ids
            and not result.rejected_ids
        )
        if not refused_whole:
            return result
        if len(batch) == 1:
            return DeliveryResult(
                rejected_ids=[batch[0].id], error=ErrorKind.MALFORMED, message=result.message
            )

        middle = len(batch) // 2
        logger.warning(
            f"Batch of {len(batch)} heartbeat(s) refused ({result.message}); "
            "retrying in smaller batches"
        )
        first = self._send(batch[:middle], settings)
        pending = {hb.id for hb in batch[:middle]}.difference(
            first.accepted_ids, first.rejected_ids
        )
        if pending:
            return first

        second = self._send(batch[middle:], settings)
        return DeliveryResult(
            accepted_ids=first.accepted_ids + second.accepted_ids,
            rejected_ids=first.rejected_ids + second.rejected_ids,
            error=second.error or first.error,
            message=second.message or first.message,
        )

    def _apply_result(self, batch, result: DeliveryResult) -> FlushOutcome:
        now = self.clock()
        batch_ids = {hb.id for hb in batch}
        accepted = [i for i in result.accepted_ids if i in batch_ids]
        rejected = [i for i in result.rejected_ids if i in batch_ids and i not in accepted]

        if accepted:
            self.queue.acknowledge(accepted)
            self.status.record_success(now, len(accepted))
            logger.info(f"Sent {len(accepted)} heartbeat(s)")
        if rejected:
            self.queue.set_aside(rejected)
            self.status.record_dropped(
                len(rejected), f"rejected by service: {result.message or 'malformed'}"
            )

        pending = batch_ids.difference(accepted, rejected)
        if not pending:
            self._auth_failures = 0
            self._retry_at = None
            self.backoff.reset()
            return FlushOutcome.DELIVERED

        kind = result.error
        if kind is None or kind == ErrorKind.MALFORMED:
            kind = ErrorKind.SERVER
        message = result.message or f"{len(pending)} heartbeat(s) not accepted"
        self.status.record_failure(kind, now, message)

        if kind == ErrorKind.AUTH:
            self._auth_failures += 1
            if self._auth_failures >= self.auth_retry_limit:
                self._auth_blocked = True
                self._retry_at = None
                self.status.record_auth_blocked(True)
                logger.error(
                    f"Authentication failed {self._auth_failures} times in a row "
                    f"({message}); pausing delivery until the API key changes"
                )
                return FlushOutcome.AUTH_BLOCKED
        else:
            self._auth_failures = 0

        delay = self.backoff.next_delay()
        self._retry_at = now + delay
        logger.warning(
            f"Heartbeat delivery failed ({kind.value}): {message}; "
            f"{len(pending)} pending, retrying in {delay:.1f}s"
        )
        return FlushOutcome.RETRY

    def seconds_until_retry(self) -> float:
        """Remaining backoff delay, zero when an attempt is due."""
        if self._retry_at is None:
            return 0.0
        return max(0.0, self._retry_at - self.clock())

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def reload(
        self, settings: Settings, transmitter: Optional[TransmissionCollaborator] = None
    ) -> None:
        """Swap in a new settings snapshot and retry promptly.

        An authentication pause is lifted only when the key, URL or
        command-line path changed. A new ``transmitter`` replaces the current
        one before the next attempt.
        """
        with self._settings_lock:
            changed = settings.delivery_identity() != self._settings.delivery_identity()
            self._settings = settings

        with self._flush_lock:
            if transmitter is not None:
                logger.info(f"Delivering through {type(transmitter).__name__}")
                self.transmitter = transmitter
            self._apply_tuning(settings)
            if changed and self._auth_blocked:
                logger.info("Credentials changed; resuming heartbeat delivery")
                self._auth_blocked = False
                self.status.record_auth_blocked(False)
            if changed:
                self._auth_failures = 0
            self._retry_at = None
            self.backoff.reset()

        self._wake.set()
        self.queue.wake()

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start delivering in a background thread."""
        if self.running:
            logger.warning("Dispatcher is already running")
            return

        self._stop.clear()
        self._wake.clear()
        self._final_deadline = None
        self.thread = threading.Thread(
            target=self._run, name="editor-pulse-dispatcher", daemon=True
        )
        self.thread.start()
        logger.info("Dispatcher started")

    def stop(self, flush: bool = True, timeout: float = 5.0) -> None:
        """Stop delivering, attempting a final flush bounded by ``timeout``.

        Heartbeats not delivered in time stay in the spool for the next start.
        """
        deadline = self.clock() + timeout if flush else None

        if not self.running:
            if deadline is not None:
                self._final_flush(deadline)
            return

        self._final_deadline = deadline
        self._stop.set()
        self._wake.set()
        self.queue.wake()
        self.thread.join(timeout=timeout)
        if self.thread.is_alive():
            logger.warning(
                f"Dispatcher did not stop within {timeout}s; "
                f"{self.queue.size()} heartbeat(s) left in spool"
            )
        else:
            logger.info("Dispatcher stopped")

    def _run(self) -> None:
        """Main worker loop."""
        logger.debug("Dispatcher thread started")

        while not self._stop.is_set():
            try:
                if self._auth_blocked:
                    self._pause(self.cadence)
                    continue

                delay = self.seconds_until_retry()
                if delay > 0:
                    self._pause(delay)
                    continue

                outcome = self.flush_once()
                if outcome == FlushOutcome.IDLE:
                    self.queue.wait_for_items(timeout=self.cadence)
            except Exception as e:
                logger.error(f"Dispatcher error: {e}", exc_info=True)
                self._pause(ERROR_PAUSE_SECONDS)

        if self._final_deadline is not None:
            self._final_flush(self._final_deadline)
        logger.debug("Dispatcher thread stopped")

    def _pause(self, seconds: float) -> None:
        self._wake.wait(timeout=seconds)
        self._wake.clear()

    def _final_flush(self, deadline: float) -> None:
        """Deliver as much as possible before ``deadline``."""
        while self.clock() < deadline:
            try:
                outcome = self.flush_once()
            except Exception as e:
                logger.error(f"Final flush failed: {e}", exc_info=True)
                return
            if outcome != FlushOutcome.DELIVERED:
                break

        remaining = self.queue.size()
        if remaining:
            logger.info(f"{remaining} heartbeat(s) kept in spool for next start")
