"""Spool-directory based heartbeat queue."""

import json
import logging
import os
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from .models import Heartbeat

logger = logging.getLogger(__name__)

SPOOL_SUFFIX = ".hb"
TEMP_SUFFIX = ".tmp"
CORRUPT_SUFFIX = ".corrupt"
REJECTED_SUFFIX = ".rejected"
DEFAULT_MAX_PENDING = 10000


class HeartbeatQueue:
    """Durable FIFO of heartbeats awaiting delivery.

    Every heartbeat is stored as one JSON file named after its monotonic id,
    so pending heartbeats survive a restart and are reloaded in send order.
    A heartbeat leaves the queue only through ``acknowledge``, through
    ``set_aside`` when the service refused it, or when the soft cap sheds
    the oldest entries.
    """

    def __init__(
        self,
        spool_dir,
        max_pending: int = DEFAULT_MAX_PENDING,
        on_overflow: Optional[Callable[[int], None]] = None,
    ):
        self.spool_dir = Path(spool_dir)
        self.max_pending = max_pending
        self.on_overflow = on_overflow
        self.dropped_count = 0

        self.spool_dir.mkdir(parents=True, exist_ok=True)

        self._cond = threading.Condition(threading.Lock())
        self._items: "OrderedDict[int, Heartbeat]" = OrderedDict()
        self._wakeup = False
        self._next_id = 1

        self._load()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(self, heartbeat: Heartbeat) -> Heartbeat:
        """Persist a heartbeat at the tail of the queue and return it with its id."""
        with self._cond:
            heartbeat_id = self._next_id
            self._next_id += 1
            stored = heartbeat.with_id(heartbeat_id)

            try:
                self._write(stored)
            except OSError as e:
                # Still deliverable while this process lives
                logger.error(f"Failed to spool heartbeat {heartbeat_id}: {e}")

            was_empty = not self._items
            self._items[heartbeat_id] = stored
            dropped = self._shed_overflow()

            if was_empty:
                self._cond.notify_all()

        logger.debug(f"Spool enqueued heartbeat {heartbeat_id} for {stored.entity}")
        if dropped:
            logger.warning(
                f"Heartbeat queue over capacity ({self.max_pending}); "
                f"dropped {dropped} oldest heartbeat(s)"
            )
            if self.on_overflow:
                self.on_overflow(dropped)
        return stored

    def _shed_overflow(self) -> int:
        dropped = 0
        while len(self._items) > self.max_pending:
            oldest_id, _ = self._items.popitem(last=False)
            self._unlink(oldest_id)
            dropped += 1
        self.dropped_count += dropped
        return dropped

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def peek_batch(self, max_items: int = 25) -> List[Heartbeat]:
        """Return up to max_items oldest heartbeats without removing them."""
        if max_items <= 0:
            return []
        with self._cond:
            batch = []
            for heartbeat in self._items.values():
                if len(batch) >= max_items:
                    break
                batch.append(heartbeat)
            return batch

    def acknowledge(self, ids: Iterable[int]) -> int:
        """Remove the given heartbeats. Unknown ids are ignored.

        Returns:
            Number of heartbeats actually removed
        """
        removed = 0
        with self._cond:
            for heartbeat_id in set(ids):
                if self._items.pop(heartbeat_id, None) is None:
                    continue
                self._unlink(heartbeat_id)
                removed += 1
        if removed:
            logger.debug(f"Spool acknowledged {removed} heartbeat(s)")
        return removed

    def set_aside(self, ids: Iterable[int]) -> int:
        """Remove heartbeats the service refused, keeping their spool files.

        The files are renamed with a ``.rejected`` suffix so they are never
        reloaded but remain available for inspection.

        Returns:
            Number of heartbeats removed from the queue
        """
        removed = 0
        with self._cond:
            for heartbeat_id in set(ids):
                if self._items.pop(heartbeat_id, None) is None:
                    continue
                path = self._path_for(heartbeat_id)
                try:
                    os.replace(path, path.with_suffix(REJECTED_SUFFIX))
                except FileNotFoundError:
                    pass
                except OSError as e:
                    logger.error(f"Could not set aside spool file {path.name}: {e}")
                removed += 1
        if removed:
            logger.debug(f"Spool set aside {removed} rejected heartbeat(s)")
        return removed

    def wait_for_items(self, timeout: Optional[float] = None) -> bool:
        """Block until the queue is non-empty, ``wake`` is called, or timeout.

        Returns:
            Whether heartbeats are pending
        """
        with self._cond:
            if not self._items and not self._wakeup:
                self._cond.wait(timeout)
            self._wakeup = False
            return bool(self._items)

    def wake(self) -> None:
        """Interrupt a consumer blocked in ``wait_for_items``."""
        with self._cond:
            self._wakeup = True
            self._cond.notify_all()

    def size(self) -> int:
        """Number of pending heartbeats."""
        with self._cond:
            return len(self._items)

    def __len__(self) -> int:
        return self.size()

    def clear(self) -> int:
        """Discard every pending heartbeat. Returns the number removed."""
        with self._cond:
            ids = list(self._items)
            self._items.clear()
            for heartbeat_id in ids:
                self._unlink(heartbeat_id)
        if ids:
            logger.info(f"Spool cleared {len(ids)} heartbeat(s)")
        return len(ids)

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def _path_for(self, heartbeat_id: int) -> Path:
        return self.spool_dir / f"{heartbeat_id:020d}{SPOOL_SUFFIX}"

    def _write(self, heartbeat: Heartbeat) -> None:
        path = self._path_for(heartbeat.id)
        temp_path = path.with_suffix(TEMP_SUFFIX)
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(heartbeat.to_record(), f, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)

    def _unlink(self, heartbeat_id: int) -> None:
        try:
            self._path_for(heartbeat_id).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to delete spool file for heartbeat {heartbeat_id}: {e}")

    def _load(self) -> None:
        """Reload pending heartbeats left behind by a previous process."""
        for temp_file in self.spool_dir.glob(f"*{TEMP_SUFFIX}"):
            try:
                temp_file.unlink()
            except OSError as e:
                logger.warning(f"Could not remove partial spool file {temp_file}: {e}")

        loaded: Dict[int, Heartbeat] = {}
        highest = 0
        for path in self.spool_dir.glob(f"*{SPOOL_SUFFIX}"):
            try:
                heartbeat_id = int(path.stem)
            except ValueError:
                logger.warning(f"Ignoring unexpected spool file {path.name}")
                continue
            highest = max(highest, heartbeat_id)
            try:
                with open(path, "r", encoding="utf-8") as f:
                    record = json.load(f)
                loaded[heartbeat_id] = Heartbeat.from_record(record).with_id(heartbeat_id)
            except (OSError, ValueError, TypeError, AttributeError) as e:
                logger.error(f"Corrupt spool file {path.name}: {e}")
                try:
                    os.replace(path, path.with_suffix(CORRUPT_SUFFIX))
                except OSError:
                    logger.error(f"Could not move aside corrupt spool file {path.name}")

        for heartbeat_id in sorted(loaded):
            self._items[heartbeat_id] = loaded[heartbeat_id]
        self._next_id = highest + 1

        if self._items:
            logger.info(f"Spool restored {len(self._items)} pending heartbeat(s)")
