"""Tests for the spool-backed heartbeat queue."""

import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from editor_pulse.models import Heartbeat
from editor_pulse.queue import HeartbeatQueue

T0 = 1_700_000_000.0


def heartbeat(index: int) -> Heartbeat:
    return Heartbeat(entity=f"/src/file{index}.py", timestamp=T0 + index)


class TestHeartbeatQueue(unittest.TestCase):
    """Test cases for HeartbeatQueue."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.spool_dir = Path(self.temp_dir) / "spool"
        self.queue = HeartbeatQueue(self.spool_dir)

    def tearDown(self):
        """Clean up test fixtures."""
        import shutil

        shutil.rmtree(self.temp_dir)

    def test_enqueue_assigns_increasing_ids(self):
        first = self.queue.enqueue(heartbeat(0))
        second = self.queue.enqueue(heartbeat(1))
        self.assertEqual(first.id, 1)
        self.assertEqual(second.id, 2)
        self.assertEqual(self.queue.size(), 2)

    def test_peek_batch_is_fifo(self):
        for i in range(5):
            self.queue.enqueue(heartbeat(i))

        batch = self.queue.peek_batch(5)

        self.assertEqual([hb.entity for hb in batch], [f"/src/file{i}.py" for i in range(5)])

    def test_peek_batch_limits_size(self):
        for i in range(5):
            self.queue.enqueue(heartbeat(i))
        self.assertEqual([hb.id for hb in self.queue.peek_batch(2)], [1, 2])
        self.assertEqual(self.queue.peek_batch(0), [])

    def test_peek_is_non_destructive(self):
        self.queue.enqueue(heartbeat(0))
        self.assertEqual(self.queue.peek_batch(10), self.queue.peek_batch(10))
        self.assertEqual(self.queue.size(), 1)

    def test_acknowledge_removes_exactly_given_ids(self):
        for i in range(4):
            self.queue.enqueue(heartbeat(i))

        removed = self.queue.acknowledge([2, 3])

        self.assertEqual(removed, 2)
        self.assertEqual([hb.id for hb in self.queue.peek_batch(10)], [1, 4])

    def test_acknowledge_is_idempotent(self):
        for i in range(3):
            self.queue.enqueue(heartbeat(i))

        self.queue.acknowledge([1])
        after_once = self.queue.peek_batch(10)
        self.assertEqual(self.queue.acknowledge([1]), 0)

        self.assertEqual(self.queue.peek_batch(10), after_once)
        self.assertEqual([hb.id for hb in after_once], [2, 3])

    def test_acknowledge_unknown_id_is_noop(self):
        self.queue.enqueue(heartbeat(0))
        self.assertEqual(self.queue.acknowledge([999]), 0)
        self.assertEqual(self.queue.size(), 1)

    def test_acknowledge_deletes_spool_file(self):
        self.queue.enqueue(heartbeat(0))
        self.assertEqual(len(list(self.spool_dir.glob("*.hb"))), 1)
        self.queue.acknowledge([1])
        self.assertEqual(list(self.spool_dir.glob("*.hb")), [])

    def test_set_aside_keeps_file_out_of_queue(self):
        for i in range(3):
            self.queue.enqueue(heartbeat(i))

        self.assertEqual(self.queue.set_aside([2, 42]), 1)

        self.assertEqual([hb.id for hb in self.queue.peek_batch(10)], [1, 3])
        rejected = self.spool_dir / f"{2:020d}.rejected"
        self.assertTrue(rejected.exists())
        self.assertEqual([hb.id for hb in HeartbeatQueue(self.spool_dir).peek_batch(10)], [1, 3])

    def test_restart_restores_pending_in_order(self):
        """Unacknowledged heartbeats survive a process restart."""
        for i in range(4):
            self.queue.enqueue(heartbeat(i))
        self.queue.acknowledge([2])

        restarted = HeartbeatQueue(self.spool_dir)

        batch = restarted.peek_batch(10)
        self.assertEqual([hb.id for hb in batch], [1, 3, 4])
        self.assertEqual(batch[0], heartbeat(0))
        self.assertEqual(restarted.enqueue(heartbeat(9)).id, 5)

    def test_soft_cap_drops_oldest(self):
        on_overflow = MagicMock()
        queue = HeartbeatQueue(self.spool_dir / "capped", max_pending=3, on_overflow=on_overflow)

        with self.assertLogs("editor_pulse.queue", level="WARNING"):
            for i in range(5):
                queue.enqueue(heartbeat(i))

        self.assertEqual(queue.size(), 3)
        self.assertEqual(queue.dropped_count, 2)
        self.assertEqual(queue.peek_batch(1)[0].entity, "/src/file2.py")
        self.assertEqual(on_overflow.call_count, 2)
        on_overflow.assert_called_with(1)
        self.assertEqual(len(list((self.spool_dir / "capped").glob("*.hb"))), 3)

    def test_corrupt_spool_file_is_moved_aside(self):
        self.queue.enqueue(heartbeat(0))
        corrupt = self.spool_dir / f"{7:020d}.hb"
        corrupt.write_text("{not json", encoding="utf-8")

        with self.assertLogs("editor_pulse.queue", level="ERROR"):
            restarted = HeartbeatQueue(self.spool_dir)

        self.assertEqual([hb.id for hb in restarted.peek_batch(10)], [1])
        self.assertTrue(corrupt.with_suffix(".corrupt").exists())
        self.assertEqual(restarted.enqueue(heartbeat(1)).id, 8)

    def test_partial_write_is_discarded_on_load(self):
        partial = self.spool_dir / f"{3:020d}.tmp"
        partial.write_text("{", encoding="utf-8")

        restarted = HeartbeatQueue(self.spool_dir)

        self.assertEqual(restarted.size(), 0)
        self.assertFalse(partial.exists())

    def test_clear(self):
        for i in range(3):
            self.queue.enqueue(heartbeat(i))
        self.assertEqual(self.queue.clear(), 3)
        self.assertEqual(len(self.queue), 0)
        self.assertEqual(list(self.spool_dir.glob("*.hb")), [])

    def test_wait_for_items_times_out_when_empty(self):
        self.assertFalse(self.queue.wait_for_items(timeout=0.01))

    def test_wait_for_items_returns_immediately_when_pending(self):
        self.queue.enqueue(heartbeat(0))
        self.assertTrue(self.queue.wait_for_items(timeout=5))

    def test_enqueue_wakes_waiting_consumer(self):
        result = {}

        def consumer():
            result["ready"] = self.queue.wait_for_items(timeout=5)

        thread = threading.Thread(target=consumer)
        thread.start()
        time.sleep(0.05)
        self.queue.enqueue(heartbeat(0))
        thread.join(timeout=5)

        self.assertFalse(thread.is_alive())
        self.assertTrue(result["ready"])

    def test_wake_interrupts_waiter(self):
        self.queue.wake()
        started = time.monotonic()
        self.assertFalse(self.queue.wait_for_items(timeout=5))
        self.assertLess(time.monotonic() - started, 1)

    def test_concurrent_producers_keep_every_heartbeat(self):
        def produce(offset):
            for i in range(50):
                self.queue.enqueue(heartbeat(offset + i))

        threads = [threading.Thread(target=produce, args=(n * 100,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        batch = self.queue.peek_batch(1000)
        self.assertEqual(len(batch), 200)
        self.assertEqual([hb.id for hb in batch], list(range(1, 201)))


if __name__ == "__main__":
    unittest.main()
