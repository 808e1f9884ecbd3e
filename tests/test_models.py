"""Tests for activity events and heartbeats."""

import unittest

import pytest

from editor_pulse.errors import MalformedEventError
from editor_pulse.models import ActivityEvent, Category, Heartbeat, uri_to_path

T0 = 1_700_000_000.0


class TestUriToPath(unittest.TestCase):
    """Test cases for document URI conversion."""

    def test_posix_file_uri(self):
        self.assertEqual(uri_to_path("file:///var/log/test.txt"), "/var/log/test.txt")

    def test_windows_drive_uri(self):
        self.assertEqual(
            uri_to_path("file:///C:/path/to/file.txt"), "C:/path/to/file.txt"
        )

    def test_percent_encoded_uri(self):
        self.assertEqual(
            uri_to_path("file:///home/me/my%20project/a.py"), "/home/me/my project/a.py"
        )

    def test_non_file_uri_keeps_rest(self):
        self.assertEqual(uri_to_path("untitled:Untitled-1"), "Untitled-1")
        self.assertEqual(uri_to_path("vscode-remote://host/src/a.py"), "host/src/a.py")

    def test_plain_path_unchanged(self):
        self.assertEqual(uri_to_path("/tmp/a.py"), "/tmp/a.py")


class TestActivityEvent(unittest.TestCase):
    """Test cases for ActivityEvent validation."""

    def test_valid_event(self):
        event = ActivityEvent(file_path="/a.py", timestamp=T0, lineno=0, cursor_pos=3)
        event.validate()

    def test_from_uri(self):
        event = ActivityEvent.from_uri("file:///a/b.py", T0, is_write=True)
        self.assertEqual(event.file_path, "/a/b.py")
        self.assertTrue(event.is_write)

    def test_missing_path_is_malformed(self):
        with self.assertRaises(MalformedEventError):
            ActivityEvent(file_path="", timestamp=T0).validate()
        with self.assertRaises(MalformedEventError):
            ActivityEvent(file_path="   ", timestamp=T0).validate()

    def test_bad_timestamp_is_malformed(self):
        with self.assertRaises(MalformedEventError):
            ActivityEvent(file_path="/a.py", timestamp=0).validate()
        with self.assertRaises(MalformedEventError):
            ActivityEvent(file_path="/a.py", timestamp="now").validate()

    def test_negative_position_is_malformed(self):
        with self.assertRaises(MalformedEventError):
            ActivityEvent(file_path="/a.py", timestamp=T0, lineno=-1).validate()

    def test_unknown_category_is_malformed(self):
        with self.assertRaises(MalformedEventError):
            ActivityEvent(file_path="/a.py", timestamp=T0, category="napping").validate()

    def test_malformed_event_is_value_error(self):
        self.assertTrue(issubclass(MalformedEventError, ValueError))

    def test_events_are_immutable(self):
        event = ActivityEvent(file_path="/a.py", timestamp=T0)
        with self.assertRaises(Exception):
            event.file_path = "/b.py"


class TestHeartbeat(unittest.TestCase):
    """Test cases for Heartbeat."""

    def setUp(self):
        event = ActivityEvent(
            file_path="/work/main.py",
            timestamp=T0,
            is_write=True,
            project="work",
            language="Python",
            lineno=10,
            cursor_pos=2,
        )
        self.heartbeat = Heartbeat.from_event(event, lines_in_file=42)

    def test_from_event(self):
        self.assertEqual(self.heartbeat.entity, "/work/main.py")
        self.assertEqual(self.heartbeat.category, "coding")
        self.assertEqual(self.heartbeat.lines_in_file, 42)
        self.assertIsNone(self.heartbeat.id)

    def test_with_id_returns_copy(self):
        stored = self.heartbeat.with_id(7)
        self.assertEqual(stored.id, 7)
        self.assertIsNone(self.heartbeat.id)
        self.assertEqual(stored, self.heartbeat)

    def test_to_wire(self):
        wire = self.heartbeat.to_wire()
        self.assertEqual(wire["entity"], "/work/main.py")
        self.assertEqual(wire["type"], "file")
        self.assertEqual(wire["timestamp"], T0)
        self.assertTrue(wire["is_write"])
        self.assertEqual(wire["cursorpos"], 2)
        self.assertEqual(wire["lines"], 42)

    def test_to_wire_omits_missing_fields(self):
        wire = Heartbeat(entity="/a.py", timestamp=T0).to_wire()
        self.assertNotIn("project", wire)
        self.assertNotIn("lineno", wire)
        self.assertFalse(wire["is_write"])

    def test_to_api_uses_time(self):
        payload = self.heartbeat.to_api()
        self.assertEqual(payload["time"], T0)
        self.assertNotIn("timestamp", payload)

    def test_record_survives_persistence(self):
        stored = self.heartbeat.with_id(3)
        restored = Heartbeat.from_record(stored.to_record())
        self.assertEqual(restored, stored)
        self.assertEqual(restored.id, 3)

    def test_from_record_ignores_unknown_keys(self):
        restored = Heartbeat.from_record({"entity": "/a.py", "timestamp": T0, "extra": 1})
        self.assertEqual(restored.entity, "/a.py")


@pytest.mark.unit
def test_category_parse():
    assert Category.parse("debugging") is Category.DEBUGGING
    with pytest.raises(MalformedEventError):
        Category.parse("sleeping")
