#!/usr/bin/env python3
"""
Data model for editor-pulse.
Activity events as reported by an editor and the heartbeats derived from them.
"""

import re
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import unquote, urlsplit

from .errors import MalformedEventError


class Category(str, Enum):
    """Activity categories understood by the tracking service."""

    CODING = "coding"
    BUILDING = "building"
    INDEXING = "indexing"
    DEBUGGING = "debugging"
    BROWSING = "browsing"
    RUNNING_TESTS = "running tests"
    WRITING_TESTS = "writing tests"
    MANUAL_TESTING = "manual testing"
    WRITING_DOCS = "writing docs"
    CODE_REVIEWING = "code reviewing"
    COMMUNICATING = "communicating"
    RESEARCHING = "researching"
    LEARNING = "learning"
    DESIGNING = "designing"

    @classmethod
    def parse(cls, value: str) -> "Category":
        """Parse a category name, raising MalformedEventError if unknown."""
        try:
            return cls(value)
        except ValueError:
            raise MalformedEventError(f"Unknown category: {value!r}") from None


_WINDOWS_DRIVE = re.compile(r"^/[A-Za-z]:")


def uri_to_path(uri: str) -> str:
    """
    Convert a document URI into the file path used as heartbeat entity.

    file:///var/log/test.txt    -> /var/log/test.txt
    file:///C:/path/to/file.txt -> C:/path/to/file.txt

    Non-file URIs keep everything after the scheme.
    """
    parts = urlsplit(uri)
    if parts.scheme != "file":
        # A one letter "scheme" is a Windows drive
        if len(parts.scheme) <= 1:
            return uri
        rest = uri[len(parts.scheme) + 1:]
        return rest[2:] if rest.startswith("//") else rest

    path = unquote(parts.path)
    if _WINDOWS_DRIVE.match(path):
        path = path[1:]
    if parts.netloc and parts.netloc != "localhost":
        path = f"//{parts.netloc}{path}"
    return path


@dataclass(frozen=True)
class ActivityEvent:
    """Raw activity signal reported whenever the user touches a document."""

    file_path: str
    timestamp: float
    is_write: bool = False
    project: Optional[str] = None
    language: Optional[str] = None
    lineno: Optional[int] = None
    cursor_pos: Optional[int] = None
    category: str = Category.CODING.value

    @classmethod
    def from_uri(cls, uri: str, timestamp: float, **kwargs) -> "ActivityEvent":
        """Build an event for a document identified by URI."""
        return cls(file_path=uri_to_path(uri), timestamp=timestamp, **kwargs)

    def validate(self) -> None:
        """Raise MalformedEventError if this event cannot become a heartbeat."""
        if not isinstance(self.file_path, str) or not self.file_path.strip():
            raise MalformedEventError("Activity event has no file path")
        if isinstance(self.timestamp, bool) or not isinstance(
            self.timestamp, (int, float)
        ):
            raise MalformedEventError(
                f"Invalid timestamp for {self.file_path}: {self.timestamp!r}"
            )
        if self.timestamp <= 0:
            raise MalformedEventError(
                f"Invalid timestamp for {self.file_path}: {self.timestamp!r}"
            )
        for name in ("lineno", "cursor_pos"):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, int) or value < 0):
                raise MalformedEventError(
                    f"Invalid {name} for {self.file_path}: {value!r}"
                )
        Category.parse(self.category)


@dataclass(frozen=True)
class Heartbeat:
    """A timestamped record of activity on one file."""

    entity: str
    timestamp: float
    is_write: bool = False
    project: Optional[str] = None
    language: Optional[str] = None
    category: str = Category.CODING.value
    lineno: Optional[int] = None
    cursor_pos: Optional[int] = None
    lines_in_file: Optional[int] = None
    id: Optional[int] = field(default=None, compare=False)

    @classmethod
    def from_event(
        cls, event: ActivityEvent, lines_in_file: Optional[int] = None
    ) -> "Heartbeat":
        """Create a heartbeat describing an activity event."""
        return cls(
            entity=event.file_path,
            timestamp=float(event.timestamp),
            is_write=event.is_write,
            project=event.project,
            language=event.language,
            category=event.category,
            lineno=event.lineno,
            cursor_pos=event.cursor_pos,
            lines_in_file=lines_in_file,
        )

    def with_id(self, heartbeat_id: int) -> "Heartbeat":
        """Return a copy of this heartbeat carrying a queue id."""
        return replace(self, id=heartbeat_id)

    def to_wire(self) -> Dict[str, Any]:
        """Heartbeat in the command-line tool's extra-heartbeats format."""
        payload: Dict[str, Any] = {
            "entity": self.entity,
            "type": "file",
            "timestamp": self.timestamp,
            "is_write": self.is_write,
            "category": self.category,
            "project": self.project,
            "language": self.language,
            "lineno": self.lineno,
            "cursorpos": self.cursor_pos,
            "lines": self.lines_in_file,
        }
        return {key: value for key, value in payload.items() if value is not None}

    def to_api(self) -> Dict[str, Any]:
        """Heartbeat in the HTTP API format (``time`` instead of ``timestamp``)."""
        payload = self.to_wire()
        payload["time"] = payload.pop("timestamp")
        return payload

    def to_record(self) -> Dict[str, Any]:
        """Persisted JSON form."""
        return asdict(self)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Heartbeat":
        """Rebuild a heartbeat from its persisted form."""
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in record.items() if key in known})
