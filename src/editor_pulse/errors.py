"""Error types and delivery error classification for editor-pulse."""

from enum import Enum


class EditorPulseError(Exception):
    """Base class for editor-pulse errors."""


class MalformedEventError(EditorPulseError, ValueError):
    """Raised when an activity event cannot become a heartbeat."""


class ConfigurationError(EditorPulseError):
    """Raised when configuration values are unusable."""


class ErrorKind(str, Enum):
    """Classification reported by a transmission collaborator."""

    NETWORK = "network"
    SERVER = "server"
    AUTH = "auth"
    MALFORMED = "malformed"

    @property
    def is_transient(self) -> bool:
        """Whether retrying the same batch later can succeed."""
        return self in (ErrorKind.NETWORK, ErrorKind.SERVER)
