#!/usr/bin/env python3
"""
Transmission collaborators for editor-pulse.
Deliver heartbeat batches either through the wakatime command-line tool or
directly over HTTP.
"""

import base64
import json
import logging
import platform
import socket
import subprocess  # nosec B404 - Required to invoke the wakatime command-line tool
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import requests

from . import __version__
from .config import Settings
from .errors import ErrorKind
from .models import Heartbeat

logger = logging.getLogger(__name__)

USER_AGENT = f"editor-pulse/{__version__}"

# wakatime-cli exit codes
CLI_SUCCESS = 0
CLI_ERR_API = 102
CLI_ERR_CONFIG_PARSE = 103
CLI_ERR_AUTH = 104
CLI_ERR_CONFIG_READ = 110
CLI_ERR_CONFIG_WRITE = 111
CLI_ERR_BACKOFF = 112


class DeviceIdentifier:
    """Generates device identification information."""

    @staticmethod
    def get_device_name() -> str:
        """Get the machine name sent along with heartbeats."""
        try:
            hostname = socket.gethostname()

            # On macOS, remove .local suffix
            if hostname.endswith(".local"):
                hostname = hostname[:-6]

            # If hostname is generic, fall back to platform node
            if not hostname or hostname in ["localhost", "unknown"]:
                hostname = platform.node()
                if hostname.endswith(".local"):
                    hostname = hostname[:-6]

            return hostname
        except Exception:
            return f"{platform.system().lower()}-{platform.machine()}"


@dataclass
class DeliveryResult:
    """Outcome of handing one batch to a transmission collaborator.

    ``accepted_ids`` were stored by the service, ``rejected_ids`` were
    definitively refused and can never succeed. Anything in neither list is
    still pending, and ``error`` says why.
    """

    accepted_ids: List[int] = field(default_factory=list)
    rejected_ids: List[int] = field(default_factory=list)
    error: Optional[ErrorKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def accepted(cls, batch: Iterable[Heartbeat]) -> "DeliveryResult":
        return cls(accepted_ids=[hb.id for hb in batch])

    @classmethod
    def failed(cls, kind: ErrorKind, message: str = "") -> "DeliveryResult":
        return cls(error=kind, message=message)


class TransmissionCollaborator(ABC):
    """Delivers heartbeat batches to the tracking service."""

    @abstractmethod
    def send(self, batch: Sequence[Heartbeat], settings: Settings) -> DeliveryResult:
        """Deliver a batch and report per-heartbeat outcome."""


class CliTransmitter(TransmissionCollaborator):
    """Shells out to the wakatime command-line tool.

    The first heartbeat of the batch is passed as arguments; the rest are
    written to stdin as extra heartbeats.
    """

    def __init__(
        self,
        cli_path: str = "wakatime-cli",
        plugin: str = "",
        timeout: float = 30,
        device_identifier: Optional[DeviceIdentifier] = None,
    ):
        self.cli_path = cli_path
        self.plugin = plugin or USER_AGENT
        self.timeout = timeout
        self.device_identifier = device_identifier or DeviceIdentifier()

    def executable(self, settings: Settings) -> str:
        """Binary to run; the settings snapshot wins over the constructor default."""
        return settings.cli_path or self.cli_path

    def build_command(
        self, heartbeat: Heartbeat, settings: Settings, extra: bool = False
    ) -> List[str]:
        """Build the argument list for one invocation."""
        command = [
            self.executable(settings),
            "--entity",
            heartbeat.entity,
            "--time",
            f"{heartbeat.timestamp:.6f}",
            "--plugin",
            settings.plugin or self.plugin,
            "--category",
            heartbeat.category,
            "--hostname",
            self.device_identifier.get_device_name(),
        ]

        if heartbeat.is_write:
            command.append("--write")
        if heartbeat.project:
            command.extend(["--project", heartbeat.project])
        if heartbeat.language:
            command.extend(["--language", heartbeat.language])
        else:
            command.append("--guess-language")
        if heartbeat.lineno is not None:
            command.extend(["--lineno", str(heartbeat.lineno)])
        if heartbeat.cursor_pos is not None:
            command.extend(["--cursorpos", str(heartbeat.cursor_pos)])
        if heartbeat.lines_in_file:
            command.extend(["--lines-in-file", str(heartbeat.lines_in_file)])

        if settings.api_key:
            command.extend(["--key", settings.api_key])
        if settings.api_url:
            command.extend(["--api-url", settings.api_url])
        if settings.metrics:
            command.append("--metrics")
        if settings.debug:
            command.append("--verbose")
        if extra:
            command.append("--extra-heartbeats")

        return command

    def send(self, batch: Sequence[Heartbeat], settings: Settings) -> DeliveryResult:
        if not batch:
            return DeliveryResult()

        first, rest = batch[0], batch[1:]
        command = self.build_command(first, settings, extra=bool(rest))
        stdin = json.dumps([hb.to_wire() for hb in rest]) if rest else None

        executable = command[0]
        logger.debug(f"wakatime command: {_mask_key(command)}")

        try:
            completed = subprocess.run(  # nosec B603 - arguments are not shell-interpreted
                command,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return DeliveryResult.failed(
                ErrorKind.NETWORK, f"{executable} timed out after {self.timeout}s"
            )
        except OSError as e:
            return DeliveryResult.failed(
                ErrorKind.NETWORK, f"Could not run {executable}: {e}"
            )

        if completed.returncode == CLI_SUCCESS:
            return DeliveryResult.accepted(batch)

        kind = classify_exit_code(completed.returncode)
        output = (completed.stderr or completed.stdout or "").strip()
        message = f"{executable} exited with {completed.returncode}"
        if output:
            message += f": {output[:500]}"
        return DeliveryResult.failed(kind, message)


def classify_exit_code(returncode: int) -> ErrorKind:
    """Map a wakatime-cli exit code to an error classification."""
    if returncode == CLI_ERR_AUTH:
        return ErrorKind.AUTH
    if returncode in (CLI_ERR_API, CLI_ERR_BACKOFF):
        return ErrorKind.NETWORK
    return ErrorKind.SERVER


def _mask_key(command: List[str]) -> List[str]:
    masked = list(command)
    for index, arg in enumerate(masked[:-1]):
        if arg == "--key":
            masked[index + 1] = "****"
    return masked


class HttpTransmitter(TransmissionCollaborator):
    """HTTP client posting heartbeat batches to the bulk heartbeats endpoint."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: Tuple[float, float] = (5, 15),
        device_identifier: Optional[DeviceIdentifier] = None,
    ):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.device_identifier = device_identifier or DeviceIdentifier()

    @staticmethod
    def endpoint(settings: Settings) -> str:
        return settings.api_url.rstrip("/") + "/users/current/heartbeats.bulk"

    def _get_headers(self, settings: Settings) -> Dict[str, str]:
        """Get request headers including authentication."""
        token = base64.b64encode(settings.api_key.encode("utf-8")).decode("ascii")
        return {
            "Content-Type": "application/json",
            "Authorization": f"Basic {token}",
            "User-Agent": settings.plugin or USER_AGENT,
            "X-Machine-Name": self.device_identifier.get_device_name(),
        }

    def send(self, batch: Sequence[Heartbeat], settings: Settings) -> DeliveryResult:
        if not batch:
            return DeliveryResult()

        try:
            response = self.session.post(
                self.endpoint(settings),
                json=[hb.to_api() for hb in batch],
                headers=self._get_headers(settings),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            return DeliveryResult.failed(ErrorKind.NETWORK, f"Network error: {e}")

        status = response.status_code
        if status in (401, 403):
            return DeliveryResult.failed(ErrorKind.AUTH, f"HTTP {status} - {response.text[:200]}")
        if status == 400:
            # No per-item detail: the request as a whole was refused
            return DeliveryResult.failed(ErrorKind.MALFORMED, f"HTTP 400 - {response.text[:200]}")
        if status not in (200, 201, 202):
            return DeliveryResult.failed(ErrorKind.SERVER, f"HTTP {status} - {response.text[:200]}")

        return self._per_heartbeat_result(batch, response)

    @staticmethod
    def _per_heartbeat_result(
        batch: Sequence[Heartbeat], response: requests.Response
    ) -> DeliveryResult:
        """Split a bulk response into accepted, rejected and pending heartbeats."""
        try:
            responses = response.json().get("responses")
        except (ValueError, AttributeError):
            responses = None
        if not isinstance(responses, list) or len(responses) != len(batch):
            return DeliveryResult.accepted(batch)

        result = DeliveryResult()
        pending = 0
        for heartbeat, item in zip(batch, responses):
            item_status = _item_status(item)
            if item_status is not None and 200 <= item_status < 300:
                result.accepted_ids.append(heartbeat.id)
            elif item_status == 400:
                result.rejected_ids.append(heartbeat.id)
            else:
                pending += 1

        if result.rejected_ids:
            result.error = ErrorKind.MALFORMED
            result.message = f"{len(result.rejected_ids)} heartbeat(s) rejected as malformed"
        if pending:
            result.error = ErrorKind.SERVER
            result.message = f"{pending} heartbeat(s) not accepted by server"
        return result


def _item_status(item) -> Optional[int]:
    # Bulk responses are [body, status] pairs
    if isinstance(item, (list, tuple)) and len(item) == 2 and isinstance(item[1], int):
        return item[1]
    return None


ScriptedOutcome = Union[DeliveryResult, ErrorKind, Exception, None]


class ScriptedTransmitter(TransmissionCollaborator):
    """In-memory collaborator that replays scripted outcomes.

    Each ``send`` consumes the next outcome: an ``ErrorKind`` fails the whole
    batch, an exception is raised, a ``DeliveryResult`` is returned as-is and
    ``None`` (or an exhausted script) accepts the batch.
    """

    def __init__(self, outcomes: Optional[Iterable[ScriptedOutcome]] = None):
        self.outcomes: List[ScriptedOutcome] = list(outcomes or [])
        self.batches: List[List[Heartbeat]] = []
        self.settings_seen: List[Settings] = []

    @property
    def sent(self) -> List[Heartbeat]:
        return [hb for batch in self.batches for hb in batch]

    def send(self, batch: Sequence[Heartbeat], settings: Settings) -> DeliveryResult:
        self.batches.append(list(batch))
        self.settings_seen.append(settings)

        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, ErrorKind):
            return DeliveryResult.failed(outcome, f"scripted {outcome.value} failure")
        if isinstance(outcome, DeliveryResult):
            return outcome
        return DeliveryResult.accepted(batch)
