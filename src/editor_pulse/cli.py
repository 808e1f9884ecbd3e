#!/usr/bin/env python3
"""
Command line interface for editor-pulse.
Inspect and drain the heartbeat spool, or send a one-off heartbeat.
"""

import sys
import time
from typing import Dict, List, Optional

from dotenv import load_dotenv

from .config import DEFAULT_CONFIG, Config, get_data_directory, load_settings
from .dispatcher import FlushOutcome
from .errors import ConfigurationError, MalformedEventError
from .logging_conf import setup_logging
from .models import ActivityEvent
from .tracker import HeartbeatTracker

USAGE = """editor-pulse - editor activity heartbeats
Usage: editor-pulse [command] [options]
Commands:
  status                 Show spool and delivery status
  flush                  Deliver all pending heartbeats
  heartbeat FILE         Record a heartbeat for FILE (path or file:// URI)
  clear                  Discard all pending heartbeats
  config [list]          Show the saved settings
  config get KEY         Show one setting
  config set KEY VALUE   Change a setting in settings.json
  config reset           Restore default settings
Heartbeat options:
  --write                The file was saved
  --project NAME         Project name
  --language NAME        Language name
  --category NAME        Activity category (default: coding)
  --lineno N             Current line number
  --cursorpos N          Current cursor position
Environment Variables:
  WAKATIME_API_KEY       API key (required for delivery)
  EDITOR_PULSE_API_URL   API endpoint
  EDITOR_PULSE_CLI_PATH  Deliver through wakatime-cli at this path
  EDITOR_PULSE_HOME      Data directory"""

_VALUE_OPTIONS = {
    "--project": "project",
    "--language": "language",
    "--category": "category",
    "--lineno": "lineno",
    "--cursorpos": "cursor_pos",
}


def parse_heartbeat_args(args: List[str]) -> Optional[Dict]:
    """Parse ``heartbeat`` arguments into ActivityEvent keyword arguments."""
    options: Dict = {"is_write": False}
    file_path = None

    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--write":
            options["is_write"] = True
        elif arg in _VALUE_OPTIONS:
            if i + 1 >= len(args):
                print(f"Missing value for {arg}")
                return None
            value = args[i + 1]
            if arg in ("--lineno", "--cursorpos"):
                try:
                    value = int(value)
                except ValueError:
                    print(f"Invalid number for {arg}: {value}")
                    return None
            options[_VALUE_OPTIONS[arg]] = value
            i += 1
        elif arg.startswith("--"):
            print(f"Unknown option: {arg}")
            return None
        elif file_path is None:
            file_path = arg
        else:
            print(f"Unexpected argument: {arg}")
            return None
        i += 1

    if file_path is None:
        print("Missing FILE for heartbeat")
        return None

    options["file_path"] = file_path
    return options


def print_status(tracker: HeartbeatTracker) -> None:
    status = tracker.get_status()
    settings = tracker.settings
    print("Heartbeat Status:")
    print(f"  Spool: {tracker.queue.spool_dir}")
    print(f"  Pending heartbeats: {tracker.pending()}")
    print(f"  Dropped heartbeats: {status.dropped_count}")
    print(f"  API URL: {settings.api_url}")
    print(f"  API key configured: {'yes' if settings.has_api_key else 'no'}")
    if settings.cli_path:
        print(f"  wakatime-cli: {settings.cli_path}")
    print(f"  Delivery: {status.describe()}")


def run_config(args: List[str]) -> int:
    """Inspect or change the saved settings file."""
    config = Config()
    action = args[0] if args else "list"

    try:
        if action == "list" and len(args) <= 1:
            print(f"Settings file: {config.config_file}")
            for key, value in config.settings().masked().items():
                print(f"  {key}: {value}")
        elif action == "get" and len(args) == 2:
            key = args[1]
            if key not in DEFAULT_CONFIG:
                raise ConfigurationError(f"Unknown setting: {key}")
            if key == "api_key":
                print(config.settings().masked()[key])
            else:
                print(config.get(key))
        elif action == "set" and len(args) == 3:
            config.set(args[1], args[2])
            config.save()
            print(f"Saved {args[1]}")
        elif action == "reset" and len(args) == 1:
            config.reset_to_defaults()
            config.save()
            print("Settings reset to defaults")
        else:
            print("Usage: editor-pulse config [list | get KEY | set KEY VALUE | reset]")
            return 1
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 1
    return 0


def _report_flush(tracker: HeartbeatTracker, outcome: FlushOutcome) -> int:
    status = tracker.get_status()
    if outcome in (FlushOutcome.RETRY, FlushOutcome.AUTH_BLOCKED):
        print(f"Delivery failed: {status.message or status.describe()}")
        print(f"{tracker.pending()} heartbeat(s) kept for later")
        return 1
    if status.dropped_count:
        print(
            f"Sent {status.sent_count} heartbeat(s), "
            f"dropped {status.dropped_count} heartbeat(s)"
        )
        return 1
    print(f"Sent {status.sent_count} heartbeat(s), {tracker.pending()} pending")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Command line entry point."""
    argv = list(sys.argv[1:] if argv is None else argv)

    if not argv or argv[0] in ("--help", "-h"):
        print(USAGE)
        return 0

    load_dotenv()
    settings = load_settings()
    setup_logging(debug=settings.debug, log_dir=get_data_directory() / "logs")
    command, args = argv[0], argv[1:]

    if command == "config":
        return run_config(args)

    if command not in ("status", "flush", "heartbeat", "clear"):
        print(f"Unknown command: {command}")
        print("Use --help for usage information")
        return 1

    event = None
    if command == "heartbeat":
        options = parse_heartbeat_args(args)
        if options is None:
            return 1
        event = ActivityEvent.from_uri(options.pop("file_path"), time.time(), **options)
        try:
            event.validate()
        except MalformedEventError as e:
            print(f"Invalid heartbeat: {e}")
            return 1

    tracker = HeartbeatTracker(settings)

    if command == "status":
        print_status(tracker)
        return 0

    if command == "clear":
        removed = tracker.queue.clear()
        print(f"Discarded {removed} pending heartbeat(s)")
        return 0

    if event is not None and tracker.record(event) is None:
        print("Heartbeat could not be recorded")
        return 1

    return _report_flush(tracker, tracker.flush())


if __name__ == "__main__":
    sys.exit(main())
