"""
Structured logging for sync sessions.
Writes JSON-lines records of transfer events next to the application log.
"""

import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from appsync.models.events import EventKind, TransferEvent
from appsync.models.stats import SyncStats


class StructuredLogger:
    """
    Logger that outputs both human-readable and machine-parseable records.

    Usage:
        logger = StructuredLogger("appsync", log_dir=Path("logs"))
        logger.info("file_copied", source="http://...", size=1024)
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_json: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            log_dir: Directory for JSON log files (None = disabled)
            enable_json: Enable JSON file logging
            enable_console: Forward records to the standard logger
        """
        self.name = name
        self.log_dir = log_dir
        self.enable_json = enable_json and log_dir is not None
        self.enable_console = enable_console

        self._logger = logging.getLogger(name)

        self.json_log_path: Path | None = None
        self._json_file = None
        if self.enable_json:
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.json_log_path = log_dir / f"appsync_{timestamp}.jsonl"
            self._json_file = open(self.json_log_path, "a", encoding="utf-8")  # noqa: SIM115

        # Session context (added to all log entries)
        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
            "start_time": datetime.now().isoformat(),
        }

    def _format_message(self, event: str, **context) -> str:
        parts = [f"[{event}]"]
        for key, value in context.items():
            if value not in (None, ""):
                parts.append(f"{key}={value}")
        return " ".join(parts)

    def _write_json(self, level: str, event: str, **context) -> None:
        if not self._json_file or self._json_file.closed:
            return

        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event,
            **self._session_context,
            **context,
        }

        try:
            self._json_file.write(json.dumps(entry, default=str) + "\n")
            self._json_file.flush()
        except (OSError, ValueError) as e:
            print(f"JSON logging failed: {e}", file=sys.stderr)

    def _log(self, level: int, event: str, **context) -> None:
        if self.enable_console:
            self._logger.log(level, self._format_message(event, **context))
        if self.enable_json:
            self._write_json(logging.getLevelName(level), event, **context)

    def debug(self, event: str, **context) -> None:
        self._log(logging.DEBUG, event, **context)

    def info(self, event: str, **context) -> None:
        self._log(logging.INFO, event, **context)

    def warning(self, event: str, **context) -> None:
        self._log(logging.WARNING, event, **context)

    def error(self, event: str, **context) -> None:
        self._log(logging.ERROR, event, **context)

    def close(self) -> None:
        """Close JSON log file."""
        if self._json_file and not self._json_file.closed:
            self._json_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


_WARNING_EVENTS = {
    EventKind.DIRECTORY_FAILED,
    EventKind.FILE_NOT_FOUND,
    EventKind.INTEGRITY_MISMATCH,
    EventKind.DELETE_FAILED,
    EventKind.CANCELED,
}


class TransferLogger:
    """
    Records transfer events. Byte-level progress is not recorded; every other
    event becomes one record named after its kind.
    """

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def __call__(self, event: TransferEvent) -> None:
        self.on_event(event)

    def on_event(self, event: TransferEvent) -> None:
        if event.kind is EventKind.FILE_PROGRESS:
            return
        context = {
            "source": event.source or None,
            "destination": event.destination or None,
            "sequence": event.sequence or None,
            "total": event.total or None,
            "rollout_order": event.rollout_order,
            "message": event.message,
        }
        context = {k: v for k, v in context.items() if v is not None}
        if event.kind in _WARNING_EVENTS:
            self.logger.warning(event.kind.value, **context)
        else:
            self.logger.debug(event.kind.value, **context)


class SessionLogger:
    """Specialized logger for session events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def session_started(
        self,
        manifest_location: str,
        destination: Path,
        max_workers: int,
        dry_run: bool = False,
    ):
        self.logger.info(
            "session_started",
            manifest_location=manifest_location,
            destination=str(destination),
            max_workers=max_workers,
            dry_run=dry_run,
        )

    def session_completed(self, outcome: str, duration_s: float, stats: SyncStats):
        self.logger.info(
            "session_completed",
            outcome=outcome,
            duration_s=round(duration_s, 2),
            files_copied=stats.files_copied,
            files_deleted=stats.files_deleted,
            archives_expanded=stats.archives_expanded,
            integrity_mismatches=stats.integrity_mismatches,
            total_size_mb=round(stats.bytes_transferred / (1024 * 1024), 2),
        )


def create_structured_logger(
    log_dir: Path | None = None, enable_json: bool = False
) -> tuple[StructuredLogger, TransferLogger, SessionLogger]:
    """
    Create all structured loggers.

    Returns:
        Tuple of (base_logger, transfer_logger, session_logger)
    """
    base = StructuredLogger("appsync.session", log_dir=log_dir, enable_json=enable_json)
    return base, TransferLogger(base), SessionLogger(base)
