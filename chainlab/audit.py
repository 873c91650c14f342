"""
Audit logging for sandbox lifecycle and command traffic.

Provides structured JSON-line events WITHOUT content:
- Request lifecycle events (submitted, completed, failed)
- Sandbox transitions (provisioned, started, stopped, removed, stale reset)
- Bridged commands (route name, timing, error kind)
- Reconciliation alerts when the runtime and the identity store diverge

Never logged: command payloads, command output, credentials.

Usage:
    from chainlab.audit import AuditLogger

    audit = AuditLogger(output_path="/var/log/chainlab/audit.jsonl")
    audit.log_transition(AuditEventType.SANDBOX_STARTED, owner_id="alice", instance_id="3f2a")
    audit.close()

    # Development: log to stdout
    audit = AuditLogger()
"""

from __future__ import annotations

import json
import logging
import sys
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events."""

    # Request lifecycle
    REQUEST_SUBMITTED = "request_submitted"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_FAILED = "request_failed"

    # Sandbox lifecycle
    SANDBOX_PROVISIONED = "sandbox_provisioned"
    SANDBOX_STARTED = "sandbox_started"
    SANDBOX_STOPPED = "sandbox_stopped"
    SANDBOX_REMOVED = "sandbox_removed"
    STALE_HANDLE_RESET = "stale_handle_reset"

    # Command bridge
    COMMAND_COMPLETED = "command_completed"
    COMMAND_FAILED = "command_failed"

    # Runtime and store diverged
    RECONCILIATION_REQUIRED = "reconciliation_required"


@dataclass
class AuditEvent:
    """
    Structured audit event.

    Only identifiers, timings and error categories; no payloads.
    """

    event_type: AuditEventType
    timestamp_unix: float = field(default_factory=time.time)

    request_id: Optional[str] = None
    owner_id: Optional[str] = None
    instance_id: Optional[str] = None

    # Route name for bridged commands (e.g. "CONSENSUS_STATUS")
    route: Optional[str] = None

    execution_time_ms: Optional[float] = None

    # Error classification (taxonomy kind, never the message)
    error_category: Optional[str] = None

    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        data: Dict[str, Any] = {
            "event": self.event_type.value,
            "ts": self.timestamp_unix,
        }

        if self.request_id:
            data["request_id"] = self.request_id
        if self.owner_id:
            data["owner_id"] = self.owner_id
        if self.instance_id:
            data["instance_id"] = self.instance_id
        if self.route:
            data["route"] = self.route
        if self.execution_time_ms is not None:
            data["execution_time_ms"] = self.execution_time_ms
        if self.error_category:
            data["error_category"] = self.error_category
        if self.metadata:
            data["metadata"] = self.metadata

        return data

    def to_json(self) -> str:
        """Serialize to JSON line."""
        return json.dumps(self.to_dict(), separators=(",", ":"))


class AuditLogger:
    """
    Thread-safe buffered audit logger.

    Writes structured JSON events to a file or stdout. Reconciliation events
    bypass the buffer so they reach disk even if the process dies right after.
    """

    def __init__(
        self,
        output_path: Optional[str] = None,
        buffer_size: int = 100,
        flush_interval_seconds: float = 1.0,
        include_timestamps: bool = True,
        stream: Optional[TextIO] = None,
    ) -> None:
        """
        Args:
            output_path: Path to log file. None = `stream` or stdout.
            buffer_size: Events to buffer before flush.
            flush_interval_seconds: Max time between flushes.
            include_timestamps: Include ISO timestamp in addition to unix.
            stream: Text stream used when output_path is None.
        """
        self._output_path = output_path
        self._buffer_size = buffer_size
        self._flush_interval = flush_interval_seconds
        self._include_timestamps = include_timestamps

        self._buffer: List[str] = []
        self._lock = threading.Lock()
        self._last_flush = time.time()

        self._file: Optional[TextIO] = stream

        self._events_logged = 0
        self._events_dropped = 0

    def _get_file(self) -> TextIO:
        """Get or open log file."""
        if self._file is None:
            if self._output_path:
                Path(self._output_path).parent.mkdir(parents=True, exist_ok=True)
                self._file = open(self._output_path, "a", encoding="utf-8")
            else:
                self._file = sys.stdout
        return self._file

    def log(self, event: AuditEvent, *, flush: bool = False) -> None:
        """Log an audit event."""
        data = event.to_dict()
        if self._include_timestamps:
            data["timestamp"] = (
                datetime.fromtimestamp(event.timestamp_unix, tz=timezone.utc)
                .isoformat()
                .replace("+00:00", "Z")
            )

        line = json.dumps(data, separators=(",", ":"))

        with self._lock:
            self._buffer.append(line)
            self._events_logged += 1

            should_flush = (
                flush
                or len(self._buffer) >= self._buffer_size
                or time.time() - self._last_flush >= self._flush_interval
            )

        if should_flush:
            self.flush()

    def flush(self) -> None:
        """Write buffered events out."""
        with self._lock:
            if not self._buffer:
                return

            lines = self._buffer.copy()
            self._buffer.clear()
            self._last_flush = time.time()

        try:
            f = self._get_file()
            for line in lines:
                f.write(line + "\n")
            f.flush()
        except (OSError, ValueError) as e:
            logger.error("Audit log flush failed: %s", e)
            with self._lock:
                self._events_dropped += len(lines)

    def close(self) -> None:
        """Flush and close log file."""
        self.flush()
        with self._lock:
            if self._file and self._output_path:
                try:
                    self._file.close()
                except OSError as e:
                    logger.warning("Failed to close audit log %s: %s", self._output_path, e)
                self._file = None

    # Convenience methods for common events

    def log_request_submitted(self, request_id: str, owner_id: Optional[str] = None) -> None:
        self.log(
            AuditEvent(
                event_type=AuditEventType.REQUEST_SUBMITTED,
                request_id=request_id,
                owner_id=owner_id,
            )
        )

    def log_request_completed(
        self,
        request_id: str,
        execution_time_ms: float,
        owner_id: Optional[str] = None,
    ) -> None:
        self.log(
            AuditEvent(
                event_type=AuditEventType.REQUEST_COMPLETED,
                request_id=request_id,
                owner_id=owner_id,
                execution_time_ms=execution_time_ms,
            )
        )

    def log_request_failed(
        self,
        request_id: str,
        error_category: str,
        execution_time_ms: Optional[float] = None,
        owner_id: Optional[str] = None,
    ) -> None:
        """Log request failure (no error content, just category)."""
        self.log(
            AuditEvent(
                event_type=AuditEventType.REQUEST_FAILED,
                request_id=request_id,
                owner_id=owner_id,
                error_category=error_category,
                execution_time_ms=execution_time_ms,
            )
        )

    def log_transition(
        self,
        event_type: AuditEventType,
        owner_id: str,
        instance_id: Optional[str] = None,
        request_id: Optional[str] = None,
        **metadata: Any,
    ) -> None:
        """Log a sandbox lifecycle event."""
        self.log(
            AuditEvent(
                event_type=event_type,
                owner_id=owner_id,
                instance_id=instance_id,
                request_id=request_id,
                metadata=metadata,
            )
        )

    def log_command(
        self,
        owner_id: str,
        instance_id: Optional[str],
        route: str,
        execution_time_ms: float,
        error_category: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> None:
        """Log a bridged command. Payload and output are never recorded."""
        self.log(
            AuditEvent(
                event_type=(
                    AuditEventType.COMMAND_FAILED
                    if error_category
                    else AuditEventType.COMMAND_COMPLETED
                ),
                owner_id=owner_id,
                instance_id=instance_id,
                route=route,
                execution_time_ms=execution_time_ms,
                error_category=error_category,
                request_id=request_id,
            )
        )

    def log_reconciliation_required(
        self,
        owner_id: str,
        instance_id: Optional[str],
        operation: str,
        reason: str,
        request_id: Optional[str] = None,
    ) -> None:
        """Log a runtime/store divergence. Flushed immediately."""
        self.log(
            AuditEvent(
                event_type=AuditEventType.RECONCILIATION_REQUIRED,
                owner_id=owner_id,
                instance_id=instance_id,
                request_id=request_id,
                error_category=reason,
                metadata={"operation": operation},
            ),
            flush=True,
        )

    def stats(self) -> Dict[str, int]:
        """Get logging statistics."""
        with self._lock:
            return {
                "events_logged": self._events_logged,
                "events_dropped": self._events_dropped,
                "buffer_size": len(self._buffer),
            }
