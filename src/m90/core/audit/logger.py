"""Audit logger — PHI-free trail of tool calls, record changes and exports.

Every MCP tool invocation that reads or writes patient data is recorded in
the ``audit_log`` table:

* ``tool_input_hash`` — SHA-256 of canonical JSON; raw arguments (names,
  notes) never reach the log.
* ``patient_id``      — opaque UUID of the patient touched, if any.
* ``status`` / ``error_type`` — outcome, with the exception class on failure.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from m90.core.storage.database import TreatmentDatabase

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 of canonical JSON, or empty string if not serializable."""
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'tool_invocation' | 'record_create' | 'export'
    tool_name: str = ""
    tool_input_hash: str = ""
    patient_id: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    Writes are committed immediately. A failed write is logged and
    swallowed so auditing never breaks the calling tool.

    Usage::

        audit = AuditLogger(treatment_db)
        audit.log_tool_call(
            "record_application",
            {"patient_id": pid, "dose_mg": 2.5},
            action="record_create",
            patient_id=pid,
        )
    """

    def __init__(self, database: TreatmentDatabase) -> None:
        self._db = database

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID (empty on failure)."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()

        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"), default=str)
            if event.metadata
            else None
        )

        try:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO audit_log
                   (id, timestamp, action, tool_name, tool_input_hash,
                    patient_id, duration_ms, status, error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.action,
                    event.tool_name or None,
                    event.tool_input_hash or None,
                    event.patient_id,
                    event.duration_ms,
                    event.status,
                    event.error_type,
                    metadata_json,
                ),
            )
            conn.commit()
        except Exception:
            logger.exception("Failed to write audit event — event lost")
            return ""

        return event_id

    def log_tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        action: str = "tool_invocation",
        patient_id: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Convenience wrapper for logging a tool invocation.

        Args:
            tool_name: Name of the MCP tool.
            tool_input: Tool arguments (hashed, never stored raw).
            action: Event category.
            patient_id: Patient affected, if any.
            duration_ms: Tool execution time.
            status: 'success' or 'failure'.
            error_type: Exception class name on failure.
            metadata: Additional non-PHI metadata.
        """
        return self.log_event(AuditEvent(
            action=action,
            tool_name=tool_name,
            tool_input_hash=_hash_input(tool_input) if tool_input else "",
            patient_id=patient_id,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def get_events(
        self,
        *,
        action: str | None = None,
        tool_name: str | None = None,
        patient_id: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events, newest first."""
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if tool_name:
            conditions.append("tool_name = ?")
            params.append(tool_name)
        if patient_id:
            conditions.append("patient_id = ?")
            params.append(patient_id)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, action: str | None = None) -> int:
        if action:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE action = ?", (action,)
            ).fetchone()
        else:
            row = self._db.connection.execute("SELECT COUNT(*) FROM audit_log").fetchone()
        return row[0]
