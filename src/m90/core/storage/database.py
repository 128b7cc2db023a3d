"""SQLite database management for the treatment tracker.

Handles connection lifecycle, schema creation, and migrations.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# Current schema version
SCHEMA_VERSION = 2

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS clinics (
    id         TEXT PRIMARY KEY,
    name       TEXT NOT NULL,
    city       TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS package_templates (
    id                      TEXT PRIMARY KEY,
    name                    TEXT NOT NULL UNIQUE,
    duration_weeks          INTEGER NOT NULL,
    medication_total_mg     REAL NOT NULL,
    endocrino_consultations INTEGER NOT NULL DEFAULT 0,
    nutri_consultations     INTEGER NOT NULL DEFAULT 0,
    active                  INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS patients (
    id                  TEXT PRIMARY KEY,
    full_name           TEXT NOT NULL,
    clinic_id           TEXT NOT NULL REFERENCES clinics(id),
    package_template_id TEXT NOT NULL REFERENCES package_templates(id),
    start_date          TEXT NOT NULL,
    status              TEXT NOT NULL DEFAULT 'ACTIVE',
    notes_enc           TEXT,
    created_at          TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS applications (
    id               TEXT PRIMARY KEY,
    patient_id       TEXT NOT NULL REFERENCES patients(id),
    application_date TEXT NOT NULL,
    dose_mg          REAL NOT NULL,
    notes_enc        TEXT,
    administered_by  TEXT,
    created_at       TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Dosing phases; the current one is selected by start_date, not row order
CREATE TABLE IF NOT EXISTS indications (
    id                      TEXT PRIMARY KEY,
    patient_id              TEXT NOT NULL REFERENCES patients(id),
    start_date              TEXT NOT NULL,
    dose_mg_per_application REAL NOT NULL,
    frequency_days          INTEGER NOT NULL,
    duration_weeks          INTEGER,
    notes_enc               TEXT,
    created_at              TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS consultations (
    id                TEXT PRIMARY KEY,
    patient_id        TEXT NOT NULL REFERENCES patients(id),
    type              TEXT NOT NULL,
    consultation_date TEXT NOT NULL,
    professional      TEXT NOT NULL,
    counts_in_package INTEGER NOT NULL DEFAULT 1,
    notes_enc         TEXT,
    created_at        TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS measurements (
    id               TEXT PRIMARY KEY,
    patient_id       TEXT NOT NULL REFERENCES patients(id),
    measurement_date TEXT NOT NULL,
    weight_kg        REAL NOT NULL,
    fat_percentage   REAL,
    lean_mass_kg     REAL,
    notes_enc        TEXT,
    created_at       TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS stock_adjustments (
    id            TEXT PRIMARY KEY,
    patient_id    TEXT NOT NULL REFERENCES patients(id),
    adjustment_mg REAL NOT NULL,
    reason_enc    TEXT,
    created_at    TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS schema_version (
    version    INTEGER NOT NULL,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_patients_clinic       ON patients(clinic_id);
CREATE INDEX IF NOT EXISTS idx_patients_status       ON patients(status);
CREATE INDEX IF NOT EXISTS idx_patients_start        ON patients(start_date);
CREATE INDEX IF NOT EXISTS idx_applications_patient  ON applications(patient_id);
CREATE INDEX IF NOT EXISTS idx_indications_patient   ON indications(patient_id);
CREATE INDEX IF NOT EXISTS idx_consultations_patient ON consultations(patient_id);
CREATE INDEX IF NOT EXISTS idx_measurements_patient  ON measurements(patient_id);
CREATE INDEX IF NOT EXISTS idx_adjustments_patient   ON stock_adjustments(patient_id);
"""

# ---------------------------------------------------------------------------
# V2: Audit log table
# ---------------------------------------------------------------------------

_SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS audit_log (
    id              TEXT PRIMARY KEY,
    timestamp       TEXT NOT NULL DEFAULT (datetime('now')),
    action          TEXT NOT NULL,
    tool_name       TEXT,
    tool_input_hash TEXT,
    patient_id      TEXT,
    duration_ms     REAL,
    status          TEXT NOT NULL DEFAULT 'success',
    error_type      TEXT,
    metadata_json   TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_audit_action    ON audit_log(action);
CREATE INDEX IF NOT EXISTS idx_audit_patient   ON audit_log(patient_id);
"""


class DatabaseError(Exception):
    """Raised when database operations fail."""


class TreatmentDatabase:
    """SQLite database manager for the treatment tracker.

    Supports both file-based and in-memory (`:memory:`) databases.
    In-memory mode is used for testing.

    Usage::

        db = TreatmentDatabase(":memory:")
        db.initialize()
        conn = db.connection
        # ... use connection ...
        db.close()
    """

    def __init__(self, db_path: str = ":memory:") -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the active database connection.

        Raises:
            DatabaseError: If the database has not been initialized.
        """
        if self._conn is None:
            raise DatabaseError("Database not initialized. Call initialize() first.")
        return self._conn

    def initialize(self) -> None:
        """Open the connection and ensure the schema exists. Idempotent."""
        if self._conn is not None:
            return

        if self._db_path != ":memory:":
            db_file = Path(self._db_path).expanduser()
            db_file.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_file))
        else:
            self._conn = sqlite3.connect(":memory:")

        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._ensure_schema()
        logger.info("Treatment database initialized: %s", self._db_path)

    def _ensure_schema(self) -> None:
        conn = self.connection
        conn.executescript(_SCHEMA_V1)

        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        current_version = row[0] if row[0] is not None else 0

        if current_version < 2:
            conn.executescript(_SCHEMA_V2)
            logger.info("Applied schema migration V2: audit_log table")

        if current_version < SCHEMA_VERSION:
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info(
                "Schema updated from version %d to %d", current_version, SCHEMA_VERSION
            )

    def get_schema_version(self) -> int:
        row = self.connection.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] if row[0] is not None else 0

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("Treatment database closed")

    def __enter__(self) -> TreatmentDatabase:
        self.initialize()
        return self

    def __exit__(self, *args) -> None:
        self.close()
