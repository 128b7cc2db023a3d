"""Treatment repository — CRUD operations for patients and their records.

The repository mediates between the storage models and the SQLite
database, using FieldEncryptor for free-text notes. It never computes
metrics; callers assemble snapshots from :class:`PatientHistory`.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import date, datetime, timezone
from typing import Any

from m90.core.storage.database import TreatmentDatabase
from m90.core.storage.encryption import FieldEncryptor
from m90.core.storage.models import (
    ApplicationEntry,
    Clinic,
    ConsultationEntry,
    IndicationEntry,
    MeasurementEntry,
    PackageTemplate,
    PatientHistory,
    PatientRecord,
    StockAdjustmentEntry,
)

logger = logging.getLogger(__name__)

# Sortable stored columns; anything else is sorted by the caller
_ORDER_BY = {
    "full_name": "p.full_name COLLATE NOCASE",
    "clinic": "c.name COLLATE NOCASE",
    "status": "p.status",
}

_PATIENT_SELECT = """
    SELECT p.*, c.name AS clinic_name
    FROM patients p JOIN clinics c ON c.id = p.clinic_id
"""


class RepositoryError(Exception):
    """Raised when repository operations fail."""


class TreatmentRepository:
    """CRUD repository for patients, their records and the package catalog.

    Usage::

        db = TreatmentDatabase(":memory:")
        db.initialize()
        repo = TreatmentRepository(db, FieldEncryptor(key))

        patient = repo.create_patient("Ana Souza", "clinic-sp", "m90", date(2026, 1, 5))
        repo.add_application(patient.id, date(2026, 1, 5), 2.5)
        history = repo.get_patient_history(patient.id)
    """

    def __init__(self, database: TreatmentDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    def _insert(self, table: str, values: dict[str, Any]) -> None:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        try:
            self._db.connection.execute(
                f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                tuple(values.values()),
            )
            self._db.connection.commit()
        except sqlite3.IntegrityError as exc:
            self._db.connection.rollback()
            raise RepositoryError(f"Cannot insert into {table}: {exc}") from exc

    # ------------------------------------------------------------------
    # Catalog: clinics and package templates
    # ------------------------------------------------------------------

    def upsert_clinic(self, clinic: Clinic) -> None:
        conn = self._db.connection
        conn.execute(
            """INSERT INTO clinics (id, name, city) VALUES (?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET name = excluded.name, city = excluded.city""",
            (clinic.id, clinic.name, clinic.city),
        )
        conn.commit()

    def get_clinic(self, clinic_id: str) -> Clinic | None:
        row = self._db.connection.execute(
            "SELECT id, name, city FROM clinics WHERE id = ?", (clinic_id,)
        ).fetchone()
        return Clinic(id=row[0], name=row[1], city=row[2] or "") if row else None

    def list_clinics(self) -> list[Clinic]:
        rows = self._db.connection.execute(
            "SELECT id, name, city FROM clinics ORDER BY name"
        ).fetchall()
        return [Clinic(id=r[0], name=r[1], city=r[2] or "") for r in rows]

    def upsert_package_template(self, template: PackageTemplate) -> None:
        conn = self._db.connection
        conn.execute(
            """INSERT INTO package_templates
               (id, name, duration_weeks, medication_total_mg,
                endocrino_consultations, nutri_consultations, active)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   name = excluded.name,
                   duration_weeks = excluded.duration_weeks,
                   medication_total_mg = excluded.medication_total_mg,
                   endocrino_consultations = excluded.endocrino_consultations,
                   nutri_consultations = excluded.nutri_consultations,
                   active = excluded.active""",
            (
                template.id,
                template.name,
                template.duration_weeks,
                template.medication_total_mg,
                template.endocrino_consultations,
                template.nutri_consultations,
                int(template.active),
            ),
        )
        conn.commit()

    def get_package_template(self, template_id: str) -> PackageTemplate | None:
        row = self._db.connection.execute(
            "SELECT * FROM package_templates WHERE id = ?", (template_id,)
        ).fetchone()
        return self._row_to_template(row) if row else None

    def list_package_templates(self, *, active_only: bool = True) -> list[PackageTemplate]:
        query = "SELECT * FROM package_templates"
        if active_only:
            query += " WHERE active = 1"
        rows = self._db.connection.execute(query + " ORDER BY name").fetchall()
        return [self._row_to_template(r) for r in rows]

    @staticmethod
    def _row_to_template(row: sqlite3.Row) -> PackageTemplate:
        return PackageTemplate(
            id=row["id"],
            name=row["name"],
            duration_weeks=row["duration_weeks"],
            medication_total_mg=row["medication_total_mg"],
            endocrino_consultations=row["endocrino_consultations"],
            nutri_consultations=row["nutri_consultations"],
            active=bool(row["active"]),
        )

    # ------------------------------------------------------------------
    # Patients
    # ------------------------------------------------------------------

    def create_patient(
        self,
        full_name: str,
        clinic_id: str,
        package_template_id: str,
        start_date: date,
        *,
        notes: str | None = None,
    ) -> PatientRecord:
        """Insert a patient with status ACTIVE and return it."""
        pid = self._new_id()
        self._insert("patients", {
            "id": pid,
            "full_name": full_name,
            "clinic_id": clinic_id,
            "package_template_id": package_template_id,
            "start_date": start_date.isoformat(),
            "status": "ACTIVE",
            "notes_enc": self._enc.encrypt(notes),
            "created_at": self._now_iso(),
        })
        logger.info("Created patient %s (clinic=%s)", pid, clinic_id)
        patient = self.get_patient(pid)
        if patient is None:
            raise RepositoryError(f"Patient {pid} vanished after insert")
        return patient

    def update_patient(
        self,
        patient_id: str,
        *,
        full_name: str,
        clinic_id: str,
        start_date: date,
        notes: str | None = None,
    ) -> bool:
        """Update a patient's registration fields. Returns False if not found."""
        try:
            cursor = self._db.connection.execute(
                """UPDATE patients
                   SET full_name = ?, clinic_id = ?, start_date = ?, notes_enc = ?
                   WHERE id = ?""",
                (full_name, clinic_id, start_date.isoformat(),
                 self._enc.encrypt(notes), patient_id),
            )
            self._db.connection.commit()
        except sqlite3.IntegrityError as exc:
            self._db.connection.rollback()
            raise RepositoryError(f"Cannot update patient {patient_id}: {exc}") from exc
        return cursor.rowcount > 0

    def update_patient_status(self, patient_id: str, status: str) -> bool:
        cursor = self._db.connection.execute(
            "UPDATE patients SET status = ? WHERE id = ?", (status, patient_id)
        )
        self._db.connection.commit()
        if cursor.rowcount:
            logger.info("Patient %s status set to %s", patient_id, status)
        return cursor.rowcount > 0

    def get_patient(self, patient_id: str) -> PatientRecord | None:
        row = self._db.connection.execute(
            _PATIENT_SELECT + " WHERE p.id = ?", (patient_id,)
        ).fetchone()
        return self._row_to_patient(row) if row else None

    def list_patients(
        self,
        *,
        clinic_id: str | None = None,
        status: str | None = None,
        search: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        sort_by: str | None = None,
        sort_order: str = "asc",
    ) -> list[PatientRecord]:
        """Query patients with optional filters.

        Args:
            clinic_id: Restrict to one clinic.
            status: Restrict to one enrollment status.
            search: Case-insensitive substring of the patient name.
            date_from: Start date lower bound (inclusive).
            date_to: Start date upper bound (inclusive).
            sort_by: 'full_name', 'clinic' or 'status'. Other values fall
                back to the default order (newest patient first).
            sort_order: 'asc' or 'desc'.
        """
        conditions: list[str] = []
        params: list[Any] = []

        if clinic_id:
            conditions.append("p.clinic_id = ?")
            params.append(clinic_id)
        if status:
            conditions.append("p.status = ?")
            params.append(status)
        if search:
            escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            conditions.append("p.full_name LIKE ? ESCAPE '\\'")
            params.append(f"%{escaped}%")
        if date_from:
            conditions.append("p.start_date >= ?")
            params.append(date_from.isoformat())
        if date_to:
            conditions.append("p.start_date <= ?")
            params.append(date_to.isoformat())

        query = _PATIENT_SELECT
        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        if sort_by in _ORDER_BY:
            direction = "DESC" if sort_order == "desc" else "ASC"
            query += f" ORDER BY {_ORDER_BY[sort_by]} {direction}, p.rowid"
        else:
            query += " ORDER BY p.created_at DESC, p.rowid DESC"

        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_patient(r) for r in rows]

    def _row_to_patient(self, row: sqlite3.Row) -> PatientRecord:
        return PatientRecord(
            id=row["id"],
            full_name=row["full_name"],
            clinic_id=row["clinic_id"],
            package_template_id=row["package_template_id"],
            start_date=row["start_date"],
            status=row["status"],
            notes=self._enc.decrypt(row["notes_enc"]),
            clinic_name=row["clinic_name"],
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Patient records
    # ------------------------------------------------------------------

    def add_application(
        self,
        patient_id: str,
        application_date: date,
        dose_mg: float,
        *,
        notes: str | None = None,
        administered_by: str = "",
    ) -> str:
        aid = self._new_id()
        self._insert("applications", {
            "id": aid,
            "patient_id": patient_id,
            "application_date": application_date.isoformat(),
            "dose_mg": dose_mg,
            "notes_enc": self._enc.encrypt(notes),
            "administered_by": administered_by or None,
            "created_at": self._now_iso(),
        })
        logger.info("Saved application %s for patient %s (%.1fmg)", aid, patient_id, dose_mg)
        return aid

    def add_indication(
        self,
        patient_id: str,
        start_date: date,
        dose_mg_per_application: float,
        frequency_days: int,
        *,
        duration_weeks: int | None = None,
        notes: str | None = None,
    ) -> str:
        iid = self._new_id()
        self._insert("indications", {
            "id": iid,
            "patient_id": patient_id,
            "start_date": start_date.isoformat(),
            "dose_mg_per_application": dose_mg_per_application,
            "frequency_days": frequency_days,
            "duration_weeks": duration_weeks,
            "notes_enc": self._enc.encrypt(notes),
            "created_at": self._now_iso(),
        })
        logger.info("Saved indication %s for patient %s", iid, patient_id)
        return iid

    def add_consultation(
        self,
        patient_id: str,
        consultation_type: str,
        consultation_date: date,
        professional: str,
        *,
        counts_in_package: bool = True,
        notes: str | None = None,
    ) -> str:
        cid = self._new_id()
        self._insert("consultations", {
            "id": cid,
            "patient_id": patient_id,
            "type": consultation_type,
            "consultation_date": consultation_date.isoformat(),
            "professional": professional,
            "counts_in_package": int(counts_in_package),
            "notes_enc": self._enc.encrypt(notes),
            "created_at": self._now_iso(),
        })
        logger.info("Saved %s consultation %s for patient %s", consultation_type, cid, patient_id)
        return cid

    def add_measurement(
        self,
        patient_id: str,
        measurement_date: date,
        weight_kg: float,
        *,
        fat_percentage: float | None = None,
        lean_mass_kg: float | None = None,
        notes: str | None = None,
    ) -> str:
        mid = self._new_id()
        self._insert("measurements", {
            "id": mid,
            "patient_id": patient_id,
            "measurement_date": measurement_date.isoformat(),
            "weight_kg": weight_kg,
            "fat_percentage": fat_percentage,
            "lean_mass_kg": lean_mass_kg,
            "notes_enc": self._enc.encrypt(notes),
            "created_at": self._now_iso(),
        })
        logger.info("Saved measurement %s for patient %s", mid, patient_id)
        return mid

    def add_stock_adjustment(self, patient_id: str, adjustment_mg: float, reason: str) -> str:
        sid = self._new_id()
        self._insert("stock_adjustments", {
            "id": sid,
            "patient_id": patient_id,
            "adjustment_mg": adjustment_mg,
            "reason_enc": self._enc.encrypt(reason),
            "created_at": self._now_iso(),
        })
        logger.info("Saved stock adjustment %s for patient %s (%+.1fmg)", sid, patient_id, adjustment_mg)
        return sid

    # ------------------------------------------------------------------
    # Full history (snapshot source)
    # ------------------------------------------------------------------

    def get_patient_history(self, patient_id: str) -> PatientHistory | None:
        """Load a patient with all related records, newest first.

        Returns:
            The history, or None if the patient does not exist.
        """
        patient = self.get_patient(patient_id)
        if patient is None:
            return None
        return self._load_history(patient)

    def get_patient_histories(self, patients: list[PatientRecord]) -> list[PatientHistory]:
        return [self._load_history(p) for p in patients]

    def _load_history(self, patient: PatientRecord) -> PatientHistory:
        conn = self._db.connection
        package = self.get_package_template(patient.package_template_id)
        if package is None:
            raise RepositoryError(
                f"Patient {patient.id} references missing package {patient.package_template_id!r}"
            )

        applications = [
            ApplicationEntry(
                id=r["id"],
                patient_id=r["patient_id"],
                application_date=r["application_date"],
                dose_mg=r["dose_mg"],
                notes=self._enc.decrypt(r["notes_enc"]),
                administered_by=r["administered_by"] or "",
                created_at=r["created_at"],
            )
            for r in conn.execute(
                "SELECT * FROM applications WHERE patient_id = ? "
                "ORDER BY application_date DESC, created_at DESC",
                (patient.id,),
            )
        ]
        indications = [
            IndicationEntry(
                id=r["id"],
                patient_id=r["patient_id"],
                start_date=r["start_date"],
                dose_mg_per_application=r["dose_mg_per_application"],
                frequency_days=r["frequency_days"],
                duration_weeks=r["duration_weeks"],
                notes=self._enc.decrypt(r["notes_enc"]),
                created_at=r["created_at"],
            )
            for r in conn.execute(
                "SELECT * FROM indications WHERE patient_id = ? "
                "ORDER BY start_date DESC, created_at DESC",
                (patient.id,),
            )
        ]
        consultations = [
            ConsultationEntry(
                id=r["id"],
                patient_id=r["patient_id"],
                type=r["type"],
                consultation_date=r["consultation_date"],
                professional=r["professional"],
                counts_in_package=bool(r["counts_in_package"]),
                notes=self._enc.decrypt(r["notes_enc"]),
                created_at=r["created_at"],
            )
            for r in conn.execute(
                "SELECT * FROM consultations WHERE patient_id = ? "
                "ORDER BY consultation_date DESC",
                (patient.id,),
            )
        ]
        measurements = [
            MeasurementEntry(
                id=r["id"],
                patient_id=r["patient_id"],
                measurement_date=r["measurement_date"],
                weight_kg=r["weight_kg"],
                fat_percentage=r["fat_percentage"],
                lean_mass_kg=r["lean_mass_kg"],
                notes=self._enc.decrypt(r["notes_enc"]),
                created_at=r["created_at"],
            )
            for r in conn.execute(
                "SELECT * FROM measurements WHERE patient_id = ? "
                "ORDER BY measurement_date DESC",
                (patient.id,),
            )
        ]
        adjustments = [
            StockAdjustmentEntry(
                id=r["id"],
                patient_id=r["patient_id"],
                adjustment_mg=r["adjustment_mg"],
                reason=self._enc.decrypt(r["reason_enc"]) or "",
                created_at=r["created_at"],
            )
            for r in conn.execute(
                "SELECT * FROM stock_adjustments WHERE patient_id = ? "
                "ORDER BY created_at DESC",
                (patient.id,),
            )
        ]

        return PatientHistory(
            patient=patient,
            package=package,
            applications=applications,
            indications=indications,
            consultations=consultations,
            measurements=measurements,
            stock_adjustments=adjustments,
        )

    def count_patients(self) -> int:
        row = self._db.connection.execute("SELECT COUNT(*) FROM patients").fetchone()
        return row[0]
