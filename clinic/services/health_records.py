from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from ..core.errors import ValidationError
from ..core.security import HEALTH_RECORD_PREFIX, Role, generate_entity_id
from ..models.doctor import Doctor
from ..models.health_record import HealthRecord
from ..models.patient import Patient
from .access_guard import AccessGuard, Operation, SessionContext, Target
from .record_store import RecordStore
from .scheduler import normalize_instant

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("date", "symptoms", "diagnosis", "treatment", "prescription")


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required", details={"field": field})
    return value.strip()


class HealthRecordService:
    """Clinical notes: doctors append, admins may correct or remove."""

    def __init__(self, db: Session):
        self.db = db
        self.guard = AccessGuard()
        self.records = RecordStore(db, HealthRecord, "Health record")
        self.patients = RecordStore(db, Patient, "Patient")
        self.doctors = RecordStore(db, Doctor, "Doctor")

    def add_health_record(
        self,
        ctx: SessionContext,
        patient_id: str,
        symptoms: str,
        diagnosis: str,
        treatment: Optional[str] = None,
        prescription: Optional[str] = None,
        date: Optional[datetime] = None,
        doctor_id: Optional[str] = None,
    ) -> HealthRecord:
        if doctor_id is None and ctx is not None:
            doctor_id = ctx.entity_id
        self.guard.enforce(ctx, Operation.ADD_HEALTH_RECORD, Target(patient_id=patient_id, doctor_id=doctor_id))

        record = HealthRecord(
            id=generate_entity_id(HEALTH_RECORD_PREFIX),
            patient_id=_require_text(patient_id, "patient_id"),
            doctor_id=doctor_id,
            date=normalize_instant(date) if date else datetime.utcnow(),
            symptoms=_require_text(symptoms, "symptoms"),
            diagnosis=_require_text(diagnosis, "diagnosis"),
            treatment=treatment,
            prescription=prescription,
        )

        self.patients.require(record.patient_id)
        self.doctors.require(doctor_id)

        self.records.put(record)
        self.db.commit()
        self.db.refresh(record)

        logger.info(f"Doctor {doctor_id} added health record {record.id} for patient {record.patient_id}")
        return record

    def list_health_records(
        self,
        ctx: SessionContext,
        patient_id: Optional[str] = None,
        doctor_id: Optional[str] = None,
    ) -> List[HealthRecord]:
        """Records in date order. Doctors see the records they wrote."""
        if ctx is not None:
            if ctx.role == Role.PATIENT and patient_id is None:
                patient_id = ctx.entity_id
            elif ctx.role == Role.DOCTOR and doctor_id is None:
                doctor_id = ctx.entity_id
        self.guard.enforce(ctx, Operation.READ_HEALTH_RECORDS, Target(patient_id=patient_id, doctor_id=doctor_id))

        return self.records.list_by(
            order_by=HealthRecord.date,
            patient_id=patient_id,
            doctor_id=doctor_id,
        )

    def get_health_record(self, ctx: SessionContext, record_id: str) -> HealthRecord:
        if ctx is None:
            self.guard.enforce(ctx, Operation.READ_HEALTH_RECORDS)
        record = self.records.require(record_id)
        self.guard.enforce(
            ctx, Operation.READ_HEALTH_RECORDS, Target(patient_id=record.patient_id, doctor_id=record.doctor_id)
        )
        return record

    def update_health_record(self, ctx: SessionContext, record_id: str, changes: Dict[str, Any]) -> HealthRecord:
        """Administrative correction of a record's clinical fields."""
        self.guard.enforce(ctx, Operation.ADMIN_OVERRIDE)
        record = self.records.require(record_id)

        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be changed: {', '.join(sorted(unknown))}")

        for field, value in changes.items():
            if field in ("symptoms", "diagnosis"):
                value = _require_text(value, field)
            elif field == "date":
                if value is None:
                    raise ValidationError("date is required", details={"field": "date"})
                value = normalize_instant(value)
            setattr(record, field, value)

        self.db.commit()
        self.db.refresh(record)
        logger.info(f"Health record {record_id} updated by admin {ctx.account_id}")
        return record

    def delete_health_record(self, ctx: SessionContext, record_id: str) -> None:
        self.guard.enforce(ctx, Operation.ADMIN_OVERRIDE)
        self.records.require(record_id)
        self.records.delete(record_id)
        self.db.commit()
        logger.info(f"Health record {record_id} deleted by admin {ctx.account_id}")
