from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from ..core.errors import ValidationError
from ..core.security import Role
from ..models.appointment import Appointment
from ..models.doctor import Doctor
from ..models.health_record import HealthRecord
from ..models.patient import Patient
from .access_guard import AccessGuard, Operation, SessionContext, Target
from .linkage_service import clean_doctor_profile, clean_patient_profile
from .record_store import RecordStore

logger = logging.getLogger(__name__)


class ProfileService:
    """Reads and administrative edits of patient and doctor profiles."""

    def __init__(self, db: Session):
        self.db = db
        self.guard = AccessGuard()
        self.patients = RecordStore(db, Patient, "Patient")
        self.doctors = RecordStore(db, Doctor, "Doctor")
        self.appointments = RecordStore(db, Appointment, "Appointment")
        self.records = RecordStore(db, HealthRecord, "Health record")

    # Patients

    def get_patient(self, ctx: SessionContext, patient_id: str) -> Patient:
        """A patient reads itself; a doctor reads patients it has appointments with."""
        target = Target(patient_id=patient_id)
        if ctx is not None and ctx.role == Role.DOCTOR and ctx.entity_id:
            if self.appointments.count(patient_id=patient_id, doctor_id=ctx.entity_id):
                target = Target(patient_id=patient_id, doctor_id=ctx.entity_id)
        self.guard.enforce(ctx, Operation.READ_PATIENT, target)
        return self.patients.require(patient_id)

    def list_patients(self, ctx: SessionContext) -> List[Patient]:
        self.guard.enforce(ctx, Operation.ADMIN_REPORT)
        return self.patients.list_all(order_by=Patient.name)

    def update_patient(self, ctx: SessionContext, patient_id: str, changes: Dict[str, Any]) -> Patient:
        self.guard.enforce(ctx, Operation.UPDATE_PATIENT, Target(patient_id=patient_id))
        patient = self.patients.require(patient_id)
        for field, value in clean_patient_profile(changes, partial=True).items():
            setattr(patient, field, value)
        self.db.commit()
        self.db.refresh(patient)
        logger.info(f"Patient {patient_id} updated by account {ctx.account_id}")
        return patient

    def delete_patient(self, ctx: SessionContext, patient_id: str) -> None:
        self.guard.enforce(ctx, Operation.ADMIN_OVERRIDE)
        self.patients.require(patient_id)
        self._ensure_unreferenced("patient", patient_id, patient_id=patient_id)
        self.patients.delete(patient_id)
        self.db.commit()
        logger.info(f"Patient {patient_id} deleted by admin {ctx.account_id}")

    # Doctors

    def list_doctors(self, ctx: SessionContext, specialty: Optional[str] = None) -> List[Doctor]:
        self.guard.enforce(ctx, Operation.LIST_DOCTORS)
        return self.doctors.list_by(order_by=Doctor.name, specialty=specialty)

    def get_doctor(self, ctx: SessionContext, doctor_id: str) -> Doctor:
        self.guard.enforce(ctx, Operation.READ_DOCTOR, Target(doctor_id=doctor_id))
        return self.doctors.require(doctor_id)

    def update_doctor(self, ctx: SessionContext, doctor_id: str, changes: Dict[str, Any]) -> Doctor:
        self.guard.enforce(ctx, Operation.UPDATE_DOCTOR, Target(doctor_id=doctor_id))
        doctor = self.doctors.require(doctor_id)
        for field, value in clean_doctor_profile(changes, partial=True).items():
            setattr(doctor, field, value)
        self.db.commit()
        self.db.refresh(doctor)
        logger.info(f"Doctor {doctor_id} updated by account {ctx.account_id}")
        return doctor

    def delete_doctor(self, ctx: SessionContext, doctor_id: str) -> None:
        self.guard.enforce(ctx, Operation.ADMIN_OVERRIDE)
        self.doctors.require(doctor_id)
        self._ensure_unreferenced("doctor", doctor_id, doctor_id=doctor_id)
        self.doctors.delete(doctor_id)
        self.db.commit()
        logger.info(f"Doctor {doctor_id} deleted by admin {ctx.account_id}")

    def _ensure_unreferenced(self, label: str, entity_id: str, **filters):
        if self.appointments.count(**filters) or self.records.count(**filters):
            raise ValidationError(
                f"Cannot delete {label} {entity_id} while appointments or health records reference it"
            )
