from typing import Dict
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.security import Role
from ..models.account import Account
from ..models.appointment import Appointment, AppointmentStatus
from ..models.doctor import Doctor
from ..models.health_record import HealthRecord
from ..models.patient import Patient
from .access_guard import AccessGuard, Operation, SessionContext, Target
from .record_store import RecordStore

logger = logging.getLogger(__name__)

RULE = "=" * 40
DATE_FORMAT = "%Y-%m-%d %H:%M"


class ReportingService:
    def __init__(self, db: Session):
        self.db = db
        self.guard = AccessGuard()
        self.patients = RecordStore(db, Patient, "Patient")
        self.doctors = RecordStore(db, Doctor, "Doctor")

    def stats(self, ctx: SessionContext) -> Dict[str, object]:
        """Totals for the admin dashboard."""
        self.guard.enforce(ctx, Operation.ADMIN_REPORT)

        by_status = {s.value: 0 for s in AppointmentStatus}
        for status, count in self.db.query(Appointment.status, func.count(Appointment.id)).group_by(Appointment.status):
            by_status[status.value] = count

        by_role = {r.value: 0 for r in Role}
        for role, count in self.db.query(Account.role, func.count(Account.id)).group_by(Account.role):
            by_role[role.value] = count

        return {
            "patients": self.patients.count(),
            "doctors": self.doctors.count(),
            "appointments": sum(by_status.values()),
            "health_records": RecordStore(self.db, HealthRecord).count(),
            "appointments_by_status": by_status,
            "accounts_by_role": by_role,
        }

    def export_patient_history(self, ctx: SessionContext, patient_id: str) -> str:
        """Plain-text history report: demographics followed by each visit in date order."""
        self.guard.enforce(ctx, Operation.EXPORT_HISTORY, Target(patient_id=patient_id))
        patient = self.patients.require(patient_id)
        records = RecordStore(self.db, HealthRecord).list_by(order_by=HealthRecord.date, patient_id=patient_id)

        lines = [
            RULE,
            "    PATIENT HEALTH HISTORY REPORT",
            RULE,
            "",
            "PATIENT INFORMATION:",
            "--------------------",
            f"Patient ID: {patient.id}",
            f"Name: {patient.name}",
            f"Age: {patient.age} years",
            f"Gender: {patient.gender}",
            f"Contact: {patient.contact}",
        ]
        if patient.address:
            lines.append(f"Address: {patient.address}")
        if patient.medical_history:
            lines.append(f"Background: {patient.medical_history}")

        lines += [
            "",
            "MEDICAL HISTORY:",
            "----------------",
            f"Total Visits: {len(records)}",
            "",
        ]

        if not records:
            lines.append("No medical records found.")

        for number, record in enumerate(records, start=1):
            doctor = self.doctors.get(record.doctor_id)
            lines += [
                f"VISIT #{number}",
                "--------",
                f"Record ID: {record.id}",
                f"Date: {record.date.strftime(DATE_FORMAT)}",
                f"Doctor: {doctor.name} (ID: {doctor.id})" if doctor else f"Doctor ID: {record.doctor_id}",
                f"Symptoms: {record.symptoms}",
                f"Diagnosis: {record.diagnosis}",
            ]
            if record.treatment:
                lines.append(f"Treatment: {record.treatment}")
            if record.prescription:
                lines.append(f"Prescription: {record.prescription}")
            lines.append("")

        lines += [RULE, "End of report", RULE]
        logger.info(f"Exported history for patient {patient_id} ({len(records)} visits)")
        return "\n".join(lines) + "\n"
