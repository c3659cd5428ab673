"""
Appointment booking and status lifecycle.

Booking is guarded twice: a read-side check for an active appointment at the
same doctor and instant, and the partial unique index on the appointments
table, which turns a lost insert race into ``SlotConflict``. Status changes
are compare-and-swap updates conditioned on the status and instant the
caller observed, so concurrent confirm/cancel/complete/reschedule calls
serialize to one winner.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, List, Optional
import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import InvalidTransition, SlotConflict, ValidationError
from ..core.security import APPOINTMENT_PREFIX, Role, generate_entity_id
from ..models.appointment import (
    ACTIVE_STATUSES, Appointment, AppointmentAction, AppointmentStatus, transition
)
from ..models.doctor import Doctor
from ..models.patient import Patient
from .access_guard import AccessGuard, Operation, SessionContext, Target
from .record_store import RecordStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

ACTION_OPERATIONS = {
    AppointmentAction.CONFIRM: Operation.CONFIRM_APPOINTMENT,
    AppointmentAction.COMPLETE: Operation.COMPLETE_APPOINTMENT,
    AppointmentAction.CANCEL: Operation.CANCEL_APPOINTMENT,
    AppointmentAction.RESCHEDULE: Operation.RESCHEDULE_APPOINTMENT,
}


def normalize_instant(value: datetime) -> datetime:
    """Store instants as naive UTC; aware values are converted first."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class AppointmentScheduler:
    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or datetime.utcnow
        self.guard = AccessGuard()
        self.appointments = RecordStore(db, Appointment, "Appointment")
        self.patients = RecordStore(db, Patient, "Patient")
        self.doctors = RecordStore(db, Doctor, "Doctor")

    def book(
        self,
        ctx: SessionContext,
        patient_id: Optional[str],
        doctor_id: str,
        date_time: datetime,
        reason: Optional[str] = None,
    ) -> Appointment:
        """Create a PENDING appointment for the caller's patient profile.

        ``patient_id`` defaults to the session's own profile; naming a
        different patient is rejected by the guard.
        """
        if patient_id is None and ctx is not None:
            patient_id = ctx.entity_id
        self.guard.enforce(ctx, Operation.BOOK_APPOINTMENT, Target(patient_id=patient_id, doctor_id=doctor_id))

        if not doctor_id or not doctor_id.strip():
            raise ValidationError("Doctor ID is required", details={"field": "doctor_id"})
        date_time = self._require_future(date_time)

        self.patients.require(patient_id)
        self.doctors.require(doctor_id)

        if self._active_at(doctor_id, date_time) is not None:
            logger.warning(f"Slot conflict for doctor {doctor_id} at {date_time.isoformat()}")
            raise SlotConflict(f"Doctor {doctor_id} already has an appointment at {date_time.isoformat()}")

        appointment = Appointment(
            id=generate_entity_id(APPOINTMENT_PREFIX),
            patient_id=patient_id,
            doctor_id=doctor_id,
            date_time=date_time,
            reason=reason,
            status=AppointmentStatus.PENDING,
        )

        try:
            self.appointments.put(appointment)
            self.db.commit()
        except IntegrityError:
            # Another booking claimed the slot between the check and the insert
            self.db.rollback()
            logger.warning(f"Slot conflict (concurrent) for doctor {doctor_id} at {date_time.isoformat()}")
            raise SlotConflict(f"Doctor {doctor_id} already has an appointment at {date_time.isoformat()}")

        self.db.refresh(appointment)
        logger.info(f"Booked appointment {appointment.id}: patient {patient_id} with doctor {doctor_id} at {date_time.isoformat()}")
        return appointment

    def confirm(self, ctx: SessionContext, appointment_id: str) -> Appointment:
        return self._apply(ctx, appointment_id, AppointmentAction.CONFIRM)

    def complete(self, ctx: SessionContext, appointment_id: str) -> Appointment:
        return self._apply(ctx, appointment_id, AppointmentAction.COMPLETE)

    def cancel(self, ctx: SessionContext, appointment_id: str) -> Appointment:
        return self._apply(ctx, appointment_id, AppointmentAction.CANCEL)

    def reschedule(self, ctx: SessionContext, appointment_id: str, new_date_time: datetime) -> Appointment:
        """Move an active appointment to a new instant; it returns to PENDING."""
        appointment = self._authorized(ctx, appointment_id, Operation.RESCHEDULE_APPOINTMENT)
        new_date_time = self._require_future(new_date_time)

        clash = self._active_at(appointment.doctor_id, new_date_time)
        if clash is not None and clash.id != appointment.id:
            raise SlotConflict(
                f"Doctor {appointment.doctor_id} already has an appointment at {new_date_time.isoformat()}"
            )
        return self._swap(ctx, appointment, AppointmentAction.RESCHEDULE, date_time=new_date_time)

    def get_appointment(self, ctx: SessionContext, appointment_id: str) -> Appointment:
        return self._authorized(ctx, appointment_id, Operation.READ_APPOINTMENT)

    def list_appointments(
        self,
        ctx: SessionContext,
        patient_id: Optional[str] = None,
        doctor_id: Optional[str] = None,
        status: Optional[AppointmentStatus] = None,
        on_date: Optional[date] = None,
    ) -> List[Appointment]:
        """Appointments visible to the caller, ordered by time.

        Patients and doctors are scoped to their own profile; filters naming
        someone else's profile are rejected rather than silently widened.
        """
        if ctx is not None and not ctx.is_admin:
            if ctx.role == Role.PATIENT and patient_id is None:
                patient_id = ctx.entity_id
            elif ctx.role == Role.DOCTOR and doctor_id is None:
                doctor_id = ctx.entity_id
        self.guard.enforce(ctx, Operation.LIST_APPOINTMENTS, Target(patient_id=patient_id, doctor_id=doctor_id))

        query = self.db.query(Appointment)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if status is not None:
            query = query.filter(Appointment.status == AppointmentStatus(status))
        if on_date is not None:
            start = datetime.combine(on_date, time.min)
            query = query.filter(
                Appointment.date_time >= start,
                Appointment.date_time < start + timedelta(days=1),
            )
        return query.order_by(Appointment.date_time, Appointment.id).all()

    def delete_appointment(self, ctx: SessionContext, appointment_id: str) -> None:
        """Administrative hard delete; bypasses the state machine."""
        self.guard.enforce(ctx, Operation.ADMIN_OVERRIDE)
        self.appointments.require(appointment_id)
        self.appointments.delete(appointment_id)
        self.db.commit()
        logger.info(f"Appointment {appointment_id} deleted by admin {ctx.account_id}")

    def _authorized(self, ctx: SessionContext, appointment_id: str, operation: Operation) -> Appointment:
        """Load an appointment and check the caller may perform ``operation`` on it."""
        if ctx is None:
            self.guard.enforce(ctx, operation)
        appointment = self.appointments.require(appointment_id)
        self.guard.enforce(
            ctx, operation, Target(patient_id=appointment.patient_id, doctor_id=appointment.doctor_id)
        )
        return appointment

    def _apply(self, ctx: SessionContext, appointment_id: str, action: AppointmentAction) -> Appointment:
        appointment = self._authorized(ctx, appointment_id, ACTION_OPERATIONS[action])
        return self._swap(ctx, appointment, action)

    def _swap(self, ctx: SessionContext, appointment: Appointment, action: AppointmentAction, **changes) -> Appointment:
        """Compare-and-swap the status from the observed value to the transition target."""
        observed = appointment.status
        outcome = transition(observed, action)
        if not outcome.ok:
            raise InvalidTransition(outcome.error)

        appointment_id = appointment.id
        observed_at = appointment.date_time
        try:
            result = self.db.execute(
                update(Appointment)
                .where(
                    Appointment.id == appointment_id,
                    Appointment.status == observed,
                    Appointment.date_time == observed_at,
                )
                .values(status=outcome.status, **changes)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Someone else moved the appointment after we read it
                self.db.rollback()
                raise InvalidTransition(
                    f"Appointment {appointment_id} changed since it was read "
                    f"({observed.value} at {observed_at.isoformat()})"
                )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise SlotConflict(
                f"Doctor {appointment.doctor_id} already has an appointment at {changes.get('date_time')}"
            )

        self.db.refresh(appointment)
        logger.info(
            f"Appointment {appointment_id} {observed.value} -> {appointment.status.value} "
            f"({action.value} by account {ctx.account_id})"
        )
        return appointment

    def _active_at(self, doctor_id: str, date_time: datetime) -> Optional[Appointment]:
        return self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.date_time == date_time,
            Appointment.status.in_(list(ACTIVE_STATUSES)),
        ).first()

    def _require_future(self, value: Optional[datetime]) -> datetime:
        if value is None:
            raise ValidationError("Date time is required", details={"field": "date_time"})
        value = normalize_instant(value)
        if value < self.clock():
            raise ValidationError("Cannot book an appointment in the past", details={"field": "date_time"})
        return value
