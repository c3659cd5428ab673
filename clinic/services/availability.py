"""
Doctor availability.

A doctor (or an admin) offers instants as slots. The open slots of a doctor
are the offered instants from now on that no active appointment occupies;
booking, cancelling and rescheduling therefore claim and release slots
without touching this table.
"""
from datetime import datetime
from typing import List, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import NotFound, ValidationError
from ..models.appointment import ACTIVE_STATUSES, Appointment
from ..models.doctor import Doctor, DoctorSlot
from .access_guard import AccessGuard, Operation, SessionContext, Target
from .record_store import RecordStore
from .scheduler import Clock, normalize_instant

logger = logging.getLogger(__name__)


class AvailabilityService:
    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or datetime.utcnow
        self.guard = AccessGuard()
        self.doctors = RecordStore(db, Doctor, "Doctor")

    def add_slot(self, ctx: SessionContext, doctor_id: str, start_time: datetime) -> DoctorSlot:
        """Offer ``start_time`` for booking. Offering the same instant twice is a no-op."""
        self.guard.enforce(ctx, Operation.MANAGE_SLOTS, Target(doctor_id=doctor_id))
        self.doctors.require(doctor_id)

        if start_time is None:
            raise ValidationError("Start time is required", details={"field": "start_time"})
        start_time = normalize_instant(start_time)
        if start_time < self.clock():
            raise ValidationError("Cannot offer a slot in the past", details={"field": "start_time"})

        existing = self._find(doctor_id, start_time)
        if existing is not None:
            return existing

        slot = DoctorSlot(doctor_id=doctor_id, start_time=start_time)
        try:
            self.db.add(slot)
            self.db.commit()
        except IntegrityError:
            # Offered concurrently by another session
            self.db.rollback()
            return self._find(doctor_id, start_time)

        self.db.refresh(slot)
        logger.info(f"Doctor {doctor_id} offered slot {start_time.isoformat()} (account {ctx.account_id})")
        return slot

    def remove_slot(self, ctx: SessionContext, doctor_id: str, start_time: datetime) -> None:
        self.guard.enforce(ctx, Operation.MANAGE_SLOTS, Target(doctor_id=doctor_id))
        self.doctors.require(doctor_id)

        start_time = normalize_instant(start_time)
        slot = self._find(doctor_id, start_time)
        if slot is None:
            raise NotFound(f"Doctor {doctor_id} has no slot at {start_time.isoformat()}")

        self.db.delete(slot)
        self.db.commit()
        logger.info(f"Doctor {doctor_id} withdrew slot {start_time.isoformat()} (account {ctx.account_id})")

    def open_slots(self, ctx: SessionContext, doctor_id: str) -> List[datetime]:
        """Offered instants from now on that no pending or confirmed appointment holds."""
        self.guard.enforce(ctx, Operation.READ_DOCTOR, Target(doctor_id=doctor_id))
        self.doctors.require(doctor_id)

        now = self.clock()
        offered = self.db.query(DoctorSlot.start_time).filter(
            DoctorSlot.doctor_id == doctor_id,
            DoctorSlot.start_time >= now,
        ).order_by(DoctorSlot.start_time).all()

        taken = {
            row.date_time
            for row in self.db.query(Appointment.date_time).filter(
                Appointment.doctor_id == doctor_id,
                Appointment.date_time >= now,
                Appointment.status.in_(list(ACTIVE_STATUSES)),
            )
        }
        return [row.start_time for row in offered if row.start_time not in taken]

    def _find(self, doctor_id: str, start_time: datetime) -> Optional[DoctorSlot]:
        return self.db.query(DoctorSlot).filter(
            DoctorSlot.doctor_id == doctor_id,
            DoctorSlot.start_time == start_time,
        ).first()
