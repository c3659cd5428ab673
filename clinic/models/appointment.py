from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple
from sqlalchemy import Column, String, ForeignKey, DateTime, Text, Index, Enum as SQLEnum, text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class AppointmentAction(str, enum.Enum):
    CONFIRM = "confirm"
    COMPLETE = "complete"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"

# Statuses that hold the doctor's slot
ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED})

# action -> (legal source statuses, resulting status)
TRANSITIONS: Dict[AppointmentAction, Tuple[FrozenSet[AppointmentStatus], AppointmentStatus]] = {
    AppointmentAction.CONFIRM: (frozenset({AppointmentStatus.PENDING}), AppointmentStatus.CONFIRMED),
    AppointmentAction.COMPLETE: (ACTIVE_STATUSES, AppointmentStatus.COMPLETED),
    AppointmentAction.CANCEL: (ACTIVE_STATUSES, AppointmentStatus.CANCELLED),
    AppointmentAction.RESCHEDULE: (ACTIVE_STATUSES, AppointmentStatus.PENDING),
}

@dataclass(frozen=True)
class TransitionResult:
    """Outcome of applying an action to a status: a next status or a rejection."""
    status: Optional[AppointmentStatus] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

def transition(current: AppointmentStatus, action: AppointmentAction) -> TransitionResult:
    """Look up ``action`` applied to ``current`` in the transition table."""
    sources, target = TRANSITIONS[action]
    if current in sources:
        return TransitionResult(status=target)
    if current in TERMINAL_STATUSES:
        return TransitionResult(
            error=f"Cannot {action.value} an appointment that is already {current.value}"
        )
    return TransitionResult(
        error=f"Cannot {action.value} an appointment that is {current.value}"
    )

# Enum names are what SQLAlchemy persists
_active_slot_clause = text("status IN ('PENDING', 'CONFIRMED')")

class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        # One active appointment per doctor and instant
        Index(
            "uq_appointments_active_slot",
            "doctor_id",
            "date_time",
            unique=True,
            sqlite_where=_active_slot_clause,
            postgresql_where=_active_slot_clause,
        ),
    )

    id = Column(String(20), primary_key=True, index=True)

    # Relationships
    patient_id = Column(String(20), ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(String(20), ForeignKey("doctors.id"), nullable=False, index=True)

    # Appointment details
    date_time = Column(DateTime, nullable=False, index=True)
    status = Column(SQLEnum(AppointmentStatus), nullable=False, default=AppointmentStatus.PENDING, index=True)
    reason = Column(Text, nullable=True)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Doctor", back_populates="appointments")

    def __repr__(self):
        return f"<Appointment(id='{self.id}', patient_id='{self.patient_id}', doctor_id='{self.doctor_id}', date='{self.date_time}', status='{self.status}')>"
