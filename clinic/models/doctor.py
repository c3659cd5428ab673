from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base

class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(String(20), primary_key=True, index=True)

    # Professional information
    name = Column(String(200), nullable=False)
    specialty = Column(String(100), nullable=False, index=True)

    # Contact information
    contact = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)

    # Availability, e.g. "Mon-Fri 09:00-17:00"
    schedule = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    appointments = relationship("Appointment", back_populates="doctor")
    health_records = relationship("HealthRecord", back_populates="doctor")
    slots = relationship(
        "DoctorSlot",
        back_populates="doctor",
        cascade="all, delete-orphan",
        order_by="DoctorSlot.start_time"
    )

    def __repr__(self):
        return f"<Doctor(id='{self.id}', name='{self.name}', specialty='{self.specialty}')>"

class DoctorSlot(Base):
    """An instant a doctor has offered for booking."""
    __tablename__ = "doctor_slots"
    __table_args__ = (
        UniqueConstraint("doctor_id", "start_time", name="uq_doctor_slots_instant"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(String(20), ForeignKey("doctors.id"), nullable=False, index=True)

    # Naive UTC, same convention as appointments
    start_time = Column(DateTime, nullable=False)

    created_at = Column(DateTime, server_default=func.now())

    doctor = relationship("Doctor", back_populates="slots")

    def __repr__(self):
        return f"<DoctorSlot(doctor_id='{self.doctor_id}', start_time='{self.start_time}')>"
