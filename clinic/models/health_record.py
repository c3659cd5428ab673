from sqlalchemy import Column, String, ForeignKey, DateTime, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base

class HealthRecord(Base):
    __tablename__ = "health_records"

    id = Column(String(20), primary_key=True, index=True)

    patient_id = Column(String(20), ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id = Column(String(20), ForeignKey("doctors.id"), nullable=False, index=True)

    # Visit details
    date = Column(DateTime, nullable=False, index=True)
    symptoms = Column(Text, nullable=False)
    diagnosis = Column(Text, nullable=False)
    treatment = Column(Text, nullable=True)
    prescription = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    # Relationships
    patient = relationship("Patient", back_populates="health_records")
    doctor = relationship("Doctor", back_populates="health_records")

    def __repr__(self):
        return f"<HealthRecord(id='{self.id}', patient_id='{self.patient_id}', doctor_id='{self.doctor_id}')>"
