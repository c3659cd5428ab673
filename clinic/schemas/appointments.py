from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..models.appointment import AppointmentStatus

class AppointmentCreate(BaseModel):
    doctor_id: str
    date_time: datetime
    reason: Optional[str] = None
    # Defaults to the caller's own patient profile
    patient_id: Optional[str] = None

class AppointmentReschedule(BaseModel):
    date_time: datetime

class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    doctor_id: str
    date_time: datetime
    reason: Optional[str] = None
    status: AppointmentStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
