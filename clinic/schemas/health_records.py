from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

class HealthRecordCreate(BaseModel):
    patient_id: str
    symptoms: str
    diagnosis: str
    treatment: Optional[str] = None
    prescription: Optional[str] = None
    date: Optional[datetime] = None
    # Defaults to the caller's own doctor profile
    doctor_id: Optional[str] = None

class HealthRecordUpdate(BaseModel):
    date: Optional[datetime] = None
    symptoms: Optional[str] = None
    diagnosis: Optional[str] = None
    treatment: Optional[str] = None
    prescription: Optional[str] = None

class HealthRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    doctor_id: str
    date: datetime
    symptoms: str
    diagnosis: str
    treatment: Optional[str] = None
    prescription: Optional[str] = None
