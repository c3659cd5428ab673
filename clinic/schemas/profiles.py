from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

class PatientCreate(BaseModel):
    name: str
    age: int
    gender: str
    contact: str
    address: Optional[str] = None
    medical_history: Optional[str] = None

class PatientUpdate(BaseModel):
    name: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    contact: Optional[str] = None
    address: Optional[str] = None
    medical_history: Optional[str] = None

class PatientResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    age: int
    gender: str
    contact: str
    address: Optional[str] = None
    medical_history: Optional[str] = None
    created_at: Optional[datetime] = None

class DoctorCreate(BaseModel):
    name: str
    specialty: str
    contact: Optional[str] = None
    email: Optional[str] = None
    schedule: Optional[str] = None

class DoctorUpdate(BaseModel):
    name: Optional[str] = None
    specialty: Optional[str] = None
    contact: Optional[str] = None
    email: Optional[str] = None
    schedule: Optional[str] = None

class DoctorResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    specialty: str
    contact: Optional[str] = None
    email: Optional[str] = None
    schedule: Optional[str] = None

class SlotCreate(BaseModel):
    start_time: datetime

class SlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    doctor_id: str
    start_time: datetime
