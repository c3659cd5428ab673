from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session
from typing import List, Optional

from ...core.database import get_db
from ...api.deps import get_session_context
from ...services.access_guard import SessionContext
from ...services.health_records import HealthRecordService
from ...schemas.health_records import (
    HealthRecordCreate, HealthRecordResponse, HealthRecordUpdate
)

router = APIRouter(prefix="/health-records", tags=["Health Records"])

@router.post("", response_model=HealthRecordResponse, status_code=201)
async def add_health_record(
    record: HealthRecordCreate,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """Record a diagnosis (doctors only)."""
    created = HealthRecordService(db).add_health_record(
        ctx,
        record.patient_id,
        record.symptoms,
        record.diagnosis,
        treatment=record.treatment,
        prescription=record.prescription,
        date=record.date,
        doctor_id=record.doctor_id,
    )
    return HealthRecordResponse.model_validate(created)

@router.get("", response_model=List[HealthRecordResponse])
async def list_health_records(
    patient_id: Optional[str] = None,
    doctor_id: Optional[str] = None,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    records = HealthRecordService(db).list_health_records(ctx, patient_id=patient_id, doctor_id=doctor_id)
    return [HealthRecordResponse.model_validate(r) for r in records]

@router.get("/{record_id}", response_model=HealthRecordResponse)
async def get_health_record(
    record_id: str,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    return HealthRecordResponse.model_validate(HealthRecordService(db).get_health_record(ctx, record_id))

@router.patch("/{record_id}", response_model=HealthRecordResponse)
async def update_health_record(
    record_id: str,
    changes: HealthRecordUpdate,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """Correct a record (admin only)."""
    record = HealthRecordService(db).update_health_record(ctx, record_id, changes.model_dump(exclude_unset=True))
    return HealthRecordResponse.model_validate(record)

@router.delete("/{record_id}", status_code=204)
async def delete_health_record(
    record_id: str,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """Remove a record (admin only)."""
    HealthRecordService(db).delete_health_record(ctx, record_id)
    return Response(status_code=204)
