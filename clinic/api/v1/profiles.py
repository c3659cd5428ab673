from fastapi import APIRouter, Depends, Response
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime

from ...core.database import get_db
from ...core.security import Role
from ...api.deps import get_clock, get_session_context
from ...services.access_guard import SessionContext
from ...services.availability import AvailabilityService
from ...services.linkage_service import EntityLinkageResolver
from ...services.profile_service import ProfileService
from ...services.reporting import ReportingService
from ...services.scheduler import Clock
from ...schemas.auth import ScopeResponse
from ...schemas.profiles import (
    DoctorCreate, DoctorResponse, DoctorUpdate,
    PatientCreate, PatientResponse, PatientUpdate,
    SlotCreate, SlotResponse
)

router = APIRouter(tags=["Profiles"])

# Linkage
@router.post("/profiles/patient", response_model=PatientResponse, status_code=201)
async def register_patient_profile(
    profile: PatientCreate,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """Create the caller's patient profile and link it to the account."""
    entity_id = EntityLinkageResolver(db).link_new_entity(
        ctx, Role.PATIENT, profile.model_dump(exclude_unset=True)
    )
    return PatientResponse.model_validate(ProfileService(db).patients.require(entity_id))

@router.post("/profiles/doctor", response_model=DoctorResponse, status_code=201)
async def register_doctor_profile(
    profile: DoctorCreate,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """Create the caller's doctor profile and link it to the account."""
    entity_id = EntityLinkageResolver(db).link_new_entity(
        ctx, Role.DOCTOR, profile.model_dump(exclude_unset=True)
    )
    return DoctorResponse.model_validate(ProfileService(db).doctors.require(entity_id))

@router.get("/profiles/me", response_model=ScopeResponse)
async def get_my_scope(
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """Role and linked profile id of the caller."""
    scope = EntityLinkageResolver(db).resolve_scope(ctx.account_id)
    return ScopeResponse(account_id=ctx.account_id, role=scope.role, entity_id=scope.entity_id)

# Patients
@router.get("/patients", response_model=List[PatientResponse])
async def list_patients(
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """List all patients (admin only)."""
    return [PatientResponse.model_validate(p) for p in ProfileService(db).list_patients(ctx)]

@router.get("/patients/{patient_id}", response_model=PatientResponse)
async def get_patient(
    patient_id: str,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    return PatientResponse.model_validate(ProfileService(db).get_patient(ctx, patient_id))

@router.patch("/patients/{patient_id}", response_model=PatientResponse)
async def update_patient(
    patient_id: str,
    changes: PatientUpdate,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    patient = ProfileService(db).update_patient(ctx, patient_id, changes.model_dump(exclude_unset=True))
    return PatientResponse.model_validate(patient)

@router.delete("/patients/{patient_id}", status_code=204)
async def delete_patient(
    patient_id: str,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """Delete a patient profile (admin only)."""
    ProfileService(db).delete_patient(ctx, patient_id)
    return Response(status_code=204)

@router.get("/patients/{patient_id}/history", response_class=PlainTextResponse)
async def export_patient_history(
    patient_id: str,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """Plain-text health history report."""
    report = ReportingService(db).export_patient_history(ctx, patient_id)
    return PlainTextResponse(
        report,
        headers={"Content-Disposition": f'attachment; filename="{patient_id}-history.txt"'}
    )

# Doctors
@router.get("/doctors", response_model=List[DoctorResponse])
async def list_doctors(
    specialty: Optional[str] = None,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """Doctor directory, optionally filtered by specialty."""
    return [DoctorResponse.model_validate(d) for d in ProfileService(db).list_doctors(ctx, specialty=specialty)]

@router.get("/doctors/{doctor_id}", response_model=DoctorResponse)
async def get_doctor(
    doctor_id: str,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    return DoctorResponse.model_validate(ProfileService(db).get_doctor(ctx, doctor_id))

@router.patch("/doctors/{doctor_id}", response_model=DoctorResponse)
async def update_doctor(
    doctor_id: str,
    changes: DoctorUpdate,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    doctor = ProfileService(db).update_doctor(ctx, doctor_id, changes.model_dump(exclude_unset=True))
    return DoctorResponse.model_validate(doctor)

@router.delete("/doctors/{doctor_id}", status_code=204)
async def delete_doctor(
    doctor_id: str,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """Delete a doctor profile (admin only)."""
    ProfileService(db).delete_doctor(ctx, doctor_id)
    return Response(status_code=204)

# Availability
@router.get("/doctors/{doctor_id}/slots", response_model=List[datetime])
async def list_open_slots(
    doctor_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    ctx: SessionContext = Depends(get_session_context)
):
    """Offered instants that are still free to book."""
    return AvailabilityService(db, clock=clock).open_slots(ctx, doctor_id)

@router.post("/doctors/{doctor_id}/slots", response_model=SlotResponse, status_code=201)
async def add_slot(
    doctor_id: str,
    slot: SlotCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    ctx: SessionContext = Depends(get_session_context)
):
    """Offer a slot (owning doctor or admin)."""
    created = AvailabilityService(db, clock=clock).add_slot(ctx, doctor_id, slot.start_time)
    return SlotResponse.model_validate(created)

@router.delete("/doctors/{doctor_id}/slots", status_code=204)
async def remove_slot(
    doctor_id: str,
    start_time: datetime,
    db: Session = Depends(get_db),
    ctx: SessionContext = Depends(get_session_context)
):
    """Withdraw a slot (owning doctor or admin)."""
    AvailabilityService(db).remove_slot(ctx, doctor_id, start_time)
    return Response(status_code=204)
