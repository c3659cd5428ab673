from datetime import date
from fastapi import APIRouter, Depends, Response
from typing import List, Optional

from ...api.deps import get_scheduler, get_session_context
from ...models.appointment import AppointmentStatus
from ...services.access_guard import SessionContext
from ...services.scheduler import AppointmentScheduler
from ...schemas.appointments import (
    AppointmentCreate, AppointmentReschedule, AppointmentResponse
)

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.post("", response_model=AppointmentResponse, status_code=201)
async def book_appointment(
    booking: AppointmentCreate,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    ctx: SessionContext = Depends(get_session_context)
):
    """Book an appointment for the caller's patient profile."""
    appointment = scheduler.book(
        ctx,
        booking.patient_id,
        booking.doctor_id,
        booking.date_time,
        reason=booking.reason,
    )
    return AppointmentResponse.model_validate(appointment)

@router.get("", response_model=List[AppointmentResponse])
async def list_appointments(
    patient_id: Optional[str] = None,
    doctor_id: Optional[str] = None,
    status: Optional[AppointmentStatus] = None,
    on_date: Optional[date] = None,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    ctx: SessionContext = Depends(get_session_context)
):
    """Appointments visible to the caller."""
    appointments = scheduler.list_appointments(
        ctx, patient_id=patient_id, doctor_id=doctor_id, status=status, on_date=on_date
    )
    return [AppointmentResponse.model_validate(a) for a in appointments]

@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: str,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    ctx: SessionContext = Depends(get_session_context)
):
    return AppointmentResponse.model_validate(scheduler.get_appointment(ctx, appointment_id))

@router.post("/{appointment_id}/confirm", response_model=AppointmentResponse)
async def confirm_appointment(
    appointment_id: str,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    ctx: SessionContext = Depends(get_session_context)
):
    return AppointmentResponse.model_validate(scheduler.confirm(ctx, appointment_id))

@router.post("/{appointment_id}/complete", response_model=AppointmentResponse)
async def complete_appointment(
    appointment_id: str,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    ctx: SessionContext = Depends(get_session_context)
):
    return AppointmentResponse.model_validate(scheduler.complete(ctx, appointment_id))

@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: str,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    ctx: SessionContext = Depends(get_session_context)
):
    return AppointmentResponse.model_validate(scheduler.cancel(ctx, appointment_id))

@router.post("/{appointment_id}/reschedule", response_model=AppointmentResponse)
async def reschedule_appointment(
    appointment_id: str,
    change: AppointmentReschedule,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    ctx: SessionContext = Depends(get_session_context)
):
    """Move an appointment; it needs confirming again afterwards."""
    appointment = scheduler.reschedule(ctx, appointment_id, change.date_time)
    return AppointmentResponse.model_validate(appointment)

@router.delete("/{appointment_id}", status_code=204)
async def delete_appointment(
    appointment_id: str,
    scheduler: AppointmentScheduler = Depends(get_scheduler),
    ctx: SessionContext = Depends(get_session_context)
):
    """Hard delete (admin only)."""
    scheduler.delete_appointment(ctx, appointment_id)
    return Response(status_code=204)
