from datetime import datetime
from typing import List
from urllib.parse import unquote

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from .database import get_async_session
from . import models as db_models
from . import schemas as api_schemas
from . import scheduler
from . import slots

router = APIRouter(prefix="/appointments", tags=["Appointments"])


# =========================================================================
# 1. DOCTORS
# =========================================================================
@router.get("/doctors", response_model=List[api_schemas.Doctor])
async def get_all_doctors(session: AsyncSession = Depends(get_async_session)):
    result = await session.execute(select(db_models.Doctor).order_by(db_models.Doctor.id))
    return result.scalars().all()


@router.get("/doctors/{specialty}", response_model=List[api_schemas.Doctor])
async def get_doctors_by_specialty(specialty: str, session: AsyncSession = Depends(get_async_session)):
    clean_spec = unquote(specialty)
    result = await session.execute(select(db_models.Doctor).where(db_models.Doctor.specialty.ilike(f"%{clean_spec}%")))
    return result.scalars().all()


# =========================================================================
# 2. AVAILABILITY
# =========================================================================
@router.get("/availability/{doctor_id}/{date_str}", response_model=api_schemas.AvailabilityCheckResponse)
async def get_doctor_availability(doctor_id: int, date_str: str, session: AsyncSession = Depends(get_async_session)):
    try:
        request_date = datetime.strptime(date_str, "%Y-%m-%d").date()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date format")

    doctor = await session.get(db_models.Doctor, doctor_id)
    if not doctor:
        raise HTTPException(status_code=404, detail="Doctor not found")

    open_slots = await slots.available_slots(session, doctor_id, request_date)
    return api_schemas.AvailabilityCheckResponse(
        doctor=api_schemas.Doctor.model_validate(doctor), date=request_date, available_slots=open_slots,
    )


# =========================================================================
# 3. BOOKING & STATUS
# =========================================================================
@router.post("/book", status_code=201, response_model=api_schemas.Appointment)
async def book_appointment(payload: api_schemas.AppointmentCreate, session: AsyncSession = Depends(get_async_session)):
    return await scheduler.book(
        session, payload.patient_id, payload.doctor_id, payload.date, payload.time, notes=payload.notes
    )


@router.post("/{appt_id}/cancel", response_model=api_schemas.Appointment)
async def cancel_appointment(appt_id: int, payload: api_schemas.AppointmentCancel, session: AsyncSession = Depends(get_async_session)):
    return await scheduler.cancel(session, appt_id, reason=payload.reason)


@router.post("/{appt_id}/complete", response_model=api_schemas.Appointment)
async def complete_appointment(appt_id: int, session: AsyncSession = Depends(get_async_session)):
    return await scheduler.complete(session, appt_id)


@router.get("/patient/{patient_id}", response_model=List[api_schemas.Appointment])
async def get_patient_appointments(patient_id: str, session: AsyncSession = Depends(get_async_session)):
    return await scheduler.list_for_patient(session, patient_id)
