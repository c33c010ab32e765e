# clinicflow/scheduler.py
import logging
from datetime import date
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from . import models as db_models
from . import slots
from .config import now
from .database import commit
from .errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger("clinicflow.scheduler")

Status = db_models.AppointmentStatus


def _slot_conflict(doctor_id: int, on_date: date, label: str, open_slots: List[str]) -> ConflictError:
    return ConflictError(
        f"Slot {label} on {on_date.isoformat()} is already booked",
        {"doctor_id": doctor_id, "date": on_date.isoformat(), "time": label, "available_slots": open_slots},
    )


async def book(
    session: AsyncSession,
    patient_id: str,
    doctor_id: int,
    on_date: date,
    slot: slots.SlotInput,
    notes: Optional[str] = None,
) -> db_models.Appointment:
    """
    Book one slot. The availability read only short-circuits the common case;
    the unique slot index decides races, and a violation comes back as a ConflictError
    listing the doctor's remaining open slots.
    """
    if not patient_id:
        raise ValidationError("patient_id is required")
    slot_time = slots.normalize_slot(slot)
    label = slots.slot_label(slot_time)

    doctor = await session.get(db_models.Doctor, doctor_id)
    if not doctor:
        raise NotFoundError(f"Doctor ID {doctor_id} not found", {"doctor_id": doctor_id})

    if not await slots.is_available(session, doctor_id, on_date, slot_time):
        open_slots = await slots.available_slots(session, doctor_id, on_date)
        logger.warning("Booking conflict: doctor=%s date=%s time=%s", doctor_id, on_date, label)
        raise _slot_conflict(doctor_id, on_date, label, open_slots)

    stamp = now()
    appt = db_models.Appointment(
        patient_id=patient_id, doctor_id=doctor_id, date=on_date, time=slot_time,
        status=Status.SCHEDULED.value, notes=notes, created_at=stamp, updated_at=stamp,
    )
    session.add(appt)
    try:
        await commit(session, "book")
    except IntegrityError:
        open_slots = await slots.available_slots(session, doctor_id, on_date)
        logger.warning("Booking lost race: doctor=%s date=%s time=%s", doctor_id, on_date, label)
        raise _slot_conflict(doctor_id, on_date, label, open_slots)

    logger.info("Booked appointment %s: patient=%s doctor=%s %s %s", appt.id, patient_id, doctor_id, on_date, label)
    return appt


async def _get(session: AsyncSession, appointment_id: int) -> db_models.Appointment:
    appt = await session.get(db_models.Appointment, appointment_id)
    if not appt:
        raise NotFoundError(f"Appointment {appointment_id} not found", {"appointment_id": appointment_id})
    return appt


async def cancel(session: AsyncSession, appointment_id: int, reason: Optional[str] = None) -> db_models.Appointment:
    appt = await _get(session, appointment_id)
    if appt.status == Status.CANCELLED.value:
        return appt
    if appt.status == Status.COMPLETED.value:
        raise ValidationError("A completed appointment cannot be cancelled", {"appointment_id": appointment_id})

    appt.status = Status.CANCELLED.value
    appt.cancellation_reason = reason
    appt.updated_at = now()
    await commit(session, "cancel")
    logger.info("Cancelled appointment %s", appointment_id)
    return appt


async def complete(session: AsyncSession, appointment_id: int) -> db_models.Appointment:
    appt = await _get(session, appointment_id)
    if appt.status == Status.COMPLETED.value:
        return appt
    if appt.status == Status.CANCELLED.value:
        raise ValidationError("A cancelled appointment cannot be completed", {"appointment_id": appointment_id})

    appt.status = Status.COMPLETED.value
    appt.updated_at = now()
    await commit(session, "complete")
    logger.info("Completed appointment %s", appointment_id)
    return appt


async def list_for_patient(session: AsyncSession, patient_id: str) -> List[db_models.Appointment]:
    res = await session.execute(
        select(db_models.Appointment)
        .where(db_models.Appointment.patient_id == patient_id)
        .order_by(db_models.Appointment.id.desc())
    )
    return list(res.scalars().all())


async def list_for_doctor(session: AsyncSession, doctor_id: int) -> List[db_models.Appointment]:
    res = await session.execute(
        select(db_models.Appointment)
        .where(db_models.Appointment.doctor_id == doctor_id)
        .order_by(db_models.Appointment.date, db_models.Appointment.time)
    )
    return list(res.scalars().all())
