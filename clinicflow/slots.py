# clinicflow/slots.py
from datetime import date, datetime, time
from typing import List, Set, Union

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from . import models as db_models
from .config import APPOINTMENT_SLOTS, SLOT_LABEL_FORMAT
from .errors import ValidationError

SlotInput = Union[str, time]

_INPUT_FORMATS = ("%I:%M %p", "%I:%M%p", "%H:%M", "%H:%M:%S")


def slot_label(t: time) -> str:
    return t.strftime(SLOT_LABEL_FORMAT)


def normalize_slot(value: SlotInput) -> time:
    """
    Accepts "10:00 AM", "10:00", "14:00" or a `time` and returns the grid time.
    A bare "02:00" with no AM/PM means the afternoon slot when only that one is on the grid.
    Anything off the configured grid is rejected.
    """
    # `time` values and AM/PM labels are unambiguous; bare "HH:MM" strings are not.
    explicit = isinstance(value, time)
    if explicit:
        parsed = value.replace(second=0, microsecond=0, tzinfo=None)
    else:
        raw = str(value).strip().upper()
        parsed = None
        for fmt in _INPUT_FORMATS:
            try:
                parsed = datetime.strptime(raw, fmt).time()
                explicit = "%p" in fmt
                break
            except ValueError:
                continue
        if parsed is None:
            raise ValidationError(f"Invalid time format: {value!r}", {"time": str(value)})

    if not explicit and parsed.hour < 12 and parsed not in APPOINTMENT_SLOTS:
        afternoon = parsed.replace(hour=parsed.hour + 12)
        if afternoon in APPOINTMENT_SLOTS:
            parsed = afternoon

    if parsed not in APPOINTMENT_SLOTS:
        raise ValidationError(
            f"{slot_label(parsed)} is not an appointment slot",
            {"time": slot_label(parsed), "slots": [slot_label(s) for s in APPOINTMENT_SLOTS]},
        )
    return parsed


async def booked_times(session: AsyncSession, doctor_id: int, on_date: date) -> Set[time]:
    res = await session.execute(select(db_models.Appointment.time).where(
        db_models.Appointment.doctor_id == doctor_id,
        db_models.Appointment.date == on_date,
        db_models.Appointment.status != db_models.AppointmentStatus.CANCELLED.value,
    ))
    return set(res.scalars().all())


async def is_available(session: AsyncSession, doctor_id: int, on_date: date, slot: SlotInput) -> bool:
    """Point-in-time check. Booking still relies on the unique slot index."""
    return normalize_slot(slot) not in await booked_times(session, doctor_id, on_date)


async def available_slots(session: AsyncSession, doctor_id: int, on_date: date) -> List[str]:
    taken = await booked_times(session, doctor_id, on_date)
    return [slot_label(s) for s in APPOINTMENT_SLOTS if s not in taken]
