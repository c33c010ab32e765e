# clinicflow/utils.py
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from .models import Doctor

logger = logging.getLogger("clinicflow.utils")

DOCTORS = [
    ("Dr. Sarah Smith", "Cardiology"), ("Dr. James Wilson", "Cardiology"),
    ("Dr. Emily Chen", "General Medicine"), ("Dr. Lisa Kudrow", "Dermatology"),
    ("Dr. Shaun Murphy", "Pediatrics"), ("Dr. Stephen Strange", "Surgery"),
]


async def create_initial_data(session: AsyncSession) -> int:
    """Seed the doctor list on an empty database. Returns how many doctors were added."""
    result = await session.execute(select(Doctor))
    if result.scalars().first() is not None:
        logger.info("Database: Doctors exist. Skipping generation.")
        return 0

    session.add_all([Doctor(name=n, specialty=s) for n, s in DOCTORS])
    await session.commit()
    logger.info("Database: Seeded %d doctors.", len(DOCTORS))
    return len(DOCTORS)
