# clinicflow/config.py
import os
import logging
from datetime import datetime, time
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("clinicflow.config")

DATABASE_URL = os.getenv("DATABASE_URL")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

TZ_NAME = os.getenv("TZ", "UTC")
try:
    SERVER_TIMEZONE = ZoneInfo(TZ_NAME)
except (ZoneInfoNotFoundError, ValueError):
    logger.warning("Invalid TZ name '%s'. Defaulting to UTC.", TZ_NAME)
    SERVER_TIMEZONE = ZoneInfo("UTC")

# --- Appointment grid ---
# Fixed daily slots shared by every doctor. Labels use the same 12h format the dashboards print.
SLOT_LABEL_FORMAT = "%I:%M %p"
DEFAULT_SLOTS = "09:00 AM,10:00 AM,11:00 AM,02:00 PM,03:00 PM,04:00 PM"


def _parse_slots(raw: str) -> List[time]:
    slots = []
    for label in raw.split(","):
        label = label.strip()
        if not label:
            continue
        slots.append(datetime.strptime(label, SLOT_LABEL_FORMAT).time())
    return slots


APPOINTMENT_SLOTS = _parse_slots(os.getenv("APPOINTMENT_SLOTS", DEFAULT_SLOTS))

# --- Lab defaults for derived test requests ---
DEFAULT_TEST_DURATION = int(os.getenv("DEFAULT_TEST_DURATION", "30"))
TEST_PRIORITIES = ("low", "normal", "high", "urgent")  # values of models.TestPriority


def env_choice(name: str, default: str, allowed) -> str:
    """Read an enumerated setting; an unknown value fails at import like a missing DATABASE_URL."""
    value = os.getenv(name, default).strip().lower()
    if value not in allowed:
        raise ValueError(f"{name} must be one of {', '.join(allowed)}; got '{value}'")
    return value


DEFAULT_TEST_PRIORITY = env_choice("DEFAULT_TEST_PRIORITY", "normal", TEST_PRIORITIES)

SEED_DOCTORS = os.getenv("SEED_DOCTORS", "1").strip() == "1"


def now() -> datetime:
    """Current time in the server timezone."""
    return datetime.now(SERVER_TIMEZONE)


if not DATABASE_URL:
    raise ValueError("No DATABASE_URL set in .env")

if not APPOINTMENT_SLOTS:
    raise ValueError("APPOINTMENT_SLOTS is empty")
