"""Shared fixtures: a fresh in-memory database per test and an in-process HTTP client."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SEED_DOCTORS", "0")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from clinicflow import models
from clinicflow.database import get_async_session, init_db
from clinicflow.main import app
from clinicflow.schemas import Diagnosis


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def doctor(session):
    doc = models.Doctor(name="Dr. A", specialty="Cardiology")
    session.add(doc)
    await session.commit()
    return doc


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_diagnosis(doctor):
    """Factory for a fever/ECG diagnosis by `doctor`; keyword overrides replace fields."""
    def _make(**overrides):
        data = {
            "patient_id": "PID-10001",
            "doctor_id": doctor.id,
            "consultation_fee": 500,
            "disease_name": "fever",
            "selected_tests": ["ECG"],
        }
        data.update(overrides)
        return Diagnosis(**data)
    return _make
