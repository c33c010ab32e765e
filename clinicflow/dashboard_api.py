from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_async_session
from . import aggregator
from . import billing
from . import schemas as api_schemas

router = APIRouter()


# --- 1. PATIENT (appointments, bills, test buckets) ---
@router.get("/patient/{patient_id}", response_model=api_schemas.PatientRollup)
async def get_patient_dashboard(patient_id: str, db: AsyncSession = Depends(get_async_session)):
    return await aggregator.patient_rollup(db, patient_id)


# --- 2. DOCTOR ---
@router.get("/doctor/{doctor_id}", response_model=api_schemas.DoctorOverview)
async def get_doctor_dashboard(doctor_id: int, db: AsyncSession = Depends(get_async_session)):
    return await aggregator.doctor_overview(db, doctor_id)


# --- 3. BILLER ---
@router.get("/biller", response_model=api_schemas.BillerOverview)
async def get_biller_dashboard(db: AsyncSession = Depends(get_async_session)):
    return await aggregator.biller_overview(db)


# --- 4. LAB ---
@router.get("/lab", response_model=api_schemas.LabOverview)
async def get_lab_dashboard(db: AsyncSession = Depends(get_async_session)):
    return await aggregator.lab_overview(db)


@router.get("/bill-requests/{bill_request_id}/complete", response_model=api_schemas.CompletionResponse)
async def get_bill_request_completion(bill_request_id: int, db: AsyncSession = Depends(get_async_session)):
    await billing.get_bill_request(db, bill_request_id)
    complete = await aggregator.all_tests_complete(db, bill_request_id)
    return api_schemas.CompletionResponse(bill_request_id=bill_request_id, all_tests_complete=complete)
