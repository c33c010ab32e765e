from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_async_session
from . import billing
from . import finalization
from . import schemas as api_schemas

router = APIRouter(tags=["Billing"])


# =========================================================================
# 1. BILL REQUESTS (doctor)
# =========================================================================
@router.post("/bill-requests", response_model=api_schemas.BillRequestOutcome, status_code=201)
async def create_or_update_bill_request(
    diagnosis: api_schemas.Diagnosis,
    response: Response,
    session: AsyncSession = Depends(get_async_session),
):
    outcome = await billing.create_or_update(session, diagnosis)
    if not outcome.created:
        response.status_code = 200
    return api_schemas.BillRequestOutcome(
        bill_request=api_schemas.BillRequest.model_validate(outcome.bill_request),
        test_requests=[api_schemas.TestRequest.model_validate(t) for t in outcome.test_requests],
        created=outcome.created,
    )


@router.get("/bill-requests/{bill_request_id}/tests", response_model=List[api_schemas.TestRequest])
async def get_bill_request_tests(bill_request_id: int, session: AsyncSession = Depends(get_async_session)):
    await billing.get_bill_request(session, bill_request_id)
    return await billing.list_test_requests(session, bill_request_id)


@router.post("/bill-requests/{bill_request_id}/derive-tests", response_model=List[api_schemas.TestRequest])
async def derive_tests(bill_request_id: int, session: AsyncSession = Depends(get_async_session)):
    """Retry just the test derivation step for a bill request."""
    return await billing.derive_test_requests(session, bill_request_id)


@router.post("/bill-requests/backfill-tests", response_model=api_schemas.BackfillResponse)
async def backfill_tests(session: AsyncSession = Depends(get_async_session)):
    created = await billing.backfill_missing_test_requests(session)
    return api_schemas.BackfillResponse(created=created)


# =========================================================================
# 2. APPROVAL (biller)
# =========================================================================
@router.post("/bill-requests/{bill_request_id}/reject", response_model=api_schemas.BillRequest)
async def reject_bill_request(
    bill_request_id: int,
    payload: api_schemas.RejectRequest,
    session: AsyncSession = Depends(get_async_session),
):
    return await billing.reject(session, bill_request_id, reason=payload.reason)


@router.post("/bill-requests/{bill_request_id}/finalize", response_model=api_schemas.FinalizeOutcome)
async def finalize_bill_request(
    bill_request_id: int,
    payload: api_schemas.FinalizeRequest,
    response: Response,
    session: AsyncSession = Depends(get_async_session),
):
    outcome = await finalization.finalize(session, bill_request_id, payload.payment_method)
    response.status_code = 201 if outcome.created else 200
    return api_schemas.FinalizeOutcome(bill=api_schemas.Bill.model_validate(outcome.bill), created=outcome.created)


@router.patch("/bills/{bill_id}/status", response_model=api_schemas.Bill)
async def update_bill_status(
    bill_id: int,
    payload: api_schemas.BillStatusUpdate,
    session: AsyncSession = Depends(get_async_session),
):
    return await finalization.update_bill_status(session, bill_id, payload.status)
