from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_async_session
from . import aggregator
from . import lab
from . import schemas as api_schemas

router = APIRouter(prefix="/tests", tags=["Lab"])


@router.get("/queue", response_model=List[api_schemas.TestRequest])
async def get_lab_queue(session: AsyncSession = Depends(get_async_session)):
    return await aggregator.lab_queue(session)


@router.post("/{test_request_id}/transition", response_model=api_schemas.TestStatusHistory)
async def transition_test(
    test_request_id: int,
    payload: api_schemas.TransitionRequest,
    session: AsyncSession = Depends(get_async_session),
):
    return await lab.transition(session, test_request_id, payload.status, payload.changed_by, payload.reason)


@router.post("/{test_request_id}/results", status_code=201, response_model=api_schemas.TestResult)
async def record_test_result(
    test_request_id: int,
    payload: api_schemas.ResultEntry,
    session: AsyncSession = Depends(get_async_session),
):
    return await lab.record_result(session, test_request_id, payload)


@router.get("/{test_request_id}/history", response_model=List[api_schemas.TestStatusHistory])
async def get_test_history(test_request_id: int, session: AsyncSession = Depends(get_async_session)):
    return await lab.history(session, test_request_id)


@router.get("/{test_request_id}/results", response_model=List[api_schemas.TestResult])
async def get_test_results(test_request_id: int, session: AsyncSession = Depends(get_async_session)):
    return await lab.results(session, test_request_id)
