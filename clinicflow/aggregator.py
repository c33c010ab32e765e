# clinicflow/aggregator.py
"""Read-only status views shared by the patient, doctor, biller and lab dashboards."""
from collections import defaultdict
from typing import Dict, Iterable, List

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from . import models as db_models
from . import schemas as api_schemas

TS = db_models.TestStatus
BRStatus = db_models.BillRequestStatus


def is_all_complete(statuses: Iterable[str]) -> bool:
    """True iff there is at least one test and every one is `completed`."""
    statuses = list(statuses)
    return bool(statuses) and all(s == TS.COMPLETED.value for s in statuses)


async def all_tests_complete(session: AsyncSession, bill_request_id: int) -> bool:
    res = await session.execute(
        select(db_models.TestRequest.status).where(db_models.TestRequest.bill_request_id == bill_request_id)
    )
    return is_all_complete(res.scalars().all())


def count_test_statuses(test_requests: Iterable[db_models.TestRequest]) -> api_schemas.TestCounts:
    counts = api_schemas.TestCounts()
    for tr in test_requests:
        if tr.status == TS.PENDING.value:
            counts.pending += 1
        elif tr.status == TS.IN_PROGRESS.value:
            counts.in_progress += 1
        elif tr.status == TS.COMPLETED.value:
            counts.completed += 1
        elif tr.status == TS.SENT_TO_USER.value:
            counts.ready += 1
        elif tr.status == TS.CANCELLED.value:
            counts.cancelled += 1
    return counts


async def _tests_by_bill_request(session: AsyncSession, bill_request_ids: List[int]) -> Dict[int, List[db_models.TestRequest]]:
    grouped = defaultdict(list)
    if not bill_request_ids:
        return grouped
    res = await session.execute(
        select(db_models.TestRequest)
        .where(db_models.TestRequest.bill_request_id.in_(bill_request_ids))
        .order_by(db_models.TestRequest.id)
    )
    for tr in res.scalars().all():
        grouped[tr.bill_request_id].append(tr)
    return grouped


async def _status_views(session: AsyncSession, bill_requests: List[db_models.BillRequest]) -> List[api_schemas.BillRequestStatusView]:
    tests = await _tests_by_bill_request(session, [br.id for br in bill_requests])
    return [
        api_schemas.BillRequestStatusView(
            bill_request=api_schemas.BillRequest.model_validate(br),
            tests=[api_schemas.TestRequest.model_validate(t) for t in tests[br.id]],
            all_tests_complete=is_all_complete(t.status for t in tests[br.id]),
        )
        for br in bill_requests
    ]


# =========================================================================
# PATIENT
# =========================================================================
async def patient_rollup(session: AsyncSession, patient_id: str) -> api_schemas.PatientRollup:
    appts = await session.execute(
        select(db_models.Appointment)
        .where(db_models.Appointment.patient_id == patient_id)
        .order_by(db_models.Appointment.id.desc())
    )
    brs = await session.execute(
        select(db_models.BillRequest)
        .where(db_models.BillRequest.patient_id == patient_id)
        .order_by(db_models.BillRequest.id.desc())
    )
    bills = await session.execute(
        select(db_models.Bill)
        .where(db_models.Bill.patient_id == patient_id)
        .order_by(db_models.Bill.id.desc())
    )
    tests = await session.execute(
        select(db_models.TestRequest).where(db_models.TestRequest.patient_id == patient_id)
    )

    bill_rows = list(bills.scalars().all())
    outstanding = sum(
        b.amount for b in bill_rows
        if b.status in (db_models.BillStatus.PENDING.value, db_models.BillStatus.OVERDUE.value)
    )
    return api_schemas.PatientRollup(
        patient_id=patient_id,
        appointments=[api_schemas.Appointment.model_validate(a) for a in appts.scalars().all()],
        bill_requests=await _status_views(session, list(brs.scalars().all())),
        test_counts=count_test_statuses(tests.scalars().all()),
        bills=[api_schemas.Bill.model_validate(b) for b in bill_rows],
        outstanding_balance=outstanding,
    )


# =========================================================================
# DOCTOR
# =========================================================================
async def doctor_overview(session: AsyncSession, doctor_id: int) -> api_schemas.DoctorOverview:
    appts = await session.execute(
        select(db_models.Appointment)
        .where(db_models.Appointment.doctor_id == doctor_id)
        .order_by(db_models.Appointment.date, db_models.Appointment.time)
    )
    brs = await session.execute(
        select(db_models.BillRequest)
        .where(db_models.BillRequest.doctor_id == doctor_id)
        .order_by(db_models.BillRequest.id.desc())
    )
    return api_schemas.DoctorOverview(
        doctor_id=doctor_id,
        appointments=[api_schemas.Appointment.model_validate(a) for a in appts.scalars().all()],
        bill_requests=await _status_views(session, list(brs.scalars().all())),
    )


# =========================================================================
# BILLER
# =========================================================================
async def unbilled_approved(session: AsyncSession) -> List[db_models.BillRequest]:
    """Approved requests with no Bill, left by an interrupted finalize. Finalize them again to repair."""
    has_bill = select(db_models.Bill.id).where(db_models.Bill.bill_request_id == db_models.BillRequest.id).exists()
    res = await session.execute(
        select(db_models.BillRequest)
        .where(db_models.BillRequest.status == BRStatus.APPROVED.value, ~has_bill)
        .order_by(db_models.BillRequest.id)
    )
    return list(res.scalars().all())


async def biller_overview(session: AsyncSession) -> api_schemas.BillerOverview:
    pending = await session.execute(
        select(db_models.BillRequest)
        .where(db_models.BillRequest.status == BRStatus.PENDING.value)
        .order_by(db_models.BillRequest.id.desc())
    )
    counts = await session.execute(
        select(db_models.Bill.status, func.count(db_models.Bill.id)).group_by(db_models.Bill.status)
    )
    bill_counts = {s.value: 0 for s in db_models.BillStatus}
    bill_counts.update({status: n for status, n in counts.all()})
    return api_schemas.BillerOverview(
        pending_requests=[api_schemas.BillRequest.model_validate(br) for br in pending.scalars().all()],
        approved_unbilled=[api_schemas.BillRequest.model_validate(br) for br in await unbilled_approved(session)],
        bill_counts=bill_counts,
    )


# =========================================================================
# LAB
# =========================================================================
async def lab_queue(session: AsyncSession) -> List[db_models.TestRequest]:
    """
    Tests of every live bill request whose tests are not all complete.
    Once a bill request's tests are all `completed` it leaves the queue.
    """
    res = await session.execute(
        select(db_models.TestRequest)
        .join(db_models.BillRequest, db_models.BillRequest.id == db_models.TestRequest.bill_request_id)
        .where(db_models.BillRequest.status != BRStatus.REJECTED.value)
        .order_by(db_models.TestRequest.bill_request_id, db_models.TestRequest.id)
    )
    grouped = defaultdict(list)
    for tr in res.scalars().all():
        grouped[tr.bill_request_id].append(tr)

    queue = []
    for rows in grouped.values():
        if is_all_complete(t.status for t in rows):
            continue
        queue.extend(t for t in rows if t.status != TS.CANCELLED.value)
    return queue


async def lab_overview(session: AsyncSession) -> api_schemas.LabOverview:
    res = await session.execute(select(db_models.TestRequest))
    return api_schemas.LabOverview(
        queue=[api_schemas.TestRequest.model_validate(t) for t in await lab_queue(session)],
        test_counts=count_test_statuses(res.scalars().all()),
    )
