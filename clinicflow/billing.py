# clinicflow/billing.py
"""
Bill request workflow.

A doctor's diagnosis becomes a pending BillRequest (fee + disease cost + test costs),
and each requested test becomes a TestRequest the lab can track. Test derivation runs
after the bill request is committed: if it fails the bill request stays and the caller
gets a PartialFailureError naming the `derive_tests` step to retry.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from . import extractor
from . import models as db_models
from . import tariffs
from .config import DEFAULT_TEST_DURATION, DEFAULT_TEST_PRIORITY, now
from .database import commit
from .errors import ConflictError, NotFoundError, PartialFailureError, StoreError, ValidationError
from .schemas import Diagnosis

logger = logging.getLogger("clinicflow.billing")

BRStatus = db_models.BillRequestStatus


@dataclass
class BillRequestOutcome:
    bill_request: db_models.BillRequest
    test_requests: List[db_models.TestRequest] = field(default_factory=list)
    created: bool = True


# =========================================================================
# PURE HELPERS
# =========================================================================
def compute_amount(diagnosis: Diagnosis) -> int:
    return (
        diagnosis.consultation_fee
        + tariffs.price_of_disease(diagnosis.disease_name)
        + tariffs.price_of_tests(diagnosis.selected_tests)
    )


def format_notes(diagnosis: Diagnosis) -> str:
    tests = ", ".join(diagnosis.selected_tests)
    return f"{diagnosis.disease_name} - Consultation Fee: ₹{diagnosis.consultation_fee}, Tests: {tests}"


def _validate(diagnosis: Diagnosis) -> None:
    missing = [
        name for name in ("patient_id", "doctor_id", "disease_name")
        if not getattr(diagnosis, name)
    ]
    if missing:
        raise ValidationError("Diagnosis is missing required fields", {"missing": missing})
    if diagnosis.consultation_fee < 0:
        raise ValidationError("consultation_fee must not be negative", {"consultation_fee": diagnosis.consultation_fee})


def _tests_for(diagnosis: Diagnosis, notes: str) -> List[extractor.ExtractedTest]:
    if diagnosis.selected_tests:
        seen = set()
        tests = []
        for name in (t.strip() for t in diagnosis.selected_tests):
            if name and name.lower() not in seen:
                seen.add(name.lower())
                tests.append(extractor.ExtractedTest(name, extractor.infer_test_type(name)))
        return tests
    # No structured list: fall back to reading the notes.
    return extractor.extract(notes)


# =========================================================================
# LOOKUPS
# =========================================================================
async def get_bill_request(session: AsyncSession, bill_request_id: int) -> db_models.BillRequest:
    br = await session.get(db_models.BillRequest, bill_request_id)
    if not br:
        raise NotFoundError(f"Bill request {bill_request_id} not found", {"bill_request_id": bill_request_id})
    return br


async def list_test_requests(session: AsyncSession, bill_request_id: int) -> List[db_models.TestRequest]:
    res = await session.execute(
        select(db_models.TestRequest)
        .where(db_models.TestRequest.bill_request_id == bill_request_id)
        .order_by(db_models.TestRequest.id)
    )
    return list(res.scalars().all())


async def _find_for_edit(session: AsyncSession, diagnosis: Diagnosis) -> Optional[db_models.BillRequest]:
    query = select(db_models.BillRequest)
    if diagnosis.appointment_id is not None:
        query = query.where(db_models.BillRequest.appointment_id == diagnosis.appointment_id)
    else:
        # Legacy callers without an appointment id: most recent request for the patient.
        query = query.where(db_models.BillRequest.patient_id == diagnosis.patient_id)
    res = await session.execute(query.order_by(db_models.BillRequest.id.desc()).limit(1))
    return res.scalars().first()


async def _is_edit_mode(session: AsyncSession, diagnosis: Diagnosis) -> bool:
    if diagnosis.appointment_id is None:
        return diagnosis.appointment_status == db_models.AppointmentStatus.COMPLETED

    appt = await session.get(db_models.Appointment, diagnosis.appointment_id)
    if not appt:
        raise NotFoundError(f"Appointment {diagnosis.appointment_id} not found", {"appointment_id": diagnosis.appointment_id})
    if appt.patient_id != diagnosis.patient_id:
        raise ValidationError(
            "Appointment belongs to a different patient",
            {"appointment_id": diagnosis.appointment_id, "patient_id": diagnosis.patient_id},
        )
    return appt.status == db_models.AppointmentStatus.COMPLETED.value


# =========================================================================
# TEST DERIVATION
# =========================================================================
async def _insert_tests(
    session: AsyncSession,
    bill_request_id: int,
    patient_id: str,
    doctor_id: int,
    tests: List[extractor.ExtractedTest],
) -> List[db_models.TestRequest]:
    if not tests:
        logger.warning("Bill request %s: no tests identified", bill_request_id)
        return []

    stamp = now()
    rows = [
        db_models.TestRequest(
            bill_request_id=bill_request_id,
            patient_id=patient_id,
            doctor_id=doctor_id,
            test_name=t.name,
            test_type=t.type.value,
            status=db_models.TestStatus.PENDING.value,
            priority=DEFAULT_TEST_PRIORITY,
            estimated_duration=DEFAULT_TEST_DURATION,
            created_at=stamp,
            updated_at=stamp,
        )
        for t in tests
    ]
    session.add_all(rows)
    try:
        await commit(session, "derive_tests")
    except (StoreError, SQLAlchemyError) as e:
        logger.error("Bill request %s saved but test requests failed", bill_request_id, exc_info=True)
        raise PartialFailureError(
            "Bill request saved but test requests could not be created",
            step="derive_tests",
            entity_id=bill_request_id,
        ) from e

    logger.info("Bill request %s: created %d test requests", bill_request_id, len(rows))
    return rows


async def derive_test_requests(session: AsyncSession, bill_request_id: int) -> List[db_models.TestRequest]:
    """
    (Re)run derivation for one bill request from its stored notes.
    Existing test requests are authoritative: if any exist they are returned as-is.
    """
    br = await get_bill_request(session, bill_request_id)
    existing = await list_test_requests(session, bill_request_id)
    if existing:
        return existing
    if br.status == BRStatus.REJECTED.value:
        raise ValidationError("Rejected bill requests do not get tests", {"bill_request_id": bill_request_id})
    return await _insert_tests(session, br.id, br.patient_id, br.doctor_id, extractor.extract(br.notes))


async def backfill_missing_test_requests(session: AsyncSession) -> int:
    """Derive tests for every live bill request that has none. Returns rows created."""
    has_tests = select(db_models.TestRequest.id).where(
        db_models.TestRequest.bill_request_id == db_models.BillRequest.id
    ).exists()
    res = await session.execute(
        select(db_models.BillRequest.id)
        .where(~has_tests, db_models.BillRequest.status != BRStatus.REJECTED.value)
        .order_by(db_models.BillRequest.id)
    )
    created = 0
    for bill_request_id in res.scalars().all():
        created += len(await derive_test_requests(session, bill_request_id))
    logger.info("Backfill created %d test requests", created)
    return created


# =========================================================================
# CREATE / UPDATE
# =========================================================================
async def create_or_update(session: AsyncSession, diagnosis: Diagnosis) -> BillRequestOutcome:
    _validate(diagnosis)
    amount = compute_amount(diagnosis)
    notes = format_notes(diagnosis)
    tests = _tests_for(diagnosis, notes)

    if await _is_edit_mode(session, diagnosis):
        existing = await _find_for_edit(session, diagnosis)
        if existing and existing.status == BRStatus.APPROVED.value:
            bill_id = await session.scalar(
                select(db_models.Bill.id).where(db_models.Bill.bill_request_id == existing.id)
            )
            raise ConflictError(
                f"Bill request {existing.id} is already approved and billed",
                {"bill_request_id": existing.id, "bill_id": bill_id},
            )
        if existing and existing.status == BRStatus.PENDING.value:
            return await _update(session, existing, diagnosis, amount, notes, tests)
        logger.info("No open bill request for patient %s; creating one", diagnosis.patient_id)

    return await _create(session, diagnosis, amount, notes, tests)


async def _create(session, diagnosis, amount, notes, tests) -> BillRequestOutcome:
    stamp = now()
    br = db_models.BillRequest(
        patient_id=diagnosis.patient_id,
        doctor_id=diagnosis.doctor_id,
        appointment_id=diagnosis.appointment_id,
        amount=amount,
        notes=notes,
        disease_name=diagnosis.disease_name,
        status=BRStatus.PENDING.value,
        created_at=stamp,
        updated_at=stamp,
    )
    session.add(br)
    await commit(session, "create_bill_request")
    logger.info("Created bill request %s for patient %s: amount=%s", br.id, br.patient_id, amount)

    rows = await _insert_tests(session, br.id, br.patient_id, br.doctor_id, tests)
    return BillRequestOutcome(bill_request=br, test_requests=rows, created=True)


async def _update(session, br, diagnosis, amount, notes, tests) -> BillRequestOutcome:
    br.amount = amount
    br.notes = notes
    br.disease_name = diagnosis.disease_name
    if br.appointment_id is None:
        br.appointment_id = diagnosis.appointment_id
    br.updated_at = now()
    await commit(session, "update_bill_request")
    logger.info("Updated bill request %s: amount=%s", br.id, amount)

    count = await session.scalar(
        select(func.count(db_models.TestRequest.id)).where(db_models.TestRequest.bill_request_id == br.id)
    )
    if count:
        rows = await list_test_requests(session, br.id)
    else:
        rows = await _insert_tests(session, br.id, br.patient_id, br.doctor_id, tests)
    return BillRequestOutcome(bill_request=br, test_requests=rows, created=False)


async def reject(session: AsyncSession, bill_request_id: int, reason: Optional[str] = None) -> db_models.BillRequest:
    br = await get_bill_request(session, bill_request_id)
    if br.status == BRStatus.REJECTED.value:
        return br
    if br.status == BRStatus.APPROVED.value:
        raise ValidationError("An approved bill request cannot be rejected", {"bill_request_id": bill_request_id})

    br.status = BRStatus.REJECTED.value
    br.rejection_reason = reason
    br.updated_at = now()
    await commit(session, "reject_bill_request")
    logger.info("Rejected bill request %s", bill_request_id)
    return br
