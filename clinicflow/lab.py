# clinicflow/lab.py
"""
Test request lifecycle.

    pending -> in_progress -> completed -> sent_to_user
    pending -> completed                  (result entered on a pending test)
    pending | in_progress | completed -> cancelled

Every accepted move updates the test request and appends one history row in the
same commit. The status write is a compare-and-set against the status that was
read: of two overlapping moves out of the same state only one lands, and the other
re-reads the row and is judged against what is stored.

`sent_to_user` only flags that the patient was notified; the lab's own work is
finished at `completed`.
"""
import logging
from typing import List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from . import models as db_models
from .config import now
from .database import commit
from .errors import ConflictError, NotFoundError, ValidationError
from .schemas import ResultEntry

logger = logging.getLogger("clinicflow.lab")

S = db_models.TestStatus

ALLOWED_TRANSITIONS = {
    S.PENDING: {S.IN_PROGRESS, S.COMPLETED, S.CANCELLED},
    S.IN_PROGRESS: {S.COMPLETED, S.CANCELLED},
    S.COMPLETED: {S.SENT_TO_USER, S.CANCELLED},
    S.SENT_TO_USER: set(),
    S.CANCELLED: set(),
}


def _as_status(value) -> db_models.TestStatus:
    try:
        return S(value)
    except ValueError:
        raise ValidationError(f"Unknown test status: {value!r}", {"status": str(value)}) from None


def can_transition(old, new) -> bool:
    return _as_status(new) in ALLOWED_TRANSITIONS[_as_status(old)]


async def get_test_request(session: AsyncSession, test_request_id: int) -> db_models.TestRequest:
    tr = await session.get(db_models.TestRequest, test_request_id)
    if not tr:
        raise NotFoundError(f"Test request {test_request_id} not found", {"test_request_id": test_request_id})
    return tr


async def _apply(
    session: AsyncSession,
    tr: db_models.TestRequest,
    new_status: db_models.TestStatus,
    changed_by: str,
    reason: Optional[str],
) -> Optional[db_models.TestStatusHistory]:
    """
    Move `tr` from the status it was read with and stage the history entry. Caller commits.
    Returns None when the stored status no longer matches, i.e. another writer got there first.
    """
    old_status = _as_status(tr.status)
    if new_status not in ALLOWED_TRANSITIONS[old_status]:
        raise ValidationError(
            f"Cannot move test request {tr.id} from {old_status.value} to {new_status.value}",
            {"test_request_id": tr.id, "from": old_status.value, "to": new_status.value},
        )

    stamp = now()
    values = {"status": new_status.value, "updated_at": stamp}
    if new_status == S.COMPLETED:
        values["completed_at"] = stamp
    if new_status in (S.IN_PROGRESS, S.COMPLETED):
        values["lab_technician_id"] = func.coalesce(db_models.TestRequest.lab_technician_id, changed_by)

    res = await session.execute(
        update(db_models.TestRequest)
        .where(db_models.TestRequest.id == tr.id, db_models.TestRequest.status == old_status.value)
        .values(**values),
        execution_options={"synchronize_session": False},
    )
    if res.rowcount != 1:
        return None

    entry = db_models.TestStatusHistory(
        test_request_id=tr.id,
        old_status=old_status.value,
        new_status=new_status.value,
        changed_by=changed_by,
        reason=reason,
        created_at=stamp,
    )
    session.add(entry)
    return entry


async def _reload(session: AsyncSession, tr: db_models.TestRequest) -> None:
    """Drop the lost write and re-read the row as stored."""
    await session.rollback()
    await session.refresh(tr)
    logger.warning("Test request %s changed concurrently; now %s", tr.id, tr.status)


async def _latest_entry(session: AsyncSession, test_request_id: int, status: str) -> Optional[db_models.TestStatusHistory]:
    res = await session.execute(
        select(db_models.TestStatusHistory)
        .where(
            db_models.TestStatusHistory.test_request_id == test_request_id,
            db_models.TestStatusHistory.new_status == status,
        )
        .order_by(db_models.TestStatusHistory.id.desc())
        .limit(1)
    )
    return res.scalars().first()


async def transition(
    session: AsyncSession,
    test_request_id: int,
    new_status,
    changed_by: str,
    reason: Optional[str] = None,
) -> db_models.TestStatusHistory:
    if not changed_by:
        raise ValidationError("changed_by is required")
    target = _as_status(new_status)
    tr = await get_test_request(session, test_request_id)

    # Statuses only move forward, so lost races end in a bounded number of rounds.
    while True:
        # A retried call that already landed returns the entry it wrote.
        if tr.status == target.value:
            entry = await _latest_entry(session, tr.id, target.value)
            if entry:
                return entry
            raise ValidationError(
                f"Test request {tr.id} is already {target.value}",
                {"test_request_id": tr.id, "status": target.value},
            )

        entry = await _apply(session, tr, target, changed_by, reason)
        if entry is not None:
            break
        await _reload(session, tr)

    await commit(session, "transition")
    await session.refresh(tr)
    logger.info("Test request %s: %s -> %s by %s", tr.id, entry.old_status, entry.new_status, changed_by)
    return entry


async def record_result(session: AsyncSession, test_request_id: int, result: ResultEntry) -> db_models.TestResult:
    """Store a result and complete the test in one commit, through the normal transition path."""
    tr = await get_test_request(session, test_request_id)

    while True:
        status = _as_status(tr.status)
        if status in (S.COMPLETED, S.SENT_TO_USER):
            raise ConflictError(f"Test request {tr.id} already has a result", {"test_request_id": tr.id})
        if status not in (S.PENDING, S.IN_PROGRESS):
            raise ValidationError(
                f"Cannot record a result for a {status.value} test request",
                {"test_request_id": tr.id, "status": status.value},
            )
        if await _apply(session, tr, S.COMPLETED, result.lab_technician_id, "Result recorded"):
            break
        await _reload(session, tr)

    row = db_models.TestResult(
        test_request_id=test_request_id,
        lab_technician_id=result.lab_technician_id,
        result_value=result.result_value,
        normal_range=result.normal_range,
        status=result.status.value,
        units=result.units,
        reference_range=result.reference_range,
        interpretation=result.interpretation,
        notes=result.notes,
        created_at=now(),
    )
    session.add(row)
    try:
        await commit(session, "record_result")
    except IntegrityError:
        # test_results.test_request_id is unique: one result per test request.
        raise ConflictError(
            f"Test request {test_request_id} already has a result", {"test_request_id": test_request_id},
        ) from None

    await session.refresh(tr)
    logger.info("Test request %s: result recorded (%s)", test_request_id, row.status)
    return row


async def history(session: AsyncSession, test_request_id: int) -> List[db_models.TestStatusHistory]:
    await get_test_request(session, test_request_id)
    res = await session.execute(
        select(db_models.TestStatusHistory)
        .where(db_models.TestStatusHistory.test_request_id == test_request_id)
        .order_by(db_models.TestStatusHistory.id.desc())
    )
    return list(res.scalars().all())


async def results(session: AsyncSession, test_request_id: int) -> List[db_models.TestResult]:
    await get_test_request(session, test_request_id)
    res = await session.execute(
        select(db_models.TestResult)
        .where(db_models.TestResult.test_request_id == test_request_id)
        .order_by(db_models.TestResult.id.desc())
    )
    return list(res.scalars().all())
