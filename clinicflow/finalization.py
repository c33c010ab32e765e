# clinicflow/finalization.py
import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from . import aggregator
from . import billing
from . import models as db_models
from .config import now
from .database import commit
from .errors import NotFoundError, StoreError, ValidationError

logger = logging.getLogger("clinicflow.finalization")

BRStatus = db_models.BillRequestStatus
BillStatus = db_models.BillStatus

# Methods settled at the counter produce a paid bill; the rest wait for payment.
IMMEDIATE_METHODS = {"cash", "card", "upi"}
DEFERRED_METHODS = {"invoice", "insurance"}

BILL_TRANSITIONS = {
    BillStatus.PENDING: {BillStatus.PAID, BillStatus.OVERDUE},
    BillStatus.OVERDUE: {BillStatus.PAID},
    BillStatus.PAID: set(),
}


@dataclass
class FinalizeOutcome:
    bill: db_models.Bill
    created: bool


async def bill_for_request(session: AsyncSession, bill_request_id: int):
    res = await session.execute(
        select(db_models.Bill).where(db_models.Bill.bill_request_id == bill_request_id)
    )
    return res.scalars().first()


async def finalize(
    session: AsyncSession,
    bill_request_id: int,
    payment_method: str = "cash",
    require_tests_complete: bool = False,
) -> FinalizeOutcome:
    """
    Approve a bill request and issue its Bill, once.

    Approval and the bill insert share one commit. A second call (sequential or
    concurrent) gets the existing Bill back; concurrent losers hit the unique
    bill_request_id constraint, roll back and re-read the winner's row.
    """
    method = (payment_method or "").strip().lower()
    if method not in IMMEDIATE_METHODS | DEFERRED_METHODS:
        raise ValidationError(
            f"Unsupported payment method: {payment_method!r}",
            {"payment_method": payment_method, "supported": sorted(IMMEDIATE_METHODS | DEFERRED_METHODS)},
        )

    br = await billing.get_bill_request(session, bill_request_id)
    if br.status == BRStatus.REJECTED.value:
        raise ValidationError("A rejected bill request cannot be finalized", {"bill_request_id": bill_request_id})

    existing = await bill_for_request(session, bill_request_id)
    if existing:
        if br.status != BRStatus.APPROVED.value:
            br.status = BRStatus.APPROVED.value
            br.updated_at = now()
            await commit(session, "finalize")
        logger.info("Bill request %s already billed as bill %s", bill_request_id, existing.id)
        return FinalizeOutcome(bill=existing, created=False)

    if require_tests_complete and not await aggregator.all_tests_complete(session, bill_request_id):
        raise ValidationError("Tests for this bill request are not complete", {"bill_request_id": bill_request_id})

    stamp = now()
    paid = method in IMMEDIATE_METHODS
    br.status = BRStatus.APPROVED.value
    br.updated_at = stamp
    bill = db_models.Bill(
        bill_request_id=br.id,
        patient_id=br.patient_id,
        amount=br.amount,
        status=(BillStatus.PAID if paid else BillStatus.PENDING).value,
        payment_method=method,
        payment_date=stamp if paid else None,
        created_at=stamp,
        updated_at=stamp,
    )
    session.add(bill)
    try:
        await commit(session, "finalize")
    except IntegrityError:
        winner = await bill_for_request(session, bill_request_id)
        if winner is None:
            raise StoreError("Bill insert failed without an existing bill", {"bill_request_id": bill_request_id})
        logger.info("Concurrent finalize for bill request %s resolved to bill %s", bill_request_id, winner.id)
        return FinalizeOutcome(bill=winner, created=False)

    logger.info("Finalized bill request %s: bill %s amount=%s status=%s", bill_request_id, bill.id, bill.amount, bill.status)
    return FinalizeOutcome(bill=bill, created=True)


async def update_bill_status(session: AsyncSession, bill_id: int, status) -> db_models.Bill:
    bill = await session.get(db_models.Bill, bill_id)
    if not bill:
        raise NotFoundError(f"Bill {bill_id} not found", {"bill_id": bill_id})

    target = BillStatus(status)
    current = BillStatus(bill.status)
    if current == target:
        return bill
    if target not in BILL_TRANSITIONS[current]:
        raise ValidationError(
            f"Cannot move bill {bill_id} from {current.value} to {target.value}",
            {"bill_id": bill_id, "from": current.value, "to": target.value},
        )

    stamp = now()
    bill.status = target.value
    bill.updated_at = stamp
    if target == BillStatus.PAID:
        bill.payment_date = stamp
    await commit(session, "update_bill_status")
    logger.info("Bill %s: %s -> %s", bill_id, current.value, target.value)
    return bill
