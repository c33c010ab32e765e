from datetime import date

import pytest

from clinicflow import billing
from clinicflow import models
from clinicflow import scheduler
from clinicflow.errors import (
    ConflictError, NotFoundError, PartialFailureError, StoreError, ValidationError,
)

DAY = date(2025, 1, 15)


class TestAmountAndNotes:

    def test_amount_adds_fee_disease_and_tests(self, make_diagnosis):
        d = make_diagnosis(selected_tests=["ECG", "CBC Test"])
        assert billing.compute_amount(d) == 500 + 300 + 500 + 400

    def test_unknown_disease_and_tests_cost_nothing(self, make_diagnosis):
        d = make_diagnosis(disease_name="mystery", selected_tests=["Unlisted Test"])
        assert billing.compute_amount(d) == 500

    def test_disease_lookup_ignores_case(self, make_diagnosis):
        assert billing.compute_amount(make_diagnosis(disease_name=" Fever ", selected_tests=[])) == 800

    def test_notes_format(self, make_diagnosis):
        d = make_diagnosis(disease_name="Fever", selected_tests=["CBC Test", "Dengue Test"])
        assert billing.format_notes(d) == "Fever - Consultation Fee: ₹500, Tests: CBC Test, Dengue Test"


class TestCreate:

    async def test_new_bill_request_with_tests(self, session, make_diagnosis):
        outcome = await billing.create_or_update(session, make_diagnosis())

        br = outcome.bill_request
        assert outcome.created
        assert br.amount == 1300
        assert br.status == models.BillRequestStatus.PENDING.value
        assert [t.test_name for t in outcome.test_requests] == ["ECG"]
        tr = outcome.test_requests[0]
        assert tr.test_type == models.TestType.BLOOD.value
        assert tr.status == models.TestStatus.PENDING.value
        assert tr.priority == models.TestPriority.NORMAL.value
        assert tr.estimated_duration == 30
        assert tr.bill_request_id == br.id

    async def test_no_tests_still_creates_bill_request(self, session, make_diagnosis):
        outcome = await billing.create_or_update(session, make_diagnosis(selected_tests=[]))
        assert outcome.bill_request.amount == 800
        assert outcome.test_requests == []

    async def test_duplicate_selected_tests_collapsed(self, session, make_diagnosis):
        outcome = await billing.create_or_update(session, make_diagnosis(selected_tests=["ECG", "ecg", "X-Ray"]))
        assert [t.test_name for t in outcome.test_requests] == ["ECG", "X-Ray"]
        assert outcome.test_requests[1].test_type == models.TestType.IMAGING.value

    async def test_missing_fields_rejected_before_write(self, session, make_diagnosis):
        with pytest.raises(ValidationError) as exc:
            await billing.create_or_update(session, make_diagnosis(disease_name="", patient_id=""))
        assert set(exc.value.detail["missing"]) == {"patient_id", "disease_name"}
        assert await session.get(models.BillRequest, 1) is None

    async def test_scheduled_appointment_creates_new(self, session, doctor, make_diagnosis):
        appt = await scheduler.book(session, "PID-10001", doctor.id, DAY, "10:00 AM")
        first = await billing.create_or_update(session, make_diagnosis(appointment_id=appt.id))
        second = await billing.create_or_update(session, make_diagnosis(appointment_id=appt.id))

        assert first.created and second.created
        assert first.bill_request.id != second.bill_request.id
        assert first.bill_request.appointment_id == appt.id

    async def test_appointment_of_other_patient_rejected(self, session, doctor, make_diagnosis):
        appt = await scheduler.book(session, "PID-OTHER", doctor.id, DAY, "10:00 AM")
        with pytest.raises(ValidationError):
            await billing.create_or_update(session, make_diagnosis(appointment_id=appt.id))

    async def test_unknown_appointment(self, session, make_diagnosis):
        with pytest.raises(NotFoundError):
            await billing.create_or_update(session, make_diagnosis(appointment_id=77))


class TestEdit:

    async def test_completed_appointment_updates_in_place(self, session, doctor, make_diagnosis):
        appt = await scheduler.book(session, "PID-10001", doctor.id, DAY, "10:00 AM")
        created = await billing.create_or_update(session, make_diagnosis(appointment_id=appt.id))
        await scheduler.complete(session, appt.id)

        edited = await billing.create_or_update(
            session, make_diagnosis(appointment_id=appt.id, disease_name="flu", selected_tests=["ECG", "CBC Test"]),
        )

        assert not edited.created
        assert edited.bill_request.id == created.bill_request.id
        assert edited.bill_request.amount == 500 + 350 + 500 + 400
        assert edited.bill_request.disease_name == "flu"
        # tests already tracked stay authoritative
        assert [t.id for t in edited.test_requests] == [t.id for t in created.test_requests]

    async def test_edit_creates_tests_when_none_exist(self, session, doctor, make_diagnosis):
        appt = await scheduler.book(session, "PID-10001", doctor.id, DAY, "10:00 AM")
        created = await billing.create_or_update(session, make_diagnosis(appointment_id=appt.id, selected_tests=[]))
        await scheduler.complete(session, appt.id)
        assert created.test_requests == []

        edited = await billing.create_or_update(session, make_diagnosis(appointment_id=appt.id, selected_tests=["X-Ray"]))
        assert [t.test_name for t in edited.test_requests] == ["X-Ray"]

    async def test_edit_without_existing_falls_back_to_create(self, session, doctor, make_diagnosis):
        appt = await scheduler.book(session, "PID-10001", doctor.id, DAY, "10:00 AM")
        await scheduler.complete(session, appt.id)

        outcome = await billing.create_or_update(session, make_diagnosis(appointment_id=appt.id))
        assert outcome.created

    async def test_legacy_edit_uses_most_recent_for_patient(self, session, make_diagnosis):
        await billing.create_or_update(session, make_diagnosis())
        latest = await billing.create_or_update(session, make_diagnosis())

        edited = await billing.create_or_update(
            session, make_diagnosis(appointment_status="completed", consultation_fee=700),
        )
        assert edited.bill_request.id == latest.bill_request.id
        assert edited.bill_request.amount == 1500

    async def test_edit_of_approved_request_conflicts(self, session, make_diagnosis):
        outcome = await billing.create_or_update(session, make_diagnosis())
        outcome.bill_request.status = models.BillRequestStatus.APPROVED.value
        await session.commit()

        with pytest.raises(ConflictError) as exc:
            await billing.create_or_update(session, make_diagnosis(appointment_status="completed"))
        assert exc.value.detail == {"bill_request_id": outcome.bill_request.id, "bill_id": None}


class TestDerivation:

    async def test_partial_failure_then_retry(self, session, make_diagnosis, monkeypatch):
        diagnosis = make_diagnosis(selected_tests=["CBC Test", "Dengue Test"])
        real_commit = billing.commit

        async def failing_commit(s, action):
            if action == "derive_tests":
                await s.rollback()
                raise StoreError("disk full", {"action": action})
            await real_commit(s, action)

        monkeypatch.setattr(billing, "commit", failing_commit)
        with pytest.raises(PartialFailureError) as exc:
            await billing.create_or_update(session, diagnosis)
        assert exc.value.step == "derive_tests"
        bill_request_id = exc.value.entity_id

        assert await session.get(models.BillRequest, bill_request_id) is not None
        assert await billing.list_test_requests(session, bill_request_id) == []

        monkeypatch.setattr(billing, "commit", real_commit)
        rows = await billing.derive_test_requests(session, bill_request_id)
        assert [r.test_name for r in rows] == ["CBC Test", "Dengue Test"]

        # a second retry does not duplicate
        again = await billing.derive_test_requests(session, bill_request_id)
        assert [r.id for r in again] == [r.id for r in rows]

    async def test_backfill_only_touches_requests_without_tests(self, session, doctor):
        with_tests = models.BillRequest(
            patient_id="PID-1", doctor_id=doctor.id, amount=900,
            notes="Fever - Consultation Fee: ₹500, Tests: CBC Test",
        )
        legacy = models.BillRequest(
            patient_id="PID-2", doctor_id=doctor.id, amount=1300,
            notes="Lab Tests: Malaria Test & Typhoid Test",
        )
        rejected = models.BillRequest(
            patient_id="PID-3", doctor_id=doctor.id, amount=100,
            notes="Tests: ECG", status=models.BillRequestStatus.REJECTED.value,
        )
        session.add_all([with_tests, legacy, rejected])
        await session.commit()
        await billing.derive_test_requests(session, with_tests.id)

        assert await billing.backfill_missing_test_requests(session) == 2
        names = [t.test_name for t in await billing.list_test_requests(session, legacy.id)]
        assert names == ["Malaria Test", "Typhoid Test"]
        assert await billing.list_test_requests(session, rejected.id) == []
        assert await billing.backfill_missing_test_requests(session) == 0


class TestReject:

    async def test_reject_pending(self, session, make_diagnosis):
        outcome = await billing.create_or_update(session, make_diagnosis())
        br = await billing.reject(session, outcome.bill_request.id, reason="duplicate")
        assert br.status == models.BillRequestStatus.REJECTED.value
        assert br.rejection_reason == "duplicate"

    async def test_reject_approved_fails(self, session, make_diagnosis):
        outcome = await billing.create_or_update(session, make_diagnosis())
        outcome.bill_request.status = models.BillRequestStatus.APPROVED.value
        await session.commit()
        with pytest.raises(ValidationError):
            await billing.reject(session, outcome.bill_request.id)

    async def test_reject_unknown(self, session):
        with pytest.raises(NotFoundError):
            await billing.reject(session, 404)
