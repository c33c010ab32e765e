from clinicflow import models
from clinicflow.utils import DOCTORS, create_initial_data


async def book(client, doctor_id, patient_id="PID-10001", slot="10:00 AM"):
    return await client.post("/appointments/book", json={
        "patient_id": patient_id,
        "doctor_id": doctor_id,
        "date": "2025-01-15",
        "time": slot,
    })


class TestWorkflow:

    async def test_visit_to_bill(self, client, doctor):
        resp = await book(client, doctor.id)
        assert resp.status_code == 201
        appt = resp.json()
        assert appt["time"] == "10:00 AM"
        assert appt["status"] == "scheduled"

        resp = await client.post("/bill-requests", json={
            "patient_id": "PID-10001",
            "doctor_id": doctor.id,
            "consultation_fee": 500,
            "disease_name": "fever",
            "selected_tests": ["ECG"],
            "appointment_id": appt["id"],
        })
        assert resp.status_code == 201
        body = resp.json()
        br_id = body["bill_request"]["id"]
        assert body["bill_request"]["amount"] == 1300
        assert body["bill_request"]["status"] == "pending"
        assert [(t["test_name"], t["test_type"], t["status"]) for t in body["test_requests"]] == [
            ("ECG", "blood", "pending"),
        ]
        test_id = body["test_requests"][0]["id"]

        resp = await client.get(f"/dashboard/bill-requests/{br_id}/complete")
        assert resp.json() == {"bill_request_id": br_id, "all_tests_complete": False}

        resp = await client.post(f"/tests/{test_id}/results", json={
            "lab_technician_id": "LT-7",
            "result_value": "Sinus rhythm",
            "normal_range": "Sinus rhythm",
            "status": "normal",
        })
        assert resp.status_code == 201

        resp = await client.get(f"/dashboard/bill-requests/{br_id}/complete")
        assert resp.json()["all_tests_complete"] is True

        resp = await client.post(f"/bill-requests/{br_id}/finalize", json={"payment_method": "cash"})
        assert resp.status_code == 201
        bill = resp.json()["bill"]
        assert bill["amount"] == 1300
        assert bill["status"] == "paid"

        resp = await client.post(f"/bill-requests/{br_id}/finalize", json={"payment_method": "cash"})
        assert resp.status_code == 200
        again = resp.json()
        assert not again["created"]
        assert (again["bill"]["id"], again["bill"]["amount"]) == (bill["id"], 1300)

        resp = await client.get("/dashboard/patient/PID-10001")
        rollup = resp.json()
        assert [b["id"] for b in rollup["bills"]] == [bill["id"]]
        assert rollup["outstanding_balance"] == 0
        assert rollup["test_counts"]["completed"] == 1

    async def test_edit_after_completed_appointment(self, client, doctor):
        appt = (await book(client, doctor.id)).json()
        diagnosis = {
            "patient_id": "PID-10001",
            "doctor_id": doctor.id,
            "consultation_fee": 500,
            "disease_name": "fever",
            "selected_tests": ["ECG"],
            "appointment_id": appt["id"],
        }
        created = (await client.post("/bill-requests", json=diagnosis)).json()
        resp = await client.post(f"/appointments/{appt['id']}/complete")
        assert resp.json()["status"] == "completed"

        resp = await client.post("/bill-requests", json={**diagnosis, "consultation_fee": 600})
        assert resp.status_code == 200
        assert resp.json()["bill_request"]["id"] == created["bill_request"]["id"]
        assert resp.json()["bill_request"]["amount"] == 1400


class TestAppointments:

    async def test_double_booking_returns_open_slots(self, client, doctor):
        assert (await book(client, doctor.id)).status_code == 201

        resp = await book(client, doctor.id, patient_id="PID-20002", slot="10:00")
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "conflict"
        assert "10:00 AM" not in body["detail"]["available_slots"]
        assert "11:00 AM" in body["detail"]["available_slots"]

    async def test_availability_tracks_bookings(self, client, doctor):
        await book(client, doctor.id)
        resp = await client.get(f"/appointments/availability/{doctor.id}/2025-01-15")
        assert resp.status_code == 200
        body = resp.json()
        assert body["doctor"]["name"] == "Dr. A"
        assert "10:00 AM" not in body["available_slots"]

    async def test_availability_bad_date(self, client, doctor):
        resp = await client.get(f"/appointments/availability/{doctor.id}/15-01-2025")
        assert resp.status_code == 400

    async def test_off_grid_slot(self, client, doctor):
        resp = await book(client, doctor.id, slot="10:30 AM")
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation_error"

    async def test_cancel_then_rebook(self, client, doctor):
        appt = (await book(client, doctor.id)).json()
        resp = await client.post(f"/appointments/{appt['id']}/cancel", json={"reason": "travel"})
        assert resp.json()["status"] == "cancelled"
        assert (await book(client, doctor.id, patient_id="PID-20002")).status_code == 201

    async def test_doctor_listing(self, client, session):
        await create_initial_data(session)
        resp = await client.get("/appointments/doctors")
        assert len(resp.json()) == len(DOCTORS)
        resp = await client.get("/appointments/doctors/cardio")
        assert {d["specialty"] for d in resp.json()} == {"Cardiology"}


class TestErrors:

    async def test_not_found_shape(self, client):
        resp = await client.post("/bill-requests/99/finalize", json={})
        assert resp.status_code == 404
        assert resp.json() == {
            "error": "not_found",
            "message": "Bill request 99 not found",
            "detail": {"bill_request_id": 99},
        }

    async def test_illegal_transition(self, client, doctor):
        resp = await client.post("/bill-requests", json={
            "patient_id": "PID-10001", "doctor_id": doctor.id, "consultation_fee": 500,
            "disease_name": "fever", "selected_tests": ["CBC Test"],
        })
        test_id = resp.json()["test_requests"][0]["id"]
        await client.post(f"/tests/{test_id}/transition", json={"status": "completed", "changed_by": "LT-7"})

        resp = await client.post(f"/tests/{test_id}/transition", json={"status": "pending", "changed_by": "LT-7"})
        assert resp.status_code == 422
        assert resp.json()["detail"] == {"test_request_id": test_id, "from": "completed", "to": "pending"}

        history = (await client.get(f"/tests/{test_id}/history")).json()
        assert len(history) == 1

    async def test_lab_queue_and_backfill(self, client, session, doctor):
        session.add(models.BillRequest(
            patient_id="PID-3", doctor_id=doctor.id, amount=700, notes="Tests: Malaria Test",
        ))
        await session.commit()

        resp = await client.post("/bill-requests/backfill-tests")
        assert resp.json() == {"created": 1}
        queue = (await client.get("/tests/queue")).json()
        assert [t["test_name"] for t in queue] == ["Malaria Test"]
