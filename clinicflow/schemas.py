# clinicflow/schemas.py
from datetime import date, datetime, time
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from .config import SLOT_LABEL_FORMAT
from .models import (
    AppointmentStatus, BillStatus, ResultStatus, TestStatus,
)


# --- Base Configuration ---
class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)  # Pydantic v2 "orm_mode"


# --- Doctor & Availability Schemas ---
class Doctor(BaseSchema):
    id: int
    name: str
    specialty: str


class AvailabilityCheckResponse(BaseModel):
    doctor: Doctor
    date: date
    available_slots: List[str]  # "09:00 AM" style labels, grid order


# --- Appointment Schemas ---
class AppointmentCreate(BaseModel):
    """Schema used to request a new appointment."""
    patient_id: str
    doctor_id: int
    date: date
    time: str  # "10:00 AM" or "10:00"
    notes: Optional[str] = None


class AppointmentCancel(BaseModel):
    reason: Optional[str] = None


class Appointment(BaseSchema):
    id: int
    patient_id: str
    doctor_id: int
    date: date
    time: time
    status: str
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None

    @field_serializer("time")
    def _time_label(self, value: time) -> str:
        return value.strftime(SLOT_LABEL_FORMAT)


# --- Billing Schemas ---
class Diagnosis(BaseModel):
    """What the doctor records. `selected_tests` is the structured test list."""
    patient_id: str
    doctor_id: int
    consultation_fee: int = Field(ge=0)
    disease_name: str
    selected_tests: List[str] = []
    appointment_id: Optional[int] = None
    # Only consulted when appointment_id is absent.
    appointment_status: Optional[AppointmentStatus] = None


class BillRequest(BaseSchema):
    id: int
    patient_id: str
    doctor_id: int
    appointment_id: Optional[int] = None
    amount: int
    notes: str
    disease_name: Optional[str] = None
    status: str
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TestRequest(BaseSchema):
    id: int
    bill_request_id: int
    patient_id: str
    doctor_id: int
    lab_technician_id: Optional[str] = None
    test_name: str
    test_type: str
    status: str
    priority: str
    estimated_duration: Optional[int] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class BillRequestOutcome(BaseModel):
    bill_request: BillRequest
    test_requests: List[TestRequest]
    created: bool


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class FinalizeRequest(BaseModel):
    payment_method: str = "cash"


class Bill(BaseSchema):
    id: int
    bill_request_id: int
    patient_id: str
    amount: int
    status: str
    payment_method: Optional[str] = None
    payment_date: Optional[datetime] = None
    created_at: Optional[datetime] = None


class FinalizeOutcome(BaseModel):
    bill: Bill
    created: bool


class BillStatusUpdate(BaseModel):
    status: BillStatus


class BackfillResponse(BaseModel):
    created: int


# --- Lab Schemas ---
class TransitionRequest(BaseModel):
    status: TestStatus
    changed_by: str
    reason: Optional[str] = None


class ResultEntry(BaseModel):
    """A lab result. Optional fields stay explicit rather than a free-form blob."""
    lab_technician_id: str
    result_value: str
    normal_range: str
    status: ResultStatus
    units: Optional[str] = None
    reference_range: Optional[str] = None
    interpretation: Optional[str] = None
    notes: Optional[str] = None


class TestResult(BaseSchema):
    id: int
    test_request_id: int
    lab_technician_id: str
    result_value: str
    normal_range: str
    status: str
    units: Optional[str] = None
    reference_range: Optional[str] = None
    interpretation: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class TestStatusHistory(BaseSchema):
    id: int
    test_request_id: int
    old_status: Optional[str] = None
    new_status: str
    changed_by: str
    reason: Optional[str] = None
    created_at: Optional[datetime] = None


# --- Dashboard Schemas ---
class TestCounts(BaseModel):
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    ready: int = 0  # sent_to_user
    cancelled: int = 0


class BillRequestStatusView(BaseModel):
    bill_request: BillRequest
    tests: List[TestRequest]
    all_tests_complete: bool


class PatientRollup(BaseModel):
    patient_id: str
    appointments: List[Appointment]
    bill_requests: List[BillRequestStatusView]
    test_counts: TestCounts
    bills: List[Bill]
    outstanding_balance: int


class DoctorOverview(BaseModel):
    doctor_id: int
    appointments: List[Appointment]
    bill_requests: List[BillRequestStatusView]


class BillerOverview(BaseModel):
    pending_requests: List[BillRequest]
    approved_unbilled: List[BillRequest]
    bill_counts: Dict[str, int]


class LabOverview(BaseModel):
    queue: List[TestRequest]
    test_counts: TestCounts


class CompletionResponse(BaseModel):
    bill_request_id: int
    all_tests_complete: bool
