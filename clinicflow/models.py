# clinicflow/models.py
import enum

from sqlalchemy import (
    Column, Integer, String, Date, ForeignKey, Time, DateTime, Text, Index, text
)
from sqlalchemy.orm import relationship

from .config import now
from .database import Base


# --- STATUS VOCABULARIES (values are shared with the UI/reporting layer) ---
class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BillRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TestStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SENT_TO_USER = "sent_to_user"
    CANCELLED = "cancelled"


class TestType(str, enum.Enum):
    BLOOD = "blood"
    URINE = "urine"
    IMAGING = "imaging"
    OTHER = "other"


class TestPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ResultStatus(str, enum.Enum):
    NORMAL = "normal"
    ABNORMAL = "abnormal"
    POSITIVE = "positive"
    NEGATIVE = "negative"
    BORDERLINE = "borderline"


class BillStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


# --- 1. DOCTORS ---
class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, index=True)
    specialty = Column(String)  # "Cardiology"

    appointments = relationship("Appointment", back_populates="doctor")


# --- 2. APPOINTMENTS ---
class Appointment(Base):
    __tablename__ = "appointments"
    # One active booking per (doctor, date, time); cancelled rows free the slot.
    __table_args__ = (
        Index(
            "uq_active_slot", "doctor_id", "date", "time",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(String, index=True, nullable=False)  # identity from the auth provider
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    status = Column(String, default=AppointmentStatus.SCHEDULED.value, nullable=False)
    notes = Column(Text, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=now)
    updated_at = Column(DateTime(timezone=True), default=now)

    doctor = relationship("Doctor", back_populates="appointments")


# --- 3. BILL REQUESTS ---
class BillRequest(Base):
    __tablename__ = "bill_requests"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(String, index=True, nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True, index=True)
    amount = Column(Integer, nullable=False)  # whole rupees
    notes = Column(Text, nullable=False, default="")
    disease_name = Column(String, nullable=True)
    status = Column(String, default=BillRequestStatus.PENDING.value, nullable=False)
    rejection_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=now)
    updated_at = Column(DateTime(timezone=True), default=now)

    test_requests = relationship("TestRequest", back_populates="bill_request", order_by="TestRequest.id")
    bill = relationship("Bill", back_populates="bill_request", uselist=False)


# --- 4. TEST REQUESTS ---
class TestRequest(Base):
    __tablename__ = "test_requests"

    id = Column(Integer, primary_key=True, index=True)
    bill_request_id = Column(Integer, ForeignKey("bill_requests.id"), nullable=False, index=True)
    patient_id = Column(String, index=True, nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    lab_technician_id = Column(String, nullable=True)
    test_name = Column(String, nullable=False)
    test_type = Column(String, default=TestType.OTHER.value, nullable=False)
    status = Column(String, default=TestStatus.PENDING.value, nullable=False)
    priority = Column(String, default=TestPriority.NORMAL.value, nullable=False)
    estimated_duration = Column(Integer, nullable=True)  # minutes
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=now)
    updated_at = Column(DateTime(timezone=True), default=now)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    bill_request = relationship("BillRequest", back_populates="test_requests")
    results = relationship("TestResult", back_populates="test_request")
    history = relationship("TestStatusHistory", back_populates="test_request")


# --- 5. TEST RESULTS ---
class TestResult(Base):
    __tablename__ = "test_results"

    id = Column(Integer, primary_key=True, index=True)
    test_request_id = Column(Integer, ForeignKey("test_requests.id"), nullable=False, unique=True)  # one result per test
    lab_technician_id = Column(String, nullable=False)
    result_value = Column(String, nullable=False)
    normal_range = Column(String, nullable=False)
    status = Column(String, nullable=False)
    units = Column(String, nullable=True)
    reference_range = Column(String, nullable=True)
    interpretation = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=now)

    test_request = relationship("TestRequest", back_populates="results")


# --- 6. TEST STATUS HISTORY (append-only) ---
class TestStatusHistory(Base):
    __tablename__ = "test_status_history"

    id = Column(Integer, primary_key=True, index=True)
    test_request_id = Column(Integer, ForeignKey("test_requests.id"), nullable=False, index=True)
    old_status = Column(String, nullable=True)
    new_status = Column(String, nullable=False)
    changed_by = Column(String, nullable=False)
    reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=now)

    test_request = relationship("TestRequest", back_populates="history")


# --- 7. BILLS ---
class Bill(Base):
    __tablename__ = "bills"

    id = Column(Integer, primary_key=True, index=True)
    bill_request_id = Column(Integer, ForeignKey("bill_requests.id"), unique=True, nullable=False)
    patient_id = Column(String, index=True, nullable=False)
    amount = Column(Integer, nullable=False)
    status = Column(String, default=BillStatus.PENDING.value, nullable=False)
    payment_method = Column(String, nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=now)
    updated_at = Column(DateTime(timezone=True), default=now)

    bill_request = relationship("BillRequest", back_populates="bill")
