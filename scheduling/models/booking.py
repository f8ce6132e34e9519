"""
Booking-related data models.
"""

import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator

from scheduling.config import get_appointment_type_by_id, get_payment_method_name
from scheduling.models.doctor import Doctor
from scheduling.models.patient import Patient
from scheduling.models.schedule import parse_hhmm


class AppointmentType(str, Enum):
    CONSULTATION = "consultation"
    PROCEDURE = "procedure"
    FOLLOW_UP = "follow_up"
    EMERGENCY = "emergency"

    @property
    def label(self) -> str:
        """Display name from the appointment type catalog."""
        entry = get_appointment_type_by_id(self.value)
        return entry["name"] if entry else self.value


class PaymentMethod(str, Enum):
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    PIX = "pix"
    CHECK = "check"
    INSURANCE = "insurance"
    OTHER = "other"

    @property
    def label(self) -> str:
        return get_payment_method_name(self.value) or self.value


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    PENDING = "pending"
    CHECKED_IN = "checked_in"
    IN_CONSULTATION = "in_consultation"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


def parse_amount(value: Any) -> Optional[Decimal]:
    """
    Parse a monetary amount typed by the operator.

    Accepts Decimal, int, float or strings using either "." or ","
    as decimal separator. Blank input means no amount.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    else:
        text = str(value).strip().replace("R$", "").strip()
        if not text:
            return None
        if "," in text:
            text = text.replace(".", "").replace(",", ".")
        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"Invalid amount '{value}'")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount '{value}'")
    if amount < 0:
        raise ValueError("Amount cannot be negative")
    return amount.quantize(Decimal("0.01"))


class Appointment(BaseModel):
    """
    An appointment as stored by the clinic backend.
    """

    id: int
    patient_id: int
    doctor_id: int
    clinic_id: int
    scheduled_datetime: datetime.datetime
    appointment_type: AppointmentType = AppointmentType.CONSULTATION
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    urgent: bool = False
    patient_name: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    consultation_price: Optional[Decimal] = None
    procedure_id: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None


class BookingRequest(BaseModel):
    """
    The single outgoing request produced when a booking is confirmed.
    """

    patient_id: int
    doctor_id: int
    clinic_id: int
    scheduled_datetime: datetime.datetime
    appointment_type: AppointmentType
    reason: Optional[str] = None
    notes: Optional[str] = None
    urgent: bool = False
    consultation_price: Optional[Decimal] = None
    procedure_id: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None
    create_invoice: bool = False

    @field_validator("scheduled_datetime")
    @classmethod
    def require_timezone(cls, v: datetime.datetime) -> datetime.datetime:
        if v.tzinfo is None:
            raise ValueError("scheduled_datetime must be timezone-aware")
        return v


class BookingDraft(BaseModel):
    """
    The in-progress appointment request accumulated across wizard steps.

    Drafts are immutable. Every ``with_*`` method returns a new draft,
    so the wizard can keep a failed submission's draft untouched.
    """

    patient: Optional[Patient] = None
    doctor: Optional[Doctor] = None
    date: Optional[datetime.date] = None
    time: Optional[str] = None
    appointment_type: Optional[AppointmentType] = None
    reason: str = ""
    notes: str = ""
    urgent: bool = False
    selected_procedure_id: Optional[int] = None
    manual_price: Optional[Decimal] = None
    payment_method: Optional[PaymentMethod] = None
    create_invoice: bool = False

    model_config = {"frozen": True}

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            parse_hhmm(v)
        return v

    @field_validator("manual_price", mode="before")
    @classmethod
    def validate_manual_price(cls, v: Any) -> Optional[Decimal]:
        return parse_amount(v)

    def _with(self, **changes: Any) -> "BookingDraft":
        return type(self)(**{**dict(self), **changes})

    def with_patient(self, patient: Optional[Patient]) -> "BookingDraft":
        return self._with(patient=patient)

    def with_doctor(self, doctor: Optional[Doctor]) -> "BookingDraft":
        # Procedures belong to a doctor's catalog
        if doctor is not None and self.doctor is not None and doctor.id == self.doctor.id:
            return self._with(doctor=doctor)
        return self._with(doctor=doctor, selected_procedure_id=None)

    def with_date(self, value: Optional[datetime.date]) -> "BookingDraft":
        return self._with(date=value)

    def with_time(self, value: Optional[str]) -> "BookingDraft":
        return self._with(time=value)

    def with_appointment_type(self, value: Optional[AppointmentType]) -> "BookingDraft":
        return self._with(appointment_type=value)

    def with_reason(self, value: str) -> "BookingDraft":
        return self._with(reason=value)

    def with_notes(self, value: str) -> "BookingDraft":
        return self._with(notes=value)

    def with_urgent(self, value: bool) -> "BookingDraft":
        return self._with(urgent=value)

    def with_procedure(self, procedure_id: Optional[int]) -> "BookingDraft":
        return self._with(selected_procedure_id=procedure_id)

    def with_manual_price(self, value: Any) -> "BookingDraft":
        return self._with(manual_price=value)

    def with_payment_method(self, value: Optional[PaymentMethod]) -> "BookingDraft":
        return self._with(payment_method=value)

    def with_create_invoice(self, value: bool) -> "BookingDraft":
        return self._with(create_invoice=value)

    @property
    def missing_for_submission(self) -> List[str]:
        """Names of the selections still required before submitting."""
        missing = []
        if self.patient is None:
            missing.append("patient")
        if self.doctor is None:
            missing.append("doctor")
        if self.date is None:
            missing.append("date")
        if self.time is None:
            missing.append("time")
        return missing

    @property
    def is_submittable(self) -> bool:
        return not self.missing_for_submission

    def scheduled_datetime(self, timezone: str) -> datetime.datetime:
        """
        Combine the selected date and time into an absolute timestamp.

        Args:
            timezone: IANA name of the clinic's local time zone

        Returns:
            Timezone-aware datetime in the clinic's local time
        """
        if self.date is None or self.time is None:
            raise ValueError("Both date and time must be selected")
        minutes = parse_hhmm(self.time)
        return datetime.datetime(
            self.date.year,
            self.date.month,
            self.date.day,
            minutes // 60,
            minutes % 60,
            tzinfo=ZoneInfo(timezone),
        )
