"""
Data models for the clinic scheduling core.
"""

from .booking import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    BookingDraft,
    BookingRequest,
    PaymentMethod,
)
from .doctor import Doctor, Procedure
from .patient import Patient, PatientHistorySummary
from .schedule import BreakWindow, DoctorSchedule, SlotStatus, TimeSlot

__all__ = [
    "Appointment",
    "AppointmentStatus",
    "AppointmentType",
    "BookingDraft",
    "BookingRequest",
    "BreakWindow",
    "Doctor",
    "DoctorSchedule",
    "Patient",
    "PatientHistorySummary",
    "PaymentMethod",
    "Procedure",
    "SlotStatus",
    "TimeSlot",
]
