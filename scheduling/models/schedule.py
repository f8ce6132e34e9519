"""
Schedule-related data models.
"""

import re
import datetime
from enum import Enum
from typing import List, Optional, assert_never

from pydantic import BaseModel, Field, field_validator, model_validator

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def parse_hhmm(value: str) -> int:
    """Convert an HH:mm string to minutes since midnight."""
    if not isinstance(value, str) or not _HHMM.match(value):
        raise ValueError(f"Invalid time '{value}', expected HH:mm")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_hhmm(minutes: int) -> str:
    """Convert minutes since midnight to a zero-padded HH:mm string."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


class SlotStatus(str, Enum):
    """Closed set of slot states shown on a doctor's day."""

    AVAILABLE = "available"
    BOOKED = "booked"
    TENTATIVE = "tentative"
    BREAK = "break"
    URGENT = "urgent"

    @property
    def is_selectable(self) -> bool:
        match self:
            case SlotStatus.AVAILABLE:
                return True
            case SlotStatus.BOOKED | SlotStatus.TENTATIVE | SlotStatus.BREAK | SlotStatus.URGENT:
                return False
            case _:
                assert_never(self)

    @property
    def label(self) -> str:
        """Front-desk label for the status."""
        match self:
            case SlotStatus.AVAILABLE:
                return "Disponível"
            case SlotStatus.BOOKED:
                return "Ocupado"
            case SlotStatus.TENTATIVE:
                return "Provisório"
            case SlotStatus.BREAK:
                return "Intervalo"
            case SlotStatus.URGENT:
                return "Urgente"
            case _:
                assert_never(self)


class TimeSlot(BaseModel):
    """
    A fixed-duration unit of a doctor's working day.
    """

    time: str = Field(description="Start time of the slot (HH:mm)")
    status: SlotStatus = Field(default=SlotStatus.AVAILABLE, description="Slot status")
    appointment_id: Optional[int] = Field(
        default=None, description="Appointment occupying this slot"
    )
    patient_name: Optional[str] = Field(
        default=None, description="Name of the patient occupying this slot"
    )

    model_config = {"frozen": True}

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        parse_hhmm(v)
        return v

    @property
    def minutes(self) -> int:
        """Minutes since midnight."""
        return parse_hhmm(self.time)

    @property
    def selectable(self) -> bool:
        """Whether the operator may book this slot."""
        return self.status.is_selectable


class BreakWindow(BaseModel):
    """A time range permanently excluded from bookability, [start, end)."""

    start: str
    end: str

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_range(self) -> "BreakWindow":
        if parse_hhmm(self.start) >= parse_hhmm(self.end):
            raise ValueError(f"Break start {self.start} must precede end {self.end}")
        return self

    def contains(self, time: str) -> bool:
        """Check whether an HH:mm time falls in the window."""
        minutes = parse_hhmm(time)
        return parse_hhmm(self.start) <= minutes < parse_hhmm(self.end)


class DoctorSchedule(BaseModel):
    """
    A doctor's reconciled slot view for one date.
    """

    doctor_id: int
    doctor_name: Optional[str] = None
    date: datetime.date
    slots: List[TimeSlot] = Field(default_factory=list)
    break_start: Optional[str] = None
    break_end: Optional[str] = None

    def slot_at(self, time: str) -> Optional[TimeSlot]:
        """Get the slot starting at the given time, if any."""
        for slot in self.slots:
            if slot.time == time:
                return slot
        return None

    @property
    def available_times(self) -> List[str]:
        """Start times the operator can still book."""
        return [slot.time for slot in self.slots if slot.selectable]

    def count_by_status(self) -> dict:
        """Number of slots in each status."""
        counts = {status: 0 for status in SlotStatus}
        for slot in self.slots:
            counts[slot.status] += 1
        return counts
