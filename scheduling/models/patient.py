"""
Patient data models.
"""

import datetime
from typing import Optional

from pydantic import BaseModel, Field, NonNegativeInt, field_validator


class Patient(BaseModel):
    """
    A patient record as returned by the patient directory.

    Names are normalized on input so that search and display
    do not depend on how the front desk typed them.
    """

    id: int = Field(description="Patient identifier")
    first_name: str = Field(
        description="Patient's first name",
        min_length=1,
        max_length=100,
    )
    last_name: str = Field(
        description="Patient's last name",
        min_length=1,
        max_length=100,
    )
    cpf: Optional[str] = Field(default=None, description="Brazilian taxpayer id")
    birthdate: Optional[datetime.date] = Field(
        default=None,
        description="Patient's date of birth",
    )
    phone: Optional[str] = Field(default=None, description="Contact phone")
    email: Optional[str] = Field(default=None, description="Contact email")

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def normalize_name(cls, v: Optional[str]) -> Optional[str]:
        """Normalize name by stripping surrounding whitespace."""
        if v is None:
            return None
        # Preserve internal formatting (hyphens, apostrophes)
        return v.strip()

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def formatted_birthdate(self) -> Optional[str]:
        """Get formatted birthdate for display (Brazilian format)."""
        if self.birthdate:
            return self.birthdate.strftime("%d/%m/%Y")
        return None

    def matches(self, query: str) -> bool:
        """Case-insensitive match on name, CPF digits, phone or email."""
        needle = query.strip().lower()
        if not needle:
            return True
        haystack = [self.full_name.lower(), self.email or "", self.phone or ""]
        if self.cpf:
            haystack.append("".join(ch for ch in self.cpf if ch.isdigit()))
            haystack.append(self.cpf)
        return any(needle in value.lower() for value in haystack)


class PatientHistorySummary(BaseModel):
    """
    Return-visit statistics for a patient, optionally scoped to a doctor.
    """

    last_appointment_date: Optional[datetime.date] = Field(
        default=None, description="Date of the most recent past visit"
    )
    returns_count_this_month: NonNegativeInt = Field(
        default=0, description="Return visits in the current month"
    )
    returns_count_total: NonNegativeInt = Field(
        default=0, description="Return visits overall"
    )
    suggested_date: Optional[datetime.date] = Field(
        default=None, description="Suggested date for the next return visit"
    )
    message: Optional[str] = Field(default=None, description="Advisory message")

    @property
    def requires_approval(self) -> bool:
        """Multiple returns within one month need clinical approval."""
        return self.returns_count_this_month > 1
