"""
Doctor and procedure catalog models.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class Doctor(BaseModel):
    """A doctor from the clinic directory."""

    id: int = Field(description="Doctor identifier")
    first_name: str = Field(description="Doctor's first name")
    last_name: str = Field(description="Doctor's last name")
    specialty: Optional[str] = Field(default=None, description="Medical specialty")
    consultation_fee: Optional[Decimal] = Field(
        default=None, ge=0, description="Default consultation fee"
    )

    @property
    def display_name(self) -> str:
        return f"Dr(a). {self.first_name} {self.last_name}"

    def matches(self, query: str) -> bool:
        needle = query.strip().lower()
        if not needle:
            return True
        return needle in self.display_name.lower() or needle in (self.specialty or "").lower()


class Procedure(BaseModel):
    """
    A billable service with its own fixed price, distinct from
    a doctor's generic consultation fee.
    """

    id: int = Field(description="Procedure identifier")
    name: str = Field(description="Procedure name")
    price: Decimal = Field(ge=0, description="Procedure price")
    code: Optional[str] = Field(default=None, description="TUSS/billing code")
    category: Optional[str] = Field(default=None, description="Procedure category")
