"""
Triage API request models.
Used by routes for input validation.
"""

from datetime import date

from pydantic import BaseModel, Field

from leadflow.models.domain.triage_domain import LeadDetails


class ConvertLeadRequest(BaseModel):
    """Lead details captured when converting a triage record."""

    name: str = Field(default="", max_length=200, description="Lead name")
    company: str = Field(default="", max_length=200, description="Company")
    value: float = Field(default=0.0, description="Deal value (finite, >= 0)")
    email: str | None = Field(None, max_length=320, description="Override for the sender address")
    phone: str = Field(default="", max_length=50, description="Phone number")
    notes: str | None = Field(None, max_length=5000, description="Free-form notes")
    expected_close_date: date | None = Field(None, description="Expected close date")

    def to_domain(self) -> LeadDetails:
        return LeadDetails(
            name=self.name,
            company=self.company,
            value=self.value,
            email=self.email,
            phone=self.phone,
            notes=self.notes,
            expected_close_date=self.expected_close_date,
        )
