# leadflow/models/api/contact_request.py
"""
Contact API request models.
Used by routes for input validation.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field, model_validator

from leadflow.models.domain.contact_domain import (
    Direction,
    InteractionType,
    LeadStage,
    Sentiment,
)


class InteractionRequest(BaseModel):
    """An interaction to append to a contact's history."""

    id: str | None = Field(None, description="Interaction ID (generated when omitted)")
    type: InteractionType = Field(..., description="email, call, meeting or note")
    date: datetime | None = Field(None, description="When it happened (default: now)")
    summary: str = Field(..., min_length=1, max_length=500, description="Short summary")
    details: str | None = Field(None, max_length=5000, description="Longer notes")
    sentiment: Sentiment | None = Field(None, description="positive, neutral or negative")
    direction: Direction | None = Field(None, description="inbound or outbound")


class CreateContactRequest(BaseModel):
    """Request for creating a contact."""

    id: str | None = Field(None, description="Contact ID (generated when omitted)")
    name: str = Field(..., min_length=1, max_length=200, description="Contact name")
    email: str = Field(..., min_length=3, max_length=320, description="Contact email address")
    company: str = Field(default="", max_length=200, description="Company")
    phone: str = Field(default="", max_length=50, description="Phone number")
    stage: LeadStage = Field(default=LeadStage.LEAD, description="Pipeline stage")
    value: float = Field(default=0.0, ge=0, description="Deal value")
    notes: str | None = Field(None, max_length=5000, description="Free-form notes")
    expected_close_date: date | None = Field(None, description="Expected close date")
    interactions: list[InteractionRequest] = Field(
        default_factory=list, description="Initial interaction history"
    )


# Contact fields that always hold a value; a patch may omit them but not null them.
NON_NULLABLE_FIELDS = ("name", "email", "company", "phone", "stage", "value")


class UpdateContactRequest(BaseModel):
    """Partial contact update. Only fields that are set are applied."""

    name: str | None = Field(None, min_length=1, max_length=200)
    email: str | None = Field(None, min_length=3, max_length=320)
    company: str | None = Field(None, max_length=200)
    phone: str | None = Field(None, max_length=50)
    stage: LeadStage | None = None
    value: float | None = Field(None, ge=0)
    notes: str | None = Field(None, max_length=5000)
    ai_insight: str | None = Field(None, max_length=1000)
    expected_close_date: date | None = None
    interactions: list[InteractionRequest] | None = Field(
        None, description="Full history replacement; requires allow_interaction_overwrite"
    )
    allow_interaction_overwrite: bool = Field(
        default=False, description="Explicit opt-in to overwrite the interaction history"
    )

    @model_validator(mode="after")
    def reject_null_required_fields(self):
        nulled = sorted(
            name
            for name in NON_NULLABLE_FIELDS
            if name in self.model_fields_set and getattr(self, name) is None
        )
        if nulled:
            raise ValueError(f"Fields cannot be null: {', '.join(nulled)}")
        return self


class UpdateStageRequest(BaseModel):
    stage: LeadStage = Field(..., description="Target stage (any stage may be set)")


class SeedContactsRequest(BaseModel):
    contacts: list[CreateContactRequest] = Field(..., max_length=100)
