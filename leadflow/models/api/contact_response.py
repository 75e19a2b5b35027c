"""
Contact API response models.
Used by routes for output formatting.
"""

from datetime import date, datetime

from pydantic import BaseModel, Field

from leadflow.models.domain.contact_domain import Contact, Interaction


class InteractionResponse(BaseModel):
    id: str = Field(..., description="Interaction ID")
    type: str = Field(..., description="email, call, meeting or note")
    date: datetime = Field(..., description="When it happened")
    summary: str = Field(..., description="Short summary")
    details: str | None = Field(None, description="Longer notes")
    sentiment: str | None = Field(None, description="positive, neutral or negative")
    direction: str | None = Field(None, description="inbound or outbound")

    @classmethod
    def from_domain(cls, interaction: Interaction) -> "InteractionResponse":
        return cls(
            id=interaction.id,
            type=interaction.type.value,
            date=interaction.date,
            summary=interaction.summary,
            details=interaction.details,
            sentiment=interaction.sentiment.value if interaction.sentiment else None,
            direction=interaction.direction.value if interaction.direction else None,
        )


class ContactResponse(BaseModel):
    """Response model for a pipeline contact."""

    id: str = Field(..., description="Contact ID")
    name: str = Field(..., description="Contact name")
    email: str = Field(..., description="Contact email address")
    company: str = Field(default="", description="Company")
    phone: str = Field(default="", description="Phone number")
    stage: str = Field(..., description="Pipeline stage")
    value: float = Field(default=0.0, description="Deal value")
    created_at: datetime = Field(..., description="When the contact was created")
    stage_last_updated: datetime | None = Field(None, description="Last stage change")
    last_interaction_date: datetime | None = Field(None, description="Most recent interaction")
    notes: str | None = Field(None, description="Free-form notes")
    ai_insight: str | None = Field(None, description="Last generated insight")
    expected_close_date: date | None = Field(None, description="Expected close date")
    idle_days: int = Field(default=0, description="Whole days since the last stage change")
    is_stuck: bool = Field(default=False, description="Idle past the stuck threshold")
    interactions: list[InteractionResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, contact: Contact, idle_days: int = 0, is_stuck: bool = False) -> "ContactResponse":
        return cls(
            id=contact.id,
            name=contact.name,
            email=contact.email,
            company=contact.company,
            phone=contact.phone,
            stage=contact.stage.value,
            value=contact.value,
            created_at=contact.created_at,
            stage_last_updated=contact.stage_last_updated,
            last_interaction_date=contact.last_interaction_date,
            notes=contact.notes,
            ai_insight=contact.ai_insight,
            expected_close_date=contact.expected_close_date,
            idle_days=idle_days,
            is_stuck=is_stuck,
            interactions=[InteractionResponse.from_domain(i) for i in contact.interactions],
        )


class ContactListResponse(BaseModel):
    contacts: list[ContactResponse] = Field(..., description="Contacts, stalest first")
    total: int = Field(..., description="Number of contacts")
    stuck_count: int = Field(default=0, description="Contacts idle past the stuck threshold")


class InteractionAddedResponse(BaseModel):
    contact_id: str = Field(..., description="Contact ID")
    interaction_id: str = Field(..., description="Interaction ID")
    added: bool = Field(..., description="False when the interaction id was already logged")


class SeedContactsResponse(BaseModel):
    requested: int
    created: int


class InsightResponse(BaseModel):
    contact_id: str = Field(..., description="Contact ID")
    insight: str = Field(..., description="Relationship summary and suggested next step")


class FollowUpDraftResponse(BaseModel):
    contact_id: str = Field(..., description="Contact ID")
    draft: str | None = Field(None, description="Draft email body, absent when unavailable")
