"""
Triage API response models.
Used by routes for output formatting.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from leadflow.models.domain.triage_domain import (
    TriageActionResult,
    TriageClassification,
    TriageRecord,
)


class TriageRecordResponse(BaseModel):
    id: str = Field(..., description="Triage record ID (the source message ID)")
    email: str = Field(..., description="Normalized sender address")
    from_name: str = Field(default="", description="Sender display name")
    subject: str = Field(..., description="Message subject")
    snippet: str = Field(default="", description="Message preview")
    date: datetime = Field(..., description="When the message arrived")

    @classmethod
    def from_domain(cls, record: TriageRecord) -> "TriageRecordResponse":
        return cls(
            id=record.id,
            email=record.email,
            from_name=record.from_name,
            subject=record.subject,
            snippet=record.snippet,
            date=record.date,
        )


class TriageViewResponse(BaseModel):
    """The triage queue split by whether the sender is already a contact."""

    suggested: list[TriageRecordResponse] = Field(..., description="Senders matching a contact")
    others: list[TriageRecordResponse] = Field(..., description="Unknown senders")
    total: int = Field(..., description="Visible records")

    @classmethod
    def from_domain(cls, view: TriageClassification) -> "TriageViewResponse":
        return cls(
            suggested=[TriageRecordResponse.from_domain(r) for r in view.suggested],
            others=[TriageRecordResponse.from_domain(r) for r in view.others],
            total=len(view),
        )


class TriageActionResponse(BaseModel):
    action: str = Field(..., description="ignore, log, convert or restore")
    triage_id: str | None = Field(None, description="Triage record the action applied to")
    status: str = Field(..., description="applied, noop or partial")
    contact_id: str | None = Field(None, description="Contact touched by the action")
    email: str | None = Field(None, description="Address the action applied to")
    interaction_added: bool = False
    contact_created: bool = False
    triage_deleted: bool = False

    @classmethod
    def from_domain(cls, result: TriageActionResult) -> "TriageActionResponse":
        return cls(**result.to_dict())


class IgnoredSendersResponse(BaseModel):
    senders: list[str] = Field(..., description="Ignored addresses, sorted")
