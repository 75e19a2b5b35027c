# leadflow/models/domain/triage_domain.py
"""
Triage Domain Models
Inbound messages waiting for a user decision, the lead details captured on
conversion, and the results of classification and triage actions.
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from leadflow.models.domain.contact_domain import parse_timestamp, utcnow
from leadflow.utils.email_address import normalize_email

TRIAGE_STATUS_PENDING = "pending"


@dataclass(slots=True)
class TriageRecord:
    """One inbound message thread from an unmatched sender, keyed by a stable message id."""

    id: str
    email: str
    from_name: str = ""
    subject: str = "(No Subject)"
    snippet: str = ""
    date: datetime = field(default_factory=utcnow)
    status: str = TRIAGE_STATUS_PENDING

    def __post_init__(self):
        self.email = normalize_email(self.email)

    @property
    def normalized_email(self) -> str:
        return self.email

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TriageRecord":
        return cls(
            id=str(data["id"]),
            email=data.get("email", ""),
            from_name=data.get("from_name", data.get("from", "")) or "",
            subject=data.get("subject") or "(No Subject)",
            snippet=data.get("snippet") or "",
            date=parse_timestamp(data.get("date")) or datetime.min.replace(tzinfo=UTC),
            status=data.get("status", TRIAGE_STATUS_PENDING),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "from": self.from_name,
            "email": self.email,
            "subject": self.subject,
            "snippet": self.snippet,
            "date": self.date.isoformat(),
            "status": self.status,
        }


@dataclass(slots=True)
class TriageClassification:
    """The two partitions of the triage queue: known senders and unknown senders."""

    suggested: list[TriageRecord] = field(default_factory=list)
    others: list[TriageRecord] = field(default_factory=list)

    def sorted(self) -> "TriageClassification":
        """Presentation order: newest first within each partition."""
        return TriageClassification(
            suggested=sorted(self.suggested, key=lambda r: r.date, reverse=True),
            others=sorted(self.others, key=lambda r: r.date, reverse=True),
        )

    def ids(self) -> set[str]:
        return {r.id for r in self.suggested} | {r.id for r in self.others}

    def __len__(self) -> int:
        return len(self.suggested) + len(self.others)


@dataclass(slots=True)
class LeadDetails:
    """Fields the user fills in when converting a triage record into a lead."""

    name: str
    company: str
    value: float = 0.0
    email: str | None = None
    phone: str = ""
    notes: str | None = None
    expected_close_date: date | None = None


class TriageActionType(str, Enum):
    IGNORE = "ignore"
    LOG = "log"
    CONVERT = "convert"
    RESTORE = "restore"


class TriageActionStatus(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    # The durable effect landed but the triage record could not be removed yet;
    # replaying the action converges.
    PARTIAL = "partial"


@dataclass(slots=True)
class TriageActionResult:
    action: TriageActionType
    triage_id: str | None
    status: TriageActionStatus
    contact_id: str | None = None
    email: str | None = None
    interaction_added: bool = False
    contact_created: bool = False
    triage_deleted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "triage_id": self.triage_id,
            "status": self.status.value,
            "contact_id": self.contact_id,
            "email": self.email,
            "interaction_added": self.interaction_added,
            "contact_created": self.contact_created,
            "triage_deleted": self.triage_deleted,
        }
