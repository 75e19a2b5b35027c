# leadflow/models/domain/contact_domain.py
"""
Contact Domain Models
Contacts (leads) moving through the sales pipeline, and the interactions
logged against them. Used by stores, services and routes.
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from leadflow.utils.email_address import normalize_email


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse stored timestamps (datetime, ISO string or YYYY-MM-DD) into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class LeadStage(str, Enum):
    LEAD = "Lead"
    QUALIFICATION = "Qualification"
    PROPOSAL = "Proposal"
    NEGOTIATION = "Negotiation"
    WON = "Won"
    LOST = "Lost"


class InteractionType(str, Enum):
    EMAIL = "email"
    CALL = "call"
    MEETING = "meeting"
    NOTE = "note"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


@dataclass(slots=True)
class Interaction:
    """A single logged touchpoint with a contact."""

    id: str
    type: InteractionType
    date: datetime
    summary: str
    details: str | None = None
    sentiment: Sentiment | None = None
    direction: Direction | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Interaction":
        sentiment = data.get("sentiment")
        direction = data.get("direction")
        return cls(
            id=str(data["id"]),
            type=InteractionType(data.get("type", InteractionType.NOTE.value)),
            date=parse_timestamp(data.get("date")) or utcnow(),
            summary=data.get("summary", ""),
            details=data.get("details"),
            sentiment=Sentiment(sentiment) if sentiment else None,
            direction=Direction(direction) if direction else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "date": self.date.isoformat(),
            "summary": self.summary,
            "details": self.details,
            "sentiment": self.sentiment.value if self.sentiment else None,
            "direction": self.direction.value if self.direction else None,
        }


@dataclass(slots=True)
class Contact:
    """
    Domain model for a pipeline contact.

    Interactions are held as a keyed map (interaction id -> Interaction) and
    projected to a list in append order, so adding the same interaction id
    twice can never produce two entries.
    """

    id: str
    name: str
    email: str
    company: str = ""
    phone: str = ""
    stage: LeadStage = LeadStage.LEAD
    value: float = 0.0
    created_at: datetime = field(default_factory=utcnow)
    stage_last_updated: datetime | None = None
    last_interaction_date: datetime | None = None
    notes: str | None = None
    ai_insight: str | None = None
    expected_close_date: date | None = None
    _interactions: dict[str, Interaction] = field(default_factory=dict, init=False, repr=False)

    @property
    def normalized_email(self) -> str:
        return normalize_email(self.email)

    @property
    def interactions(self) -> list[Interaction]:
        return list(self._interactions.values())

    def has_interaction(self, interaction_id: str) -> bool:
        return interaction_id in self._interactions

    def add_interaction(self, interaction: Interaction) -> bool:
        """Append an interaction; returns False when its id is already present."""
        if interaction.id in self._interactions:
            return False

        self._interactions[interaction.id] = interaction
        if self.last_interaction_date is None or interaction.date >= self.last_interaction_date:
            self.last_interaction_date = interaction.date
        return True

    def replace_interactions(self, interactions: list[Interaction]) -> None:
        """Overwrite the whole history. Only for deliberate data correction."""
        self._interactions = {}
        for interaction in interactions:
            self._interactions.setdefault(interaction.id, interaction)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Contact":
        expected_close = data.get("expected_close_date")
        contact = cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            email=data.get("email", ""),
            company=data.get("company", "") or "",
            phone=data.get("phone", "") or "",
            stage=LeadStage(data.get("stage", LeadStage.LEAD.value)),
            value=float(data.get("value") or 0),
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
            stage_last_updated=parse_timestamp(data.get("stage_last_updated")),
            last_interaction_date=parse_timestamp(data.get("last_interaction_date")),
            notes=data.get("notes"),
            ai_insight=data.get("ai_insight"),
            expected_close_date=(
                date.fromisoformat(expected_close)
                if isinstance(expected_close, str)
                else expected_close
            ),
        )
        for item in data.get("interactions") or []:
            contact._interactions.setdefault(str(item["id"]), Interaction.from_dict(item))
        if contact.last_interaction_date is None and contact._interactions:
            contact.last_interaction_date = max(i.date for i in contact._interactions.values())
        return contact

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "company": self.company,
            "phone": self.phone,
            "stage": self.stage.value,
            "value": self.value,
            "created_at": _isoformat(self.created_at),
            "stage_last_updated": _isoformat(self.stage_last_updated),
            "last_interaction_date": _isoformat(self.last_interaction_date),
            "notes": self.notes,
            "ai_insight": self.ai_insight,
            "expected_close_date": (
                self.expected_close_date.isoformat() if self.expected_close_date else None
            ),
            "interactions": [interaction.to_dict() for interaction in self.interactions],
        }


# Fields a generic patch may touch. Interactions go through the append path.
PATCHABLE_CONTACT_FIELDS = frozenset(
    {
        "name",
        "company",
        "email",
        "phone",
        "stage",
        "value",
        "notes",
        "ai_insight",
        "expected_close_date",
        "last_interaction_date",
        "stage_last_updated",
    }
)
