"""
Pipeline stage state machine.

Lead -> Qualification -> Proposal -> Negotiation -> Won, with Lost as an
absorbing side state reachable from anywhere. Transitions are pure; the
contact service applies them through update_stage.
"""

from datetime import datetime

from leadflow.config import settings
from leadflow.models.domain.contact_domain import Contact, LeadStage, utcnow

STAGE_ORDER: tuple[LeadStage, ...] = (
    LeadStage.LEAD,
    LeadStage.QUALIFICATION,
    LeadStage.PROPOSAL,
    LeadStage.NEGOTIATION,
    LeadStage.WON,
)

SECONDS_PER_DAY = 86400


def advance(stage: LeadStage) -> LeadStage:
    """Next stage in order. Won and Lost are fixed points."""
    if stage == LeadStage.LOST:
        return LeadStage.LOST
    index = STAGE_ORDER.index(stage)
    return STAGE_ORDER[min(index + 1, len(STAGE_ORDER) - 1)]


def regress(stage: LeadStage) -> LeadStage:
    """Previous stage in order. Lead and Lost are fixed points."""
    if stage == LeadStage.LOST:
        return LeadStage.LOST
    index = STAGE_ORDER.index(stage)
    return STAGE_ORDER[max(index - 1, 0)]


def lose(stage: LeadStage) -> LeadStage:
    return LeadStage.LOST


def set_stage(stage: LeadStage, target: LeadStage | str) -> LeadStage:
    """Arbitrary jump; any stage may move to any other."""
    return LeadStage(target)


def is_terminal(stage: LeadStage) -> bool:
    return stage in (LeadStage.WON, LeadStage.LOST)


def idle_days(contact: Contact, now: datetime | None = None) -> int:
    """Whole days since the stage last changed (falls back to created_at). Never negative."""
    reference = contact.stage_last_updated or contact.created_at
    if reference is None:
        return 0
    elapsed = (now or utcnow()) - reference
    return max(0, int(elapsed.total_seconds() // SECONDS_PER_DAY))


def is_stuck(
    contact: Contact, threshold_days: int | None = None, now: datetime | None = None
) -> bool:
    """Open deals idle for longer than the threshold. Won/Lost deals are never stuck."""
    if is_terminal(contact.stage):
        return False
    threshold = settings.STUCK_THRESHOLD_DAYS if threshold_days is None else threshold_days
    return idle_days(contact, now) > threshold


def sort_by_staleness(contacts: list[Contact], now: datetime | None = None) -> list[Contact]:
    """Most idle first; ties keep input order."""
    now = now or utcnow()
    return sorted(contacts, key=lambda c: idle_days(c, now), reverse=True)
