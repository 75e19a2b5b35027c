"""
Triage classification: a pure function of the triage records, the contact
list, the ignored-sender set and the session's optimistic overlay.

The overlay holds actions the user has taken that the stores have not
confirmed yet (pending ignores and logged markers), so the view reflects
them immediately and converges once the authoritative snapshots arrive.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field

from leadflow.models.domain.contact_domain import Contact
from leadflow.models.domain.triage_domain import TriageClassification, TriageRecord
from leadflow.utils.email_address import normalize_email


def merge(local_pending: Iterable[str], authoritative: Iterable[str]) -> frozenset[str]:
    """Effective ignored set: confirmed addresses plus ones ignored locally but not yet confirmed."""
    return frozenset(normalize_email(e) for e in authoritative) | frozenset(
        normalize_email(e) for e in local_pending
    )


@dataclass
class TriageOverlay:
    """
    Per-session optimistic state.

    pending_ignores: addresses the user ignored that are not yet in the ignored set.
    logged: triage id -> snippet at the time it was logged. A record is hidden
    only while its snippet still matches, so a thread that receives a new
    message after being logged shows up again.
    """

    pending_ignores: set[str] = field(default_factory=set)
    logged: dict[str, str] = field(default_factory=dict)

    def mark_pending_ignore(self, email: str) -> None:
        self.pending_ignores.add(normalize_email(email))

    def clear_pending_ignore(self, email: str) -> None:
        self.pending_ignores.discard(normalize_email(email))

    def mark_logged(self, triage_id: str, snippet: str) -> None:
        self.logged[triage_id] = snippet

    def clear_logged(self, triage_id: str) -> None:
        self.logged.pop(triage_id, None)

    def is_logged(self, record: TriageRecord) -> bool:
        return record.id in self.logged and self.logged[record.id] == record.snippet

    def prune(self, records: Iterable[TriageRecord], ignored: Iterable[str]) -> None:
        """Drop entries the stores have caught up with."""
        confirmed = {normalize_email(e) for e in ignored}
        self.pending_ignores -= confirmed

        snippets = {record.id: record.snippet for record in records}
        for triage_id, snippet in list(self.logged.items()):
            # Record deleted (log confirmed) or replaced by a newer message
            if triage_id not in snippets or snippets[triage_id] != snippet:
                del self.logged[triage_id]


def classify(
    triage_records: Iterable[TriageRecord],
    contacts: Iterable[Contact],
    ignored_senders: Iterable[str],
    overlay: TriageOverlay | None = None,
) -> TriageClassification:
    """
    Split visible triage records into known senders (suggested) and the rest.

    Hidden: records from an ignored or pending-ignored address, and records
    whose id carries a logged marker with the same snippet. Input order is
    preserved within each partition.
    """
    contact_emails = {c.normalized_email for c in contacts if c.normalized_email}
    pending = overlay.pending_ignores if overlay else ()
    hidden_senders = merge(pending, ignored_senders)

    result = TriageClassification()
    for record in triage_records:
        email = normalize_email(record.email)
        if email in hidden_senders:
            continue
        if overlay is not None and overlay.is_logged(record):
            continue

        if email and email in contact_emails:
            result.suggested.append(record)
        else:
            result.others.append(record)

    return result
