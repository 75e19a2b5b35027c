# leadflow/repositories/triage_repository.py
"""
Triage Store: pending inbound messages from unmatched senders, keyed by a
stable message id. Upserts are last-write-wins by id.
"""

import copy
from collections import defaultdict

from leadflow.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.triage_domain import TriageRecord
from leadflow.repositories.base import SnapshotPublisher

logger = get_logger(__name__)


class TriageRepository(SnapshotPublisher[list[TriageRecord]]):
    async def snapshot(self, user_id: str) -> list[TriageRecord]:
        return await self.list_records(user_id)

    async def list_records(self, user_id: str) -> list[TriageRecord]:
        raise NotImplementedError

    async def get_record(self, user_id: str, triage_id: str) -> TriageRecord | None:
        raise NotImplementedError

    async def upsert_record(self, user_id: str, record: TriageRecord) -> None:
        raise NotImplementedError

    async def delete_record(self, user_id: str, triage_id: str) -> bool:
        """Returns False when the record was already gone."""
        raise NotImplementedError


class InMemoryTriageRepository(TriageRepository):
    def __init__(self):
        super().__init__()
        self._records: dict[str, dict[str, TriageRecord]] = defaultdict(dict)

    async def list_records(self, user_id: str) -> list[TriageRecord]:
        return copy.deepcopy(list(self._records[user_id].values()))

    async def get_record(self, user_id: str, triage_id: str) -> TriageRecord | None:
        record = self._records[user_id].get(triage_id)
        return copy.deepcopy(record) if record else None

    async def upsert_record(self, user_id: str, record: TriageRecord) -> None:
        self._records[user_id][record.id] = copy.deepcopy(record)
        await self.publish(user_id)

    async def delete_record(self, user_id: str, triage_id: str) -> bool:
        removed = self._records[user_id].pop(triage_id, None) is not None
        if removed:
            await self.publish(user_id)
        return removed


def _row_to_record(row: dict) -> TriageRecord:
    return TriageRecord(
        id=row["id"],
        email=row["email"],
        from_name=row.get("from_name") or "",
        subject=row.get("subject") or "(No Subject)",
        snippet=row.get("snippet") or "",
        date=row["received_at"],
        status=row.get("status") or "pending",
    )


class PostgresTriageRepository(TriageRepository):
    async def list_records(self, user_id: str) -> list[TriageRecord]:
        query = """
            SELECT id, email, from_name, subject, snippet, received_at, status
            FROM triage_records
            WHERE user_id = %s
            ORDER BY received_at DESC, id
        """
        rows = await fetch_all(query, (user_id,))
        return [_row_to_record(row) for row in rows]

    async def get_record(self, user_id: str, triage_id: str) -> TriageRecord | None:
        query = """
            SELECT id, email, from_name, subject, snippet, received_at, status
            FROM triage_records
            WHERE user_id = %s AND id = %s
        """
        row = await fetch_one(query, (user_id, triage_id))
        return _row_to_record(row) if row else None

    @with_db_retry()
    async def upsert_record(self, user_id: str, record: TriageRecord) -> None:
        query = """
            INSERT INTO triage_records
                (user_id, id, email, from_name, subject, snippet, received_at, status, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, NOW())
            ON CONFLICT (user_id, id) DO UPDATE SET
                email = EXCLUDED.email,
                from_name = EXCLUDED.from_name,
                subject = EXCLUDED.subject,
                snippet = EXCLUDED.snippet,
                received_at = EXCLUDED.received_at,
                status = EXCLUDED.status,
                updated_at = NOW()
        """
        await execute_query(
            query,
            (
                user_id,
                record.id,
                record.email,
                record.from_name,
                record.subject,
                record.snippet,
                record.date,
                record.status,
            ),
        )
        logger.debug("Triage record upserted", user_id=user_id, triage_id=record.id)
        await self.publish(user_id)

    @with_db_retry()
    async def delete_record(self, user_id: str, triage_id: str) -> bool:
        deleted = await execute_query(
            "DELETE FROM triage_records WHERE user_id = %s AND id = %s", (user_id, triage_id)
        )
        if deleted:
            await self.publish(user_id)
        return deleted > 0
