"""
Reactive triage view for one signed-in user.

Subscribes to the contact, triage and ignored-sender stores and recomputes
the classification whenever any of them publishes a snapshot. Actions go
through the engine with this session's overlay, so the view changes before
the store writes resolve.
"""

import asyncio
from collections.abc import AsyncIterator

from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.contact_domain import Contact
from leadflow.models.domain.triage_domain import (
    LeadDetails,
    TriageActionResult,
    TriageClassification,
    TriageRecord,
)
from leadflow.repositories.contact_repository import ContactRepository
from leadflow.repositories.ignored_sender_repository import IgnoredSenderRepository
from leadflow.repositories.triage_repository import TriageRepository
from leadflow.services.triage.classification import TriageOverlay, classify
from leadflow.services.triage.engine import TriageActionEngine

logger = get_logger(__name__)


class TriageViewSession:
    def __init__(
        self,
        user_id: str,
        contact_store: ContactRepository,
        triage_store: TriageRepository,
        ignored_store: IgnoredSenderRepository,
    ):
        self.user_id = user_id
        self.contact_store = contact_store
        self.triage_store = triage_store
        self.ignored_store = ignored_store
        self.overlay = TriageOverlay()
        self.engine = TriageActionEngine(
            contact_store, triage_store, ignored_store, overlay=self.overlay
        )

        self._contacts: list[Contact] = []
        self._records: list[TriageRecord] = []
        self._ignored: frozenset[str] = frozenset()
        self._tasks: list[asyncio.Task] = []
        self._listeners: set[asyncio.Queue] = set()
        self._ready = asyncio.Event()
        self._seen: set[str] = set()
        self._failure: Exception | None = None

    async def start(self) -> None:
        """Subscribe to all three stores and wait for their first snapshots."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._consume("contacts", self.contact_store)),
            asyncio.create_task(self._consume("triage", self.triage_store)),
            asyncio.create_task(self._consume("ignored", self.ignored_store)),
        ]
        await self._ready.wait()
        if self._failure is not None:
            await self.stop()
            raise self._failure
        logger.info("Triage session started", user_id=self.user_id)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        for queue in self._listeners:
            queue.put_nowait(None)
        logger.info("Triage session stopped", user_id=self.user_id)

    async def __aenter__(self) -> "TriageViewSession":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def _consume(self, name: str, store) -> None:
        subscription = store.subscribe(self.user_id)
        try:
            async for snapshot in subscription:
                self._apply(name, snapshot)
        except Exception as e:
            logger.error("Triage subscription failed", user_id=self.user_id, stream=name, error=str(e))
            self._failure = e
            self._ready.set()
            raise
        finally:
            await subscription.aclose()

    def _apply(self, name: str, snapshot) -> None:
        if name == "contacts":
            self._contacts = snapshot
        elif name == "triage":
            self._records = snapshot
        else:
            self._ignored = snapshot

        self._seen.add(name)
        if len(self._seen) < 3:
            return
        self._ready.set()
        self.overlay.prune(self._records, self._ignored)
        self._notify()

    def _notify(self) -> None:
        view = self.view()
        for queue in self._listeners:
            queue.put_nowait(view)

    def view(self) -> TriageClassification:
        """Current classification, newest first within each partition."""
        return classify(self._records, self._contacts, self._ignored, self.overlay).sorted()

    async def changes(self) -> AsyncIterator[TriageClassification]:
        """Yield the current view, then a new one on every change until stop()."""
        queue: asyncio.Queue = asyncio.Queue()
        self._listeners.add(queue)
        try:
            yield self.view()
            while True:
                view = await queue.get()
                if view is None:
                    return
                yield view
        finally:
            self._listeners.discard(queue)

    # Overlay changes are made before the engine's first await, so the view updates at once

    async def ignore(self, record: TriageRecord) -> TriageActionResult:
        self.overlay.mark_pending_ignore(record.email)
        self._notify()
        try:
            return await self.engine.ignore(self.user_id, record)
        finally:
            self._notify()

    async def log(self, record: TriageRecord) -> TriageActionResult:
        self.overlay.mark_logged(record.id, record.snippet)
        self._notify()
        try:
            return await self.engine.log(self.user_id, record)
        finally:
            self._notify()

    async def convert(self, record: TriageRecord, details: LeadDetails) -> TriageActionResult:
        return await self.engine.convert(self.user_id, record, details)

    async def restore(self, email: str) -> TriageActionResult:
        self.overlay.clear_pending_ignore(email)
        self._notify()
        return await self.engine.restore(self.user_id, email)
