from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from .collection import ContactCollection, RemovedEntry
from .errors import PersistenceError
from .models import Contact
from .notifications import Level, Notifier
from .reconciliation import BatchReconciliationClient

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 5.0


@dataclass
class PendingDeletion:
    id: int
    contact_ids: List[str]
    removed: List[RemovedEntry] = field(default_factory=list)
    task: Optional["asyncio.Task[None]"] = None


class UndoHandle:
    def __init__(self, coordinator: "DeferredDeletionCoordinator", pending_id: int):
        self._coordinator = coordinator
        self.pending_id = pending_id

    def undo(self) -> bool:
        return self._coordinator.undo(self.pending_id)

    def __repr__(self) -> str:
        return f"UndoHandle(pending_id={self.pending_id})"


class DeferredDeletionCoordinator:
    """Optimistic deletes that commit only after a grace window.

    A commit runs only while its id is still in the pending map. ``undo`` pops
    the entry before cancelling the timer, so a timer that already woke up
    finds nothing to commit.
    """

    def __init__(
        self,
        client: BatchReconciliationClient,
        collection: ContactCollection,
        notifier: Notifier,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
    ):
        if grace_seconds < 0:
            raise ValueError("grace_seconds must not be negative")
        self.client = client
        self.collection = collection
        self.notifier = notifier
        self.grace_seconds = grace_seconds
        self._pending: Dict[int, PendingDeletion] = {}
        self._ids = itertools.count(1)
        self._tasks: Set["asyncio.Task[None]"] = set()

    def pending_ids(self) -> List[int]:
        return sorted(self._pending)

    def delete_with_undo(self, contacts: Sequence[Contact]) -> UndoHandle:
        """Hide ``contacts`` now and delete them once the grace window passes.

        Must be called with a running event loop.
        """
        contact_ids = list(dict.fromkeys(contact.id for contact in contacts))
        if not contact_ids:
            raise ValueError("no contacts to delete")
        pending = PendingDeletion(
            id=next(self._ids),
            contact_ids=contact_ids,
            removed=self.collection.remove(contact_ids),
        )
        self._pending[pending.id] = pending
        pending.task = asyncio.get_running_loop().create_task(self._commit_after(pending.id))
        self._tasks.add(pending.task)
        pending.task.add_done_callback(self._tasks.discard)
        logger.debug("Scheduled deletion %d for %s", pending.id, contact_ids)

        handle = UndoHandle(self, pending.id)
        if len(contact_ids) == 1:
            label = "Contact deleted"
        else:
            label = f"{len(contact_ids)} contacts deleted"
        self.notifier.offer_undo(label, handle.undo, self.grace_seconds)
        return handle

    def undo(self, pending_id: int) -> bool:
        pending = self._pending.pop(pending_id, None)
        if pending is None:
            return False
        if pending.task is not None:
            pending.task.cancel()
        self.collection.restore(pending.removed)
        logger.info("Deletion %d undone", pending_id)
        self.notifier.notify(Level.INFO, "Deletion undone")
        return True

    async def _commit_after(self, pending_id: int) -> None:
        await asyncio.sleep(self.grace_seconds)
        pending = self._pending.pop(pending_id, None)
        if pending is None:
            return
        try:
            if len(pending.contact_ids) == 1:
                await self.client.delete(pending.contact_ids[0])
            else:
                await self.client.delete_batch(pending.contact_ids)
        except PersistenceError as exc:
            self.collection.restore(pending.removed)
            logger.error("Deletion %d failed, contacts restored: %s", pending_id, exc.reason)
            self.notifier.notify(Level.ERROR, f"Failed to delete contacts: {exc.reason}")
            return
        logger.info("Deletion %d committed (%d contact(s))", pending_id, len(pending.contact_ids))

    def shutdown(self) -> None:
        """Cancel every deletion still waiting for its grace window."""
        for pending_id in list(self._pending):
            pending = self._pending.pop(pending_id)
            if pending.task is not None:
                pending.task.cancel()
        logger.debug("Deletion coordinator shut down")

    async def join(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
