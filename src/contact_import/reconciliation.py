from __future__ import annotations

import logging
from typing import Any, Awaitable, Dict, List, Optional, Sequence, TypeVar

from .collection import ContactCollection
from .errors import ContactImportError, DuplicateContactError, PersistenceError
from .matching import DuplicateMatcher
from .models import (
    BatchReconciliationResult,
    CandidateContact,
    Contact,
    Source,
    fields_to_api,
    translate_field_errors,
)
from .notifications import Level, Notifier
from .store import MAX_BATCH_SIZE, ContactStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _chunks(items: Sequence[T], size: int) -> List[Sequence[T]]:
    return [items[start : start + size] for start in range(0, len(items), size)]


class BatchReconciliationClient:
    """Talks to the contact store and folds its answers into the visible collection.

    Every failure reaching the caller is a ``PersistenceError``; nothing is
    retried here.
    """

    def __init__(
        self,
        store: ContactStore,
        collection: ContactCollection,
        notifier: Notifier,
        max_batch_size: int = MAX_BATCH_SIZE,
        matcher: Optional[DuplicateMatcher] = None,
    ):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be positive")
        self.store = store
        self.collection = collection
        self.notifier = notifier
        self.max_batch_size = max_batch_size
        self.matcher = matcher or DuplicateMatcher()

    async def _call(self, operation: str, pending: Awaitable[T]) -> T:
        try:
            return await pending
        except DuplicateContactError:
            raise
        except PersistenceError as exc:
            logger.warning("%s failed: %s", operation, exc.reason)
            raise PersistenceError(
                exc.reason,
                field_errors=translate_field_errors(exc.field_errors),
                status=exc.status,
            ) from exc
        except ContactImportError:
            raise
        except Exception as exc:
            logger.warning("%s failed: %s", operation, exc)
            raise PersistenceError(f"Failed to reach the contact store: {exc}") from exc

    @staticmethod
    def _contact(payload: Dict[str, Any]) -> Contact:
        try:
            return Contact.from_api(payload)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Unexpected response from the contact store: {exc}") from exc

    async def create_batch(
        self, candidates: Sequence[CandidateContact]
    ) -> BatchReconciliationResult:
        result = BatchReconciliationResult()
        for chunk in _chunks(list(candidates), self.max_batch_size):
            payload = await self._call(
                "create_batch", self.store.create_batch([item.to_api() for item in chunk])
            )
            try:
                chunk_result = BatchReconciliationResult.from_api(payload)
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                raise PersistenceError(
                    f"Unexpected response from the contact store: {exc}"
                ) from exc
            chunk_result.verify(len(chunk))
            self.collection.add_many(chunk_result.created)
            result.extend(chunk_result)
        result.verify(len(candidates))
        logger.info(
            "Batch of %d: %d created, %d duplicate(s), %d error(s)",
            len(candidates),
            len(result.created),
            len(result.duplicates),
            len(result.errors),
        )
        if result.errors:
            first = result.errors[0]
            self.notifier.notify(
                Level.ERROR,
                f"{len(result.errors)} contact(s) could not be saved: {first.message}",
            )
        return result

    async def create(self, candidate: CandidateContact) -> Contact:
        contact = self._contact(await self._call("create", self.store.create(candidate.to_api())))
        self.collection.add(contact)
        return contact

    async def force_create(self, candidate: CandidateContact) -> Contact:
        """Create ``candidate`` even though it matches an existing contact."""
        logger.debug("Force-creating %s past the duplicate check", candidate.full_name)
        return await self.create(candidate)

    async def submit_external(self, candidate: CandidateContact) -> Contact:
        submitted = candidate.copy()
        submitted.source = Source.FORM
        existing = self.matcher.find_match(submitted, self.collection.snapshot())
        if existing is not None:
            logger.info("Rejected external submission matching contact %s", existing.id)
            raise DuplicateContactError(existing)
        return await self.create(submitted)

    async def update(self, contact_id: str, fields: Dict[str, Any]) -> Contact:
        payload = await self._call("update", self.store.update(contact_id, fields_to_api(fields)))
        contact = self._contact(payload)
        self.collection.replace(contact)
        return contact

    async def update_batch(
        self, contact_ids: Sequence[str], fields: Dict[str, Any]
    ) -> List[Contact]:
        payloads = await self._call(
            "update_batch", self.store.update_batch(list(contact_ids), fields_to_api(fields))
        )
        contacts = [self._contact(payload) for payload in payloads]
        for contact in contacts:
            self.collection.replace(contact)
        return contacts

    async def delete(self, contact_id: str) -> None:
        await self._call("delete", self.store.delete(contact_id))
        self.collection.remove([contact_id])

    async def delete_batch(self, contact_ids: Sequence[str]) -> None:
        ids = list(contact_ids)
        await self._call("delete_batch", self.store.delete_batch(ids))
        self.collection.remove(ids)
