"""Import wizard state machine.

UPLOAD -> PROCESSING -> REVIEW -> DUPLICATES -> RESULTS -> CLOSED.
A failed extraction or parse returns to UPLOAD; ``cancel`` reaches CLOSED from
any step except PROCESSING. A store call that returns after the session was
closed or cancelled is dropped and raises ``InvalidTransition``.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Union

from .errors import (
    ConflictAlreadyResolved,
    ContactImportError,
    InvalidTransition,
    PersistenceError,
    RowValidationError,
)
from .extraction import Extractor, check_image_upload, check_import_upload, extract_candidates
from .models import (
    FIELD_NAMES,
    BatchReconciliationResult,
    CandidateContact,
    Conflict,
    Contact,
    Resolution,
    Source,
)
from .normalization import EMAIL_RE, is_valid_phone_input
from .notifications import Level, Notifier
from .parsing import MAX_FILE_BYTES, parse
from .reconciliation import BatchReconciliationClient

logger = logging.getLogger(__name__)

ResolutionLike = Union[Resolution, str]


class WizardStep(str, Enum):
    UPLOAD = "upload"
    PROCESSING = "processing"
    REVIEW = "review"
    DUPLICATES = "duplicates"
    RESULTS = "results"
    CLOSED = "closed"


def validate_manual_contact(candidate: CandidateContact) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    if not candidate.full_name.strip():
        errors["full_name"] = ["Name is required"]
    if not candidate.phone.strip():
        errors["phone"] = ["Phone number is required"]
    elif not is_valid_phone_input(candidate.phone):
        errors["phone"] = ["Please enter a valid phone number"]
    if candidate.email.strip() and not EMAIL_RE.match(candidate.email.strip()):
        errors["email"] = ["Please enter a valid email address"]
    return errors


class ImportSession:
    """One pass through the import wizard.

    Rows are reviewed locally, submitted as a batch, and any duplicate that
    the store reports together with its existing contact becomes a
    ``Conflict`` to resolve with skip, merge or add.
    """

    def __init__(
        self,
        client: BatchReconciliationClient,
        notifier: Notifier,
        extractor: Optional[Extractor] = None,
        max_file_bytes: int = MAX_FILE_BYTES,
        on_closed: Optional[Callable[["ImportSession"], None]] = None,
    ):
        self.client = client
        self.notifier = notifier
        self.extractor = extractor
        self.max_file_bytes = max_file_bytes
        self.step = WizardStep.UPLOAD
        self.error: Optional[str] = None
        self.on_closed = on_closed
        self._generation = 0
        self._reset_state()

    def _reset_state(self) -> None:
        self.rows: List[CandidateContact] = []
        self._originals: List[CandidateContact] = []
        self.row_errors: Dict[int, List[str]] = {}
        self.result: Optional[BatchReconciliationResult] = None
        self.conflicts: List[Conflict] = []
        self._in_flight: Set[int] = set()
        self.created_count = 0
        self.duplicates_handled = 0
        self.error_count = 0

    def _require(self, *steps: WizardStep) -> None:
        if self.step not in steps:
            allowed = ", ".join(step.value for step in steps)
            raise InvalidTransition(f"cannot do this in step {self.step.value} (needs {allowed})")

    def _move(self, step: WizardStep) -> None:
        logger.debug("Import step %s -> %s", self.step.value, step.value)
        self.step = step

    def _check_current(self, generation: int) -> None:
        if generation != self._generation:
            logger.info("Dropping a store result for a closed import session")
            raise InvalidTransition("import session was closed while saving")

    # -- upload / processing -------------------------------------------------

    async def ingest_image(self, data: bytes, mime_type: str) -> List[CandidateContact]:
        self._require(WizardStep.UPLOAD)
        if self.extractor is None:
            raise InvalidTransition("no extractor configured for image imports")
        check_image_upload(data, mime_type, self.max_file_bytes)
        self._move(WizardStep.PROCESSING)
        try:
            rows = await extract_candidates(self.extractor, data, mime_type)
        except ContactImportError as exc:
            self._processing_failed(exc)
            raise
        return self._start_review(rows)

    async def ingest_file(self, data: bytes, filename: str) -> List[CandidateContact]:
        self._require(WizardStep.UPLOAD)
        check_import_upload(data, filename, self.max_file_bytes)
        self._move(WizardStep.PROCESSING)
        try:
            rows = await asyncio.to_thread(parse, data, filename, self.max_file_bytes)
        except ContactImportError as exc:
            self._processing_failed(exc)
            raise
        return self._start_review(rows)

    def _processing_failed(self, exc: ContactImportError) -> None:
        self.error = exc.reason
        logger.warning("Import processing failed: %s", exc.reason)
        self.notifier.notify(Level.ERROR, exc.reason)
        self._move(WizardStep.UPLOAD)

    def _start_review(self, rows: Sequence[CandidateContact]) -> List[CandidateContact]:
        if not rows:
            error = ContactImportError("No contacts found")
            self._processing_failed(error)
            raise error
        self.error = None
        self.rows = [row.copy() for row in rows]
        self._originals = [row.copy() for row in rows]
        self.row_errors = {}
        self._move(WizardStep.REVIEW)
        self.notifier.notify(Level.SUCCESS, f"Found {len(self.rows)} contact(s)")
        return self.rows

    # -- review --------------------------------------------------------------

    def edit_row(self, index: int, field_name: str, value: str) -> None:
        self._require(WizardStep.REVIEW)
        if field_name not in FIELD_NAMES:
            raise KeyError(f"unknown contact field: {field_name}")
        setattr(self.rows[index], field_name, value)
        flagged = self.row_errors.get(index)
        if flagged and field_name in flagged:
            flagged.remove(field_name)
            if not flagged:
                del self.row_errors[index]

    def delete_row(self, index: int) -> None:
        self._require(WizardStep.REVIEW)
        del self.rows[index]
        del self._originals[index]
        self.row_errors = {
            (row if row < index else row - 1): fields
            for row, fields in self.row_errors.items()
            if row != index
        }

    def edited_rows(self) -> List[int]:
        return [
            idx for idx, (row, original) in enumerate(zip(self.rows, self._originals))
            if row != original
        ]

    def validate_rows(self) -> Dict[int, List[str]]:
        self.row_errors = {
            idx: row.missing_fields() for idx, row in enumerate(self.rows) if not row.is_complete()
        }
        return self.row_errors

    async def confirm(self) -> BatchReconciliationResult:
        self._require(WizardStep.REVIEW)
        if not self.rows:
            raise InvalidTransition("no contacts to save")
        row_errors = self.validate_rows()
        if row_errors:
            error = RowValidationError({idx: list(fields) for idx, fields in row_errors.items()})
            self.notifier.notify(Level.ERROR, error.reason)
            raise error
        generation = self._generation
        try:
            result = await self.client.create_batch(self.rows)
        except ContactImportError as exc:
            self._check_current(generation)
            self.error = exc.reason
            self.notifier.notify(Level.ERROR, f"Failed to save contacts: {exc.reason}")
            raise
        self._check_current(generation)

        self.error = None
        self.result = result
        self.created_count = len(result.created)
        self.error_count = len(result.errors)
        # duplicates without the existing contact cannot be resolved and count as skipped
        self.duplicates_handled = len(result.unresolvable_duplicates())
        self.conflicts = [
            Conflict(candidate=entry.candidate, existing=entry.existing, index=idx)
            for idx, entry in enumerate(result.resolvable_duplicates())
        ]
        if result.created:
            self.notifier.notify(Level.SUCCESS, f"{len(result.created)} contact(s) saved")
        if self.conflicts:
            self.notifier.notify(
                Level.WARNING, f"{len(self.conflicts)} possible duplicate(s) need review"
            )
            self._move(WizardStep.DUPLICATES)
        else:
            self._move(WizardStep.RESULTS)
        return result

    # -- duplicates ----------------------------------------------------------

    def pending_conflicts(self) -> List[Conflict]:
        return [conflict for conflict in self.conflicts if not conflict.is_resolved]

    @staticmethod
    def _action(action: ResolutionLike) -> Resolution:
        resolution = Resolution(action)
        if resolution is Resolution.PENDING:
            raise ValueError("pending is not a resolution")
        return resolution

    async def _apply(self, conflict: Conflict, action: Resolution) -> None:
        generation = self._generation
        if action is Resolution.MERGE:
            fields = conflict.merge_fields()
            if fields:
                await self.client.update(conflict.existing.id, fields)
        elif action is Resolution.ADD:
            await self.client.force_create(conflict.candidate)
        self._check_current(generation)
        # every resolution, add included, counts as a handled duplicate
        self.duplicates_handled += 1
        conflict.resolution = action
        logger.debug("Conflict %d resolved with %s", conflict.index, action.value)

    async def resolve(self, index: int, action: ResolutionLike) -> Conflict:
        self._require(WizardStep.DUPLICATES)
        resolution = self._action(action)
        conflict = self.conflicts[index]
        if conflict.is_resolved or index in self._in_flight:
            raise ConflictAlreadyResolved(f"conflict {index} is already resolved")
        self._in_flight.add(index)
        try:
            await self._apply(conflict, resolution)
        except PersistenceError as exc:
            self.notifier.notify(Level.ERROR, f"Failed to resolve duplicate: {exc.reason}")
            raise
        finally:
            self._in_flight.discard(index)
        self._finish_if_resolved()
        return conflict

    async def resolve_all(self, action: ResolutionLike) -> int:
        """Apply skip or add to every pending conflict; returns how many succeeded."""
        self._require(WizardStep.DUPLICATES)
        resolution = self._action(action)
        if resolution not in (Resolution.SKIP, Resolution.ADD):
            raise ValueError("resolve_all supports only skip and add")
        resolved = 0
        failures: List[str] = []
        for idx, conflict in enumerate(self.conflicts):
            if conflict.is_resolved or idx in self._in_flight:
                continue
            self._in_flight.add(idx)
            try:
                await self._apply(conflict, resolution)
                resolved += 1
            except PersistenceError as exc:
                failures.append(exc.reason)
            finally:
                self._in_flight.discard(idx)
        if failures:
            self.notifier.notify(
                Level.ERROR, f"{len(failures)} duplicate(s) could not be resolved: {failures[0]}"
            )
        self._finish_if_resolved()
        return resolved

    def _finish_if_resolved(self) -> None:
        if self.step is WizardStep.DUPLICATES and not self.pending_conflicts():
            self._move(WizardStep.RESULTS)

    # -- results -------------------------------------------------------------

    def summary(self) -> Dict[str, int]:
        return {
            "created": self.created_count,
            "duplicates_handled": self.duplicates_handled,
            "errors": self.error_count,
        }

    def close(self) -> Dict[str, int]:
        self._require(WizardStep.RESULTS)
        summary = self.summary()
        logger.info("Import finished: %s", summary)
        self._closed()
        return summary

    def cancel(self) -> None:
        if self.step is WizardStep.PROCESSING:
            raise InvalidTransition("cannot cancel while processing")
        self.error = None
        self._closed()

    def _closed(self) -> None:
        self._generation += 1
        self._reset_state()
        self._move(WizardStep.CLOSED)
        if self.on_closed is not None:
            self.on_closed(self)

    # -- single contacts -----------------------------------------------------

    async def save_manual(self, candidate: CandidateContact) -> Contact:
        """Validate and create one manually entered contact."""
        errors = validate_manual_contact(candidate)
        if errors:
            raise RowValidationError({0: sorted(errors)}, field_errors=errors)
        entry = candidate.copy()
        entry.source = Source.MANUAL
        try:
            contact = await self.client.create(entry)
        except PersistenceError as exc:
            self.notifier.notify(Level.ERROR, exc.reason)
            raise
        self.notifier.notify(Level.SUCCESS, "Contact saved")
        return contact
