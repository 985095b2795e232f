"""Error taxonomy for the contact import engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
    from .models import Contact


class ContactImportError(RuntimeError):
    """Base class for every error raised by the engine."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class FileValidationError(ContactImportError):
    """Raised when an upload fails the type or size pre-check."""


class ParseError(ContactImportError):
    """Raised when a tabular file cannot be turned into candidate contacts."""


class UnsupportedFormat(ParseError):
    pass


class EmptyFile(ParseError):
    pass


class MissingRequiredColumns(ParseError):
    pass


class SizeExceeded(ParseError):
    pass


class CorruptFormat(ParseError):
    pass


class ExtractionFailed(ContactImportError):
    """Raised for any failure of the image extraction collaborator."""

    def __init__(self, reason: str = "Could not extract contacts from the image"):
        super().__init__(reason)


class RowValidationError(ContactImportError):
    """Raised when reviewed rows are missing required fields.

    ``row_errors`` maps the row index to the names of the offending fields.
    """

    def __init__(
        self,
        row_errors: Dict[int, List[str]],
        field_errors: Optional[Dict[str, List[str]]] = None,
    ):
        super().__init__("Please fix validation errors before saving")
        self.row_errors = row_errors
        self.field_errors = dict(field_errors or {})


class PersistenceError(ContactImportError):
    """Raised when the persistent store rejects or fails a call."""

    def __init__(
        self,
        reason: str,
        field_errors: Optional[Dict[str, List[str]]] = None,
        status: Optional[int] = None,
    ):
        super().__init__(reason)
        self.field_errors = dict(field_errors or {})
        self.status = status


class DuplicateContactError(PersistenceError):
    """Raised when a single submission matches an existing contact."""

    def __init__(self, existing: "Contact"):
        super().__init__("Duplicate contact detected", status=409)
        self.existing = existing


class ReconciliationMismatch(ContactImportError):
    """Raised when a batch result does not account for every input."""


class InvalidTransition(ContactImportError):
    """Raised when a workflow operation is not allowed in the current step."""


class ConflictAlreadyResolved(ContactImportError):
    pass
