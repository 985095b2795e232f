from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from .collection import ContactCollection
from .config_loader import EngineConfig, load_engine_config
from .deletion import DeferredDeletionCoordinator, UndoHandle
from .errors import (
    ConflictAlreadyResolved,
    ContactImportError,
    CorruptFormat,
    DuplicateContactError,
    EmptyFile,
    ExtractionFailed,
    FileValidationError,
    InvalidTransition,
    MissingRequiredColumns,
    ParseError,
    PersistenceError,
    ReconciliationMismatch,
    RowValidationError,
    SizeExceeded,
    UnsupportedFormat,
)
from .extraction import Extractor
from .matching import DuplicateMatcher, MatchPartition
from .models import (
    BatchReconciliationResult,
    CandidateContact,
    Conflict,
    ConsentStatus,
    Contact,
    Resolution,
    Source,
)
from .normalization import (
    canonical_phone,
    map_header,
    normalize_email,
    normalize_phone,
    normalize_row,
    safe_get,
    validate_email_safe,
)
from .notifications import Level, LoggingNotifier, Notifier
from .parsing import parse
from .reconciliation import BatchReconciliationClient
from .store import ContactStore, InMemoryContactStore
from .workflow import ImportSession, WizardStep

__all__ = [
    "BatchReconciliationClient",
    "BatchReconciliationResult",
    "CandidateContact",
    "Conflict",
    "ConflictAlreadyResolved",
    "ConsentStatus",
    "Contact",
    "ContactCollection",
    "ContactImportError",
    "ContactStore",
    "CorruptFormat",
    "DeferredDeletionCoordinator",
    "DuplicateContactError",
    "DuplicateMatcher",
    "EmptyFile",
    "Engine",
    "EngineConfig",
    "ExtractionFailed",
    "Extractor",
    "FileValidationError",
    "ImportSession",
    "InMemoryContactStore",
    "InvalidTransition",
    "Level",
    "LoggingNotifier",
    "MatchPartition",
    "MissingRequiredColumns",
    "Notifier",
    "ParseError",
    "PersistenceError",
    "ReconciliationMismatch",
    "Resolution",
    "RowValidationError",
    "SizeExceeded",
    "Source",
    "UndoHandle",
    "UnsupportedFormat",
    "WizardStep",
    "build_engine",
    "canonical_phone",
    "load_config",
    "map_header",
    "normalize_email",
    "normalize_phone",
    "normalize_row",
    "parse",
    "safe_get",
    "validate_email_safe",
]


def load_config(args: Any) -> EngineConfig:
    return load_engine_config(args)


@dataclass
class Engine:
    """The collaborators one dashboard session shares."""

    config: EngineConfig
    collection: ContactCollection
    client: BatchReconciliationClient
    deletions: DeferredDeletionCoordinator
    notifier: Notifier
    extractor: Optional[Extractor] = None
    sessions: List[ImportSession] = field(default_factory=list)

    def new_session(self) -> ImportSession:
        session = ImportSession(
            self.client,
            self.notifier,
            extractor=self.extractor,
            max_file_bytes=self.config.limits.max_file_bytes,
            on_closed=self._forget,
        )
        self.sessions.append(session)
        return session

    def _forget(self, session: ImportSession) -> None:
        if session in self.sessions:
            self.sessions.remove(session)

    def shutdown(self) -> None:
        self.deletions.shutdown()
        for session in list(self.sessions):
            if session.step is not WizardStep.PROCESSING:
                session.cancel()
        self.sessions.clear()


def build_engine(
    config: EngineConfig,
    store: ContactStore,
    contacts: Iterable[Contact] = (),
    notifier: Optional[Notifier] = None,
    extractor: Optional[Extractor] = None,
) -> Engine:
    notifier = notifier or LoggingNotifier()
    collection = ContactCollection(contacts)
    client = BatchReconciliationClient(
        store, collection, notifier, max_batch_size=config.limits.max_batch_size
    )
    deletions = DeferredDeletionCoordinator(
        client, collection, notifier, grace_seconds=config.deletion.grace_seconds
    )
    return Engine(
        config=config,
        collection=collection,
        client=client,
        deletions=deletions,
        notifier=notifier,
        extractor=extractor,
    )
