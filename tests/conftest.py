from typing import Callable, List, Tuple

import pytest

from contact_import.collection import ContactCollection
from contact_import.models import Contact
from contact_import.notifications import Level
from contact_import.reconciliation import BatchReconciliationClient
from contact_import.store import InMemoryContactStore


class RecordingNotifier:
    def __init__(self):
        self.events: List[Tuple[Level, str]] = []
        self.undo_offers: List[Tuple[str, Callable[[], bool], float]] = []

    def notify(self, level, message):
        self.events.append((level, message))

    def offer_undo(self, message, undo, duration):
        self.undo_offers.append((message, undo, duration))

    def messages(self, level):
        return [message for event_level, message in self.events if event_level is level]


EXISTING = [
    {"id": "c1", "fullName": "Budi Santoso", "phone": "6281234567890", "email": "budi@example.com"},
    {"id": "c2", "fullName": "Siti Aminah", "phone": "6285711112222", "company": "Acme"},
    {"id": "c3", "fullName": "Andi Wijaya", "phone": "6287833334444"},
]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def store():
    return InMemoryContactStore(EXISTING)


@pytest.fixture
def collection(store):
    return ContactCollection(Contact.from_api(row) for row in store.list_contacts())


@pytest.fixture
def client(store, collection, notifier):
    return BatchReconciliationClient(store, collection, notifier)
