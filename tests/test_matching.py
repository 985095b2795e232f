import pytest

from contact_import.collection import ContactCollection
from contact_import.matching import DuplicateMatcher, is_duplicate
from contact_import.models import CandidateContact, Contact, Resolution


def _contact(contact_id, phone, email="", **extra):
    return Contact(
        id=contact_id, full_name=f"Contact {contact_id}", phone=phone, email=email, **extra
    )


def test_phone_match_goes_to_conflicts():
    existing = [_contact("c1", "6281234567890")]
    candidates = [CandidateContact(full_name="Jane Doe", phone="6281234567890")]
    partition = DuplicateMatcher().partition(candidates, existing)
    assert partition.safe == []
    assert len(partition.conflicts) == 1
    assert partition.conflicts[0].existing.id == "c1"
    assert partition.conflicts[0].resolution is Resolution.PENDING


def test_match_ignores_formatting_and_case():
    existing = [_contact("c1", "+62 812-3456-7890", email="Jane@Example.com")]
    assert is_duplicate(CandidateContact(full_name="J", phone="6281234567890"), existing[0])
    by_email = CandidateContact(full_name="J", phone="", email=" jane@example.COM ")
    assert is_duplicate(by_email, existing[0])
    assert not is_duplicate(CandidateContact(full_name="J", phone="", email=""), existing[0])


def test_first_match_wins_in_existing_order():
    existing = [
        _contact("by-email", "111", email="jane@example.com"),
        _contact("by-phone", "0812"),
    ]
    candidate = CandidateContact(full_name="Jane", phone="0812", email="jane@example.com")
    assert DuplicateMatcher().find_match(candidate, existing).id == "by-email"
    assert DuplicateMatcher().find_match(candidate, list(reversed(existing))).id == "by-phone"


def test_partition_is_total_and_stable():
    existing = [_contact("c1", "0811"), _contact("c2", "0822", email="b@x.com")]
    candidates = [
        CandidateContact(full_name="A", phone="0811"),
        CandidateContact(full_name="B", phone="0899", email="b@x.com"),
        CandidateContact(full_name="C", phone="0833"),
        # candidates are never compared with each other
        CandidateContact(full_name="C again", phone="0833"),
    ]
    partition = DuplicateMatcher().partition(candidates, existing)
    assert partition.total == len(candidates)
    assert [c.full_name for c in partition.safe] == ["C", "C again"]
    assert [(c.index, c.existing.id) for c in partition.conflicts] == [(0, "c1"), (1, "c2")]


def test_conflict_merge_fields_only_fill_empty_values():
    existing = _contact("c1", "0811", email="old@x.com", company="")
    matcher = DuplicateMatcher()
    candidate = CandidateContact(
        full_name="A", phone="0811", email="new@x.com", company="Acme", job_title="CTO"
    )
    conflict = matcher.partition([candidate], [existing]).conflicts[0]
    assert conflict.merge_fields() == {"company": "Acme", "job_title": "CTO"}


def test_collection_remove_and_restore_positions():
    contacts = [_contact(str(i), f"08{i}") for i in range(5)]
    collection = ContactCollection(contacts)
    removed = collection.remove(["1", "3"])
    assert collection.ids() == ["0", "2", "4"]
    collection.restore(removed)
    assert collection.snapshot() == contacts
    collection.restore(removed)
    assert len(collection) == 5


def test_collection_add_puts_newest_first_and_replaces_by_id():
    collection = ContactCollection([_contact("a", "1")])
    collection.add_many([_contact("b", "2"), _contact("c", "3")])
    assert collection.ids() == ["b", "c", "a"]
    collection.add(_contact("a", "9"))
    assert collection.get("a").phone == "9"
    assert collection.ids() == ["b", "c", "a"]
    collection.apply_fields(["b"], {"company": "Acme"})
    assert collection.get("b").company == "Acme"


if __name__ == "__main__":
    pytest.main(["-q"])
