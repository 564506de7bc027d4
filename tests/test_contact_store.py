"""Tests for Contact and ContactStore."""
import sqlite3
import pytest
from datetime import datetime, timezone

from api.services.contact_store import (
    Contact,
    ContactFilter,
    ContactStore,
    LINK_PRIMARY,
    LINK_SECONDARY,
)
from api.services.resilience import ConflictError, StoreIntegrityError, StoreUnavailableError

pytestmark = pytest.mark.unit


class TestContact:
    """Tests for Contact dataclass."""

    def test_is_primary(self):
        assert Contact(id=1).is_primary
        assert not Contact(id=2, link_precedence=LINK_SECONDARY, linked_id=1).is_primary

    def test_to_dict(self):
        created = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        contact = Contact(id=7, email="a@x.com", created_at=created, updated_at=created)
        data = contact.to_dict()
        assert data["id"] == 7
        assert data["email"] == "a@x.com"
        assert data["created_at"] == "2024-01-02T03:04:05.000000+00:00"
        assert data["deleted_at"] is None

    def test_from_row(self):
        row = (3, "a@x.com", None, "secondary", 1,
               "2024-01-02T03:04:05.000001+00:00", "2024-01-02T03:04:05.000001+00:00", None)
        contact = Contact.from_row(row)
        assert contact.id == 3
        assert contact.phone_number is None
        assert contact.linked_id == 1
        assert contact.created_at.microsecond == 1
        assert contact.created_at.tzinfo is not None


class TestContactFilter:
    """Tests for ContactFilter SQL generation."""

    def test_empty_filter(self):
        where, params = ContactFilter().to_sql()
        assert where == ""
        assert params == []

    def test_terms_are_ored(self):
        where, params = ContactFilter(email="a@x.com", phone_number="1", ids=[2, 1], linked_ids=[3]).to_sql()
        assert where == "email = ? OR phone_number = ? OR id IN (?, ?) OR linked_id IN (?)"
        assert params == ["a@x.com", "1", 1, 2, 3]


class TestContactStore:
    """Tests for ContactStore lifecycle and operations."""

    def test_open_creates_schema(self, db_path):
        store = ContactStore(db_path=db_path).open()
        assert store.is_open
        assert store.count() == 0
        store.close()
        assert not store.is_open

    def test_context_manager(self, db_path):
        with ContactStore(db_path=db_path) as store:
            assert store.ping()
        assert not store.is_open

    def test_closed_store_rejects_operations(self, db_path):
        store = ContactStore(db_path=db_path)
        with pytest.raises(StoreUnavailableError):
            store.count()
        assert store.ping() is False

    def test_create_assigns_identity(self, contact_store):
        with contact_store.unit_of_work() as session:
            contact = session.create(email="a@x.com", phone_number="123")
        assert contact.id is not None
        assert contact.link_precedence == LINK_PRIMARY
        assert contact.linked_id is None
        assert contact.created_at == contact.updated_at
        assert contact_store.get(contact.id) == contact

    def test_ids_increase(self, contact_store):
        with contact_store.unit_of_work() as session:
            first = session.create(email="a@x.com")
            second = session.create(email="b@x.com")
        assert second.id > first.id

    def test_find_by_email_or_phone(self, contact_store):
        with contact_store.unit_of_work() as session:
            a = session.create(email="a@x.com", phone_number="1")
            b = session.create(email="b@x.com", phone_number="2")
            session.create(email="c@x.com", phone_number="3")
            found = session.find(ContactFilter(email="a@x.com", phone_number="2"))
        assert [c.id for c in found] == [a.id, b.id]

    def test_absent_term_is_not_a_wildcard(self, contact_store):
        """A None phone must not match records whose phone is null."""
        with contact_store.unit_of_work() as session:
            session.create(email="a@x.com")
            found = session.find(ContactFilter(email="other@x.com", phone_number=None))
        assert found == []

    def test_find_by_ids_and_linked_ids(self, contact_store):
        with contact_store.unit_of_work() as session:
            primary = session.create(email="a@x.com")
            secondary = session.create(phone_number="1", link_precedence=LINK_SECONDARY, linked_id=primary.id)
            session.create(email="z@x.com")
            found = session.find(ContactFilter(ids=[primary.id], linked_ids=[primary.id]))
        assert [c.id for c in found] == [primary.id, secondary.id]

    def test_update_by_id(self, contact_store):
        with contact_store.unit_of_work() as session:
            older = session.create(email="a@x.com")
            newer = session.create(email="b@x.com")
            updated = session.update_by_id(newer.id, LINK_SECONDARY, older.id, expected_updated_at=newer.updated_at)
        assert updated.link_precedence == LINK_SECONDARY
        assert updated.linked_id == older.id
        assert updated.updated_at >= newer.updated_at
        assert updated.created_at == newer.created_at

    def test_update_with_stale_version_conflicts(self, contact_store):
        stale = datetime(2000, 1, 1, tzinfo=timezone.utc)
        with contact_store.unit_of_work() as session:
            older = session.create(email="a@x.com")
            newer = session.create(email="b@x.com")
            with pytest.raises(ConflictError):
                session.update_by_id(newer.id, LINK_SECONDARY, older.id, expected_updated_at=stale)

    def test_update_missing_contact(self, contact_store):
        with contact_store.unit_of_work() as session:
            with pytest.raises(StoreIntegrityError):
                session.update_by_id(999, LINK_SECONDARY, 1)

    def test_exception_rolls_back_unit_of_work(self, contact_store):
        with pytest.raises(RuntimeError):
            with contact_store.unit_of_work() as session:
                session.create(email="a@x.com")
                raise RuntimeError("boom")
        assert contact_store.count() == 0

    def test_original_error_survives_ended_transaction(self, contact_store):
        """A failed ROLLBACK must not replace the error raised in the block."""
        with pytest.raises(RuntimeError, match="boom"):
            with contact_store.unit_of_work() as session:
                session.create(email="a@x.com")
                session._conn.execute("ROLLBACK")
                raise RuntimeError("boom")
        assert contact_store.count() == 0

    def test_locked_database_raises_conflict(self, db_path):
        store = ContactStore(db_path=db_path, timeout=0.1).open()
        blocker = sqlite3.connect(db_path, isolation_level=None)
        try:
            blocker.execute("BEGIN IMMEDIATE")
            with pytest.raises(ConflictError):
                with store.unit_of_work():
                    pass
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()
            store.close()

    def test_persistence(self, db_path):
        with ContactStore(db_path=db_path) as store:
            with store.unit_of_work() as session:
                session.create(email="a@x.com")

        with ContactStore(db_path=db_path) as store:
            contacts = store.list_all()
        assert len(contacts) == 1
        assert contacts[0].email == "a@x.com"
