"""
Contact Store for identity reconciliation.

SQLite-backed storage of contact records. Every resolution runs inside one
unit of work (a `BEGIN IMMEDIATE` transaction), so the database file is the
only serialization point between concurrent requests and worker processes.

Usage:
    store = ContactStore(db_path="data/contacts.db").open()
    with store.unit_of_work() as session:
        matches = session.find(ContactFilter(email="a@x.com"))
    store.close()
"""
import sqlite3
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict
from datetime import datetime
from pathlib import Path
from typing import Collection, Iterator, Optional

from api.services.resilience import ConflictError, StoreIntegrityError, StoreUnavailableError
from api.utils.datetime_utils import format_timestamp, parse_timestamp as _parse_timestamp, utc_now as _now

logger = logging.getLogger(__name__)

LINK_PRIMARY = "primary"
LINK_SECONDARY = "secondary"

_COLUMNS = "id, email, phone_number, link_precedence, linked_id, created_at, updated_at, deleted_at"


@dataclass
class Contact:
    """
    A single contact record.

    Primaries have no linked_id; secondaries point at their cluster's primary.
    """

    id: int
    email: Optional[str] = None
    phone_number: Optional[str] = None
    link_precedence: str = LINK_PRIMARY
    linked_id: Optional[int] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    deleted_at: Optional[datetime] = None  # reserved, never interpreted

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == LINK_PRIMARY

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        data = asdict(self)
        data["created_at"] = format_timestamp(self.created_at)
        data["updated_at"] = format_timestamp(self.updated_at)
        data["deleted_at"] = format_timestamp(self.deleted_at) if self.deleted_at else None
        return data

    @classmethod
    def from_row(cls, row: tuple) -> "Contact":
        """Create Contact from SQLite row (column order of _COLUMNS)."""
        return cls(
            id=row[0],
            email=row[1],
            phone_number=row[2],
            link_precedence=row[3],
            linked_id=row[4],
            created_at=_parse_timestamp(row[5]),
            updated_at=_parse_timestamp(row[6]),
            deleted_at=_parse_timestamp(row[7]),
        )


@dataclass
class ContactFilter:
    """
    Equality filter over contacts. All populated terms are OR-ed together.

    A term that is None or empty matches nothing; it is never a wildcard.
    """
    email: Optional[str] = None
    phone_number: Optional[str] = None
    ids: Collection[int] = ()
    linked_ids: Collection[int] = ()

    def to_sql(self) -> tuple[str, list]:
        clauses = []
        params: list = []
        if self.email is not None:
            clauses.append("email = ?")
            params.append(self.email)
        if self.phone_number is not None:
            clauses.append("phone_number = ?")
            params.append(self.phone_number)
        if self.ids:
            ids = sorted(set(self.ids))
            clauses.append(f"id IN ({', '.join('?' for _ in ids)})")
            params.extend(ids)
        if self.linked_ids:
            linked = sorted(set(self.linked_ids))
            clauses.append(f"linked_id IN ({', '.join('?' for _ in linked)})")
            params.extend(linked)
        return " OR ".join(clauses), params


@contextmanager
def _translate_errors():
    """Map sqlite3 failures onto the service error taxonomy."""
    try:
        yield
    except sqlite3.OperationalError as e:
        message = str(e).lower()
        if "locked" in message or "busy" in message:
            raise ConflictError(str(e)) from e
        raise StoreUnavailableError(str(e)) from e
    except sqlite3.IntegrityError as e:
        raise StoreIntegrityError(str(e)) from e
    except sqlite3.DatabaseError as e:
        raise StoreUnavailableError(str(e)) from e


class ContactSession:
    """
    Store operations bound to one open transaction.

    Obtained from ContactStore.unit_of_work(); never outlives it.
    """

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def find(self, contact_filter: ContactFilter) -> list[Contact]:
        """
        Find contacts matching any term of the filter.

        Results are ordered by (created_at, id), i.e. creation order.
        """
        where, params = contact_filter.to_sql()
        if not where:
            return []
        with _translate_errors():
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM contacts WHERE {where} ORDER BY created_at, id",
                params,
            ).fetchall()
        return [Contact.from_row(row) for row in rows]

    def find_all(self) -> list[Contact]:
        """Every contact, in creation order."""
        with _translate_errors():
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM contacts ORDER BY created_at, id"
            ).fetchall()
        return [Contact.from_row(row) for row in rows]

    def get(self, contact_id: int) -> Optional[Contact]:
        with _translate_errors():
            row = self._conn.execute(
                f"SELECT {_COLUMNS} FROM contacts WHERE id = ?", (contact_id,)
            ).fetchone()
        return Contact.from_row(row) if row else None

    def create(
        self,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        link_precedence: str = LINK_PRIMARY,
        linked_id: Optional[int] = None,
    ) -> Contact:
        """
        Insert a contact. The store assigns id, created_at and updated_at.

        Returns:
            The created contact
        """
        now = format_timestamp(_now())
        with _translate_errors():
            cursor = self._conn.execute(
                """
                INSERT INTO contacts (email, phone_number, link_precedence, linked_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (email, phone_number, link_precedence, linked_id, now, now),
            )
        return self.get(cursor.lastrowid)

    def update_by_id(
        self,
        contact_id: int,
        link_precedence: str,
        linked_id: Optional[int],
        expected_updated_at: Optional[datetime] = None,
    ) -> Contact:
        """
        Update the link fields of a contact.

        Args:
            contact_id: Contact to update
            link_precedence: New precedence
            linked_id: New link target (None for primaries)
            expected_updated_at: If given, the update only applies when the
                stored updated_at still equals this value

        Raises:
            ConflictError: the record changed since it was read
            StoreIntegrityError: the record does not exist
        """
        sql = """
            UPDATE contacts
            SET link_precedence = ?, linked_id = ?, updated_at = ?
            WHERE id = ?
        """
        params: list = [link_precedence, linked_id, format_timestamp(_now()), contact_id]
        if expected_updated_at is not None:
            sql += " AND updated_at = ?"
            params.append(format_timestamp(expected_updated_at))

        with _translate_errors():
            cursor = self._conn.execute(sql, params)

        if cursor.rowcount == 0:
            if expected_updated_at is not None and self.get(contact_id) is not None:
                raise ConflictError(f"Contact {contact_id} was modified concurrently")
            raise StoreIntegrityError(f"Contact {contact_id} not found")

        return self.get(contact_id)


class ContactStore:
    """
    SQLite-backed contact store with an explicit open/close lifecycle.

    Opens a fresh connection per unit of work; holds no process-wide
    connection, so it can be shared freely between threads.
    """

    def __init__(self, db_path: Optional[str] = None, timeout: Optional[float] = None):
        """
        Initialize the contact store (does not touch the database).

        Args:
            db_path: Path to SQLite database (default from settings)
            timeout: Seconds to wait for the write lock (default from settings)
        """
        from config.settings import settings

        self.db_path = str(db_path or settings.db_path)
        self.timeout = timeout if timeout is not None else settings.store_timeout_seconds
        self._open = False

    def __enter__(self) -> "ContactStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> "ContactStore":
        """Create the schema if needed and start accepting operations."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with _translate_errors():
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
            try:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS contacts (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        email TEXT,
                        phone_number TEXT,
                        link_precedence TEXT NOT NULL
                            CHECK (link_precedence IN ('primary', 'secondary')),
                        linked_id INTEGER REFERENCES contacts(id),
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        deleted_at TEXT
                    )
                """)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_contacts_email ON contacts(email)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_contacts_phone ON contacts(phone_number)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_contacts_linked ON contacts(linked_id)")
                conn.commit()
            finally:
                conn.close()
        self._open = True
        logger.info(f"Opened contact store at {self.db_path}")
        return self

    def close(self):
        """Stop accepting operations."""
        if self._open:
            self._open = False
            logger.info(f"Closed contact store at {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        if not self._open:
            raise StoreUnavailableError("store is closed")
        with _translate_errors():
            # Autocommit mode: transactions are started explicitly below
            return sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)

    @contextmanager
    def unit_of_work(self) -> Iterator[ContactSession]:
        """
        Run a block of store operations as one serializable transaction.

        The write lock is taken before the first read. Any exception rolls
        back every write made in the block.

        Raises:
            ConflictError: the write lock could not be acquired in time
        """
        conn = self._get_connection()
        try:
            with _translate_errors():
                conn.execute("BEGIN IMMEDIATE")
            try:
                yield ContactSession(conn)
            except BaseException:
                try:
                    conn.execute("ROLLBACK")
                except sqlite3.Error as e:
                    logger.warning(f"Rollback failed, transaction already ended: {e}")
                raise
            with _translate_errors():
                conn.execute("COMMIT")
        finally:
            conn.close()

    def get(self, contact_id: int) -> Optional[Contact]:
        """Get a contact by id."""
        conn = self._get_connection()
        try:
            return ContactSession(conn).get(contact_id)
        finally:
            conn.close()

    def list_all(self) -> list[Contact]:
        """List every contact in creation order."""
        conn = self._get_connection()
        try:
            return ContactSession(conn).find_all()
        finally:
            conn.close()

    def count(self) -> int:
        conn = self._get_connection()
        try:
            with _translate_errors():
                return conn.execute("SELECT COUNT(*) FROM contacts").fetchone()[0]
        finally:
            conn.close()

    def ping(self) -> bool:
        """Check the store is open and the database answers."""
        try:
            self.count()
            return True
        except (StoreUnavailableError, ConflictError):
            return False
