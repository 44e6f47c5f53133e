import logging

import pytest

from library_desk.database import Database, initialize_database
from library_desk.errors import Conflict
from library_desk.identity import IdentityStore
from library_desk.inventory import InventoryStore
from library_desk.ledger import BorrowLedger


def make_legacy_database(path):
    """A database laid out the way the first release created it."""
    db = Database(str(path))
    with db.read() as conn:
        conn.execute("""
            CREATE TABLE users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT UNIQUE NOT NULL,
                password TEXT NOT NULL,
                role TEXT CHECK(role IN ('admin','student')) NOT NULL DEFAULT 'student',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.execute("""
            CREATE TABLE books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                category TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.execute("""
            CREATE TABLE borrows (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                borrow_date TEXT DEFAULT (DATE('now')),
                return_date TEXT,
                status TEXT DEFAULT 'borrowed',
                FOREIGN KEY (book_id) REFERENCES books(id),
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
        """)
        conn.execute("INSERT INTO users (username, password, role) VALUES ('admin', 'admin123', 'admin')")
        conn.execute("INSERT INTO users (username, password, role) VALUES ('alice', 'pw1', 'student')")
        conn.execute("INSERT INTO books (title, author, category) VALUES ('Calculus', 'George B. Thomas', 'Mathematics')")
        conn.execute("INSERT INTO books (title, author, category) VALUES ('Ulysses', 'James Joyce', 'Fiction')")
    return db


def test_legacy_users_keep_their_passwords(tmp_path, config):
    db = make_legacy_database(tmp_path / "legacy.db")

    initialize_database(db, config)

    identities = IdentityStore(db)
    admin = identities.authenticate("admin", "admin123")
    assert admin.is_admin
    assert admin.id == 1
    assert identities.authenticate("alice", "pw1").id == 2
    assert identities.count() == 2

    with db.read() as conn:
        stored = [row["password_hash"] for row in conn.execute("SELECT password_hash FROM users")]
    assert "admin123" not in stored
    assert "pw1" not in stored


def test_legacy_users_table_accepts_new_accounts(tmp_path, config):
    db = make_legacy_database(tmp_path / "legacy.db")
    initialize_database(db, config)
    identities = IdentityStore(db)

    bob = identities.register("bob", "pw2")

    assert bob.id == 3
    assert identities.authenticate("bob", "pw2").role == "student"
    with pytest.raises(Conflict):
        identities.register("alice", "other")


def test_duplicate_active_loans_are_closed(tmp_path, config, caplog):
    db = make_legacy_database(tmp_path / "legacy.db")
    with db.read() as conn:
        conn.execute("INSERT INTO borrows (book_id, user_id) VALUES (1, 1)")
        conn.execute("INSERT INTO borrows (book_id, user_id) VALUES (1, 2)")
        conn.execute("INSERT INTO borrows (book_id, user_id, status) VALUES (2, 2, 'returned')")

    with caplog.at_level(logging.WARNING, logger="library_desk.database"):
        initialize_database(db, config)

    assert "duplicate active loans" in caplog.text
    ledger = BorrowLedger(db)
    inventory = InventoryStore(db)
    assert ledger.get(1).status == "returned"
    assert ledger.get(2).status == "borrowed"
    assert ledger.active_for_book(1).user_id == 2
    assert inventory.get(1).status == "borrowed"
    assert inventory.get(2).status == "available"


def test_reconciled_database_enforces_single_loan(tmp_path, config):
    db = make_legacy_database(tmp_path / "legacy.db")
    with db.read() as conn:
        conn.execute("INSERT INTO borrows (book_id, user_id) VALUES (1, 1)")
        conn.execute("INSERT INTO borrows (book_id, user_id) VALUES (1, 2)")
    initialize_database(db, config)
    identities = IdentityStore(db)
    ledger = BorrowLedger(db)
    alice = identities.authenticate("alice", "pw1")
    admin = identities.authenticate("admin", "admin123")

    with pytest.raises(Conflict):
        ledger.borrow(1, alice)

    assert ledger.mark_returned(2, admin) is True
    assert InventoryStore(db).get(1).status == "available"
    assert ledger.borrow(1, alice).book_id == 1


def test_initialize_is_repeatable_after_migration(tmp_path, config):
    db = make_legacy_database(tmp_path / "legacy.db")

    initialize_database(db, config)
    initialize_database(db, config)

    identities = IdentityStore(db)
    assert identities.count() == 2
    assert identities.authenticate("admin", "admin123").is_admin
