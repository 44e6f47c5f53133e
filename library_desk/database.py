import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, List, Optional

from .config import Settings, settings as default_settings
from .security import ensure_hashed

logger = logging.getLogger(__name__)

SAMPLE_BOOKS = [
    ("Philippine Literature", "Bienvenido Lumbera", "Literature"),
    ("General Psychology", "Kendra Cherry", "Psychology"),
    ("Calculus", "George B. Thomas", "Mathematics"),
    ("Philippine Politics", "Randy M. Tuano", "Politics"),
]


class Database:
    """SQLite store handle passed explicitly to every component.

    Each call opens its own connection so concurrent request threads never
    share one. Connections run in autocommit mode; ``transaction()`` issues
    ``BEGIN IMMEDIATE`` itself so the write lock is taken before any read.
    """

    def __init__(self, db_file: str, timeout: float = 5.0) -> None:
        self.db_file = db_file
        self.timeout = timeout

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "Database":
        config = config or default_settings
        return cls(config.database_file, timeout=config.database_timeout)

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_file,
            timeout=self.timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        # Foreign keys stay off: deleting a book must not touch its loan history.
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Connection for plain reads and single-statement writes."""
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Atomic unit of work holding the database write lock.

        Commits when the block exits normally, rolls back on any exception.
        """
        conn = self.connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def ping(self) -> bool:
        try:
            with self.read() as conn:
                conn.execute("SELECT 1")
            return True
        except sqlite3.Error:
            logger.exception("Database ping failed")
            return False


_USERS_SCHEMA = """
    CREATE TABLE IF NOT EXISTS {table} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        role TEXT CHECK(role IN ('admin','student')) NOT NULL DEFAULT 'student',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""


def create_tables(db: Database) -> None:
    """Creates the required tables if they do not already exist."""
    # Journal mode persists in the database file.
    with db.read() as conn:
        conn.execute("PRAGMA journal_mode=WAL;")
    with db.transaction() as conn:
        conn.execute(_USERS_SCHEMA.format(table="users"))
        conn.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                category TEXT DEFAULT '',
                status TEXT CHECK(status IN ('available','borrowed')) NOT NULL DEFAULT 'available',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT NOT NULL,
                subject TEXT NOT NULL,
                message TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS borrows (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                borrow_date TEXT DEFAULT (DATE('now')),
                return_date TEXT,
                status TEXT CHECK(status IN ('borrowed','returned')) NOT NULL DEFAULT 'borrowed',
                FOREIGN KEY (book_id) REFERENCES books(id),
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
        """)

        _migrate_users(conn)
        _migrate_books(conn)
        _close_duplicate_loans(conn)

        # At most one active loan per book.
        conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_borrows_active_book "
            "ON borrows(book_id) WHERE status = 'borrowed'"
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_borrows_user_id ON borrows(user_id)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_created_at ON books(created_at)")


def _migrate_books(conn: sqlite3.Connection) -> None:
    """Adds columns missing from databases created by older versions."""
    columns = _column_names(conn, "books")
    if "category" not in columns:
        conn.execute("ALTER TABLE books ADD COLUMN category TEXT DEFAULT ''")
    if "status" not in columns:
        conn.execute("ALTER TABLE books ADD COLUMN status TEXT NOT NULL DEFAULT 'available'")
        # Older databases tracked loans only in the borrows table.
        _sync_book_status(conn)
        logger.info("Migrated books table: added status column")


def _migrate_users(conn: sqlite3.Connection) -> None:
    """Moves plaintext ``password`` columns of older databases to ``password_hash``.

    SQLite cannot drop the old NOT NULL column in place, so the table is
    rebuilt with the same ids and every stored credential is hashed.
    """
    if "password_hash" in _column_names(conn, "users"):
        return
    rows = conn.execute("SELECT id, username, password, role, created_at FROM users").fetchall()
    conn.execute(_USERS_SCHEMA.format(table="users_migrated"))
    conn.executemany(
        "INSERT INTO users_migrated (id, username, password_hash, role, created_at) VALUES (?, ?, ?, ?, ?)",
        [(r["id"], r["username"], ensure_hashed(r["password"]), r["role"], r["created_at"]) for r in rows],
    )
    conn.execute("DROP TABLE users")
    conn.execute("ALTER TABLE users_migrated RENAME TO users")
    logger.info("Migrated users table: hashed %d stored passwords", len(rows))


def _close_duplicate_loans(conn: sqlite3.Connection) -> None:
    """Keeps only the newest active loan per book.

    Older versions could lend a book twice; the active-loan index cannot be
    built until the extra records are closed.
    """
    stale = [
        row["id"]
        for row in conn.execute("""
            SELECT id FROM borrows AS b
            WHERE status = 'borrowed'
              AND id < (SELECT MAX(id) FROM borrows WHERE book_id = b.book_id AND status = 'borrowed')
        """).fetchall()
    ]
    if not stale:
        return
    logger.warning("Closing %d duplicate active loans: records %s", len(stale), stale)
    conn.executemany("UPDATE borrows SET status = 'returned' WHERE id = ?", [(record_id,) for record_id in stale])
    _sync_book_status(conn)


def _sync_book_status(conn: sqlite3.Connection) -> None:
    """Sets each book's status from whether an active loan exists for it."""
    conn.execute("""
        UPDATE books SET status = CASE
            WHEN id IN (SELECT book_id FROM borrows WHERE status = 'borrowed') THEN 'borrowed'
            ELSE 'available'
        END
    """)


def _column_names(conn: sqlite3.Connection, table: str) -> List[str]:
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]


def seed_sample_data(db: Database) -> int:
    """Inserts the sample catalog when the books table is empty. Returns rows added."""
    with db.transaction() as conn:
        total = conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]
        if total > 0:
            return 0
        conn.executemany(
            "INSERT INTO books (title, author, category, status) VALUES (?, ?, ?, 'available')",
            SAMPLE_BOOKS,
        )
    logger.info("Seeded %d sample books", len(SAMPLE_BOOKS))
    return len(SAMPLE_BOOKS)


def initialize_database(db: Database, config: Optional[Settings] = None) -> None:
    """Creates tables, runs migrations and seeds the admin account and catalog."""
    from .identity import IdentityStore

    config = config or default_settings
    create_tables(db)
    if config.seed_sample_data:
        seed_sample_data(db)
    IdentityStore(db).ensure_admin(config.admin_username, config.admin_password)
