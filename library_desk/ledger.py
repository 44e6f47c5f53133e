"""Borrow/return state machine.

Apart from start-up migrations, the ledger is the only code that changes
``books.status``. Every transition writes the borrow record and the book
status in one ``BEGIN IMMEDIATE`` transaction, so at any committed point a
book is ``borrowed`` exactly when one ``borrowed`` record exists for it.

Borrowing does not read-then-write: the book row is flipped with a
conditional ``UPDATE ... WHERE status = 'available'`` and zero affected rows
means someone else got there first. The partial unique index on
``borrows(book_id) WHERE status = 'borrowed'`` backs this up at the storage
level.
"""

import logging
import sqlite3
from typing import List, Optional

from .database import Database
from .errors import Conflict, NotFound, ValidationError
from .models import (
    BOOK_AVAILABLE,
    BOOK_BORROWED,
    BORROW_ACTIVE,
    BORROW_RETURNED,
    BorrowEntry,
    BorrowRecord,
    Identity,
)
from .policy import Operation, require
from .validators import DateValidator, validate_borrow_status

logger = logging.getLogger(__name__)

_RECORD_COLUMNS = "id, book_id, user_id, borrow_date, return_date, status"


class BorrowLedger:
    def __init__(self, db: Database) -> None:
        self.db = db

    def borrow(self, book_id: int, identity: Identity, due_date: Optional[str] = None) -> BorrowRecord:
        """Lend ``book_id`` to ``identity``.

        Raises AuthRequired for anonymous callers, NotFound for unknown books
        and Conflict when the book is already out.
        """
        require(Operation.BORROW, identity)
        due_date = DateValidator.due_date(due_date)

        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    "UPDATE books SET status = ? WHERE id = ? AND status = ?",
                    (BOOK_BORROWED, book_id, BOOK_AVAILABLE),
                )
                if cursor.rowcount == 0:
                    exists = conn.execute("SELECT 1 FROM books WHERE id = ?", (book_id,)).fetchone()
                    if not exists:
                        raise NotFound("Book not found")
                    raise Conflict("Book already borrowed")

                active = conn.execute(
                    "SELECT 1 FROM borrows WHERE book_id = ? AND status = ?", (book_id, BORROW_ACTIVE)
                ).fetchone()
                if active:
                    # Status said available but a loan is open; refuse rather than double-lend.
                    raise Conflict("Book already borrowed")

                cursor = conn.execute(
                    "INSERT INTO borrows (book_id, user_id, return_date, status) VALUES (?, ?, ?, ?)",
                    (book_id, identity.id, due_date, BORROW_ACTIVE),
                )
                row = conn.execute(
                    f"SELECT {_RECORD_COLUMNS} FROM borrows WHERE id = ?", (cursor.lastrowid,)
                ).fetchone()
        except Conflict:
            logger.warning("Borrow conflict: book %s requested by user %s", book_id, identity.id)
            raise
        except sqlite3.IntegrityError as e:
            logger.warning("Borrow rejected by active-loan index: book %s", book_id)
            raise Conflict("Book already borrowed") from e

        record = BorrowRecord.from_row(row)
        logger.info("Book %s borrowed by user %s (record %s)", book_id, identity.id, record.id)
        return record

    def mark_returned(self, record_id: int, identity: Identity) -> bool:
        """Close a loan and make the book available again. Admin only.

        Returns False without changing anything if the loan was already
        returned, so repeating the call is harmless.
        """
        require(Operation.MARK_RETURNED, identity)

        with self.db.transaction() as conn:
            row = conn.execute(f"SELECT {_RECORD_COLUMNS} FROM borrows WHERE id = ?", (record_id,)).fetchone()
            if not row:
                raise NotFound("Record not found")
            record = BorrowRecord.from_row(row)
            if not record.is_active:
                logger.info("Record %s already returned; nothing to do", record_id)
                return False

            conn.execute(
                "UPDATE borrows SET status = ? WHERE id = ? AND status = ?",
                (BORROW_RETURNED, record_id, BORROW_ACTIVE),
            )
            # The book may have been deleted since; the history row stays either way.
            conn.execute("UPDATE books SET status = ? WHERE id = ?", (BOOK_AVAILABLE, record.book_id))

        logger.info("Record %s returned by admin %s; book %s available", record_id, identity.id, record.book_id)
        return True

    def set_status(self, record_id: int, status: str, identity: Identity) -> bool:
        """Apply a status change requested over HTTP. Only returns are supported."""
        require(Operation.MARK_RETURNED, identity)
        if validate_borrow_status(status) != BORROW_RETURNED:
            raise ValidationError("Only 'returned' can be set on an existing borrow record.")
        return self.mark_returned(record_id, identity)

    def list_for_user(self, user_id: int) -> List[BorrowEntry]:
        """A user's lending history, most recent borrow first.

        Loans of books deleted later are still listed, with no title.
        """
        with self.db.read() as conn:
            rows = conn.execute(
                """
                SELECT borrows.id, borrows.book_id, books.title,
                       borrows.borrow_date, borrows.return_date, borrows.status
                FROM borrows
                LEFT JOIN books ON books.id = borrows.book_id
                WHERE borrows.user_id = ?
                ORDER BY borrows.borrow_date DESC, borrows.id DESC
                """,
                (user_id,),
            ).fetchall()
        return [BorrowEntry.from_row(row) for row in rows]

    def get(self, record_id: int) -> BorrowRecord:
        with self.db.read() as conn:
            row = conn.execute(f"SELECT {_RECORD_COLUMNS} FROM borrows WHERE id = ?", (record_id,)).fetchone()
        if not row:
            raise NotFound("Record not found")
        return BorrowRecord.from_row(row)

    def active_for_book(self, book_id: int) -> Optional[BorrowRecord]:
        with self.db.read() as conn:
            row = conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM borrows WHERE book_id = ? AND status = ?",
                (book_id, BORROW_ACTIVE),
            ).fetchone()
        return BorrowRecord.from_row(row) if row else None

    def count_active(self) -> int:
        with self.db.read() as conn:
            return conn.execute("SELECT COUNT(*) FROM borrows WHERE status = ?", (BORROW_ACTIVE,)).fetchone()[0]
