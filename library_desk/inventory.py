import logging
from typing import List, Optional

from .database import Database
from .errors import Conflict, NotFound
from .models import BOOK_AVAILABLE, Book
from .validators import TextValidator

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = "id, title, author, category, status, created_at"


class InventoryStore:
    """Manages the book catalog.

    Availability status is read here but only changed by BorrowLedger.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------- Core operations ------------------------- #
    def create(self, title: str, author: str, category: Optional[str] = None) -> Book:
        """Add a book to the catalog. New books are always available."""
        title = TextValidator.require(title, "title")
        author = TextValidator.require(author, "author")
        category = TextValidator.optional(category)

        with self.db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO books (title, author, category, status) VALUES (?, ?, ?, ?)",
                (title, author, category, BOOK_AVAILABLE),
            )
            row = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (cursor.lastrowid,)).fetchone()
        logger.info("Book %s created: %s by %s", row["id"], title, author)
        return Book.from_row(row)

    def update(self, book_id: int, title: str, author: str, category: Optional[str] = None) -> Book:
        """Replace title, author and category. Status is left untouched."""
        title = TextValidator.require(title, "title")
        author = TextValidator.require(author, "author")
        category = TextValidator.optional(category)

        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE books SET title = ?, author = ?, category = ? WHERE id = ?",
                (title, author, category, book_id),
            )
            if cursor.rowcount == 0:
                raise NotFound("Book not found")
            row = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
        logger.info("Book %s updated", book_id)
        return Book.from_row(row)

    def delete(self, book_id: int) -> None:
        """Remove a book. Refused while the book is out on loan.

        Borrow records that reference the book are kept as history.
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM books WHERE id = ? AND status = ?", (book_id, BOOK_AVAILABLE)
            )
            if cursor.rowcount == 0:
                row = conn.execute("SELECT status FROM books WHERE id = ?", (book_id,)).fetchone()
                if not row:
                    raise NotFound("Book not found")
                logger.warning("Refused to delete borrowed book %s", book_id)
                raise Conflict("Cannot delete a book that is currently borrowed.")
        logger.info("Book %s deleted", book_id)

    def get(self, book_id: int) -> Book:
        with self.db.read() as conn:
            row = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
        if not row:
            raise NotFound("Book not found")
        return Book.from_row(row)

    def list_books(self) -> List[Book]:
        """Whole catalog, newest first."""
        with self.db.read() as conn:
            rows = conn.execute(
                f"SELECT {_BOOK_COLUMNS} FROM books ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [Book.from_row(row) for row in rows]

    def search(self, query: Optional[str] = None) -> List[Book]:
        """Books whose title, author or category contains ``query``, ignoring case.

        An empty query returns the whole catalog. Matching is done in Python so
        that case folding also covers non-ASCII text.
        """
        books = self.list_books()
        if not query:
            return books
        needle = query.casefold()
        return [
            b for b in books
            if needle in b.title.casefold()
            or needle in b.author.casefold()
            or needle in (b.category or "").casefold()
        ]

    # ------------------------- Statistics ------------------------- #
    def count(self) -> int:
        with self.db.read() as conn:
            return conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]
