from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass
from typing import Optional

ROLE_ADMIN = "admin"
ROLE_STUDENT = "student"

BOOK_AVAILABLE = "available"
BOOK_BORROWED = "borrowed"

BORROW_ACTIVE = "borrowed"
BORROW_RETURNED = "returned"


@dataclass
class Book:
    """A single catalog entry. One physical unit per id."""

    id: int
    title: str
    author: str
    category: str = ""
    status: str = BOOK_AVAILABLE
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Book":
        return Book(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            category=row["category"] or "",
            status=row["status"] or BOOK_AVAILABLE,
            created_at=row["created_at"],
        )


@dataclass
class User:
    id: int
    username: str
    role: str
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        # The API has always exposed the username as "name" in user listings.
        return {"id": self.id, "name": self.username, "role": self.role}

    @staticmethod
    def from_row(row: sqlite3.Row) -> "User":
        return User(id=row["id"], username=row["username"], role=row["role"], created_at=row["created_at"])


@dataclass(frozen=True)
class Identity:
    """Who is making a request. ``ANONYMOUS`` when nobody is logged in."""

    id: Optional[int]
    username: Optional[str]
    role: Optional[str]

    @property
    def is_authenticated(self) -> bool:
        return self.id is not None

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.role == ROLE_ADMIN

    def to_dict(self) -> dict:
        return {"id": self.id, "username": self.username, "role": self.role}

    @staticmethod
    def for_user(user: User) -> "Identity":
        return Identity(id=user.id, username=user.username, role=user.role)


ANONYMOUS = Identity(id=None, username=None, role=None)


@dataclass
class BorrowRecord:
    id: int
    book_id: int
    user_id: int
    borrow_date: Optional[str]
    return_date: Optional[str]
    status: str = BORROW_ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == BORROW_ACTIVE

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row: sqlite3.Row) -> "BorrowRecord":
        return BorrowRecord(
            id=row["id"],
            book_id=row["book_id"],
            user_id=row["user_id"],
            borrow_date=row["borrow_date"],
            return_date=row["return_date"],
            status=row["status"],
        )


@dataclass
class BorrowEntry:
    """One line of a user's lending history."""

    id: int
    book_id: int
    title: Optional[str]
    borrow_date: Optional[str]
    return_date: Optional[str]
    status: str

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row: sqlite3.Row) -> "BorrowEntry":
        return BorrowEntry(
            id=row["id"],
            book_id=row["book_id"],
            title=row["title"],
            borrow_date=row["borrow_date"],
            return_date=row["return_date"],
            status=row["status"],
        )


@dataclass
class Message:
    id: int
    name: str
    email: str
    subject: str
    message: str
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Message":
        return Message(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            subject=row["subject"],
            message=row["message"],
            created_at=row["created_at"],
        )
