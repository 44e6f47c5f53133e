import logging
import sqlite3
from typing import List, Optional

from .database import Database
from .errors import AuthError, Conflict, NotFound, ValidationError
from .models import ROLE_ADMIN, ROLE_STUDENT, Identity, User
from .security import hash_password, verify_password
from .validators import TextValidator

logger = logging.getLogger(__name__)


class IdentityStore:
    """Persists user accounts and verifies login credentials."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def register(self, username: str, password: str) -> User:
        """Create a student account. Raises Conflict when the username is taken."""
        return self.create_user(username, password, ROLE_STUDENT)

    def create_user(self, username: str, password: str, role: str = ROLE_STUDENT) -> User:
        username = TextValidator.require(username, "username")
        if TextValidator.is_blank(password):
            raise ValidationError("password is required.")
        if role not in (ROLE_ADMIN, ROLE_STUDENT):
            raise ValidationError(f"Unknown role: {role}")

        password_hash = hash_password(password)
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO users (username, password_hash, role) VALUES (?, ?, ?)",
                    (username, password_hash, role),
                )
                row = conn.execute(
                    "SELECT id, username, role, created_at FROM users WHERE id = ?",
                    (cursor.lastrowid,),
                ).fetchone()
        except sqlite3.IntegrityError as e:
            logger.warning("Registration rejected, username taken: %s", username)
            raise Conflict("Username already exists. Please choose another.") from e
        logger.info("Created %s account %s", role, username)
        return User.from_row(row)

    def authenticate(self, username: str, password: str) -> Identity:
        """Return the identity for matching credentials.

        Unknown usernames and wrong passwords fail with the same message.
        """
        if TextValidator.is_blank(username) or TextValidator.is_blank(password):
            raise AuthError("Invalid credentials")
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT id, username, role, password_hash, created_at FROM users WHERE username = ?",
                (username.strip(),),
            ).fetchone()
        if not row or not verify_password(password, row["password_hash"]):
            logger.warning("Failed login for %s", username)
            raise AuthError("Invalid credentials")
        return Identity.for_user(User.from_row(row))

    def get(self, user_id: int) -> User:
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT id, username, role, created_at FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        if not row:
            raise NotFound("User not found")
        return User.from_row(row)

    def find_by_username(self, username: str) -> Optional[User]:
        with self.db.read() as conn:
            row = conn.execute(
                "SELECT id, username, role, created_at FROM users WHERE username = ?", (username,)
            ).fetchone()
        return User.from_row(row) if row else None

    def list_users(self) -> List[User]:
        """All accounts, newest first."""
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT id, username, role, created_at FROM users ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [User.from_row(row) for row in rows]

    def count(self) -> int:
        with self.db.read() as conn:
            return conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]

    def ensure_admin(self, username: str, password: str) -> Optional[User]:
        """Create the default admin account if no admin exists yet."""
        with self.db.read() as conn:
            existing = conn.execute("SELECT id FROM users WHERE role = ? LIMIT 1", (ROLE_ADMIN,)).fetchone()
        if existing:
            return None
        try:
            user = self.create_user(username, password, ROLE_ADMIN)
        except Conflict:
            logger.warning("Cannot seed admin: username %s is taken by a student account", username)
            return None
        logger.info("Default admin account created (%s)", username)
        return user
