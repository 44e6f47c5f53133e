import logging
from typing import List

from .database import Database
from .errors import ValidationError
from .models import Message
from .validators import EmailValidator, TextValidator

logger = logging.getLogger(__name__)


class MessageInbox:
    """Contact-form messages left by visitors."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def submit(self, name: str, email: str, subject: str, message: str) -> Message:
        fields = {"name": name, "email": email, "subject": subject, "message": message}
        if any(TextValidator.is_blank(v) for v in fields.values()):
            raise ValidationError("All fields are required.")
        if not EmailValidator.is_valid_email(email):
            raise ValidationError("A valid email address is required.")
        values = tuple(v.strip() for v in fields.values())

        with self.db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO messages (name, email, subject, message) VALUES (?, ?, ?, ?)", values
            )
            row = conn.execute(
                "SELECT id, name, email, subject, message, created_at FROM messages WHERE id = ?",
                (cursor.lastrowid,),
            ).fetchone()
        logger.info("Contact message %s received", row["id"])
        return Message.from_row(row)

    def list_all(self) -> List[Message]:
        """All messages, newest first."""
        with self.db.read() as conn:
            rows = conn.execute(
                "SELECT id, name, email, subject, message, created_at FROM messages "
                "ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [Message.from_row(row) for row in rows]
