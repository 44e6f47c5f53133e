import re
from datetime import date
from typing import Optional

from .errors import ValidationError
from .models import BORROW_ACTIVE, BORROW_RETURNED

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DUE_DATE_FORMAT = "return_date must be a date in YYYY-MM-DD format."


class TextValidator:
    """Basic checks for free-text fields."""

    @staticmethod
    def is_blank(text: Optional[str]) -> bool:
        return text is None or not str(text).strip()

    @staticmethod
    def require(text: Optional[str], field: str) -> str:
        """Return the stripped value or raise ValidationError naming the field."""
        if TextValidator.is_blank(text):
            raise ValidationError(f"{field} is required.")
        return str(text).strip()

    @staticmethod
    def optional(text: Optional[str]) -> str:
        return "" if text is None else str(text).strip()


class EmailValidator:
    @staticmethod
    def is_valid_email(email: Optional[str]) -> bool:
        if not email:
            return False
        return bool(_EMAIL_RE.match(email.strip()))


class DateValidator:
    @staticmethod
    def due_date(raw: Optional[str]) -> Optional[str]:
        """Check that a caller-supplied due date is a real YYYY-MM-DD date.

        Empty values mean "no due date". Past dates are accepted.
        """
        if raw is None or not str(raw).strip():
            return None
        value = str(raw).strip()
        if not _DATE_RE.match(value):
            raise ValidationError(_DUE_DATE_FORMAT)
        try:
            return date.fromisoformat(value).isoformat()
        except ValueError:
            raise ValidationError(_DUE_DATE_FORMAT)


def validate_borrow_status(status: Optional[str]) -> str:
    value = TextValidator.require(status, "status").lower()
    if value not in (BORROW_ACTIVE, BORROW_RETURNED):
        raise ValidationError(f"Unknown borrow status: {status}")
    return value
