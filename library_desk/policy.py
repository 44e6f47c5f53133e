"""Role gating for every operation the library exposes.

``authorize`` is a pure function of (operation, identity); ``require`` raises
the matching error so callers can check before they mutate anything.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .errors import AuthRequired, Forbidden
from .models import Identity


class Operation(str, Enum):
    REGISTER = "register"
    LOGIN = "login"
    LOGOUT = "logout"
    ME = "me"
    SEARCH_CATALOG = "search_catalog"
    SUBMIT_MESSAGE = "submit_message"
    BORROW = "borrow"
    LIST_OWN_BORROWS = "list_own_borrows"
    MARK_RETURNED = "mark_returned"
    LIST_USERS = "list_users"
    SUMMARY = "summary"
    CATALOG_CREATE = "catalog_create"
    CATALOG_UPDATE = "catalog_update"
    CATALOG_DELETE = "catalog_delete"
    LIST_MESSAGES = "list_messages"


class Requirement(str, Enum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    ADMIN = "admin"


RULES: Dict[Operation, Requirement] = {
    Operation.REGISTER: Requirement.PUBLIC,
    Operation.LOGIN: Requirement.PUBLIC,
    Operation.SEARCH_CATALOG: Requirement.PUBLIC,
    Operation.SUBMIT_MESSAGE: Requirement.PUBLIC,
    Operation.LOGOUT: Requirement.AUTHENTICATED,
    Operation.ME: Requirement.AUTHENTICATED,
    Operation.BORROW: Requirement.AUTHENTICATED,
    Operation.LIST_OWN_BORROWS: Requirement.AUTHENTICATED,
    Operation.MARK_RETURNED: Requirement.ADMIN,
    Operation.LIST_USERS: Requirement.ADMIN,
    Operation.SUMMARY: Requirement.ADMIN,
    Operation.CATALOG_CREATE: Requirement.ADMIN,
    Operation.CATALOG_UPDATE: Requirement.ADMIN,
    Operation.CATALOG_DELETE: Requirement.ADMIN,
    Operation.LIST_MESSAGES: Requirement.ADMIN,
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None
    # Which error a denial maps to: AuthRequired or Forbidden.
    error: Optional[type] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(allowed=True)


def authorize(operation: Operation, identity: Identity) -> Decision:
    requirement = RULES[operation]
    if requirement is Requirement.PUBLIC:
        return ALLOW
    if not identity.is_authenticated:
        return Decision(allowed=False, reason="Login required", error=AuthRequired)
    if requirement is Requirement.ADMIN and not identity.is_admin:
        return Decision(allowed=False, reason="Forbidden: admin access required", error=Forbidden)
    return ALLOW


def require(operation: Operation, identity: Identity) -> Identity:
    """Raise AuthRequired/Forbidden unless ``identity`` may perform ``operation``."""
    decision = authorize(operation, identity)
    if not decision:
        raise decision.error(decision.reason)
    return identity
