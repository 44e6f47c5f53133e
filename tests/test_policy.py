import pytest

from library_desk.errors import AuthRequired, Forbidden
from library_desk.models import ANONYMOUS, Identity
from library_desk.policy import RULES, Operation, Requirement, authorize, require

STUDENT = Identity(id=2, username="alice", role="student")
ADMIN = Identity(id=1, username="admin", role="admin")

PUBLIC_OPS = [Operation.REGISTER, Operation.LOGIN, Operation.SEARCH_CATALOG, Operation.SUBMIT_MESSAGE]
ADMIN_OPS = [
    Operation.MARK_RETURNED,
    Operation.LIST_USERS,
    Operation.SUMMARY,
    Operation.CATALOG_CREATE,
    Operation.CATALOG_UPDATE,
    Operation.CATALOG_DELETE,
    Operation.LIST_MESSAGES,
]


def test_every_operation_has_a_rule():
    assert set(RULES) == set(Operation)


@pytest.mark.parametrize("operation", PUBLIC_OPS)
def test_public_operations_allow_anonymous(operation):
    assert authorize(operation, ANONYMOUS).allowed


@pytest.mark.parametrize("operation", [Operation.BORROW, Operation.LIST_OWN_BORROWS])
def test_self_service_needs_login(operation):
    decision = authorize(operation, ANONYMOUS)
    assert not decision
    assert decision.error is AuthRequired
    assert authorize(operation, STUDENT)
    assert authorize(operation, ADMIN)


@pytest.mark.parametrize("operation", ADMIN_OPS)
def test_admin_operations(operation):
    assert RULES[operation] is Requirement.ADMIN
    assert authorize(operation, ANONYMOUS).error is AuthRequired
    assert authorize(operation, STUDENT).error is Forbidden
    assert authorize(operation, ADMIN).allowed


def test_require_raises_matching_error():
    with pytest.raises(AuthRequired):
        require(Operation.BORROW, ANONYMOUS)
    with pytest.raises(Forbidden):
        require(Operation.SUMMARY, STUDENT)
    assert require(Operation.SUMMARY, ADMIN) is ADMIN


def test_unknown_role_is_not_admin():
    librarian = Identity(id=9, username="lib", role="librarian")
    assert authorize(Operation.BORROW, librarian)
    assert authorize(Operation.CATALOG_DELETE, librarian).error is Forbidden
