import pytest

from library_desk.config import Settings
from library_desk.database import Database, initialize_database
from library_desk.identity import IdentityStore
from library_desk.inventory import InventoryStore
from library_desk.ledger import BorrowLedger
from library_desk.messages import MessageInbox


@pytest.fixture
def config(tmp_path):
    return Settings(
        database_file=str(tmp_path / "library.db"),
        seed_sample_data=False,
        admin_username="admin",
        admin_password="admin123",
        static_dir=str(tmp_path / "no-static"),
    )


@pytest.fixture
def db(config):
    database = Database.from_settings(config)
    initialize_database(database, config)
    return database


@pytest.fixture
def identities(db):
    return IdentityStore(db)


@pytest.fixture
def inventory(db):
    return InventoryStore(db)


@pytest.fixture
def ledger(db):
    return BorrowLedger(db)


@pytest.fixture
def inbox(db):
    return MessageInbox(db)


@pytest.fixture
def admin(identities):
    return identities.authenticate("admin", "admin123")


@pytest.fixture
def alice(identities):
    identities.register("alice", "pw1")
    return identities.authenticate("alice", "pw1")


@pytest.fixture
def bob(identities):
    identities.register("bob", "pw2")
    return identities.authenticate("bob", "pw2")
