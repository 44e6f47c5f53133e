import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from library_desk import main
from library_desk.config import settings
from library_desk.database import Database
from library_desk.identity import IdentityStore
from library_desk.ledger import BorrowLedger
from library_desk.models import Identity
from library_desk.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    # The CLI mutates the shared settings object; monkeypatch restores it afterwards.
    path = str(tmp_path / "cli.db")
    monkeypatch.setattr(settings, "database_file", path)
    monkeypatch.setattr(settings, "seed_sample_data", True)
    monkeypatch.setattr(settings, "admin_username", "admin")
    monkeypatch.setattr(settings, "admin_password", "admin123")
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")
    return path


def invoke(db_path, *args):
    return runner.invoke(main.app, ["--db", db_path, *args])


def test_init_db(db_path):
    result = invoke(db_path, "init-db")
    assert result.exit_code == 0
    assert f"Database ready: {db_path}" in result.stdout


def test_books_lists_sample_catalog(db_path):
    result = invoke(db_path, "books")
    assert result.exit_code == 0
    lines = [line for line in result.stdout.splitlines() if line.strip()]
    assert len(lines) == 4
    assert all(line.endswith("[available]") for line in lines)
    assert any("Calculus by George B. Thomas" in line for line in lines)


def test_books_filter_and_json_output(db_path):
    result = invoke(db_path, "--output", "json", "books", "philippine")
    assert result.exit_code == 0
    books = json.loads(result.stdout)
    assert sorted(b["title"] for b in books) == ["Philippine Literature", "Philippine Politics"]


def test_books_no_match(db_path):
    result = invoke(db_path, "books", "nothing-like-this")
    assert "No books in library." in result.stdout


def test_summary(db_path):
    result = invoke(db_path, "summary")
    assert result.exit_code == 0
    assert "Total Books: 4" in result.stdout
    assert "Borrowed Books: 0" in result.stdout
    assert "Total Users: 1" in result.stdout


def test_create_admin(db_path):
    result = invoke(db_path, "create-admin", "librarian", "--password", "s3cret")
    assert result.exit_code == 0
    assert "Admin account created: librarian" in result.stdout

    result = invoke(db_path, "create-admin", "librarian", "--password", "s3cret")
    assert result.exit_code == 1
    assert "Error: Username already exists" in result.stdout


def test_borrows_unknown_user(db_path):
    result = invoke(db_path, "borrows", "ghost")
    assert result.exit_code == 1
    assert "User ghost not found." in result.stdout


def test_borrows_and_return(db_path):
    invoke(db_path, "init-db")
    db = Database(db_path)
    identities = IdentityStore(db)
    identities.register("alice", "pw1")
    alice = identities.authenticate("alice", "pw1")
    record = BorrowLedger(db).borrow(1, alice, "2025-01-01")

    result = invoke(db_path, "borrows", "alice")
    assert f"#{record.id} Philippine Literature" in result.stdout
    assert "due 2025-01-01 [borrowed]" in result.stdout

    result = invoke(db_path, "return", str(record.id))
    assert result.exit_code == 0
    assert f"Record {record.id} marked as returned." in result.stdout

    result = invoke(db_path, "return", str(record.id))
    assert f"Record {record.id} was already returned." in result.stdout


def test_return_as_student_is_refused(db_path):
    invoke(db_path, "init-db")
    db = Database(db_path)
    identities = IdentityStore(db)
    identities.register("alice", "pw1")
    alice = identities.authenticate("alice", "pw1")
    record = BorrowLedger(db).borrow(1, alice)

    result = invoke(db_path, "return", str(record.id), "--as", "alice")

    assert result.exit_code == 1
    assert "Error:" in result.stdout
    assert BorrowLedger(db).get(record.id).status == "borrowed"


def test_serve_runs_uvicorn(db_path):
    with patch("library_desk.main.subprocess.run") as mock_run:
        result = runner.invoke(main.app, ["serve", "--host", "0.0.0.0", "--port", "8123"])

    assert result.exit_code == 0
    assert "Starting API on http://0.0.0.0:8123/" in result.stdout
    args = mock_run.call_args[0][0]
    assert args[1:4] == ["-m", "uvicorn", "library_desk.api:app"]
    assert args[-2:] == ["--port", "8123"]
