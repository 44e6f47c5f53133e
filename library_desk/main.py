import logging
import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console

from .config import configure_logging, settings
from .database import Database, initialize_database
from .errors import LibraryError
from .identity import IdentityStore
from .inventory import InventoryStore
from .ledger import BorrowLedger
from .models import ROLE_ADMIN, Identity
from .ui_helpers import print_books, print_borrows, print_summary, set_output_mode

logger = logging.getLogger(__name__)

console = Console()

app = typer.Typer(help="Library Desk CLI")


def _database() -> Database:
    """Open (and if needed create) the configured database."""
    db = Database.from_settings(settings)
    initialize_database(db, settings)
    return db


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db_file: Optional[str] = typer.Option(None, "--db", help="SQLite database file to use"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level"),
):
    """Global options for the CLI (output mode, database)."""
    configure_logging(log_level)
    if output:
        set_output_mode(output)
    if db_file:
        settings.database_file = db_file


@app.command("init-db")
def cli_init_db():
    """Create tables, migrate old databases and seed defaults."""
    db = _database()
    print(f"Database ready: {db.db_file}")


@app.command("create-admin")
def cli_create_admin(
    username: str,
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Add an administrator account."""
    identities = IdentityStore(_database())
    try:
        user = identities.create_user(username, password, ROLE_ADMIN)
    except LibraryError as e:
        print(f"Error: {e.message}")
        raise typer.Exit(code=1)
    print(f"Admin account created: {user.username} (id {user.id})")


@app.command("books")
def cli_books(query: Optional[str] = typer.Argument(None, help="Filter by title, author or category")):
    """List the catalog, newest first."""
    print_books(InventoryStore(_database()).search(query))


@app.command("summary")
def cli_summary():
    """Show book, loan and user counts."""
    db = _database()
    print_summary({
        "total_books": InventoryStore(db).count(),
        "borrowed_books": BorrowLedger(db).count_active(),
        "total_users": IdentityStore(db).count(),
    })


@app.command("borrows")
def cli_borrows(username: str):
    """Show a user's borrow history."""
    db = _database()
    user = IdentityStore(db).find_by_username(username)
    if not user:
        print(f"User {username} not found.")
        raise typer.Exit(code=1)
    print_borrows(username, BorrowLedger(db).list_for_user(user.id))


@app.command("return")
def cli_return(
    record_id: int,
    acting_as: str = typer.Option(settings.admin_username, "--as", help="Admin account performing the return"),
):
    """Mark a borrow record as returned."""
    db = _database()
    user = IdentityStore(db).find_by_username(acting_as)
    if not user:
        print(f"User {acting_as} not found.")
        raise typer.Exit(code=1)
    try:
        changed = BorrowLedger(db).mark_returned(record_id, Identity.for_user(user))
    except LibraryError as e:
        print(f"Error: {e.message}")
        raise typer.Exit(code=1)
    if changed:
        print(f"Record {record_id} marked as returned.")
    else:
        print(f"Record {record_id} was already returned.")


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Start the HTTP API with uvicorn."""
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "library_desk.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args, check=False)
    except KeyboardInterrupt:
        print("Server stopped.")
    except FileNotFoundError:
        console.print("[bold red]Error:[/] `uvicorn` could not be started. Make sure it is installed.")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
