import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .models import Book, BorrowEntry

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIBRARY_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_books(books: List[Book]) -> None:
    """Print the catalog in the current output mode.
    - plain: '<id> - Title by Author [status]' lines, or 'No books in library.'
    - json: JSON array of book objects
    - rich: Rich table
    """
    if not books:
        print("No books in library.")
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Category", style="white")
        table.add_column("Status", style="green")
        for b in books:
            status_style = "green" if b.status == "available" else "yellow"
            table.add_row(str(b.id), b.title, b.author, b.category, f"[{status_style}]{b.status}[/]")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} [{b.status}]")


def print_borrows(username: str, entries: List[BorrowEntry]) -> None:
    if not entries:
        print(f"No borrow records for {username}.")
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps([e.to_dict() for e in entries], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=f"Borrow history: {username}", header_style="bold cyan")
        for column in ("Record", "Title", "Borrowed", "Due", "Status"):
            table.add_column(column)
        for e in entries:
            table.add_row(str(e.id), e.title or "(deleted)", e.borrow_date or "", e.return_date or "", e.status)
        _console.print(table)
    else:
        for e in entries:
            print(f"#{e.id} {e.title or '(deleted)'} borrowed {e.borrow_date} due {e.return_date or '-'} [{e.status}]")


def print_summary(stats: Dict[str, Any]) -> None:
    """Print summary counts in the current output mode."""
    mode = get_output_mode()
    total = stats.get("total_books", 0)
    borrowed = stats.get("borrowed_books", 0)
    users = stats.get("total_users", 0)

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = f"[bold]Total Books:[/] {total}\n[bold]Borrowed Books:[/] {borrowed}\n[bold]Total Users:[/] {users}"
        _console.print(Panel.fit(content, title="📊 Summary", border_style="blue"))
    else:
        print(f"Total Books: {total}")
        print(f"Borrowed Books: {borrowed}")
        print(f"Total Users: {users}")
