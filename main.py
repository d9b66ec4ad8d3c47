import json
import logging
import os
import subprocess
import sys
from typing import Any, Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

import database
from catalog import CatalogService
from config import settings
from errors import LibraryError
from loans import LoanService
from stores import SqliteStorage
from users import UserService

APP_NAME = "Library CLI"

console = Console()
app = typer.Typer(help=APP_NAME)

# Output mode for list commands: plain | json | rich
_output_mode = {"value": "plain"}


def _storage() -> SqliteStorage:
    return SqliteStorage(database.resolve_database_file())


def _print_rows(title: str, columns: List[str], rows: List[Dict[str, Any]], empty_message: str) -> None:
    """Print rows in the current output mode."""
    if not rows:
        print(empty_message)
        return
    mode = _output_mode["value"]
    if mode == "json":
        print(json.dumps(rows, default=str, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for column in columns:
            table.add_column(column.replace("_", " ").title())
        for row in rows:
            table.add_row(*(str(row[c]) for c in columns))
        console.print(table)
    else:
        for row in rows:
            print(" | ".join(str(row[c]) for c in columns))


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global CLI options."""
    logging.basicConfig(level=settings.log_level)
    if output and output.lower() in {"plain", "json", "rich"}:
        _output_mode["value"] = output.lower()


@app.command("init-db")
def cli_init_db():
    """Create the database tables."""
    db_file = database.resolve_database_file()
    database.initialize_database(db_file)
    print(f"Database initialized at {db_file}")


@app.command("add-book")
def cli_add_book(
    title: str,
    author: str,
    quantity: int = typer.Option(1, "--quantity", "-q", help="Number of copies owned"),
    description: str = typer.Option("", "--description", "-d"),
):
    """Add a title to the catalog."""
    try:
        book = CatalogService(_storage()).create_book(title, author, description, quantity)
    except (LibraryError, ValueError) as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print(f"Added book {book.id}: {book.title} by {book.author} ({book.quantity} copies)")


@app.command("list-books")
def cli_list_books():
    """List every book with its availability."""
    books = CatalogService(_storage()).list_books()
    rows = [
        {"id": b.id, "title": b.title, "author": b.author, "available": b.available, "quantity": b.quantity}
        for b in books
    ]
    _print_rows("Catalog", ["id", "title", "author", "available", "quantity"], rows, "No books in library.")


@app.command("promote")
def cli_promote(email: str):
    """Grant administrator rights to the account with EMAIL."""
    storage = _storage()
    with storage.transaction(write=False) as uow:
        user = uow.users.get_by_email(email)
    if user is None:
        print(f"No user with email {email}.")
        raise typer.Exit(code=1)
    UserService(storage).promote_to_admin(user.id)
    print(f"{user.email} is now an administrator.")


@app.command("loans")
def cli_loans(user_id: int):
    """Show every loan of USER_ID, open and returned."""
    views = LoanService(_storage()).list_loans_for_user(user_id)
    rows = [
        {
            "id": v.id,
            "book_title": v.book_title,
            "return_date": v.return_date.date().isoformat(),
            "status": "open" if v.is_open else "returned",
        }
        for v in views
    ]
    _print_rows(f"Loans of user {user_id}", ["id", "book_title", "return_date", "status"], rows,
                f"User {user_id} has no loans.")


@app.command("serve")
def cli_serve(reload: bool = typer.Option(False, "--reload", help="Restart the server on code changes")):
    """Start the API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    subprocess.run(args, env=dict(os.environ))


if __name__ == "__main__":
    app()
