import logging
import os
import sqlite3
import tempfile
from contextlib import contextmanager
from typing import Iterator, Optional

from dotenv import load_dotenv

from config import settings
from errors import StoreFailure

# Make sure .env is loaded before the environment is read below, whatever the import order.
load_dotenv()

logger = logging.getLogger(__name__)


def resolve_database_file() -> str:
    """Pick the SQLite file to use.

    Priority:
    1) LIBRARY_DB_FILE (explicit override, read at call time so tests can swap it)
    2) LIBRARY_DATA_FILE (settings / .env)
    3) a per-process temp file
    """
    return (
        os.environ.get("LIBRARY_DB_FILE")
        or settings.data_file
        or os.path.join(tempfile.gettempdir(), f"library_{os.getpid()}.db")
    )


DATABASE_FILE = resolve_database_file()


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database.

    The connection runs in autocommit mode: transactions are opened explicitly by
    ``transaction()`` so that every unit of work has a visible BEGIN/COMMIT.
    """
    conn = sqlite3.connect(
        db_file or DATABASE_FILE,
        timeout=settings.database_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    # WAL lets readers proceed while a borrow/return holds the write lock
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


@contextmanager
def transaction(db_file: Optional[str] = None, immediate: bool = True) -> Iterator[sqlite3.Connection]:
    """Run a block as one atomic unit of work.

    ``immediate=True`` takes the database write lock at BEGIN, so concurrent
    writers queue up behind each other instead of interleaving their reads and
    updates of the same book row. Any exception rolls the whole block back;
    sqlite errors surface as ``StoreFailure``.
    """
    try:
        conn = get_db_connection(db_file)
    except sqlite3.Error as e:
        raise StoreFailure(f"Could not open database: {e}") from e
    try:
        conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        yield conn
        conn.execute("COMMIT")
    except sqlite3.Error as e:
        _rollback(conn)
        logger.error(f"Transaction rolled back: {e}")
        raise StoreFailure(str(e)) from e
    except BaseException:
        _rollback(conn)
        raise
    finally:
        conn.close()


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK")


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the required tables if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                is_admin BOOLEAN NOT NULL DEFAULT 0,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                quantity INTEGER NOT NULL DEFAULT 1 CHECK(quantity >= 0),
                available INTEGER NOT NULL DEFAULT 1 CHECK(available >= 0),
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                book_id INTEGER NOT NULL,
                loan_date TIMESTAMP NOT NULL,
                return_date TIMESTAMP NOT NULL,
                returned_at TIMESTAMP,
                is_returned BOOLEAN NOT NULL DEFAULT 0,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id),
                FOREIGN KEY (book_id) REFERENCES books(id)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_user_id ON loans(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_book_id ON loans(book_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialize the database, creating tables when needed."""
    create_tables(db_file)
    logger.info(f"Database ready at {db_file or DATABASE_FILE}")
