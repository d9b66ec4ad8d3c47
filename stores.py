"""Store contracts and their SQLite implementation.

Every store method runs inside a unit of work handed out by
``Storage.transaction()``; the stores never commit on their own. Availability
changes are single relative UPDATE statements so concurrent borrows and
returns cannot lose each other's writes.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import ContextManager, Iterator, List, Optional, Protocol

import database
from models import Book, Loan, LoanView, User, format_timestamp, utcnow


class BookStore(Protocol):
    def add(self, book: Book) -> Book: ...

    def get(self, book_id: int) -> Optional[Book]: ...

    def list_all(self) -> List[Book]: ...

    def update_details(self, book_id: int, *, title: Optional[str] = None, author: Optional[str] = None,
                       description: Optional[str] = None) -> bool: ...

    def delete(self, book_id: int) -> bool: ...

    def decrement_available(self, book_id: int) -> bool: ...

    def increment_available(self, book_id: int) -> bool: ...

    def adjust_quantity(self, book_id: int, new_quantity: int) -> bool: ...


class LoanStore(Protocol):
    def create(self, loan: Loan) -> Loan: ...

    def find_by_id(self, loan_id: int) -> Optional[LoanView]: ...

    def find_by_user_id(self, user_id: int) -> List[LoanView]: ...

    def mark_returned(self, loan_id: int, returned_at: datetime) -> bool: ...

    def exists_for_book(self, book_id: int) -> bool: ...

    def exists_for_user(self, user_id: int) -> bool: ...


class UserStore(Protocol):
    def add(self, user: User) -> User: ...

    def get(self, user_id: int) -> Optional[User]: ...

    def get_by_email(self, email: str) -> Optional[User]: ...

    def list_all(self) -> List[User]: ...

    def update(self, user: User) -> bool: ...

    def delete(self, user_id: int) -> bool: ...

    def promote_to_admin(self, user_id: int) -> bool: ...

    def count(self) -> int: ...


class UnitOfWork(Protocol):
    books: BookStore
    loans: LoanStore
    users: UserStore


class Storage(Protocol):
    def transaction(self, write: bool = True) -> ContextManager[UnitOfWork]: ...


# ------------------------- SQLite ------------------------- #

class SqliteBookStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def add(self, book: Book) -> Book:
        now = utcnow()
        cursor = self.conn.execute(
            "INSERT INTO books (title, author, description, quantity, available, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (book.title, book.author, book.description, book.quantity, book.available,
             format_timestamp(now), format_timestamp(now)),
        )
        book.id = cursor.lastrowid
        book.created_at = book.updated_at = now
        return book

    def get(self, book_id: int) -> Optional[Book]:
        row = self.conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        return Book.from_dict(dict(row)) if row else None

    def list_all(self) -> List[Book]:
        rows = self.conn.execute("SELECT * FROM books ORDER BY id").fetchall()
        return [Book.from_dict(dict(row)) for row in rows]

    def update_details(self, book_id: int, *, title: Optional[str] = None, author: Optional[str] = None,
                       description: Optional[str] = None) -> bool:
        cursor = self.conn.execute(
            "UPDATE books SET title = COALESCE(?, title), author = COALESCE(?, author), "
            "description = COALESCE(?, description), updated_at = ? WHERE id = ?",
            (title, author, description, format_timestamp(utcnow()), book_id),
        )
        return cursor.rowcount > 0

    def delete(self, book_id: int) -> bool:
        cursor = self.conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        return cursor.rowcount > 0

    def decrement_available(self, book_id: int) -> bool:
        """Take one copy off the shelf. False when none is left (or no such book)."""
        cursor = self.conn.execute(
            "UPDATE books SET available = available - 1, updated_at = ? WHERE id = ? AND available > 0",
            (format_timestamp(utcnow()), book_id),
        )
        return cursor.rowcount == 1

    def increment_available(self, book_id: int) -> bool:
        """Put one copy back, never above the owned quantity."""
        cursor = self.conn.execute(
            "UPDATE books SET available = MIN(available + 1, quantity), updated_at = ? WHERE id = ?",
            (format_timestamp(utcnow()), book_id),
        )
        return cursor.rowcount == 1

    def adjust_quantity(self, book_id: int, new_quantity: int) -> bool:
        # Right-hand sides see the old row, so the delta uses the previous quantity
        cursor = self.conn.execute(
            "UPDATE books SET available = MAX(available + (? - quantity), 0), quantity = ?, updated_at = ? "
            "WHERE id = ?",
            (new_quantity, new_quantity, format_timestamp(utcnow()), book_id),
        )
        return cursor.rowcount == 1


_LOAN_VIEW_SELECT = """
    SELECT loans.*, books.title AS book_title, users.name AS user_name
    FROM loans
    JOIN books ON books.id = loans.book_id
    JOIN users ON users.id = loans.user_id
"""


class SqliteLoanStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def create(self, loan: Loan) -> Loan:
        now = utcnow()
        cursor = self.conn.execute(
            "INSERT INTO loans (user_id, book_id, loan_date, return_date, returned_at, is_returned, "
            "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (loan.user_id, loan.book_id, format_timestamp(loan.loan_date), format_timestamp(loan.return_date),
             format_timestamp(loan.returned_at), loan.is_returned, format_timestamp(now), format_timestamp(now)),
        )
        loan.id = cursor.lastrowid
        loan.created_at = loan.updated_at = now
        return loan

    def find_by_id(self, loan_id: int) -> Optional[LoanView]:
        row = self.conn.execute(_LOAN_VIEW_SELECT + " WHERE loans.id = ?", (loan_id,)).fetchone()
        return LoanView.from_dict(dict(row)) if row else None

    def find_by_user_id(self, user_id: int) -> List[LoanView]:
        rows = self.conn.execute(
            _LOAN_VIEW_SELECT + " WHERE loans.user_id = ? ORDER BY loans.id", (user_id,)
        ).fetchall()
        return [LoanView.from_dict(dict(row)) for row in rows]

    def mark_returned(self, loan_id: int, returned_at: datetime) -> bool:
        """Close an open loan. False when it was already closed (or does not exist)."""
        cursor = self.conn.execute(
            "UPDATE loans SET is_returned = 1, returned_at = ?, updated_at = ? WHERE id = ? AND is_returned = 0",
            (format_timestamp(returned_at), format_timestamp(utcnow()), loan_id),
        )
        return cursor.rowcount == 1

    def exists_for_book(self, book_id: int) -> bool:
        row = self.conn.execute("SELECT 1 FROM loans WHERE book_id = ? LIMIT 1", (book_id,)).fetchone()
        return row is not None

    def exists_for_user(self, user_id: int) -> bool:
        row = self.conn.execute("SELECT 1 FROM loans WHERE user_id = ? LIMIT 1", (user_id,)).fetchone()
        return row is not None


class SqliteUserStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def add(self, user: User) -> User:
        now = utcnow()
        cursor = self.conn.execute(
            "INSERT INTO users (name, email, password_hash, is_admin, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (user.name, user.email, user.password_hash, user.is_admin, format_timestamp(now), format_timestamp(now)),
        )
        user.id = cursor.lastrowid
        user.created_at = user.updated_at = now
        return user

    def get(self, user_id: int) -> Optional[User]:
        row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return User.from_dict(dict(row)) if row else None

    def get_by_email(self, email: str) -> Optional[User]:
        row = self.conn.execute("SELECT * FROM users WHERE email = ?", (email.strip().lower(),)).fetchone()
        return User.from_dict(dict(row)) if row else None

    def list_all(self) -> List[User]:
        rows = self.conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [User.from_dict(dict(row)) for row in rows]

    def update(self, user: User) -> bool:
        now = utcnow()
        cursor = self.conn.execute(
            "UPDATE users SET name = ?, password_hash = ?, updated_at = ? WHERE id = ?",
            (user.name, user.password_hash, format_timestamp(now), user.id),
        )
        user.updated_at = now
        return cursor.rowcount == 1

    def delete(self, user_id: int) -> bool:
        cursor = self.conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        return cursor.rowcount > 0

    def promote_to_admin(self, user_id: int) -> bool:
        cursor = self.conn.execute(
            "UPDATE users SET is_admin = 1, updated_at = ? WHERE id = ?",
            (format_timestamp(utcnow()), user_id),
        )
        return cursor.rowcount == 1

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]


class SqliteUnitOfWork:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.books = SqliteBookStore(conn)
        self.loans = SqliteLoanStore(conn)
        self.users = SqliteUserStore(conn)


class SqliteStorage:
    """Production storage: one SQLite file, one connection per unit of work."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file or database.resolve_database_file()
        database.initialize_database(self.db_file)

    @contextmanager
    def transaction(self, write: bool = True) -> Iterator[SqliteUnitOfWork]:
        with database.transaction(self.db_file, immediate=write) as conn:
            yield SqliteUnitOfWork(conn)
