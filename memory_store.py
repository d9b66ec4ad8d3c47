"""In-memory implementation of the store contracts, used by the test-suite.

A single re-entrant lock is held for the whole unit of work, which plays the
role of SQLite's ``BEGIN IMMEDIATE``. State is snapshotted when the unit of
work starts and restored if it raises.
"""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from errors import StoreFailure
from models import Book, Loan, LoanView, User, utcnow


class _State:
    def __init__(self) -> None:
        self.books: Dict[int, Book] = {}
        self.loans: Dict[int, Loan] = {}
        self.users: Dict[int, User] = {}
        self.next_ids = {"books": 1, "loans": 1, "users": 1}

    def next_id(self, table: str) -> int:
        value = self.next_ids[table]
        self.next_ids[table] = value + 1
        return value


class MemoryBookStore:
    def __init__(self, state: _State) -> None:
        self.state = state

    def add(self, book: Book) -> Book:
        now = utcnow()
        book.id = self.state.next_id("books")
        book.created_at = book.updated_at = now
        self.state.books[book.id] = copy.copy(book)
        return book

    def get(self, book_id: int) -> Optional[Book]:
        book = self.state.books.get(book_id)
        return copy.copy(book) if book else None

    def list_all(self) -> List[Book]:
        return [copy.copy(b) for _, b in sorted(self.state.books.items())]

    def update_details(self, book_id: int, *, title: Optional[str] = None, author: Optional[str] = None,
                       description: Optional[str] = None) -> bool:
        book = self.state.books.get(book_id)
        if not book:
            return False
        if title is not None:
            book.title = title
        if author is not None:
            book.author = author
        if description is not None:
            book.description = description
        book.updated_at = utcnow()
        return True

    def delete(self, book_id: int) -> bool:
        if book_id not in self.state.books:
            return False
        if any(loan.book_id == book_id for loan in self.state.loans.values()):
            raise StoreFailure(f"FOREIGN KEY constraint failed: book {book_id} has loans")
        del self.state.books[book_id]
        return True

    def decrement_available(self, book_id: int) -> bool:
        book = self.state.books.get(book_id)
        if not book or book.available <= 0:
            return False
        book.available -= 1
        book.updated_at = utcnow()
        return True

    def increment_available(self, book_id: int) -> bool:
        book = self.state.books.get(book_id)
        if not book:
            return False
        book.available = min(book.available + 1, book.quantity)
        book.updated_at = utcnow()
        return True

    def adjust_quantity(self, book_id: int, new_quantity: int) -> bool:
        book = self.state.books.get(book_id)
        if not book:
            return False
        book.available = max(book.available + (new_quantity - book.quantity), 0)
        book.quantity = new_quantity
        book.updated_at = utcnow()
        return True


class MemoryLoanStore:
    def __init__(self, state: _State) -> None:
        self.state = state

    def create(self, loan: Loan) -> Loan:
        now = utcnow()
        loan.id = self.state.next_id("loans")
        loan.created_at = loan.updated_at = now
        self.state.loans[loan.id] = copy.copy(loan)
        return loan

    def _view(self, loan: Loan) -> LoanView:
        # Mirrors the books/users join of the SQLite store
        return LoanView(
            book_title=self.state.books[loan.book_id].title,
            user_name=self.state.users[loan.user_id].name,
            **vars(copy.copy(loan)),
        )

    def find_by_id(self, loan_id: int) -> Optional[LoanView]:
        loan = self.state.loans.get(loan_id)
        return self._view(loan) if loan else None

    def find_by_user_id(self, user_id: int) -> List[LoanView]:
        return [self._view(l) for _, l in sorted(self.state.loans.items()) if l.user_id == user_id]

    def mark_returned(self, loan_id: int, returned_at: datetime) -> bool:
        loan = self.state.loans.get(loan_id)
        if not loan or loan.is_returned:
            return False
        loan.is_returned = True
        loan.returned_at = returned_at
        loan.updated_at = utcnow()
        return True

    def exists_for_book(self, book_id: int) -> bool:
        return any(loan.book_id == book_id for loan in self.state.loans.values())

    def exists_for_user(self, user_id: int) -> bool:
        return any(loan.user_id == user_id for loan in self.state.loans.values())


class MemoryUserStore:
    def __init__(self, state: _State) -> None:
        self.state = state

    def add(self, user: User) -> User:
        if self.get_by_email(user.email):
            raise StoreFailure("UNIQUE constraint failed: users.email")
        now = utcnow()
        user.id = self.state.next_id("users")
        user.created_at = user.updated_at = now
        self.state.users[user.id] = copy.copy(user)
        return user

    def get(self, user_id: int) -> Optional[User]:
        user = self.state.users.get(user_id)
        return copy.copy(user) if user else None

    def get_by_email(self, email: str) -> Optional[User]:
        email = email.strip().lower()
        for user in self.state.users.values():
            if user.email == email:
                return copy.copy(user)
        return None

    def list_all(self) -> List[User]:
        return [copy.copy(u) for _, u in sorted(self.state.users.items())]

    def update(self, user: User) -> bool:
        stored = self.state.users.get(user.id)
        if not stored:
            return False
        stored.name = user.name
        stored.password_hash = user.password_hash
        stored.updated_at = user.updated_at = utcnow()
        return True

    def delete(self, user_id: int) -> bool:
        if user_id not in self.state.users:
            return False
        if any(loan.user_id == user_id for loan in self.state.loans.values()):
            raise StoreFailure(f"FOREIGN KEY constraint failed: user {user_id} has loans")
        del self.state.users[user_id]
        return True

    def promote_to_admin(self, user_id: int) -> bool:
        user = self.state.users.get(user_id)
        if not user:
            return False
        user.is_admin = True
        user.updated_at = utcnow()
        return True

    def count(self) -> int:
        return len(self.state.users)


class MemoryUnitOfWork:
    def __init__(self, state: _State) -> None:
        self.books = MemoryBookStore(state)
        self.loans = MemoryLoanStore(state)
        self.users = MemoryUserStore(state)


class MemoryStorage:
    def __init__(self) -> None:
        self._state = _State()
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self, write: bool = True) -> Iterator[MemoryUnitOfWork]:
        with self._lock:
            snapshot = copy.deepcopy(self._state)
            try:
                yield MemoryUnitOfWork(self._state)
            except BaseException:
                self._restore(snapshot)
                raise

    def _restore(self, snapshot: _State) -> None:
        self._state.books = snapshot.books
        self._state.loans = snapshot.loans
        self._state.users = snapshot.users
        self._state.next_ids = snapshot.next_ids
