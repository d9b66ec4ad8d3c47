import sqlite3

import pytest

import database
from errors import StoreFailure
from models import Book, Loan, User, utcnow
from stores import SqliteStorage


def _seed(storage, quantity=2):
    with storage.transaction() as uow:
        user = uow.users.add(User(name="Ana", email="ana@example.com", password_hash="h"))
        book = uow.books.add(Book(title="Iracema", author="Jose de Alencar", quantity=quantity))
    return user, book


def test_new_book_starts_fully_available(storage):
    _, book = _seed(storage, quantity=3)
    with storage.transaction(write=False) as uow:
        stored = uow.books.get(book.id)
    assert stored.quantity == 3
    assert stored.available == 3
    assert stored.created_at is not None


def test_decrement_stops_at_zero(storage):
    _, book = _seed(storage, quantity=1)
    with storage.transaction() as uow:
        assert uow.books.decrement_available(book.id) is True
        assert uow.books.decrement_available(book.id) is False
        assert uow.books.decrement_available(999) is False
    with storage.transaction(write=False) as uow:
        assert uow.books.get(book.id).available == 0


def test_increment_is_clamped_to_quantity(storage):
    _, book = _seed(storage, quantity=2)
    with storage.transaction() as uow:
        uow.books.decrement_available(book.id)
        uow.books.increment_available(book.id)
        uow.books.increment_available(book.id)
        assert uow.books.get(book.id).available == 2


@pytest.mark.parametrize("start_out, new_quantity, expected_available", [
    (0, 5, 5),   # grow: every new copy is on the shelf
    (1, 4, 3),   # grow with one copy out
    (2, 3, 1),   # shrink keeps the copies still out
    (2, 1, 0),   # shrink below the copies out clamps at zero
])
def test_adjust_quantity_shifts_available_by_delta(storage, start_out, new_quantity, expected_available):
    _, book = _seed(storage, quantity=2)
    with storage.transaction() as uow:
        for _ in range(start_out):
            uow.books.decrement_available(book.id)
        assert uow.books.adjust_quantity(book.id, new_quantity) is True
        stored = uow.books.get(book.id)
    assert stored.quantity == new_quantity
    assert stored.available == expected_available


def test_mark_returned_happens_once(storage):
    user, book = _seed(storage)
    now = utcnow()
    with storage.transaction() as uow:
        loan = uow.loans.create(Loan(user_id=user.id, book_id=book.id, loan_date=now, return_date=now))
    with storage.transaction() as uow:
        assert uow.loans.mark_returned(loan.id, now) is True
        assert uow.loans.mark_returned(loan.id, now) is False
        view = uow.loans.find_by_id(loan.id)
    assert view.is_returned is True
    assert view.returned_at == now
    assert view.book_title == "Iracema"
    assert view.user_name == "Ana"


def test_exception_inside_unit_of_work_rolls_back(storage):
    _, book = _seed(storage, quantity=1)
    with pytest.raises(RuntimeError):
        with storage.transaction() as uow:
            uow.books.decrement_available(book.id)
            raise RuntimeError("abort")
    with storage.transaction(write=False) as uow:
        assert uow.books.get(book.id).available == 1


def test_book_with_loan_history_cannot_be_deleted(storage):
    user, book = _seed(storage)
    now = utcnow()
    with storage.transaction() as uow:
        uow.loans.create(Loan(user_id=user.id, book_id=book.id, loan_date=now, return_date=now))
    with pytest.raises(StoreFailure):
        with storage.transaction() as uow:
            uow.books.delete(book.id)
    with storage.transaction(write=False) as uow:
        assert uow.books.get(book.id) is not None


def test_duplicate_email_is_a_store_failure(storage):
    _seed(storage)
    with pytest.raises(StoreFailure):
        with storage.transaction() as uow:
            uow.users.add(User(name="Other Ana", email="ANA@example.com", password_hash="h"))
    with storage.transaction(write=False) as uow:
        assert uow.users.count() == 1


def test_sqlite_errors_are_wrapped_and_rolled_back(db_file):
    storage = SqliteStorage(db_file)
    _, book = _seed(storage, quantity=1)
    with pytest.raises(StoreFailure) as excinfo:
        with storage.transaction() as uow:
            uow.books.decrement_available(book.id)
            uow.conn.execute("UPDATE books SET available = -1 WHERE id = ?", (book.id,))
    assert isinstance(excinfo.value.__cause__, sqlite3.IntegrityError)
    with storage.transaction(write=False) as uow:
        assert uow.books.get(book.id).available == 1


def test_schema_is_created_once(db_file):
    database.initialize_database(db_file)
    database.initialize_database(db_file)
    conn = database.get_db_connection(db_file)
    try:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    finally:
        conn.close()
    assert {"users", "books", "loans"} <= tables


def test_resolve_database_file_prefers_env(monkeypatch, tmp_path):
    target = str(tmp_path / "override.db")
    monkeypatch.setenv("LIBRARY_DB_FILE", target)
    assert database.resolve_database_file() == target
