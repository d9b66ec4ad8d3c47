import os

# Cheap hashing for the test-suite; must be set before config is imported
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest

from catalog import CatalogService
from memory_store import MemoryStorage
from models import User
from stores import SqliteStorage


@pytest.fixture
def db_file(tmp_path, request):
    # A unique database file per test
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture(params=["sqlite", "memory"])
def storage(request, tmp_path):
    if request.param == "sqlite":
        return SqliteStorage(str(tmp_path / "library.db"))
    return MemoryStorage()


@pytest.fixture
def make_user(storage):
    """Insert a user directly, skipping password hashing."""
    def _make(name="Reader", email=None, is_admin=False):
        email = email or f"{name.lower().replace(' ', '.')}@example.com"
        with storage.transaction() as uow:
            return uow.users.add(User(name=name, email=email, password_hash="not-a-hash", is_admin=is_admin))
    return _make


@pytest.fixture
def make_book(storage):
    def _make(title="Dom Casmurro", author="Machado de Assis", quantity=1):
        return CatalogService(storage).create_book(title, author, quantity=quantity)
    return _make
