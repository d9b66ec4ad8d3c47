from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value) -> datetime | None:
    # SQLite hands timestamps back as ISO text
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    return to_utc(datetime.fromisoformat(value))


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return to_utc(value).isoformat()


class Book:
    """A catalog entry with its total and currently available copy counts."""

    def __init__(self, title: str, author: str, description: str = "", quantity: int = 1,
                 available: int | None = None, id: int | None = None,
                 created_at: datetime | None = None, updated_at: datetime | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.description = description or ""
        self.quantity = quantity
        # New books start with every copy on the shelf
        self.available = quantity if available is None else available
        self.created_at = created_at
        self.updated_at = updated_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.available}/{self.quantity} available)"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "description": self.description,
            "quantity": self.quantity,
            "available": self.available,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            description=data.get("description") or "",
            quantity=data["quantity"],
            available=data["available"],
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )


class User:
    """A registered account. Only the id, name and admin flag matter to loans."""

    def __init__(self, name: str, email: str, password_hash: str, is_admin: bool = False,
                 id: int | None = None, created_at: datetime | None = None,
                 updated_at: datetime | None = None) -> None:
        self.id = id
        self.name = name.strip()
        self.email = email.strip().lower()
        self.password_hash = password_hash
        self.is_admin = bool(is_admin)
        self.created_at = created_at
        self.updated_at = updated_at

    def to_dict(self) -> dict:
        # never includes password_hash
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "is_admin": self.is_admin,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(
            id=data.get("id"),
            name=data["name"],
            email=data["email"],
            password_hash=data["password_hash"],
            is_admin=bool(data.get("is_admin")),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )


class Loan:
    """One copy of a book lent to a user. Moves from open to returned exactly once."""

    def __init__(self, user_id: int, book_id: int, loan_date: datetime, return_date: datetime,
                 returned_at: datetime | None = None, is_returned: bool = False, id: int | None = None,
                 created_at: datetime | None = None, updated_at: datetime | None = None) -> None:
        self.id = id
        self.user_id = user_id
        self.book_id = book_id
        self.loan_date = loan_date
        self.return_date = return_date
        self.returned_at = returned_at
        self.is_returned = bool(is_returned)
        self.created_at = created_at
        self.updated_at = updated_at

    @property
    def is_open(self) -> bool:
        return not self.is_returned

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "user_id": self.user_id,
            "loan_date": self.loan_date,
            "return_date": self.return_date,
            "returned_at": self.returned_at,
            "is_returned": self.is_returned,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Loan":
        return Loan(
            id=data.get("id"),
            user_id=data["user_id"],
            book_id=data["book_id"],
            loan_date=parse_timestamp(data["loan_date"]),
            return_date=parse_timestamp(data["return_date"]),
            returned_at=parse_timestamp(data.get("returned_at")),
            is_returned=bool(data.get("is_returned")),
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )


class LoanView(Loan):
    """A loan together with the book title and borrower name shown to callers."""

    def __init__(self, *, book_title: str, user_name: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.book_title = book_title
        self.user_name = user_name

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "book_title": self.book_title,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "loan_date": self.loan_date,
            "return_date": self.return_date,
            "returned_at": self.returned_at,
            "is_returned": self.is_returned,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "LoanView":
        loan = Loan.from_dict(data)
        return LoanView(
            book_title=data["book_title"],
            user_name=data["user_name"],
            **vars(loan),
        )
