"""Typed failures raised by the stores and services.

The API layer maps these onto HTTP status codes; the CLI prints them.
"""


class LibraryError(Exception):
    """Base class for every failure the library core reports."""


class NotFoundError(LibraryError, LookupError):
    pass


class BookNotFound(NotFoundError):
    def __init__(self, book_id: int) -> None:
        super().__init__(f"Book {book_id} not found.")
        self.book_id = book_id


class LoanNotFound(NotFoundError):
    def __init__(self, loan_id: int) -> None:
        super().__init__(f"Loan {loan_id} not found.")
        self.loan_id = loan_id


class UserNotFound(NotFoundError):
    def __init__(self, user_id: int) -> None:
        super().__init__(f"User {user_id} not found.")
        self.user_id = user_id


class BusinessRuleError(LibraryError, ValueError):
    pass


class BookUnavailable(BusinessRuleError):
    def __init__(self, book_id: int) -> None:
        super().__init__(f"Book {book_id} is not available for loan.")
        self.book_id = book_id


class AlreadyReturned(BusinessRuleError):
    def __init__(self, loan_id: int) -> None:
        super().__init__(f"Loan {loan_id} has already been returned.")
        self.loan_id = loan_id


class AccessDenied(BusinessRuleError):
    def __init__(self, loan_id: int) -> None:
        super().__init__(f"Access denied to loan {loan_id}.")
        self.loan_id = loan_id


class InvalidReturnDate(BusinessRuleError):
    pass


class EmailAlreadyRegistered(BusinessRuleError):
    def __init__(self, email: str) -> None:
        super().__init__(f"Email {email} is already in use.")
        self.email = email


class BookHasLoans(BusinessRuleError):
    def __init__(self, book_id: int) -> None:
        super().__init__(f"Book {book_id} has loan history and cannot be removed.")
        self.book_id = book_id


class UserHasLoans(BusinessRuleError):
    def __init__(self, user_id: int) -> None:
        super().__init__(f"User {user_id} has loan history and cannot be removed.")
        self.user_id = user_id


class InvalidCredentials(LibraryError):
    def __init__(self) -> None:
        super().__init__("Invalid credentials.")


class StoreFailure(LibraryError):
    """The durable store could not complete a unit of work; nothing was applied."""
