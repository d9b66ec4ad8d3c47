import logging
from datetime import datetime
from typing import Callable, List

from errors import (
    AccessDenied,
    AlreadyReturned,
    BookNotFound,
    BookUnavailable,
    InvalidReturnDate,
    LoanNotFound,
    UserNotFound,
)
from models import Loan, LoanView, to_utc, utcnow
from stores import Storage

logger = logging.getLogger(__name__)


class LoanService:
    """Creates and closes loans, keeping each book's available count in step.

    A borrow or a return touches two rows (the book's counter and the loan), and
    both changes are made inside one ``storage.transaction()`` so they commit or
    roll back together. The counter itself is only ever changed with relative
    updates, and writers hold the store's write lock for the whole unit of work,
    so two borrowers racing for the last copy cannot both get it.

    Ownership is strict: a loan can be read or returned only by its borrower,
    administrators included.
    """

    def __init__(self, storage: Storage, clock: Callable[[], datetime] = utcnow) -> None:
        self.storage = storage
        self.clock = clock

    # ------------------------- Borrow ------------------------- #
    def create_loan(self, borrower_id: int, book_id: int, return_date: datetime) -> LoanView:
        """Lend one copy of ``book_id`` to ``borrower_id`` until ``return_date``."""
        now = self.clock()
        return_date = to_utc(return_date)
        if return_date <= now:
            raise InvalidReturnDate("Return date must be in the future.")

        with self.storage.transaction() as uow:
            if uow.users.get(borrower_id) is None:
                raise UserNotFound(borrower_id)
            book = uow.books.get(book_id)
            if book is None:
                raise BookNotFound(book_id)
            # The conditional update also fails if the last copy went between the read and here
            if book.available <= 0 or not uow.books.decrement_available(book_id):
                logger.warning(f"Book {book_id} unavailable for user {borrower_id}")
                raise BookUnavailable(book_id)
            loan = uow.loans.create(Loan(
                user_id=borrower_id,
                book_id=book_id,
                loan_date=now,
                return_date=return_date,
            ))
            view = uow.loans.find_by_id(loan.id)

        logger.info(f"Loan {view.id} created: user={borrower_id} book={book_id} due={return_date.isoformat()}")
        return view

    # ------------------------- Queries ------------------------- #
    def get_loan(self, loan_id: int, requesting_user_id: int) -> LoanView:
        with self.storage.transaction(write=False) as uow:
            loan = uow.loans.find_by_id(loan_id)
        return self._check_owner(loan, loan_id, requesting_user_id)

    def list_loans_for_user(self, user_id: int) -> List[LoanView]:
        with self.storage.transaction(write=False) as uow:
            return uow.loans.find_by_user_id(user_id)

    # ------------------------- Return ------------------------- #
    def return_loan(self, loan_id: int, requesting_user_id: int) -> LoanView:
        """Close an open loan and put the copy back on the shelf."""
        loan = self.get_loan(loan_id, requesting_user_id)
        if loan.is_returned:
            raise AlreadyReturned(loan_id)

        returned_at = self.clock()
        with self.storage.transaction() as uow:
            # Re-read under the write lock: another request may have returned it meanwhile
            current = uow.loans.find_by_id(loan_id)
            if current is None:
                raise LoanNotFound(loan_id)
            if current.is_returned or not uow.loans.mark_returned(loan_id, returned_at):
                logger.warning(f"Loan {loan_id} was already returned")
                raise AlreadyReturned(loan_id)
            uow.books.increment_available(current.book_id)
            view = uow.loans.find_by_id(loan_id)

        logger.info(f"Loan {loan_id} returned: user={requesting_user_id} book={view.book_id}")
        return view

    @staticmethod
    def _check_owner(loan, loan_id: int, user_id: int) -> LoanView:
        if loan is None:
            raise LoanNotFound(loan_id)
        if loan.user_id != user_id:
            logger.warning(f"User {user_id} denied access to loan {loan_id}")
            raise AccessDenied(loan_id)
        return loan
