import logging
from typing import List, Optional

from errors import BookHasLoans, BookNotFound
from models import Book
from stores import Storage

logger = logging.getLogger(__name__)


class CatalogService:
    """Manages the book catalog. Availability counters are owned by LoanService."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    # ------------------------- Core operations ------------------------- #
    def create_book(self, title: str, author: str, description: str = "", quantity: int = 1) -> Book:
        """Add a new title with every copy available."""
        if quantity < 1:
            raise ValueError("Quantity must be at least 1.")
        if not title.strip() or not author.strip():
            raise ValueError("Title and author cannot be empty.")
        book = Book(title=title, author=author, description=description, quantity=quantity)
        with self.storage.transaction() as uow:
            uow.books.add(book)
        logger.info(f"Book {book.id} added: {book.title!r} x{book.quantity}")
        return book

    def get_book(self, book_id: int) -> Book:
        with self.storage.transaction(write=False) as uow:
            book = uow.books.get(book_id)
        if book is None:
            raise BookNotFound(book_id)
        return book

    def list_books(self) -> List[Book]:
        with self.storage.transaction(write=False) as uow:
            return uow.books.list_all()

    def update_book(self, book_id: int, *, title: Optional[str] = None, author: Optional[str] = None,
                    description: Optional[str] = None, quantity: Optional[int] = None) -> Book:
        """Update the given fields. Blank strings leave a field unchanged.

        A new quantity shifts ``available`` by the same delta, never below zero.
        """
        if quantity is not None and quantity < 1:
            raise ValueError("Quantity must be at least 1.")
        new_title = title.strip() if title and title.strip() else None
        new_author = author.strip() if author and author.strip() else None
        new_description = description if description else None

        with self.storage.transaction() as uow:
            if uow.books.get(book_id) is None:
                raise BookNotFound(book_id)
            uow.books.update_details(book_id, title=new_title, author=new_author, description=new_description)
            if quantity is not None:
                uow.books.adjust_quantity(book_id, quantity)
            book = uow.books.get(book_id)
        logger.info(f"Book {book_id} updated: quantity={book.quantity} available={book.available}")
        return book

    def delete_book(self, book_id: int) -> None:
        """Remove a title that has never been lent. Loan history keeps a book in the catalog."""
        with self.storage.transaction() as uow:
            if uow.loans.exists_for_book(book_id):
                raise BookHasLoans(book_id)
            if not uow.books.delete(book_id):
                raise BookNotFound(book_id)
        logger.info(f"Book {book_id} removed")
