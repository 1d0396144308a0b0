"""
Catalog and loan workflow.

Borrowing takes a copy with a conditional UPDATE and inserts the loan in
the same transaction, so the last copy has exactly one winner. Returning
deletes the loan row with a conditional DELETE before writing history and
putting the copy back, so a loan can only be closed once.
"""

from datetime import datetime, timezone
from decimal import Decimal

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session #type: ignore

from elibrary import repositories as repo
from elibrary.database import Book, BorrowedBook, ReturnedBook, utcnow
from elibrary.errors import (
    AlreadyBorrowed,
    AlreadyReturned,
    BookNotFound,
    BookUnavailable,
    LibraryError,
    LoanNotFound,
    NeverBorrowed,
    ValidationError,
)
from elibrary.schemas import AdminBorrowedBookDto, BookDto, BorrowedBookDto, ReturnedBookDto
from elibrary.storage import StorageService

DAILY_RATE = 2


def compute_price(start_date: datetime, end_date: datetime) -> Decimal:
    """Flat daily rate over whole days; partial days are dropped."""
    return Decimal((end_date - start_date).days * DAILY_RATE)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_book_dto(book: Book, storage: StorageService) -> BookDto:
    return BookDto(
        id=book.id,
        title=book.title,
        author=book.author,
        description=book.description or "",
        published_year=book.published_year,
        category=book.category,
        number_of_copies=book.number_of_copies,
        available=book.is_available,
        cover_image=storage.cover_url(book.cover_image),
    )


def to_borrowed_dto(loan: BorrowedBook, storage: StorageService) -> BorrowedBookDto:
    return BorrowedBookDto(
        id=loan.id,
        book=to_book_dto(loan.book, storage),
        borrowed_at=loan.borrowed_at,
        due_date=loan.due_date,
        price=float(loan.price),
    )


def list_books(session: Session, storage: StorageService, search: str | None = None) -> list[BookDto]:
    return [to_book_dto(book, storage) for book in repo.list_books(session, search)]


def get_book(session: Session, storage: StorageService, book_id: int) -> BookDto:
    book = repo.get_book(session, book_id)
    if book is None:
        raise BookNotFound()
    return to_book_dto(book, storage)


def borrow_book(
    session: Session,
    storage: StorageService,
    book_id: int,
    user_id: int,
    start_date: datetime,
    end_date: datetime,
    id_card_image_path: str | None = None,
) -> BorrowedBookDto:
    start_date, end_date = as_naive_utc(start_date), as_naive_utc(end_date)
    if end_date < start_date:
        raise ValidationError("EndDate must not be before StartDate")

    book = repo.get_book(session, book_id)
    if book is None:
        raise BookNotFound()
    if not book.is_available:
        logger.warning("Book {} is not available (available={}, copies={})", book_id, book.available, book.number_of_copies)
        raise BookUnavailable()
    if repo.get_active_loan(session, book_id, user_id) is not None:
        raise AlreadyBorrowed()

    price = compute_price(start_date, end_date)
    now = utcnow()
    if not repo.decrement_copies(session, book_id, now):
        session.rollback()
        raise BookUnavailable()
    loan = BorrowedBook(
        user_id=user_id,
        book_id=book_id,
        borrowed_at=start_date,
        due_date=end_date,
        price=price,
        id_card_image_path=id_card_image_path,
        created_at=now,
        updated_at=now,
    )
    try:
        repo.add_loan(session, loan)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise AlreadyBorrowed()
    session.refresh(loan)
    logger.info("User {} borrowed book {} (loan {}, price {})", user_id, book_id, loan.id, price)
    return to_borrowed_dto(loan, storage)


def _close_loan(session: Session, loan: BorrowedBook, missing: type[LibraryError]) -> ReturnedBook:
    now = utcnow()
    returned = ReturnedBook(
        user_id=loan.user_id,
        book_id=loan.book_id,
        borrowed_at=loan.borrowed_at,
        due_date=loan.due_date,
        returned_at=now,
        price=loan.price,
        id_card_image_path=loan.id_card_image_path,
        created_at=now,
        updated_at=now,
    )
    loan_id, book_id = loan.id, loan.book_id
    if not repo.delete_loan(session, loan_id):
        session.rollback()
        raise missing()
    repo.add_returned(session, returned)
    repo.increment_copies(session, book_id, now)
    session.commit()
    logger.info("Loan {} closed, book {} back in stock", loan_id, book_id)
    return returned


def return_book(session: Session, book_id: int, user_id: int) -> ReturnedBook:
    loan = repo.get_active_loan(session, book_id, user_id)
    if loan is None:
        if repo.has_returned(session, book_id, user_id):
            raise AlreadyReturned()
        raise NeverBorrowed()
    return _close_loan(session, loan, AlreadyReturned)


def admin_force_return(session: Session, loan_id: int) -> ReturnedBook:
    loan = repo.get_loan(session, loan_id)
    if loan is None:
        raise LoanNotFound()
    logger.info("Admin return of loan {}", loan_id)
    return _close_loan(session, loan, LoanNotFound)


def list_user_loans(session: Session, storage: StorageService, user_id: int) -> list[BorrowedBookDto]:
    return [to_borrowed_dto(loan, storage) for loan in repo.list_user_loans(session, user_id)]


def list_user_history(session: Session, storage: StorageService, user_id: int) -> list[ReturnedBookDto]:
    return [
        ReturnedBookDto(
            id=returned.id,
            book=to_book_dto(returned.book, storage),
            borrowed_at=returned.borrowed_at,
            due_date=returned.due_date,
            returned_at=returned.returned_at,
            price=float(returned.price),
        )
        for returned in repo.list_user_returns(session, user_id)
    ]


def list_all_loans(session: Session, storage: StorageService) -> list[AdminBorrowedBookDto]:
    loans = []
    for loan in repo.list_all_loans(session):
        user, book = loan.user, loan.book
        if user is None or book is None:
            continue
        loans.append(AdminBorrowedBookDto(
            id=loan.id,
            user_id=user.id,
            user_name=user.name,
            user_email=user.email,
            book_id=book.id,
            book_title=book.title,
            book_author=book.author,
            borrowed_at=loan.borrowed_at,
            due_date=loan.due_date,
            price=float(loan.price),
            id_card_image_path=storage.id_card_url(loan.id_card_image_path),
            created_at=loan.created_at,
        ))
    return loans
