"""
Query helpers for each table.

CRUD helpers for users and books commit on their own. The inventory and
loan helpers used by the borrow/return workflow only stage their changes;
the caller commits once so the whole step is one transaction.
"""

from datetime import datetime

from sqlalchemy import delete, func, or_, update
from sqlmodel import Session, col, select # type: ignore

from elibrary.database import Book, BorrowedBook, EmailVerification, ReturnedBook, User


def _count(session: Session, model) -> int:
    return session.exec(select(func.count()).select_from(model)).one()


# User CRUD operations
def get_user(session: Session, user_id: int) -> User | None:
    return session.get(User, user_id)

def get_user_by_email(session: Session, email: str) -> User | None:
    return session.exec(select(User).where(func.lower(User.email) == email.lower())).first()

def list_users(session: Session) -> list[User]:
    return list(session.exec(select(User).order_by(col(User.created_at).desc())).all())

def recent_users(session: Session, limit: int) -> list[User]:
    return list(session.exec(select(User).order_by(col(User.created_at).desc()).limit(limit)).all())

def count_users(session: Session) -> int:
    return _count(session, User)

def save_user(session: Session, user: User) -> User:
    session.add(user)
    session.commit()
    session.refresh(user)
    return user

def delete_user(session: Session, user: User) -> None:
    session.delete(user)
    session.commit()


# Book CRUD operations
def get_book(session: Session, book_id: int) -> Book | None:
    return session.get(Book, book_id)

def list_books(session: Session, search: str | None = None) -> list[Book]:
    query = select(Book)
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(
            col(Book.title).ilike(pattern),
            col(Book.author).ilike(pattern),
            col(Book.category).ilike(pattern),
        ))
    return list(session.exec(query.order_by(Book.title)).all())

def recent_books(session: Session, limit: int) -> list[Book]:
    return list(session.exec(select(Book).order_by(col(Book.created_at).desc()).limit(limit)).all())

def count_books(session: Session) -> int:
    return _count(session, Book)

def save_book(session: Session, book: Book) -> Book:
    session.add(book)
    session.commit()
    session.refresh(book)
    return book

def delete_book(session: Session, book: Book) -> None:
    session.delete(book)
    session.commit()

def decrement_copies(session: Session, book_id: int, now: datetime) -> bool:
    """Take one copy if the book is lendable. Returns False when no row changed."""
    result = session.exec(
        update(Book)
        .where(col(Book.id) == book_id, col(Book.available) == True, col(Book.number_of_copies) > 0)  # noqa: E712
        .values(number_of_copies=Book.number_of_copies - 1, updated_at=now)
    )
    return result.rowcount > 0

def increment_copies(session: Session, book_id: int, now: datetime) -> None:
    session.exec(
        update(Book)
        .where(col(Book.id) == book_id)
        .values(number_of_copies=Book.number_of_copies + 1, updated_at=now)
    )


# Loan operations
def get_loan(session: Session, loan_id: int) -> BorrowedBook | None:
    return session.get(BorrowedBook, loan_id)

def get_active_loan(session: Session, book_id: int, user_id: int) -> BorrowedBook | None:
    return session.exec(select(BorrowedBook).where(
        BorrowedBook.book_id == book_id,
        BorrowedBook.user_id == user_id,
    )).first()

def list_user_loans(session: Session, user_id: int) -> list[BorrowedBook]:
    return list(session.exec(
        select(BorrowedBook)
        .where(BorrowedBook.user_id == user_id)
        .order_by(col(BorrowedBook.borrowed_at).desc())
    ).all())

def list_all_loans(session: Session) -> list[BorrowedBook]:
    return list(session.exec(select(BorrowedBook).order_by(col(BorrowedBook.created_at).desc())).all())

def recent_loans(session: Session, limit: int) -> list[BorrowedBook]:
    return list(session.exec(
        select(BorrowedBook).order_by(col(BorrowedBook.borrowed_at).desc()).limit(limit)
    ).all())

def count_active_loans(session: Session) -> int:
    return _count(session, BorrowedBook)

def count_loans_due_by(session: Session, cutoff: datetime) -> int:
    return session.exec(
        select(func.count()).select_from(BorrowedBook).where(col(BorrowedBook.due_date) <= cutoff)
    ).one()

def add_loan(session: Session, loan: BorrowedBook) -> BorrowedBook:
    session.add(loan)
    session.flush()
    return loan

def delete_loan(session: Session, loan_id: int) -> bool:
    """Close a loan row. Returns False when another request already removed it."""
    result = session.exec(delete(BorrowedBook).where(col(BorrowedBook.id) == loan_id))
    return result.rowcount > 0


# Return history
def add_returned(session: Session, returned: ReturnedBook) -> ReturnedBook:
    session.add(returned)
    return returned

def has_returned(session: Session, book_id: int, user_id: int) -> bool:
    return session.exec(select(ReturnedBook.id).where(
        ReturnedBook.book_id == book_id,
        ReturnedBook.user_id == user_id,
    )).first() is not None

def list_user_returns(session: Session, user_id: int) -> list[ReturnedBook]:
    return list(session.exec(
        select(ReturnedBook)
        .where(ReturnedBook.user_id == user_id)
        .order_by(col(ReturnedBook.returned_at).desc())
    ).all())


# Email verification codes
def get_verification(session: Session, token: str) -> EmailVerification | None:
    return session.exec(
        select(EmailVerification)
        .where(EmailVerification.token == token)
        .order_by(col(EmailVerification.created_at).desc())
    ).first()

def add_verification(session: Session, verification: EmailVerification) -> EmailVerification:
    session.add(verification)
    return verification

def invalidate_user_verifications(session: Session, user_id: int) -> int:
    result = session.exec(
        update(EmailVerification)
        .where(col(EmailVerification.user_id) == user_id, col(EmailVerification.is_used) == False)  # noqa: E712
        .values(is_used=True)
    )
    return result.rowcount

def delete_expired_verifications(session: Session, now: datetime) -> int:
    """Drop expired codes that can no longer be redeemed.

    An unused code of an unverified user is kept after expiry so that
    verifying it still reports the expiry instead of an unknown code.
    """
    verified_users = select(User.id).where(col(User.is_email_verified) == True)  # noqa: E712
    result = session.exec(
        delete(EmailVerification)
        .where(
            col(EmailVerification.expires_at) < now,
            or_(col(EmailVerification.is_used) == True, col(EmailVerification.user_id).in_(verified_users)),  # noqa: E712
        )
        .execution_options(synchronize_session="fetch")
    )
    session.commit()
    return result.rowcount
