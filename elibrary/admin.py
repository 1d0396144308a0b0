"""
Administrator routes: user and book management, loans, dashboard.

Every route here sits behind ``require_admin``.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, UploadFile #type: ignore
from loguru import logger
from sqlalchemy.exc import IntegrityError

from elibrary import auth_service, book_service, dashboard
from elibrary import repositories as repo
from elibrary.database import Book, Role, User, utcnow
from elibrary.errors import BookNotFound, DuplicateEmail, UserNotFound, ValidationError
from elibrary.schemas import (
    ActivityEvent,
    AdminBorrowedBookDto,
    BookDto,
    CreateUserRequest,
    DashboardStats,
    MessageResponse,
    UpdateBookRequest,
    UpdateUserRequest,
    UserDto,
)
from elibrary.security import AdminUser, SessionDep, get_password_hash, require_admin
from elibrary.storage import BOOK_COVER_BUCKET, StorageDep, book_cover_key

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    value = value.strip().lower()
    if value == "true":
        return True
    if value == "false":
        return False
    return default


# Users
@router.get("/users", response_model=list[UserDto])
async def list_users(session: SessionDep):
    return [auth_service.to_user_dto(user) for user in repo.list_users(session)]

@router.post("/users", response_model=UserDto)
async def create_user(request: CreateUserRequest, session: SessionDep, admin_user: AdminUser):
    if not request.name or not request.password:
        raise ValidationError("Email, name, and password are required")
    if repo.get_user_by_email(session, str(request.email)) is not None:
        raise DuplicateEmail()
    user = User(
        email=str(request.email),
        name=request.name,
        password_hash=get_password_hash(request.password),
        role=request.role or Role.USER,
    )
    try:
        user = repo.save_user(session, user)
    except IntegrityError:
        session.rollback()
        raise DuplicateEmail()
    logger.info("Admin {} created user {} ({})", admin_user.id, user.id, user.role.value)
    return auth_service.to_user_dto(user)

@router.put("/users/{user_id}", response_model=UserDto)
async def update_user(user_id: int, request: UpdateUserRequest, session: SessionDep):
    user = repo.get_user(session, user_id)
    if user is None:
        raise UserNotFound()

    if request.email:
        existing = repo.get_user_by_email(session, str(request.email))
        if existing is not None and existing.id != user.id:
            raise DuplicateEmail()
        user.email = str(request.email)
    if request.name:
        user.name = request.name
    if request.password:
        user.password_hash = get_password_hash(request.password)
    if request.role is not None:
        user.role = request.role
    user.updated_at = utcnow()

    try:
        user = repo.save_user(session, user)
    except IntegrityError:
        session.rollback()
        raise DuplicateEmail()
    return auth_service.to_user_dto(user)

@router.delete("/users/{user_id}", response_model=MessageResponse)
async def delete_user(user_id: int, session: SessionDep, admin_user: AdminUser):
    user = repo.get_user(session, user_id)
    if user is None:
        raise UserNotFound()
    repo.delete_user(session, user)
    logger.info("Admin {} deleted user {}", admin_user.id, user_id)
    return MessageResponse(message="User deleted successfully")


# Books
@router.get("/books", response_model=list[BookDto])
async def list_books(session: SessionDep, storage: StorageDep):
    return book_service.list_books(session, storage)

@router.post("/books", response_model=BookDto)
async def create_book(
    session: SessionDep,
    storage: StorageDep,
    title: Annotated[str, Form()] = "",
    author: Annotated[str, Form()] = "",
    category: Annotated[str | None, Form()] = None,
    description: Annotated[str | None, Form()] = None,
    published_year: Annotated[str, Form(alias="publishedYear")] = "",
    number_of_copies: Annotated[str, Form(alias="numberOfCopies")] = "",
    available: Annotated[str | None, Form()] = None,
    cover_image: Annotated[UploadFile | None, File(alias="coverImage")] = None,
):
    if not title or not author:
        raise ValidationError("Title and author are required")
    try:
        year = int(published_year)
    except ValueError:
        raise ValidationError("Invalid publication year")
    try:
        copies = int(number_of_copies)
    except ValueError:
        copies = 1
    if copies < 0:
        raise ValidationError("Number of copies must not be negative")

    book = repo.save_book(session, Book(
        title=title,
        author=author,
        description=description or "",
        published_year=year,
        category=category or "General",
        number_of_copies=copies,
        available=_parse_bool(available, True),
    ))
    if cover_image is not None:
        data = await cover_image.read()
        if data:
            # the key carries the book id, so the row has to exist first
            key = book_cover_key(book.id, cover_image.filename)
            book.cover_image = await storage.upload(data, key, BOOK_COVER_BUCKET, cover_image.content_type)
            book = repo.save_book(session, book)
    logger.info("Created book {} '{}'", book.id, book.title)
    return book_service.to_book_dto(book, storage)

@router.put("/books/{book_id}", response_model=BookDto)
async def update_book(book_id: int, request: UpdateBookRequest, session: SessionDep, storage: StorageDep):
    book = repo.get_book(session, book_id)
    if book is None:
        raise BookNotFound()

    if request.title:
        book.title = request.title
    if request.author:
        book.author = request.author
    if request.description is not None:
        book.description = request.description
    if request.published_year is not None:
        book.published_year = request.published_year
    if request.category:
        book.category = request.category
    if request.number_of_copies is not None:
        book.number_of_copies = request.number_of_copies
    if request.available is not None:
        book.available = request.available
    if request.cover_image is not None:
        book.cover_image = request.cover_image
    book.updated_at = utcnow()

    book = repo.save_book(session, book)
    return book_service.to_book_dto(book, storage)

@router.delete("/books/{book_id}", response_model=MessageResponse)
async def delete_book(book_id: int, session: SessionDep, storage: StorageDep):
    book = repo.get_book(session, book_id)
    if book is None:
        raise BookNotFound()
    cover = book.cover_image
    repo.delete_book(session, book)
    logger.info("Deleted book {}", book_id)
    if cover and not cover.startswith(("http://", "https://")):
        if not await storage.delete(cover, BOOK_COVER_BUCKET):
            logger.warning("Cover {} of deleted book {} left in storage", cover, book_id)
    return MessageResponse(message="Book deleted successfully")


# Loans
@router.get("/borrows", response_model=list[AdminBorrowedBookDto])
async def list_borrows(session: SessionDep, storage: StorageDep):
    return book_service.list_all_loans(session, storage)

@router.post("/borrows/{loan_id}/return", response_model=MessageResponse)
async def force_return(loan_id: int, session: SessionDep):
    book_service.admin_force_return(session, loan_id)
    return MessageResponse(message="Book returned successfully")


# Dashboard
@router.get("/dashboard/stats", response_model=DashboardStats)
async def dashboard_stats(session: SessionDep):
    return dashboard.stats(session)

@router.get("/dashboard/recent-activity", response_model=list[ActivityEvent])
async def recent_activity(session: SessionDep):
    return dashboard.recent_activity(session)
