import sqlite3
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from loguru import logger
from sqlalchemy import Column, DateTime, Enum as SAEnum, UniqueConstraint, event, inspect, text
from sqlmodel import Field, Relationship, Session, SQLModel, create_engine # type: ignore

from elibrary.config import get_settings


def utcnow() -> datetime:
    # naive UTC so values compare the same way on SQLite and PostgreSQL;
    # timestamp columns are declared as plain DateTime to match
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    USER = "User"
    ADMIN = "Admin"


class User(SQLModel, table=True):
    __tablename__ = "Users"
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True, max_length=255)
    name: str = Field(max_length=255)
    password_hash: str
    role: Role = Field(
        default=Role.USER,
        sa_column=Column(
            SAEnum(Role, values_callable=lambda e: [m.value for m in e], native_enum=False, length=50),
            nullable=False,
            default=Role.USER,
        ),
    )
    is_email_verified: bool = Field(default=False)
    # superseded by EmailVerification rows, kept for old databases
    email_verification_token: str | None = Field(default=None)
    email_verification_token_expires: datetime | None = Field(default=None, sa_type=DateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Book(SQLModel, table=True):
    __tablename__ = "Books"
    id: int | None = Field(default=None, primary_key=True)
    title: str = Field(index=True, max_length=500)
    author: str = Field(index=True, max_length=255)
    description: str = Field(default="")
    published_year: int
    category: str = Field(default="General", max_length=100)
    number_of_copies: int = Field(default=1, ge=0)
    available: bool = Field(default=True)
    cover_image: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    @property
    def is_available(self) -> bool:
        return self.available and self.number_of_copies > 0


class BorrowedBook(SQLModel, table=True):
    __tablename__ = "BorrowedBooks"
    # one open loan per user and book
    __table_args__ = (UniqueConstraint("user_id", "book_id", name="uq_borrowed_user_book"),)
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="Users.id", ondelete="CASCADE")
    book_id: int = Field(index=True, foreign_key="Books.id", ondelete="CASCADE")
    borrowed_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    due_date: datetime = Field(sa_type=DateTime)
    price: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    id_card_image_path: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    user: User | None = Relationship()
    book: Book | None = Relationship()


class ReturnedBook(SQLModel, table=True):
    __tablename__ = "ReturnedBooks"
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="Users.id", ondelete="CASCADE")
    book_id: int = Field(index=True, foreign_key="Books.id", ondelete="CASCADE")
    borrowed_at: datetime = Field(sa_type=DateTime)
    due_date: datetime = Field(sa_type=DateTime)
    returned_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    price: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    id_card_image_path: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    book: Book | None = Relationship()


class EmailVerification(SQLModel, table=True):
    __tablename__ = "EmailVerifications"
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True, foreign_key="Users.id", ondelete="CASCADE")
    token: str = Field(index=True, max_length=6)
    expires_at: datetime = Field(sa_type=DateTime)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    is_used: bool = Field(default=False)


# columns added to "Users" after the first release
VERIFICATION_COLUMNS = {
    "is_email_verified": "BOOLEAN NOT NULL DEFAULT FALSE",
    "email_verification_token": "VARCHAR",
    "email_verification_token_expires": "TIMESTAMP",
}


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(url: str, echo: bool = False, **kwargs):
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    new_engine = create_engine(url, echo=echo, **kwargs)
    event.listen(new_engine, "connect", _enable_sqlite_foreign_keys)
    return new_engine


_settings = get_settings()
engine = build_engine(_settings.database_url, echo=_settings.database_echo)


def migrate_schema(target_engine) -> None:
    """Add the verification columns to an existing Users table."""
    existing = {column["name"] for column in inspect(target_engine).get_columns("Users")}
    missing = [name for name in VERIFICATION_COLUMNS if name not in existing]
    if not missing:
        return
    with target_engine.begin() as conn:
        for name in missing:
            logger.info("Adding column Users.{}", name)
            conn.execute(text(f'ALTER TABLE "Users" ADD COLUMN {name} {VERIFICATION_COLUMNS[name]}'))


def create_db_and_tables(target_engine=None):
    target_engine = target_engine if target_engine is not None else engine
    SQLModel.metadata.create_all(target_engine)
    migrate_schema(target_engine)


def get_session():
    with Session(engine) as session:
        yield session
