from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, BeforeValidator, EmailStr, Field #type: ignore

from elibrary.database import Role


class MessageResponse(BaseModel):
    message: str


# --- auth ---

class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = ""
    name: str = ""

class UserDto(BaseModel):
    id: int
    email: str
    name: str
    role: Role = Role.USER
    is_email_verified: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

class LoginResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    user: UserDto

class Token(BaseModel):
    access_token: str
    token_type: str

class RegisterResponse(BaseModel):
    success: bool
    message: str
    user: UserDto

class EmailVerificationRequest(BaseModel):
    token: str = ""

class ResendVerificationRequest(BaseModel):
    email: str = ""

class EmailVerificationResponse(BaseModel):
    success: bool
    message: str


# --- books ---

class BookDto(BaseModel):
    id: int
    title: str
    author: str
    description: str = ""
    published_year: int
    category: str = "General"
    number_of_copies: int = 1
    available: bool
    cover_image: str | None = None

class BorrowedBookDto(BaseModel):
    id: int
    book: BookDto
    borrowed_at: datetime
    due_date: datetime
    price: float

class ReturnedBookDto(BaseModel):
    id: int
    book: BookDto
    borrowed_at: datetime
    due_date: datetime
    returned_at: datetime
    price: float

class AdminBorrowedBookDto(BaseModel):
    id: int
    user_id: int
    user_name: str
    user_email: str
    book_id: int
    book_title: str
    book_author: str
    borrowed_at: datetime
    due_date: datetime
    price: float
    id_card_image_path: str | None = None
    created_at: datetime


# --- admin ---

class CreateUserRequest(BaseModel):
    email: EmailStr
    password: str = ""
    name: str = ""
    role: Role | None = None

class UpdateUserRequest(BaseModel):
    email: Annotated[EmailStr | None, BeforeValidator(lambda value: value or None)] = None
    name: str | None = None
    password: str | None = None
    role: Role | None = None

class UpdateBookRequest(BaseModel):
    title: str | None = None
    author: str | None = None
    description: str | None = None
    published_year: int | None = None
    category: str | None = None
    number_of_copies: int | None = Field(default=None, ge=0)
    available: bool | None = None
    cover_image: str | None = None

class DashboardStats(BaseModel):
    total_users: int
    total_books: int
    active_borrows: int
    pending_returns: int


class BorrowEvent(BaseModel):
    type: Literal["borrow"] = "borrow"
    id: int
    user: str
    book: str
    timestamp: datetime
    time: str = ""

class RegisterEvent(BaseModel):
    type: Literal["register"] = "register"
    id: int
    user: str
    timestamp: datetime
    time: str = ""

class AddBookEvent(BaseModel):
    type: Literal["add_book"] = "add_book"
    id: int
    book: str
    timestamp: datetime
    time: str = ""

ActivityEvent = Annotated[Union[BorrowEvent, RegisterEvent, AddBookEvent], Field(discriminator="type")]
