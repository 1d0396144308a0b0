"""
Error taxonomy for the E-Library API.

Domain errors are raised by the services and translated into JSON
responses by the handlers registered in setup_exception_handlers.
"""

import traceback

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger


class LibraryError(Exception):
    """Base exception for E-Library errors."""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)


class ValidationError(LibraryError):
    """Missing or malformed request field."""

    def __init__(self, message: str):
        super().__init__(message, code="VALIDATION_ERROR", status_code=status.HTTP_400_BAD_REQUEST)


class NotFoundError(LibraryError):
    def __init__(self, message: str, code: str = "NOT_FOUND"):
        super().__init__(message, code=code, status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(LibraryError):
    def __init__(self, message: str, code: str = "CONFLICT"):
        super().__init__(message, code=code, status_code=status.HTTP_409_CONFLICT)


class InvalidOperationError(LibraryError):
    """A business rule rejected the request."""

    def __init__(self, message: str, code: str = "INVALID_OPERATION"):
        super().__init__(message, code=code, status_code=status.HTTP_400_BAD_REQUEST)


class UnauthorizedError(LibraryError):
    def __init__(self, message: str = "Could not validate credentials", code: str = "UNAUTHORIZED"):
        super().__init__(message, code=code, status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(LibraryError):
    def __init__(self, message: str = "This action requires elevated permissions.", code: str = "FORBIDDEN"):
        super().__init__(message, code=code, status_code=status.HTTP_403_FORBIDDEN)


class StorageError(LibraryError):
    """Object storage failure."""

    def __init__(self, message: str):
        super().__init__(message, code="STORAGE_ERROR", status_code=status.HTTP_502_BAD_GATEWAY)


# --- auth ---

class InvalidCredentials(UnauthorizedError):
    def __init__(self):
        super().__init__("Invalid email or password", code="INVALID_CREDENTIALS")


class DuplicateEmail(ConflictError):
    def __init__(self):
        super().__init__("User with this email already exists", code="DUPLICATE_EMAIL")


class UserNotFound(NotFoundError):
    def __init__(self):
        super().__init__("User not found", code="USER_NOT_FOUND")


class InvalidToken(InvalidOperationError):
    def __init__(self):
        super().__init__("Invalid verification code", code="INVALID_TOKEN")


class AlreadyUsed(InvalidOperationError):
    def __init__(self):
        super().__init__("Verification code has already been used", code="ALREADY_USED")


class Expired(InvalidOperationError):
    def __init__(self):
        super().__init__("Verification code has expired", code="EXPIRED")


class AlreadyVerified(InvalidOperationError):
    def __init__(self):
        super().__init__("Email is already verified", code="ALREADY_VERIFIED")


# --- books and loans ---

class BookNotFound(NotFoundError):
    def __init__(self):
        super().__init__("Book not found", code="BOOK_NOT_FOUND")


class LoanNotFound(NotFoundError):
    def __init__(self):
        super().__init__("Borrowed book not found", code="LOAN_NOT_FOUND")


class BookUnavailable(InvalidOperationError):
    def __init__(self):
        super().__init__("Book is not available", code="BOOK_UNAVAILABLE")


class AlreadyBorrowed(ConflictError):
    def __init__(self):
        super().__init__("You have already borrowed this book", code="ALREADY_BORROWED")


class AlreadyReturned(InvalidOperationError):
    def __init__(self):
        super().__init__("This book has already been returned", code="ALREADY_RETURNED")


class NeverBorrowed(InvalidOperationError):
    def __init__(self):
        super().__init__("You have not borrowed this book", code="NEVER_BORROWED")


def create_error_response(message: str, code: str, status_code: int, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"message": message, "code": code},
        headers=headers,
    )


def setup_exception_handlers(app):
    """Register exception handlers with FastAPI app."""

    @app.exception_handler(LibraryError)
    async def library_exception_handler(request: Request, exc: LibraryError):
        if exc.status_code >= 500:
            logger.error("{} {}: {} - {}", request.method, request.url.path, exc.code, exc.message)
        else:
            logger.warning("{} {}: {} - {}", request.method, request.url.path, exc.code, exc.message)
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
        return create_error_response(exc.message, exc.code, exc.status_code, headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        fields = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"][1:])
            fields.append(f"{location}: {error['msg']}" if location else error["msg"])
        message = "; ".join(fields) or "Invalid request"
        logger.warning("{} {}: VALIDATION_ERROR - {}", request.method, request.url.path, message)
        return create_error_response(message, "VALIDATION_ERROR", status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception on {} {}: {}: {}\n{}",
            request.method,
            request.url.path,
            type(exc).__name__,
            exc,
            traceback.format_exc(),
        )
        return create_error_response(
            "An unexpected error occurred",
            "INTERNAL_ERROR",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
