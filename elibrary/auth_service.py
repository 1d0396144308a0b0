"""
Account workflow: login, registration and email verification.

A registration creates the account first and then mails a 6-digit code.
Failing to send the mail is reported in the response but does not undo
the account; the user can ask for a new code later.
"""

import secrets
from datetime import timedelta

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session #type: ignore

from elibrary import repositories as repo
from elibrary.config import Settings
from elibrary.database import EmailVerification, Role, User, utcnow
from elibrary.emails import EmailService
from elibrary.errors import (
    AlreadyUsed,
    AlreadyVerified,
    DuplicateEmail,
    Expired,
    InvalidCredentials,
    InvalidToken,
    UserNotFound,
    ValidationError,
)
from elibrary.schemas import EmailVerificationResponse, LoginResponse, RegisterResponse, UserDto
from elibrary.security import create_access_token, get_password_hash, verify_password


def to_user_dto(user: User) -> UserDto:
    return UserDto(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        is_email_verified=user.is_email_verified,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def generate_verification_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def login(session: Session, settings: Settings, email: str, password: str) -> LoginResponse:
    if not email or not password:
        raise ValidationError("Email and password are required")
    user = repo.get_user_by_email(session, email)
    if user is None or not verify_password(password, user.password_hash):
        logger.warning("Login failed for {}", email)
        raise InvalidCredentials()
    logger.info("Login successful for user {}", user.id)
    return LoginResponse(token=create_access_token(user, settings), user=to_user_dto(user))


def _unused_code(session: Session) -> str:
    # codes are only 6 digits, so skip any that are still redeemable
    while True:
        code = generate_verification_code()
        existing = repo.get_verification(session, code)
        if existing is None or existing.is_used or existing.expires_at < utcnow():
            return code


def issue_verification(session: Session, settings: Settings, user: User) -> EmailVerification:
    if settings.invalidate_previous_codes:
        invalidated = repo.invalidate_user_verifications(session, user.id)
        if invalidated:
            logger.info("Invalidated {} earlier verification code(s) for user {}", invalidated, user.id)
    now = utcnow()
    verification = EmailVerification(
        user_id=user.id,
        token=_unused_code(session),
        created_at=now,
        expires_at=now + timedelta(hours=settings.email_verification_expiry_hours),
    )
    repo.add_verification(session, verification)
    session.commit()
    session.refresh(verification)
    return verification


async def register(
    session: Session,
    settings: Settings,
    emails: EmailService,
    email: str,
    password: str,
    name: str,
) -> RegisterResponse:
    if not email or not password or not name:
        raise ValidationError("Email, password, and name are required")
    if repo.get_user_by_email(session, email) is not None:
        logger.warning("Registration rejected, {} already exists", email)
        raise DuplicateEmail()

    user = User(email=email, name=name, password_hash=get_password_hash(password), role=Role.USER)
    try:
        user = repo.save_user(session, user)
    except IntegrityError:
        session.rollback()
        raise DuplicateEmail()
    logger.info("Registered user {} ({})", user.id, user.email)

    verification = issue_verification(session, settings, user)
    sent = await emails.send_verification(user.email, user.name, verification.token)
    if sent:
        message = "Registration successful. Please check your email for the verification code."
    else:
        logger.warning("Verification email to {} failed, account {} kept", user.email, user.id)
        message = "Registration successful, but the verification email could not be sent. Please request a new code."
    return RegisterResponse(success=sent, message=message, user=to_user_dto(user))


def verify_email(session: Session, code: str) -> EmailVerificationResponse:
    if not code:
        raise ValidationError("Verification code is required")
    verification = repo.get_verification(session, code)
    if verification is None:
        raise InvalidToken()
    if verification.is_used:
        raise AlreadyUsed()
    if verification.expires_at < utcnow():
        raise Expired()

    now = utcnow()
    verification.is_used = True
    session.add(verification)
    user = repo.get_user(session, verification.user_id)
    if user is not None:
        user.is_email_verified = True
        user.updated_at = now
        session.add(user)
    session.commit()
    logger.info("Email verified for user {}", verification.user_id)
    return EmailVerificationResponse(success=True, message="Email verified successfully")


async def resend_verification(
    session: Session,
    settings: Settings,
    emails: EmailService,
    email: str,
) -> EmailVerificationResponse:
    if not email:
        raise ValidationError("Email is required")
    user = repo.get_user_by_email(session, email)
    if user is None:
        raise UserNotFound()
    if user.is_email_verified:
        raise AlreadyVerified()

    verification = issue_verification(session, settings, user)
    sent = await emails.send_verification(user.email, user.name, verification.token)
    if not sent:
        return EmailVerificationResponse(success=False, message="Failed to send verification email")
    return EmailVerificationResponse(success=True, message="Verification email sent")


def get_profile(session: Session, user_id: int) -> UserDto:
    user = repo.get_user(session, user_id)
    if user is None:
        raise UserNotFound()
    return to_user_dto(user)


def purge_expired_verifications(session: Session) -> int:
    deleted = repo.delete_expired_verifications(session, utcnow())
    if deleted:
        logger.info("Purged {} expired verification code(s)", deleted)
    return deleted
