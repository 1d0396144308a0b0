import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated

from apscheduler.schedulers.asyncio import AsyncIOScheduler #type: ignore
from apscheduler.triggers.cron import CronTrigger #type: ignore
from fastapi import Depends, FastAPI, File, Form, UploadFile #type: ignore
from fastapi.middleware.cors import CORSMiddleware #type: ignore
from fastapi.security import OAuth2PasswordRequestForm #type: ignore
from loguru import logger
from sqlmodel import Session #type: ignore

from elibrary import admin, auth_service, book_service
from elibrary.config import get_settings
from elibrary.database import create_db_and_tables, engine
from elibrary.emails import EmailDep
from elibrary.errors import setup_exception_handlers
from elibrary.schemas import (
    BookDto,
    BorrowedBookDto,
    EmailVerificationRequest,
    EmailVerificationResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    ResendVerificationRequest,
    ReturnedBookDto,
    Token,
    UserDto,
)
from elibrary.security import CurrentUser, SessionDep, SettingsDep
from elibrary.storage import ID_CARD_BUCKET, StorageDep, id_card_key


def configure_logging():
    logger.remove()
    logger.add(sys.stderr, level=get_settings().log_level)


async def purge_verifications_job():
    with Session(engine) as session:
        auth_service.purge_expired_verifications(session)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    create_db_and_tables()
    scheduler = AsyncIOScheduler()
    scheduler.add_job(purge_verifications_job, CronTrigger(minute=0))  # top of every hour
    scheduler.start()
    logger.info("E-Library API started")
    yield
    scheduler.shutdown()

app = FastAPI(title="E-Library API", lifespan=lifespan)

setup_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().frontend_urls,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    return {"status": "healthy"}


# Auth
@app.post("/api/auth/login", response_model=LoginResponse)
async def login(request: LoginRequest, session: SessionDep, settings: SettingsDep):
    return auth_service.login(session, settings, request.email, request.password)

#OAuth2 form variant so the interactive docs can authorize
@app.post("/api/auth/token", response_model=Token)
async def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    session: SessionDep,
    settings: SettingsDep,
):
    result = auth_service.login(session, settings, form_data.username, form_data.password)
    return Token(access_token=result.token, token_type="bearer")

@app.post("/api/auth/register", response_model=RegisterResponse)
async def register(request: RegisterRequest, session: SessionDep, settings: SettingsDep, emails: EmailDep):
    return await auth_service.register(session, settings, emails, str(request.email), request.password, request.name)

@app.post("/api/auth/verify-email", response_model=EmailVerificationResponse)
async def verify_email(request: EmailVerificationRequest, session: SessionDep):
    return auth_service.verify_email(session, request.token)

@app.post("/api/auth/resend-verification", response_model=EmailVerificationResponse)
async def resend_verification(
    request: ResendVerificationRequest,
    session: SessionDep,
    settings: SettingsDep,
    emails: EmailDep,
):
    return await auth_service.resend_verification(session, settings, emails, request.email)

#tokens are stateless, the client just drops it
@app.post("/api/auth/logout", response_model=MessageResponse)
async def logout(current_user: CurrentUser):
    logger.info("User {} logged out", current_user.id)
    return MessageResponse(message="Logged out successfully")

@app.get("/api/auth/profile", response_model=UserDto)
async def get_profile(current_user: CurrentUser, session: SessionDep):
    return auth_service.get_profile(session, current_user.id)


# Books
@app.get("/api/books", response_model=list[BookDto])
async def list_books(session: SessionDep, storage: StorageDep, search: str | None = None):
    return book_service.list_books(session, storage, search)

@app.get("/api/books/borrowed-books", response_model=list[BorrowedBookDto])
async def borrowed_books(current_user: CurrentUser, session: SessionDep, storage: StorageDep):
    return book_service.list_user_loans(session, storage, current_user.id)

@app.get("/api/books/returned-books", response_model=list[ReturnedBookDto])
async def returned_books(current_user: CurrentUser, session: SessionDep, storage: StorageDep):
    return book_service.list_user_history(session, storage, current_user.id)

@app.get("/api/books/{book_id}", response_model=BookDto)
async def get_book(book_id: int, session: SessionDep, storage: StorageDep):
    return book_service.get_book(session, storage, book_id)

@app.post("/api/books/{book_id}/borrow", response_model=BorrowedBookDto)
async def borrow_book(
    book_id: int,
    current_user: CurrentUser,
    session: SessionDep,
    storage: StorageDep,
    start_date: Annotated[datetime, Form(alias="StartDate")],
    end_date: Annotated[datetime, Form(alias="EndDate")],
    id_card_image: Annotated[UploadFile | None, File(alias="IdCardImage")] = None,
):
    id_card_path = None
    if id_card_image is not None:
        data = await id_card_image.read()
        if data:
            key = id_card_key(current_user.id, book_id, id_card_image.filename)
            id_card_path = await storage.upload(data, key, ID_CARD_BUCKET, id_card_image.content_type)
    try:
        return book_service.borrow_book(
            session, storage, book_id, current_user.id, start_date, end_date, id_card_path
        )
    except Exception:
        # no loan was recorded, so the uploaded card is orphaned
        if id_card_path:
            await storage.delete(id_card_path, ID_CARD_BUCKET)
        raise

@app.post("/api/books/{book_id}/return", response_model=MessageResponse)
async def return_book(book_id: int, current_user: CurrentUser, session: SessionDep):
    book_service.return_book(session, book_id, current_user.id)
    return MessageResponse(message="Book returned successfully")


app.include_router(admin.router)
