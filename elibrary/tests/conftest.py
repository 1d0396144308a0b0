import json

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session # type: ignore

from elibrary.config import Settings, get_settings
from elibrary.database import Book, Role, User, build_engine, create_db_and_tables, get_session
from elibrary.emails import EmailService, get_email_service
from elibrary.main import app
from elibrary.security import create_access_token, get_password_hash
from elibrary.storage import StorageService, get_storage

PASSWORD = "password123"


def make_user(session, email="reader@example.com", name="Reader", role=Role.USER, verified=True, password=PASSWORD):
    user = User(
        email=email,
        name=name,
        password_hash=get_password_hash(password),
        role=role,
        is_email_verified=verified,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def make_book(session, **fields):
    values = {"title": "Dune", "author": "Frank Herbert", "published_year": 1965, "category": "Science Fiction"}
    values.update(fields)
    book = Book(**values)
    session.add(book)
    session.commit()
    session.refresh(book)
    return book


def auth_headers(user, settings):
    return {"Authorization": f"Bearer {create_access_token(user, settings)}"}


@pytest.fixture(name="settings")
def settings_fixture():
    return Settings(
        jwt_key="test-signing-key-with-more-than-32-characters",
        smtp_server="smtp.example.com",
        smtp_username="library",
        smtp_password="secret",
        from_email="library@example.com",
        mail_suppress_send=True,
        supabase_url="https://storage.example.com",
        supabase_service_role_key="service-role-key",
    )


@pytest.fixture(name="engine")
def engine_fixture():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="storage_requests")
def storage_requests_fixture():
    return []


@pytest.fixture(name="storage")
def storage_fixture(settings, storage_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        storage_requests.append(request)
        if request.method == "POST":
            key = request.url.path.split("/storage/v1/object/", 1)[1]
            return httpx.Response(200, json={"Key": key})
        if request.method == "DELETE":
            return httpx.Response(200, json=[])
        return httpx.Response(404, json={"message": "not found"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return StorageService(settings, client=client)


@pytest.fixture(name="email_service")
def email_service_fixture(settings):
    return EmailService(settings)


@pytest.fixture(name="client")
def client_fixture(session, settings, storage, email_service):
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_email_service] = lambda: email_service
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="user")
def user_fixture(session):
    return make_user(session)


@pytest.fixture(name="admin")
def admin_fixture(session):
    return make_user(session, email="admin@example.com", name="Admin", role=Role.ADMIN)


@pytest.fixture(name="user_headers")
def user_headers_fixture(user, settings):
    return auth_headers(user, settings)


@pytest.fixture(name="admin_headers")
def admin_headers_fixture(admin, settings):
    return auth_headers(admin, settings)


@pytest.fixture(name="book")
def book_fixture(session):
    return make_book(session, number_of_copies=2)


def uploaded_paths(storage_requests, method="POST"):
    return [request.url.path for request in storage_requests if request.method == method]


def deleted_prefixes(storage_requests):
    prefixes = []
    for request in storage_requests:
        if request.method == "DELETE":
            prefixes.extend(json.loads(request.content)["prefixes"])
    return prefixes
