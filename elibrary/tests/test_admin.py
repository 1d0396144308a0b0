from sqlmodel import select # type: ignore

from elibrary.database import Book, BorrowedBook, Role, User
from elibrary.security import verify_password
from elibrary.tests.conftest import deleted_prefixes, make_book, uploaded_paths

DATES = {"StartDate": "2024-01-01T00:00:00", "EndDate": "2024-01-06T00:00:00"}


def test_admin_routes_require_admin(client, user_headers):
    response = client.get("/api/admin/users", headers=user_headers)
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"


def test_admin_routes_require_token(client):
    assert client.get("/api/admin/books").status_code == 401


def test_list_users(client, user, admin, admin_headers):
    response = client.get("/api/admin/users", headers=admin_headers)
    assert response.status_code == 200
    assert {u["email"] for u in response.json()} == {user.email, admin.email}


def test_create_user(client, session, admin_headers):
    payload = {"email": "clerk@example.com", "name": "Clerk", "password": "clerk-pass", "role": "Admin"}
    response = client.post("/api/admin/users", json=payload, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["role"] == "Admin"

    created = session.exec(select(User).where(User.email == "clerk@example.com")).one()
    assert created.role == Role.ADMIN
    assert verify_password("clerk-pass", created.password_hash)


def test_create_user_defaults_to_user_role(client, admin_headers):
    payload = {"email": "member@example.com", "name": "Member", "password": "member-pass"}
    response = client.post("/api/admin/users", json=payload, headers=admin_headers)
    assert response.json()["role"] == "User"


def test_create_user_validation(client, user, admin_headers):
    response = client.post(
        "/api/admin/users",
        json={"email": user.email, "name": "Again", "password": "x"},
        headers=admin_headers,
    )
    assert response.status_code == 409

    response = client.post("/api/admin/users", json={"email": "a@example.com", "name": "A"}, headers=admin_headers)
    assert response.status_code == 400

    response = client.post(
        "/api/admin/users",
        json={"email": "b@example.com", "name": "B", "password": "x", "role": "Librarian"},
        headers=admin_headers,
    )
    assert response.status_code == 400


def test_update_user_is_partial(client, session, user, admin_headers):
    response = client.put(f"/api/admin/users/{user.id}", json={"name": "Renamed", "email": ""}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["name"] == "Renamed"
    assert response.json()["email"] == user.email
    assert response.json()["role"] == "User"

    client.put(f"/api/admin/users/{user.id}", json={"password": "new-pass", "role": "Admin"}, headers=admin_headers)
    session.refresh(user)
    assert user.name == "Renamed"
    assert user.role == Role.ADMIN
    login = client.post("/api/auth/login", json={"email": user.email, "password": "new-pass"})
    assert login.status_code == 200


def test_update_user_email_taken(client, user, admin, admin_headers):
    response = client.put(f"/api/admin/users/{user.id}", json={"email": admin.email}, headers=admin_headers)
    assert response.status_code == 409
    assert response.json()["code"] == "DUPLICATE_EMAIL"


def test_update_user_email_is_validated(client, user, admin_headers):
    response = client.put(f"/api/admin/users/{user.id}", json={"email": "not-an-email"}, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_update_user_email_taken_in_other_case(client, user, admin, admin_headers):
    response = client.put(
        f"/api/admin/users/{user.id}", json={"email": admin.email.upper()}, headers=admin_headers
    )
    assert response.status_code == 409

    response = client.put(
        f"/api/admin/users/{user.id}", json={"email": user.email.upper()}, headers=admin_headers
    )
    assert response.status_code == 200


def test_update_missing_user(client, admin_headers):
    response = client.put("/api/admin/users/999", json={"name": "Nobody"}, headers=admin_headers)
    assert response.status_code == 404


def test_delete_user_removes_loans(client, session, user, book, user_headers, admin_headers):
    client.post(f"/api/books/{book.id}/borrow", data=DATES, headers=user_headers)
    response = client.delete(f"/api/admin/users/{user.id}", headers=admin_headers)
    assert response.status_code == 200
    session.expire_all()
    assert session.exec(select(BorrowedBook)).all() == []
    assert client.delete(f"/api/admin/users/{user.id}", headers=admin_headers).status_code == 404


def test_create_book_defaults(client, admin_headers):
    data = {"title": "Emma", "author": "Jane Austen", "publishedYear": "1815"}
    response = client.post("/api/admin/books", data=data, headers=admin_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["category"] == "General"
    assert body["number_of_copies"] == 1
    assert body["available"] is True
    assert body["description"] == ""
    assert body["cover_image"] is None


def test_create_book_fields(client, admin_headers):
    data = {
        "title": "Emma",
        "author": "Jane Austen",
        "publishedYear": "1815",
        "category": "Classics",
        "description": "A comedy of manners.",
        "numberOfCopies": "4",
        "available": "False",
    }
    body = client.post("/api/admin/books", data=data, headers=admin_headers).json()
    assert body["category"] == "Classics"
    assert body["number_of_copies"] == 4
    assert body["available"] is False


def test_create_book_validation(client, admin_headers):
    response = client.post("/api/admin/books", data={"title": "Emma", "publishedYear": "1815"}, headers=admin_headers)
    assert response.status_code == 400

    data = {"title": "Emma", "author": "Jane Austen", "publishedYear": "eighteen-fifteen"}
    response = client.post("/api/admin/books", data=data, headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid publication year"


def test_create_book_with_cover(client, session, admin_headers, storage_requests):
    data = {"title": "Emma", "author": "Jane Austen", "publishedYear": "1815"}
    files = {"coverImage": ("emma.png", b"png-bytes", "image/png")}
    response = client.post("/api/admin/books", data=data, files=files, headers=admin_headers)
    assert response.status_code == 200
    book_id = response.json()["id"]

    [path] = uploaded_paths(storage_requests)
    assert path.startswith(f"/storage/v1/object/book-covers/{book_id}_")
    assert path.endswith(".png")
    assert response.json()["cover_image"].startswith(
        f"https://storage.example.com/storage/v1/object/public/book-covers/{book_id}_"
    )
    stored = session.get(Book, book_id)
    assert stored.cover_image.startswith("book-covers/")


def test_update_book_is_partial(client, session, book, admin_headers):
    response = client.put(
        f"/api/admin/books/{book.id}",
        json={"title": "", "number_of_copies": 0, "description": ""},
        headers=admin_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Dune"
    assert body["author"] == "Frank Herbert"
    assert body["number_of_copies"] == 0
    assert body["available"] is False

    response = client.put(
        f"/api/admin/books/{book.id}",
        json={"number_of_copies": 3, "published_year": 1966},
        headers=admin_headers,
    )
    assert response.json()["available"] is True
    assert response.json()["published_year"] == 1966
    assert response.json()["category"] == "Science Fiction"


def test_update_book_only_availability(client, session, admin_headers):
    shelved = make_book(session, description="Desert planet", number_of_copies=4)
    response = client.put(f"/api/admin/books/{shelved.id}", json={"available": False}, headers=admin_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["available"] is False
    assert body["title"] == "Dune"
    assert body["description"] == "Desert planet"
    assert body["number_of_copies"] == 4
    assert body["published_year"] == 1965

    session.refresh(shelved)
    assert shelved.available is False
    assert shelved.number_of_copies == 4
    assert client.get(f"/api/books/{shelved.id}").json()["available"] is False


def test_update_book_rejects_negative_copies(client, book, admin_headers):
    response = client.put(f"/api/admin/books/{book.id}", json={"number_of_copies": -1}, headers=admin_headers)
    assert response.status_code == 400


def test_update_missing_book(client, admin_headers):
    response = client.put("/api/admin/books/999", json={"title": "Ghost"}, headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "BOOK_NOT_FOUND"


def test_delete_book_removes_cover(client, session, admin_headers, storage_requests):
    covered = make_book(session, cover_image="book-covers/1_cover.png")
    response = client.delete(f"/api/admin/books/{covered.id}", headers=admin_headers)
    assert response.status_code == 200
    assert deleted_prefixes(storage_requests) == ["1_cover.png"]
    assert client.get(f"/api/books/{covered.id}").status_code == 404


def test_list_borrows(client, user, book, user_headers, admin_headers):
    files = {"IdCardImage": ("card.jpg", b"jpeg-bytes", "image/jpeg")}
    client.post(f"/api/books/{book.id}/borrow", data=DATES, files=files, headers=user_headers)

    response = client.get("/api/admin/borrows", headers=admin_headers)
    assert response.status_code == 200
    [loan] = response.json()
    assert loan["user_name"] == user.name
    assert loan["user_email"] == user.email
    assert loan["book_title"] == "Dune"
    assert loan["price"] == 10
    assert loan["id_card_image_path"].startswith(
        f"https://storage.example.com/storage/v1/object/public/id-cards/{user.id}/{book.id}_"
    )


def test_force_return(client, session, book, user_headers, admin_headers):
    loan_id = client.post(f"/api/books/{book.id}/borrow", data=DATES, headers=user_headers).json()["id"]

    response = client.post(f"/api/admin/borrows/{loan_id}/return", headers=admin_headers)
    assert response.status_code == 200
    session.refresh(book)
    assert book.number_of_copies == 2

    response = client.post(f"/api/admin/borrows/{loan_id}/return", headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "LOAN_NOT_FOUND"

    response = client.post(f"/api/books/{book.id}/return", headers=user_headers)
    assert response.json()["code"] == "ALREADY_RETURNED"
