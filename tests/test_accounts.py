from datetime import timedelta

import pytest
from bson import ObjectId

import config
from conftest import FakeBlobStore, auth_headers, make_user
from database import utcnow
from main import app
from security import SESSION_HEADER, GoogleIdentity, verify_google_identity


def registration(**overrides):
    payload = {
        "name": "Nimal Perera",
        "email": "nimal@example.com",
        "password": "Str0ngPassword",
        "confirmPassword": "Str0ngPassword",
        "contactNumbers": ["0771234567"],
        "addresses": ["12 Galle Road, Colombo"],
        "gender": "male",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def google_identity():
    def sign_in_as(email, name="Google User", picture=None):
        identity = GoogleIdentity(email=email, name=name, google_id=f"g-{email}", picture=picture)
        app.dependency_overrides[verify_google_identity] = lambda: identity
        return identity

    return sign_in_as


def test_register_creates_a_user(client, db):
    response = client.post("/api/register", json=registration())
    assert response.status_code == 201
    assert response.json()["user"]["email"] == "nimal@example.com"

    user = db["user"].find_one({"email": "nimal@example.com"})
    assert user["provider"] == "credentials"
    assert user["role"] == "user"
    assert user["password"] != "Str0ngPassword"


def test_register_duplicate_email(client):
    client.post("/api/register", json=registration())
    response = client.post("/api/register", json=registration(email="Nimal@Example.com"))
    assert response.status_code == 409


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"email": "nimal"}, "Please enter a valid email address."),
        ({"confirmPassword": "Different1x"}, "Passwords do not match."),
        ({"contactNumbers": ["12"]}, "Invalid phone number: 12. Please enter a valid Sri Lankan number."),
        ({"gender": "robot"}, "Invalid gender selection."),
        ({"birthday": "not-a-date"}, "Invalid birthday date."),
        ({"name": None}, "Name, email, password, and confirm password are required."),
    ],
)
def test_register_validation(client, overrides, message):
    response = client.post("/api/register", json=registration(**overrides))
    assert response.status_code == 400
    assert response.json()["detail"] == message


def test_register_rejects_young_users(client):
    birthday = (utcnow() - timedelta(days=365 * 5)).date().isoformat()
    response = client.post("/api/register", json=registration(birthday=birthday))
    assert response.json()["detail"] == "You must be at least 13 years old to register."


def test_contact_number_required_unless_google_admin(client, db, google_identity, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_EMAILS", [])
    rejected = client.post("/api/register", json=registration(email="boss@example.com", contactNumbers=[]))
    assert rejected.status_code == 400
    assert rejected.json()["detail"].lower() == "at least one contact number is required."
    assert db["user"].count_documents({}) == 0

    monkeypatch.setattr(config, "ADMIN_EMAILS", ["boss@example.com"])
    google_identity("boss@example.com", name="The Boss")
    accepted = client.post("/api/auth/google", json={"idToken": "token"})
    assert accepted.status_code == 200
    user = accepted.json()["user"]
    assert user["role"] == "admin"
    assert user["provider"] == "google"
    assert user["contactNumbers"] == []


def test_admin_email_cannot_register_with_password(client, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_EMAILS", ["boss@example.com"])
    response = client.post("/api/register", json=registration(email="boss@example.com"))
    assert response.status_code == 400
    assert "reserved for admin access" in response.json()["detail"]


def test_google_sign_in_links_existing_credentials_account(client, db, google_identity):
    make_user(db, "nimal@example.com", password="Str0ngPassword")
    google_identity("nimal@example.com", picture="https://lh3.googleusercontent.com/a/photo")

    response = client.post("/api/auth/google", json={"idToken": "token"})
    assert response.status_code == 200
    user = db["user"].find_one({"email": "nimal@example.com"})
    assert user["provider"] == "both"
    assert user["googleId"] == "g-nimal@example.com"
    assert user["image"] == "https://lh3.googleusercontent.com/a/photo"


def test_login(client, db):
    make_user(db, "nimal@example.com", password="Str0ngPassword")

    response = client.post("/api/auth/login", json={"email": "nimal@example.com", "password": "Str0ngPassword"})
    assert response.status_code == 200
    assert response.json()["token_type"] == "bearer"
    assert config.SESSION_COOKIE_NAME in response.cookies

    wrong = client.post("/api/auth/login", json={"email": "nimal@example.com", "password": "Wr0ngPassword"})
    assert wrong.status_code == 401
    assert wrong.json()["detail"] == "Incorrect password. Please try again."


def test_login_messages(client, db):
    make_user(db, "admin@example.com", role="admin", provider="google", contactNumbers=[])
    make_user(db, "gone@example.com", password="Str0ngPassword", isActive=False)

    unknown = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": "x"})
    assert unknown.json()["detail"] == "No account found with this email. Please register first."
    admin = client.post("/api/auth/login", json={"email": "admin@example.com", "password": "x"})
    assert admin.json()["detail"] == "Admin accounts must sign in with Google."
    inactive = client.post("/api/auth/login", json={"email": "gone@example.com", "password": "Str0ngPassword"})
    assert inactive.json()["detail"] == "Your account has been deactivated. Please contact support."


def test_expired_session_is_extended_inside_refresh_window(client, db):
    user = make_user(db, "nimal@example.com")
    headers = auth_headers(user, expires_delta=timedelta(seconds=-60))

    response = client.get("/api/account", headers=headers)
    assert response.status_code == 200
    assert SESSION_HEADER in response.headers

    retry = client.get("/api/account", headers={"Authorization": f"Bearer {response.headers[SESSION_HEADER]}"})
    assert retry.status_code == 200


def test_expired_session_outside_refresh_window(client, db):
    user = make_user(db, "nimal@example.com", refreshTokenExpiry=utcnow() - timedelta(minutes=1))
    response = client.get("/api/account", headers=auth_headers(user, expires_delta=timedelta(seconds=-60)))
    assert response.status_code == 401
    assert response.json()["detail"] == "Please log in."


def test_refresh_token(client, db):
    user = make_user(db, "nimal@example.com")
    response = client.post("/api/refresh-token", headers=auth_headers(user))
    assert response.status_code == 200
    assert db["user"].find_one({"_id": user["_id"]})["refreshToken"]

    lapsed = make_user(db, "lapsed@example.com", refreshTokenExpiry=None)
    assert client.post("/api/refresh-token", headers=auth_headers(lapsed)).status_code == 401

    inactive = make_user(db, "gone@example.com", isActive=False)
    assert client.post("/api/refresh-token", headers=auth_headers(inactive)).status_code == 403

    ghost = {"_id": ObjectId(), "email": "ghost@example.com"}
    assert client.post("/api/refresh-token", headers=auth_headers(ghost)).status_code == 404


def test_logout_clears_refresh_token(client, db):
    user = make_user(db, "nimal@example.com", refreshToken="hashed")
    response = client.post("/api/auth/logout", headers=auth_headers(user))
    assert response.status_code == 200
    stored = db["user"].find_one({"_id": user["_id"]})
    assert "refreshToken" not in stored


def test_account_update(client, db):
    user = make_user(db, "nimal@example.com")
    headers = auth_headers(user)

    response = client.put(
        "/api/account",
        json={"name": "Nimal P", "contactNumbers": ["+94771234567", " "], "gender": "male", "birthday": "1990-05-01"},
        headers=headers,
    )
    assert response.status_code == 200
    updated = response.json()["user"]
    assert updated["name"] == "Nimal P"
    assert updated["contactNumbers"] == ["+94771234567"]
    assert updated["birthday"] == "1990-05-01"

    missing = client.put("/api/account", json={"name": "Nimal P", "contactNumbers": []}, headers=headers)
    assert missing.status_code == 400
    assert missing.json()["detail"] == "At least one contact number is required."


def test_google_admin_updates_account_without_contact_numbers(client, admin, admin_headers):
    response = client.put("/api/account", json={"name": "Site Admin", "contactNumbers": []}, headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["user"]["contactNumbers"] == []


def test_account_requires_session(client):
    assert client.get("/api/account").status_code == 401


def test_profile_image_upload_replaces_old_image(client, db, store):
    old = FakeBlobStore.url("profile-images/old.jpg")
    user = make_user(db, "nimal@example.com", image=old)
    headers = auth_headers(user)

    response = client.post(
        "/api/upload-profile-image",
        files={"image": ("me.jpg", b"\xff\xd8\xff", "image/jpeg")},
        headers=headers,
    )
    assert response.status_code == 200
    assert store.puts[0].startswith(f"profile-images/{user['_id']}/")
    assert db["user"].find_one({"_id": user["_id"]})["image"] == response.json()["imageUrl"]
    assert store.deleted == ["profile-images/old.jpg"]


def test_profile_image_rejects_gif(client, db, store):
    user = make_user(db, "nimal@example.com")
    response = client.post(
        "/api/upload-profile-image",
        files={"image": ("me.gif", b"GIF89a", "image/gif")},
        headers=auth_headers(user),
    )
    assert response.status_code == 400
    assert store.puts == []


def test_removing_google_avatar_leaves_storage_alone(client, db, store):
    user = make_user(db, "nimal@example.com", image="https://lh3.googleusercontent.com/a/photo")
    response = client.delete("/api/upload-profile-image", headers=auth_headers(user))
    assert response.status_code == 200
    assert store.deleted == []
    assert db["user"].find_one({"_id": user["_id"]})["image"] is None
