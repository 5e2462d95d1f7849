"""
Authentication and account API tests: registration, login, token rotation,
logout, password reset and profile management.
"""
from marketplace.models import User, UserStatus

from conftest import DEFAULT_PASSWORD


def _register(client, email="new.customer@example.com", password=DEFAULT_PASSWORD, **extra):
    return client.post("/api/auth/register", json={"email": email, "password": password, **extra})


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_register_returns_tokens_and_customer_profile(client):
    response = _register(client, first_name="Ada", last_name="Lovelace")

    assert response.status_code == 201
    body = response.get_json()
    assert body["token_type"] == "Bearer"
    assert body["access_token"] and body["refresh_token"]
    assert body["user"]["email"] == "new.customer@example.com"
    assert body["user"]["roles"] == ["customer"]
    assert body["user"]["first_name"] == "Ada"
    assert "password_hash" not in body["user"]


def test_register_normalizes_email_and_rejects_duplicates(client):
    assert _register(client, email="Mixed.Case@Example.com").status_code == 201

    duplicate = _register(client, email="mixed.case@example.com")

    assert duplicate.status_code == 409
    assert duplicate.get_json() == {"error": "Email already registered", "code": "Conflict"}


def test_register_validates_password_and_email(client):
    short = _register(client, password="short")
    assert short.status_code == 400
    assert "at least 8 characters" in short.get_json()["error"]

    assert _register(client, email="not-an-email").status_code == 400
    missing = client.post("/api/auth/register", json={"email": "x@example.com"})
    assert missing.status_code == 400
    assert missing.get_json()["error"] == "Missing required fields: password"


def test_login_with_valid_credentials(client, factory):
    user = factory.user(email="shopper@example.com")

    response = client.post("/api/auth/login", json={"email": "shopper@example.com", "password": DEFAULT_PASSWORD})

    assert response.status_code == 200
    body = response.get_json()
    assert body["user"]["id"] == user.userID
    assert body["access_token"]


def test_login_rejects_bad_credentials_and_inactive_accounts(client, factory):
    factory.user(email="shopper@example.com")
    factory.user(email="gone@example.com", status=UserStatus.INACTIVE)

    wrong = client.post("/api/auth/login", json={"email": "shopper@example.com", "password": "wrong-password"})
    unknown = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": DEFAULT_PASSWORD})
    inactive = client.post("/api/auth/login", json={"email": "gone@example.com", "password": DEFAULT_PASSWORD})

    assert wrong.status_code == 401
    assert wrong.get_json()["error"] == "Invalid credentials"
    assert unknown.status_code == 401
    assert inactive.status_code == 401
    assert inactive.get_json()["error"] == "Account is inactive"


def test_refresh_rotates_tokens_and_revokes_previous_refresh_token(client):
    first = _register(client).get_json()

    rotated = client.post("/api/auth/refresh", headers=_bearer(first["refresh_token"]))
    assert rotated.status_code == 200
    second = rotated.get_json()
    assert second["refresh_token"] != first["refresh_token"]
    assert "user" not in second

    reused = client.post("/api/auth/refresh", headers=_bearer(first["refresh_token"]))
    assert reused.status_code == 401
    assert client.post("/api/auth/refresh", headers=_bearer(second["refresh_token"])).status_code == 200


def test_refresh_rejects_access_tokens(client):
    tokens = _register(client).get_json()

    response = client.post("/api/auth/refresh", headers=_bearer(tokens["access_token"]))

    assert response.status_code == 401


def test_logout_invalidates_refresh_token(client):
    tokens = _register(client).get_json()

    logout = client.post("/api/auth/logout", headers=_bearer(tokens["access_token"]))
    assert logout.status_code == 200

    response = client.post("/api/auth/refresh", headers=_bearer(tokens["refresh_token"]))
    assert response.status_code == 401
    assert response.get_json()["error"] == "Token has been revoked"


def test_forgot_and_reset_password(client, factory, db_session):
    user = factory.user(email="forgetful@example.com")

    response = client.post("/api/auth/forgot-password", json={"email": "forgetful@example.com"})
    unknown = client.post("/api/auth/forgot-password", json={"email": "missing@example.com"})
    assert response.status_code == 200
    # Same answer whether or not the account exists.
    assert response.get_json() == unknown.get_json()

    db_session.expire_all()
    token = db_session.get(User, user.userID).reset_password_token
    assert token

    reset = client.post("/api/auth/reset-password", json={"token": token, "new_password": "brand-new-pass"})
    assert reset.status_code == 200

    old_login = client.post("/api/auth/login", json={"email": "forgetful@example.com", "password": DEFAULT_PASSWORD})
    new_login = client.post("/api/auth/login", json={"email": "forgetful@example.com", "password": "brand-new-pass"})
    assert old_login.status_code == 401
    assert new_login.status_code == 200

    reused = client.post("/api/auth/reset-password", json={"token": token, "new_password": "another-pass"})
    assert reused.status_code == 400


def test_profile_requires_token(client, factory):
    assert client.get("/api/auth/profile").status_code == 401
    assert client.get("/api/auth/profile", headers=_bearer("garbage")).status_code == 401

    user = factory.user(email="me@example.com")
    response = client.get("/api/auth/profile", headers=factory.headers(user))
    assert response.status_code == 200
    assert response.get_json()["email"] == "me@example.com"


def test_deactivated_user_token_is_rejected(client, factory, db_session):
    user = factory.user()
    headers = factory.headers(user)
    user.status = UserStatus.INACTIVE
    db_session.commit()

    response = client.get("/api/users/me", headers=headers)

    assert response.status_code == 401


def test_update_profile_and_change_password(client, factory):
    user = factory.user(email="editor@example.com")
    headers = factory.headers(user)

    updated = client.patch(
        "/api/users/me",
        json={"first_name": "Grace", "phone": "555-0100", "email": "hijack@example.com"},
        headers=headers,
    )
    assert updated.status_code == 200
    assert updated.get_json()["first_name"] == "Grace"
    assert updated.get_json()["phone"] == "555-0100"
    assert updated.get_json()["email"] == "editor@example.com"

    wrong = client.patch(
        "/api/users/me/password",
        json={"current_password": "nope-nope", "new_password": "another-pass"},
        headers=headers,
    )
    assert wrong.status_code == 400

    changed = client.patch(
        "/api/users/me/password",
        json={"current_password": DEFAULT_PASSWORD, "new_password": "another-pass"},
        headers=headers,
    )
    assert changed.status_code == 200
    login = client.post("/api/auth/login", json={"email": "editor@example.com", "password": "another-pass"})
    assert login.status_code == 200


def test_non_string_email_is_rejected(client):
    register = _register(client, email=12345)
    login = client.post("/api/auth/login", json={"email": ["a@example.com"], "password": DEFAULT_PASSWORD})

    assert register.status_code == 400
    assert register.get_json() == {"error": "email must be a string", "code": "BadRequest"}
    assert login.status_code == 400
