from jose import jwt
from core.config import settings
from models.refresh_tokens import RefreshToken
from services.auth_service import LOGIN_FAILED
from tests.conftest import login


async def test_login_success(client, verified_user):
    """Test successfull user login."""
    response = await login(client, verified_user.email)

    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["access_token"]
    assert data["refresh_token"]

    payload = jwt.decode(data["access_token"], settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    assert payload["sub"] == verified_user.id
    assert payload["role"] == verified_user.role
    assert payload["type"] == "access"


async def test_login_sets_http_only_refresh_cookie(client, verified_user):
    response = await login(client, verified_user.email)

    cookie = response.headers["set-cookie"]
    assert cookie.startswith(f"{settings.REFRESH_COOKIE_NAME}={response.json()['refresh_token']}")
    assert "HttpOnly" in cookie
    assert "Path=/auth" in cookie
    assert "samesite=strict" in cookie.lower()


async def test_login_email_is_case_insensitive(client, verified_user):
    response = await login(client, verified_user.email.upper())

    assert response.status_code == 200


async def test_login_unverified_user(client, user):
    response = await login(client, user.email)

    assert response.status_code == 200


async def test_login_wrong_password(client, verified_user):
    response = await login(client, verified_user.email, "WrongPassword123")

    assert response.status_code == 401
    assert response.json()["detail"] == LOGIN_FAILED


async def test_login_nonexistent_user(client):
    response = await login(client, "nonexistent@example.com")

    assert response.status_code == 401
    assert response.json()["detail"] == LOGIN_FAILED


async def test_login_lockout(client, verified_user, session, monkeypatch):
    monkeypatch.setattr(settings, "LOGIN_MAX_FAILED_ATTEMPTS", 3)

    for _ in range(3):
        response = await login(client, verified_user.email, "WrongPassword123")
        assert response.status_code == 401

    # Right password, locked account: same answer, no tokens
    response = await login(client, verified_user.email)

    assert response.status_code == 401
    assert response.json()["detail"] == LOGIN_FAILED
    assert "access_token" not in response.json()
    assert session.query(RefreshToken).count() == 0


async def test_login_deactivated_user(client, verified_user, session):
    verified_user.is_active = False
    session.commit()

    response = await login(client, verified_user.email)

    assert response.status_code == 401
    assert response.json()["detail"] == LOGIN_FAILED


async def test_login_resets_failed_attempts(client, verified_user, session):
    await login(client, verified_user.email, "WrongPassword123")
    await login(client, verified_user.email, "WrongPassword123")

    response = await login(client, verified_user.email)

    assert response.status_code == 200
    session.refresh(verified_user)
    assert verified_user.failed_login_attempts == 0
    assert verified_user.last_login is not None
