from datetime import timedelta
from services.token_service import TokenService
from tests.conftest import login, auth_header


async def test_get_me_success(client, verified_user):
    """Test getting current user info with valid token."""
    access_token = (await login(client, verified_user.email)).json()["access_token"]

    response = await client.get("/users/me", headers=auth_header(access_token))

    assert response.status_code == 200
    data = response.json()
    assert data["id"] == verified_user.id
    assert data["email"] == verified_user.email
    assert data["name"] == verified_user.name
    assert data["last_login"] is not None

    # Verify sensitive data is NOT included
    assert "hashed_password" not in data
    assert "password_reset_token_hash" not in data
    assert "failed_login_attempts" not in data


async def test_get_me_no_token(client):
    response = await client.get("/users/me")

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


async def test_get_me_refresh_token_rejected(client, verified_user):
    refresh_token = (await login(client, verified_user.email)).json()["refresh_token"]

    response = await client.get("/users/me", headers=auth_header(refresh_token))

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token"


async def test_get_me_expired_token(client, verified_user):
    expired = TokenService.create_access_token(verified_user.id, verified_user.role,
                                               expires_delta=timedelta(seconds=-1))

    response = await client.get("/users/me", headers=auth_header(expired))

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token"


async def test_get_me_unknown_subject(client, session):
    token = TokenService.create_access_token("does-not-exist", "user")

    response = await client.get("/users/me", headers=auth_header(token))

    assert response.status_code == 401
