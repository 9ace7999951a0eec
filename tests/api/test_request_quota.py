import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from main import app
from services.rate_limiter import RequestQuota
from tests.conftest import login


@pytest.fixture
def small_quota(client):
    app.state.quota = RequestQuota("memory://", max_anonymous=3, max_authenticated=5)
    return app.state.quota


async def test_anonymous_ceiling(client, small_quota):
    for _ in range(3):
        response = await client.get("/users/me")
        assert response.status_code == 401

    response = await client.get("/users/me")

    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) > 0


async def test_quota_headers(client, small_quota):
    response = await client.get("/users/me")

    assert response.headers["X-RateLimit-Limit"] == "3"
    assert response.headers["X-RateLimit-Remaining"] == "2"
    assert int(response.headers["X-RateLimit-Reset"]) > 0


async def test_bearer_gets_higher_ceiling(client, small_quota):
    headers = {"Authorization": "Bearer not-even-a-jwt"}

    for _ in range(5):
        response = await client.get("/users/me", headers=headers)
        assert response.status_code == 401

    response = await client.get("/users/me", headers=headers)
    assert response.status_code == 429


async def test_unknown_paths_are_counted(client, small_quota):
    for _ in range(3):
        assert (await client.get("/no-such-route")).status_code == 404

    assert (await client.get("/users/me")).status_code == 429


async def test_rejected_request_never_reaches_credential_logic(client, small_quota, verified_user, session):
    for _ in range(5):
        await login(client, verified_user.email, "WrongPassword123")

    session.refresh(verified_user)
    assert verified_user.failed_login_attempts == 3


async def test_health_is_exempt(client, small_quota):
    for _ in range(10):
        response = await client.get("/health")
        assert response.status_code == 200


async def test_quota_rejection_carries_cors_headers(client, small_quota):
    origin = {"Origin": "http://localhost:3000"}
    for _ in range(3):
        await client.get("/users/me", headers=origin)

    response = await client.get("/users/me", headers=origin)

    assert response.status_code == 429
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


async def test_store_outage_fails_closed(client, monkeypatch):
    def store_down(*args, **kwargs):
        raise RedisConnectionError("store down")

    monkeypatch.setattr(app.state.quota.strategy, "hit", store_down)

    response = await client.get("/users/me")

    assert response.status_code == 503
    assert (await client.get("/health")).status_code == 200
