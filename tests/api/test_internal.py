from core.config import settings
from tests.conftest import login, auth_header


def api_key(key: str) -> dict:
    return {"X-API-Key": key}


async def test_verify_active_token(client, verified_user):
    access_token = (await login(client, verified_user.email)).json()["access_token"]

    response = await client.post("/internal/tokens/verify", headers=api_key(settings.API_KEY_GATEWAY),
                                 json={"token": access_token})

    assert response.status_code == 200
    assert response.json() == {
        "active": True,
        "user_id": verified_user.id,
        "role": "user",
        "caller": "api-gateway"
    }


async def test_each_service_key_maps_to_its_caller(client, verified_user):
    access_token = (await login(client, verified_user.email)).json()["access_token"]

    for key, caller in [(settings.API_KEY_USER_SERVICE, "user-service"),
                        (settings.API_KEY_NOTIFICATION_SERVICE, "notification-service")]:
        response = await client.post("/internal/tokens/verify", headers=api_key(key), json={"token": access_token})
        assert response.json()["caller"] == caller


async def test_verify_revoked_token(client, verified_user):
    tokens = (await login(client, verified_user.email)).json()
    await client.post("/auth/logout", json={"refresh_token": tokens["refresh_token"]},
                      headers=auth_header(tokens["access_token"]))

    response = await client.post("/internal/tokens/verify", headers=api_key(settings.API_KEY_GATEWAY),
                                 json={"token": tokens["access_token"]})

    assert response.status_code == 200
    assert response.json()["active"] is False
    assert response.json()["user_id"] is None


async def test_verify_token_of_deactivated_user(client, verified_user, session):
    access_token = (await login(client, verified_user.email)).json()["access_token"]
    verified_user.is_active = False
    session.commit()

    response = await client.post("/internal/tokens/verify", headers=api_key(settings.API_KEY_GATEWAY),
                                 json={"token": access_token})

    assert response.json()["active"] is False


async def test_missing_api_key(client):
    response = await client.post("/internal/tokens/verify", json={"token": "anything"})

    assert response.status_code == 401
    assert response.json()["detail"] == "API key required"


async def test_unknown_api_key(client):
    response = await client.post("/internal/tokens/verify", headers=api_key("not-a-key"),
                                 json={"token": "anything"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid API key"
