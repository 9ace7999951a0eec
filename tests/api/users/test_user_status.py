from tests.conftest import login, auth_header


async def admin_token(client, admin_user):
    return (await login(client, admin_user.email)).json()["access_token"]


async def test_admin_deactivates_user(client, admin_user, verified_user, session):
    user_tokens = (await login(client, verified_user.email)).json()
    token = await admin_token(client, admin_user)

    response = await client.patch(f"/users/{verified_user.id}/status", headers=auth_header(token),
                                  json={"is_active": False})

    assert response.status_code == 200
    assert response.json()["is_active"] is False

    response = await client.post("/auth/refresh", json={"refresh_token": user_tokens["refresh_token"]})
    assert response.status_code == 401


async def test_admin_reactivates_user(client, admin_user, verified_user, session):
    verified_user.is_active = False
    session.commit()
    token = await admin_token(client, admin_user)

    response = await client.patch(f"/users/{verified_user.id}/status", headers=auth_header(token),
                                  json={"is_active": True})

    assert response.status_code == 200
    assert (await login(client, verified_user.email)).status_code == 200


async def test_non_admin_forbidden(client, verified_user, admin_user):
    token = (await login(client, verified_user.email)).json()["access_token"]

    response = await client.patch(f"/users/{admin_user.id}/status", headers=auth_header(token),
                                  json={"is_active": False})

    assert response.status_code == 403


async def test_admin_cannot_change_own_status(client, admin_user):
    token = await admin_token(client, admin_user)

    response = await client.patch(f"/users/{admin_user.id}/status", headers=auth_header(token),
                                  json={"is_active": False})

    assert response.status_code == 400


async def test_unknown_user(client, admin_user):
    token = await admin_token(client, admin_user)

    response = await client.patch("/users/missing/status", headers=auth_header(token),
                                  json={"is_active": False})

    assert response.status_code == 404


async def test_status_requires_auth(client, verified_user):
    response = await client.patch(f"/users/{verified_user.id}/status", json={"is_active": False})

    assert response.status_code == 401
