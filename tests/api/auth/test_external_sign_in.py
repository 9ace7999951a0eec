from jose import jwt
from core.config import settings
from models.users import User


async def test_external_sign_in_creates_account(client, session):
    response = await client.post("/auth/external/fake", json={"provider_token": "sub-1:fed@example.com"})

    assert response.status_code == 200
    tokens = response.json()
    user = session.query(User).filter(User.email == "fed@example.com").one()
    assert user.is_email_verified is True

    payload = jwt.decode(tokens["access_token"], settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    assert payload["sub"] == user.id


async def test_external_sign_in_twice_same_account(client, session):
    await client.post("/auth/external/fake", json={"provider_token": "sub-1:fed@example.com"})
    response = await client.post("/auth/external/fake", json={"provider_token": "sub-1:fed@example.com"})

    assert response.status_code == 200
    assert session.query(User).count() == 1


async def test_external_sign_in_unknown_provider(client):
    response = await client.post("/auth/external/nope", json={"provider_token": "sub-1:fed@example.com"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Unsupported identity provider"


async def test_external_sign_in_rejected_by_provider(client):
    response = await client.post("/auth/external/fake", json={"provider_token": "garbage"})

    assert response.status_code == 401
