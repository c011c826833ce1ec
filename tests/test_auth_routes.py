from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt

from database import User, app_settings
from routes.pg_auth_routes import (
    ALGORITHM,
    create_access_token,
    get_current_user_pg,
    get_password_hash,
    pg_auth_router,
    verify_password,
)


def test_access_token_carries_subject_and_expiry():
    token = create_access_token({"sub": "user-1"})

    payload = jwt.decode(token, app_settings.secret_key, algorithms=[ALGORITHM])
    assert payload["sub"] == "user-1"
    assert "exp" in payload


def test_password_hash_round_trip():
    hashed = get_password_hash("s3cret-pass")

    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)


def test_me_returns_full_name():
    user = User(
        id="user-1",
        name="Rita",
        surname="Requester",
        email="rita@example.com",
        password="hashed",
        is_active=True,
    )
    app = FastAPI()
    app.include_router(pg_auth_router)
    app.dependency_overrides[get_current_user_pg] = lambda: user

    response = TestClient(app).get("/api/pg/auth/me")

    assert response.status_code == 200
    assert response.json() == {
        "id": "user-1",
        "name": "Rita Requester",
        "email": "rita@example.com",
        "is_active": True,
    }


def test_me_requires_bearer_token():
    app = FastAPI()
    app.include_router(pg_auth_router)

    response = TestClient(app).get("/api/pg/auth/me")

    assert response.status_code in (401, 403)
