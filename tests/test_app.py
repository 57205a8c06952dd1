import base64

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import app
from auth import derive_credential
from database import Base, get_db
from image_utils import normalize_and_hash
from models import Account


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def register(client, png, name="mail", username="alice", notes=""):
    return client.post(
        "/api/accounts",
        data={"name": name, "username": username, "notes": notes},
        files={"image": ("password.png", png, "image/png")},
    )


def verify_image(client, account_id, png):
    return client.post(
        f"/api/accounts/{account_id}/verify",
        files={"image": ("password.png", png, "image/png")},
    )


def test_register_and_verify_uploaded(client, session_factory, photo_png):
    response = register(client, photo_png, notes="  work inbox ")
    assert response.status_code == 201
    account = response.json()["account"]
    assert account["type"] == "uploaded"
    assert account["notes"] == "work inbox"
    assert "password" not in account

    db = session_factory()
    row = db.query(Account).filter(Account.id == account["id"]).one()
    assert row.password == derive_credential(normalize_and_hash(photo_png))
    db.close()

    ok = verify_image(client, account["id"], photo_png)
    assert ok.status_code == 200
    assert ok.json()["account"]["username"] == "alice"


def test_verify_mismatch_is_401(client, half_png, inverted_half_png):
    account_id = register(client, half_png).json()["account"]["id"]
    response = verify_image(client, account_id, inverted_half_png)
    assert response.status_code == 401
    assert response.json()["ok"] is False


def test_verify_garbage_is_400(client, half_png):
    account_id = register(client, half_png).json()["account"]["id"]
    response = verify_image(client, account_id, b"definitely not a png")
    assert response.status_code == 400


def test_register_garbage_is_400_and_stores_nothing(client):
    response = register(client, b"definitely not a png")
    assert response.status_code == 400
    assert client.get("/api/accounts").json() == []


def test_duplicate_name_is_409(client, half_png, photo_png):
    assert register(client, half_png).status_code == 201
    assert register(client, photo_png).status_code == 409


def test_missing_username_is_400(client, half_png):
    assert register(client, half_png, username="   ").status_code == 400


def test_generated_registration_round_trip(client, session_factory):
    response = client.post(
        "/api/accounts/generate",
        data={"name": "bank", "username": "bob"},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["account"]["type"] == "generated"
    png = base64.b64decode(body["image_png_base64"])
    assert body["image_data_url"].startswith("data:image/png;base64,")

    db = session_factory()
    row = db.query(Account).filter(Account.id == body["account"]["id"]).one()
    assert row.password == normalize_and_hash(png)
    db.close()

    assert verify_image(client, body["account"]["id"], png).status_code == 200


def test_list_get_update_delete(client, half_png, session_factory):
    account_id = register(client, half_png).json()["account"]["id"]

    listed = client.get("/api/accounts").json()
    assert [a["id"] for a in listed] == [account_id]
    assert client.get(f"/api/accounts/{account_id}").json()["name"] == "mail"

    updated = client.put(
        f"/api/accounts/{account_id}",
        json={"name": "mail-2", "notes": "new notes"},
    )
    assert updated.status_code == 200
    assert updated.json()["account"]["name"] == "mail-2"
    assert updated.json()["account"]["username"] == "alice"

    # the password survives the update
    assert verify_image(client, account_id, half_png).status_code == 200

    assert client.delete(f"/api/accounts/{account_id}").status_code == 200
    assert client.get(f"/api/accounts/{account_id}").status_code == 404
    assert client.delete(f"/api/accounts/{account_id}").status_code == 404


def test_unknown_account(client, half_png):
    assert client.get("/api/accounts/missing").status_code == 404
    assert verify_image(client, "missing", half_png).status_code == 404
    assert client.put("/api/accounts/missing", json={"name": "x"}).status_code == 404


def test_fingerprint_endpoint(client, half_png):
    response = client.post(
        "/api/fingerprint",
        files={"image": ("password.png", half_png, "image/png")},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["fingerprint"] == "f0" * 8
    assert body["credential"] == derive_credential("f0" * 8)


def test_oversized_upload_is_413(client, monkeypatch, half_png):
    monkeypatch.setattr("app.MAX_UPLOAD_BYTES", 16)
    response = client.post(
        "/api/fingerprint",
        files={"image": ("password.png", half_png, "image/png")},
    )
    assert response.status_code == 413


def data_url(png):
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


def test_decompression_bomb_is_400(client, session_factory, bomb_png):
    response = client.post(
        "/api/fingerprint",
        files={"image": ("bomb.png", bomb_png, "image/png")},
    )
    assert response.status_code == 400

    db = session_factory()
    account = Account(name="mail", username="alice", password="0" * 64, type="uploaded")
    db.add(account)
    db.commit()
    account_id = account.id
    db.close()
    assert verify_image(client, account_id, bomb_png).status_code == 400


def test_verify_with_data_url(client, half_png, inverted_half_png):
    account_id = register(client, half_png).json()["account"]["id"]

    ok = client.post(f"/api/accounts/{account_id}/verify", data={"image_data_url": data_url(half_png)})
    assert ok.status_code == 200

    wrong = client.post(
        f"/api/accounts/{account_id}/verify",
        data={"image_data_url": data_url(inverted_half_png)},
    )
    assert wrong.status_code == 401

    broken = client.post(f"/api/accounts/{account_id}/verify", data={"image_data_url": "data:image/png;base64,@@"})
    assert broken.status_code == 400


def test_register_with_data_url(client, half_png):
    response = client.post(
        "/api/accounts",
        data={"name": "mail", "username": "alice", "image_data_url": data_url(half_png)},
    )
    assert response.status_code == 201
    account_id = response.json()["account"]["id"]
    assert verify_image(client, account_id, half_png).status_code == 200


def test_missing_image_is_400(client, half_png):
    account_id = register(client, half_png).json()["account"]["id"]
    assert client.post(f"/api/accounts/{account_id}/verify", data={}).status_code == 400
    assert client.post("/api/fingerprint", data={}).status_code == 400


def test_fingerprint_distance_to_second_image(client, half_png, inverted_half_png):
    response = client.post(
        "/api/fingerprint",
        files={"image": ("a.png", half_png, "image/png")},
        data={"compare_data_url": data_url(inverted_half_png)},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["compare_fingerprint"] == "0f" * 8
    assert body["distance"] == 64


@pytest.mark.parametrize("payload", [{"name": 5}, {"notes": 1}, {"username": ["bob"]}])
def test_update_rejects_non_string_fields(client, half_png, payload):
    account_id = register(client, half_png).json()["account"]["id"]
    assert client.put(f"/api/accounts/{account_id}", json=payload).status_code == 422


def test_duplicate_name_race_is_409(client, monkeypatch, half_png, photo_png):
    assert register(client, half_png).status_code == 201
    # a concurrent request already passed the name check
    monkeypatch.setattr("app.name_taken", lambda *args, **kwargs: False)
    response = register(client, photo_png)
    assert response.status_code == 409
    assert [a["name"] for a in client.get("/api/accounts").json()] == ["mail"]

    generated = client.post("/api/accounts/generate", data={"name": "mail", "username": "bob"})
    assert generated.status_code == 409
