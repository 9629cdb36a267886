from security import decode_token


def test_register_and_me(client, db):
    resp = client.post("/api/auth/register", json={
        "name": "Meera", "email": "Meera@Example.com", "password": "tulsi123",
    })
    assert resp.status_code == 201
    body = resp.json()
    assert body["user"]["email"] == "meera@example.com"
    assert body["user"]["is_admin"] is False
    assert decode_token(body["token"])["sub"] == body["user"]["id"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.json()["name"] == "Meera"
    assert "hashed_password" not in me.json()


def test_duplicate_email(client, db, customer):
    resp = client.post("/api/auth/register", json={
        "name": "Asha", "email": "asha@example.com", "password": "secret123",
    })
    assert resp.status_code == 400


def test_login(client, db, customer):
    resp = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "secret123"})
    assert resp.status_code == 200
    assert resp.json()["user"]["id"] == str(customer["_id"])


def test_login_wrong_password(client, db, customer):
    resp = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "nope"})
    assert resp.status_code == 401


def test_disabled_account(client, db, customer):
    db["user"].update_one({"_id": customer["_id"]}, {"$set": {"is_active": False}})
    resp = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "secret123"})
    assert resp.status_code == 403


def test_invalid_token(client, db):
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401
