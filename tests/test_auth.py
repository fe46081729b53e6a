from datetime import datetime, timedelta

from conftest import make_admin, make_product, make_user
from db import db


def test_signup_creates_login_and_profile(client):
    resp = client.post("/signup", json={"email": "New@Example.com", "password": "secret1", "full_name": "Nay"})
    assert resp.status_code == 201

    user = db["users"].find_one({"email": "new@example.com"})
    assert user and user["password"] != "secret1"
    prof = db["user_profiles"].find_one({"user_id": user["_id"]})
    assert prof["credits_balance"] == 0
    assert prof["is_banned"] is False


def test_signup_validation_and_duplicates(client):
    assert client.post("/signup", json={"email": "x@example.com", "password": "123", "full_name": "X"}).status_code == 400
    assert client.post("/signup", json={"email": "nope", "password": "secret1", "full_name": "X"}).status_code == 400
    assert client.post("/signup", json={"email": "x@example.com", "password": "secret1"}).status_code == 400
    make_user(email="taken@example.com")
    resp = client.post("/signup", json={"email": "taken@example.com", "password": "secret1", "full_name": "X"})
    assert resp.status_code == 409


def test_login_logout_flow(client):
    make_user(email="kyaw@example.com", password="pw123456", balance=40)

    assert client.post("/login", json={"email": "kyaw@example.com", "password": "wrong"}).status_code == 401
    resp = client.post("/login", json={"email": "kyaw@example.com", "password": "pw123456"})
    assert resp.status_code == 200
    assert resp.get_json()["is_admin"] is False

    me = client.get("/api/me").get_json()
    assert me["balance"] == 40

    client.post("/logout")
    assert client.get("/api/me").status_code == 401


def test_login_reports_admin_from_roles(client):
    make_admin(email="boss@example.com", password="pw123456")
    resp = client.post("/login", json={"email": "boss@example.com", "password": "pw123456"})
    assert resp.get_json()["is_admin"] is True


def test_banned_login_refused_until_ban_expires(client):
    make_user(email="ban@example.com", password="pw123456", is_banned=True,
              ban_until=datetime.utcnow() + timedelta(days=1))
    assert client.post("/login", json={"email": "ban@example.com", "password": "pw123456"}).status_code == 403

    db["user_profiles"].update_one({"email": "ban@example.com"},
                                   {"$set": {"ban_until": datetime.utcnow() - timedelta(minutes=1)}})
    assert client.post("/login", json={"email": "ban@example.com", "password": "pw123456"}).status_code == 200


def test_profile_update_validates_chat_id(client):
    make_user(email="p@example.com", password="pw123456")
    client.post("/login", json={"email": "p@example.com", "password": "pw123456"})

    assert client.put("/api/me", json={"telegram_chat_id": "abc"}).status_code == 400
    resp = client.put("/api/me", json={"telegram_chat_id": "123456789", "full_name": "P P"})
    assert resp.get_json()["profile"]["telegram_chat_id"] == "123456789"


def test_public_catalog_filters(client):
    make_product(name="1GB Data Pack", operator="MPT", category="Data")
    make_product(name="100 Minutes Pack", operator="MPT", category="Minutes")
    make_product(name="2GB SuperNet", operator="OOREDOO", category="Data")
    make_product(name="Hidden", operator="ATOM", is_active=False)

    assert client.get("/api/products").get_json()["count"] == 3
    assert client.get("/api/products?operator=mpt").get_json()["count"] == 2
    assert client.get("/api/products?operator=MPT&category=Data").get_json()["count"] == 1
    assert client.get("/api/products?q=supernet").get_json()["count"] == 1
    assert client.get("/api/products?operator=all&category=all").get_json()["count"] == 3
    filters = client.get("/api/products/filters").get_json()
    assert filters["operators"] == ["MPT", "OOREDOO", "ATOM", "MYTEL"]


def test_seed_commands(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["create-admin", "--email", "Root@Example.com", "--password", "pw123456"])
    assert result.exit_code == 0
    user = db["users"].find_one({"email": "root@example.com"})
    assert db["user_roles"].find_one({"user_id": user["_id"], "role": "admin"})

    first = runner.invoke(args=["seed-products"])
    assert first.exit_code == 0
    count = db["products"].count_documents({})
    assert count > 0
    runner.invoke(args=["seed-products"])
    assert db["products"].count_documents({}) == count
