import os
import sys
import tempfile
from datetime import datetime

import mongomock
import pymongo
import pytest

# db.py builds its client at import time; swap the driver before any app module loads
pymongo.MongoClient = mongomock.MongoClient

os.environ.setdefault("UPLOAD_FOLDER", tempfile.mkdtemp(prefix="ohub-uploads-"))
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ["NOTIFY_SYNC"] = "1"
os.environ["ENABLE_RECONCILE_JOB"] = "0"

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from bson import ObjectId  # noqa: E402
from werkzeug.security import generate_password_hash  # noqa: E402

import app as app_module  # noqa: E402
import telegram_api  # noqa: E402
from db import db  # noqa: E402

ADMIN_CHAT_ID = "-100200300"


class FakeTelegram:
    """Records every Bot API call made through requests.post."""

    def __init__(self):
        self.calls = []
        self.fail_methods = set()

    def post(self, url, json=None, timeout=None):
        method = url.rsplit("/", 1)[-1]
        self.calls.append((method, json or {}))
        ok = method not in self.fail_methods
        return _FakeResponse({"ok": ok, "result": {"url": "https://example.test/hook"} if ok else None,
                              "description": None if ok else "Bad Request: chat not found"})

    def methods(self):
        return [m for m, _ in self.calls]

    def payloads(self, method):
        return [p for m, p in self.calls if m == method]


class _FakeResponse:
    def __init__(self, data):
        self._data = data

    def json(self):
        return self._data


@pytest.fixture(autouse=True)
def clean_db():
    yield
    for name in db.list_collection_names():
        db[name].delete_many({})


@pytest.fixture(autouse=True)
def telegram(monkeypatch):
    fake = FakeTelegram()
    monkeypatch.setattr(telegram_api.requests, "post", fake.post)
    return fake


@pytest.fixture
def app(tmp_path):
    application = app_module.create_app({
        "TESTING": True,
        "UPLOAD_FOLDER": str(tmp_path),
        "NOTIFY_SYNC": True,
        "TELEGRAM_BOT_TOKEN": "test-token",
        "TELEGRAM_WEBHOOK_SECRET": "",
    })
    return application


@pytest.fixture
def client(app):
    return app.test_client()


# ---------- data helpers ----------
def make_user(email="user@example.com", password="secret123", full_name="Test User",
              balance=0, telegram_chat_id=None, is_banned=False, ban_until=None):
    now = datetime.utcnow()
    uid = db["users"].insert_one({
        "email": email,
        "password": generate_password_hash(password),
        "created_at": now,
        "updated_at": now,
    }).inserted_id
    db["user_profiles"].insert_one({
        "user_id": uid,
        "email": email,
        "full_name": full_name,
        "credits_balance": balance,
        "telegram_chat_id": telegram_chat_id,
        "is_banned": is_banned,
        "ban_reason": "spam" if is_banned else None,
        "ban_until": ban_until,
        "created_at": now,
        "updated_at": now,
    })
    return uid


def make_admin(email="admin@example.com", **kw):
    uid = make_user(email=email, full_name=kw.pop("full_name", "Admin"), **kw)
    db["user_roles"].insert_one({"user_id": uid, "role": "admin", "created_at": datetime.utcnow()})
    return uid


def make_product(name="1GB Data Pack", price=3000, operator="MPT", category="Data",
                 stock_quantity=10, is_active=True):
    now = datetime.utcnow()
    return db["products"].insert_one({
        "name": name,
        "description": "High-speed internet for 30 days",
        "price": price,
        "currency": "MMK",
        "operator": operator,
        "category": category,
        "is_active": is_active,
        "stock_quantity": stock_quantity,
        "validity_days": 30,
        "created_at": now,
        "updated_at": now,
    }).inserted_id


def make_order(user_id, product_id=None, credits=3000, status="pending"):
    now = datetime.utcnow()
    return db["orders"].insert_one({
        "user_id": user_id,
        "product_id": product_id or ObjectId(),
        "product_name": "1GB Data Pack",
        "operator": "MPT",
        "quantity": 1,
        "unit_price": credits,
        "total_amount": credits,
        "credits_used": credits,
        "phone_number": "09123456789",
        "status": status,
        "created_at": now,
        "updated_at": now,
    }).inserted_id


def make_payment_request(user_id, credits=500, rate=100, status="pending", method="kpay"):
    now = datetime.utcnow()
    return db["payment_requests"].insert_one({
        "user_id": user_id,
        "credits_requested": credits,
        "total_cost_mmk": credits * rate,
        "credit_rate_mmk": rate,
        "payment_method": method,
        "payment_proof_url": "/uploads/payment-proofs/x.png",
        "status": status,
        "created_at": now,
        "updated_at": now,
    }).inserted_id


def set_admin_chat(chat_id=ADMIN_CHAT_ID):
    db["site_settings"].update_one(
        {"setting_key": "telegram_settings"},
        {"$set": {"setting_value": {"admin_chat_id": chat_id}}},
        upsert=True,
    )


def login(client, user_id):
    with client.session_transaction() as sess:
        sess["user_id"] = str(user_id)
