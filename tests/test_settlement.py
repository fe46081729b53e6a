import pytest
from bson import ObjectId

import ledger
import settlement
from conftest import login, make_admin, make_order, make_payment_request, make_user
from db import db


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


def test_reject_order_refunds_credits(ctx, telegram):
    admin = make_admin()
    uid = make_user(balance=0, telegram_chat_id="555111")
    oid = make_order(uid, credits=3000)

    result = settlement.process_order(oid, "reject", admin, "Number is invalid")

    assert result == {"id": str(oid), "status": "rejected", "refunded": 3000}
    assert ledger.get_balance(uid) == 3000
    refund = db["credit_transactions"].find_one({"transaction_type": "refund"})
    assert refund["reference_id"] == oid
    assert refund["admin_notes"] == "Order rejected: Number is invalid"

    audit = db["admin_audit_logs"].find_one({"action_type": "order_reject"})
    assert audit["target_type"] == "order"
    assert audit["notes"] == "Number is invalid"

    wf = db["approval_workflows"].find_one({"target_type": "order", "target_id": str(oid)})
    assert wf["status"] == "rejected"

    sent = telegram.payloads("sendMessage")
    assert sent and sent[-1]["chat_id"] == "555111"
    assert "Refunded: 3,000 credits" in sent[-1]["text"]


def test_approve_order_does_not_touch_balance(ctx):
    admin = make_admin()
    uid = make_user(balance=10)
    oid = make_order(uid, credits=3000)

    result = settlement.process_order(oid, "approve", admin)

    assert result["status"] == "completed"
    assert result["refunded"] == 0
    assert ledger.get_balance(uid) == 10
    assert db["orders"].find_one({"_id": oid})["status"] == "completed"
    assert db["admin_audit_logs"].find_one({"action_type": "order_approve"})["notes"] == "Order approved"


def test_order_settles_only_once(ctx):
    admin = make_admin()
    uid = make_user(balance=0)
    oid = make_order(uid, credits=500)

    settlement.process_order(oid, "reject", admin)
    with pytest.raises(settlement.NotPending):
        settlement.process_order(oid, "reject", admin)
    with pytest.raises(settlement.NotPending):
        settlement.process_order(oid, "approve", admin)

    assert ledger.get_balance(uid) == 500
    assert db["credit_transactions"].count_documents({"transaction_type": "refund"}) == 1


def test_refund_failure_releases_claim(ctx):
    admin = make_admin()
    orphan_user = ObjectId()
    oid = make_order(orphan_user, credits=700)

    with pytest.raises(ledger.ProfileNotFound):
        settlement.process_order(oid, "reject", admin, "Wrong number")

    order = db["orders"].find_one({"_id": oid})
    assert order["status"] == "pending"
    assert "processed_by" not in order
    assert order.get("notes") is None


def test_credit_failure_releases_payment_claim(ctx):
    admin = make_admin()
    rid = make_payment_request(ObjectId(), credits=300)

    with pytest.raises(ledger.ProfileNotFound):
        settlement.process_payment_request(rid, "approve", admin, "Looks fine")

    req = db["payment_requests"].find_one({"_id": rid})
    assert req["status"] == "pending"
    assert req.get("admin_notes") is None
    assert "processed_at" not in req


def test_unknown_order_and_bad_action(ctx):
    admin = make_admin()
    with pytest.raises(settlement.NotFound):
        settlement.process_order(ObjectId(), "approve", admin)
    with pytest.raises(settlement.NotFound):
        settlement.process_order("not-an-id", "approve", admin)
    with pytest.raises(settlement.SettlementError):
        settlement.process_order(ObjectId(), "refund", admin)


def test_approve_payment_credits_purchase(ctx, telegram):
    admin = make_admin()
    uid = make_user(balance=20, telegram_chat_id="777")
    rid = make_payment_request(uid, credits=500, rate=100, method="wavepay")

    result = settlement.process_payment_request(rid, "approve", admin)

    assert result == {"id": str(rid), "status": "approved", "creditsAdded": 500, "newBalance": 520}
    tx = db["credit_transactions"].find_one({"reference_id": rid})
    assert tx["transaction_type"] == "purchase"
    assert tx["mmk_amount"] == 50000
    assert tx["payment_method"] == "wavepay"
    assert "New Balance: 520 credits" in telegram.payloads("sendMessage")[-1]["text"]


def test_reject_payment_leaves_balance(ctx):
    admin = make_admin()
    uid = make_user(balance=20)
    rid = make_payment_request(uid, credits=500)

    result = settlement.process_payment_request(rid, "reject", admin, "Blurry screenshot")

    assert result["status"] == "rejected"
    assert result["creditsAdded"] == 0
    assert result["newBalance"] == 20
    assert db["credit_transactions"].count_documents({}) == 0
    assert db["payment_requests"].find_one({"_id": rid})["admin_notes"] == "Blurry screenshot"


def test_payment_settles_only_once(ctx):
    admin = make_admin()
    uid = make_user(balance=0)
    rid = make_payment_request(uid, credits=100)

    settlement.process_payment_request(rid, "approve", admin)
    with pytest.raises(settlement.NotPending):
        settlement.process_payment_request(rid, "approve", admin)
    assert ledger.get_balance(uid) == 100


def test_notification_failure_does_not_undo_settlement(ctx, telegram):
    admin = make_admin()
    uid = make_user(balance=0, telegram_chat_id="777")
    rid = make_payment_request(uid, credits=100)
    telegram.fail_methods.add("sendMessage")

    result = settlement.process_payment_request(rid, "approve", admin)

    assert result["newBalance"] == 100
    assert db["payment_requests"].find_one({"_id": rid})["status"] == "approved"


# ---------- function-style endpoints ----------
def test_process_order_endpoint_requires_admin(client):
    uid = make_user()
    login(client, uid)
    resp = client.post("/functions/process-order", json={"orderId": str(ObjectId()), "action": "approve"})
    assert resp.status_code == 403


def test_process_order_endpoint_reports_errors_as_400(client):
    admin = make_admin()
    login(client, admin)
    resp = client.post("/functions/process-order", json={"orderId": str(ObjectId()), "action": "approve"})
    assert resp.status_code == 400
    assert resp.get_json() == {"success": False, "error": "Order not found"}


def test_process_payment_endpoint(client):
    admin = make_admin()
    uid = make_user(balance=0)
    rid = make_payment_request(uid, credits=1000)
    login(client, admin)

    resp = client.post("/functions/process-payment-request",
                       json={"requestId": str(rid), "action": "approve", "adminNotes": "ok"})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["success"] is True
    assert body["request"]["newBalance"] == 1000
