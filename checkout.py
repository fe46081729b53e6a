# checkout.py — spend credits on one product for a destination phone number
from __future__ import annotations

import re
import traceback

from bson import ObjectId
from flask import Blueprint, jsonify, request
from pymongo import ReturnDocument

import ledger
from access import require_customer_json
from approvals import open_workflow
from common import _now, jlog, serialize, to_int, to_object_id
from db import db
from notifications import notify_admin_new_order

checkout_bp = Blueprint("checkout", __name__)

products_col = db["products"]
orders_col = db["orders"]

# Myanmar mobile numbers: 09 followed by 7-9 digits
PHONE_RE = re.compile(r"^09\d{7,9}$")
MAX_QUANTITY = 10


def normalize_phone(raw: str) -> str:
    return re.sub(r"[\s-]", "", raw or "")


def _reserve_stock(product_oid: ObjectId, quantity: int):
    return products_col.find_one_and_update(
        {"_id": product_oid, "is_active": True, "stock_quantity": {"$gte": quantity}},
        {"$inc": {"stock_quantity": -quantity}, "$set": {"updated_at": _now()}},
        return_document=ReturnDocument.BEFORE,
    )


def _release_stock(product_oid: ObjectId, quantity: int) -> None:
    products_col.update_one({"_id": product_oid}, {"$inc": {"stock_quantity": quantity}})


@checkout_bp.route("/api/purchase", methods=["POST"])
def purchase_product():
    user_id, resp = require_customer_json()
    if resp:
        return resp

    data = request.get_json(silent=True) or {}
    phone = normalize_phone(data.get("phone_number") or data.get("phone") or "")
    quantity = to_int(data.get("quantity", 1))
    product_oid = to_object_id(data.get("product_id"))

    if not PHONE_RE.match(phone):
        return jsonify({"success": False,
                        "message": "Please enter a valid Myanmar phone number (e.g., 09123456789)"}), 400
    if quantity is None or quantity < 1 or quantity > MAX_QUANTITY:
        return jsonify({"success": False, "message": f"Quantity must be between 1 and {MAX_QUANTITY}"}), 400
    if not product_oid:
        return jsonify({"success": False, "message": "Invalid product"}), 400

    try:
        product = products_col.find_one({"_id": product_oid})
        if not product or not product.get("is_active"):
            return jsonify({"success": False, "message": "Product is not available"}), 404

        price = to_int(product.get("price"), 0) or 0
        if price <= 0:
            return jsonify({"success": False, "message": "Product has no valid price"}), 400
        total_credits = price * quantity

        reserved = _reserve_stock(product_oid, quantity)
        if reserved is None:
            jlog("purchase_out_of_stock", user_id=str(user_id), product_id=str(product_oid), quantity=quantity)
            return jsonify({"success": False, "message": "Product is out of stock"}), 409

        order_oid = ObjectId()
        try:
            tx = ledger.debit(
                user_id, total_credits, "spend",
                reference_type="order",
                reference_id=order_oid,
                notes=f"Purchase: {product.get('name')} x{quantity} for {phone}",
                actor_id=user_id,
            )
        except ledger.InsufficientCredits as e:
            _release_stock(product_oid, quantity)
            return jsonify({
                "success": False,
                "message": "Insufficient balance",
                "balance": e.balance,
                "required": total_credits,
            }), 400
        except ledger.LedgerError as e:
            _release_stock(product_oid, quantity)
            return jsonify({"success": False, "message": str(e)}), 400

        now = _now()
        order = {
            "_id": order_oid,
            "user_id": user_id,
            "product_id": product_oid,
            "product_name": product.get("name"),
            "operator": product.get("operator"),
            "category": product.get("category"),
            "quantity": quantity,
            "unit_price": price,
            "total_amount": total_credits,
            "credits_used": total_credits,
            "currency": product.get("currency") or "MMK",
            "phone_number": phone,
            "status": "pending",
            "notes": None,
            "transaction_id": tx["_id"],
            "created_at": now,
            "updated_at": now,
        }
        try:
            orders_col.insert_one(order)
        except Exception:
            try:
                ledger.credit(user_id, total_credits, "refund", reference_type="order", reference_id=order_oid,
                              notes="Order could not be created", actor_id=user_id)
            finally:
                _release_stock(product_oid, quantity)
            raise

        open_workflow("order", order_oid, user_id)
        jlog("purchase_created", order_id=str(order_oid), user_id=str(user_id), product_id=str(product_oid),
             quantity=quantity, credits=total_credits, new_balance=tx["new_balance"])

        try:
            notify_admin_new_order(order)
        except Exception:
            jlog("purchase_notify_error", order_id=str(order_oid), error=traceback.format_exc())

        return jsonify({
            "success": True,
            "message": f"{product.get('name')} has been ordered for {phone}",
            "order": serialize(order),
            "new_balance": tx["new_balance"],
        }), 201

    except Exception:
        jlog("purchase_uncaught", error=traceback.format_exc())
        return jsonify({"success": False, "message": "Server error"}), 500
