# admin_products.py — product CRUD + bulk delete / bulk activate for the back office
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from flask import Blueprint, jsonify, request

from access import require_admin_json
from common import _now, page_args, serialize, to_int, to_object_id
from db import db
from ledger import record_audit
from products import CATEGORIES, OPERATORS, build_catalog_query, normalize_category, normalize_operator

admin_products_bp = Blueprint("admin_products", __name__)
products_col = db["products"]

_EDITABLE = ("name", "description", "price", "operator", "category", "image_url",
             "is_active", "stock_quantity", "validity_days", "admin_notes")


def _to_bool(v) -> Optional[bool]:
    if isinstance(v, bool):
        return v
    s = str(v or "").strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return None


def _parse_product(data: Dict[str, Any], partial: bool = False) -> Tuple[Dict[str, Any], Optional[str]]:
    """Validate incoming product fields. With partial=True only present keys are checked."""
    out: Dict[str, Any] = {}

    def present(key):
        return (not partial) or key in data

    if present("name"):
        name = (data.get("name") or "").strip()
        if not name:
            return {}, "Product name is required"
        out["name"] = name[:200]

    if present("price"):
        price = to_int(data.get("price"))
        if price is None or price <= 0:
            return {}, "Price must be a positive whole number"
        out["price"] = price

    if present("operator"):
        op = normalize_operator(data.get("operator"))
        if not op:
            return {}, f"Operator must be one of {', '.join(OPERATORS)}"
        out["operator"] = op

    if present("category"):
        cat = normalize_category(data.get("category"))
        if not cat:
            return {}, f"Category must be one of {', '.join(CATEGORIES)}"
        out["category"] = cat

    if "stock_quantity" in data or not partial:
        stock = to_int(data.get("stock_quantity", 0))
        if stock is None or stock < 0:
            return {}, "Stock quantity cannot be negative"
        out["stock_quantity"] = stock

    if "validity_days" in data:
        vd = data.get("validity_days")
        if vd in (None, ""):
            out["validity_days"] = None
        else:
            vd_i = to_int(vd)
            if vd_i is None or vd_i < 0:
                return {}, "Validity days must be a whole number"
            out["validity_days"] = vd_i

    if "is_active" in data or not partial:
        active = _to_bool(data.get("is_active", True))
        if active is None:
            return {}, "is_active must be true or false"
        out["is_active"] = active

    for key in ("description", "image_url", "admin_notes"):
        if key in data or not partial:
            out[key] = (data.get(key) or "").strip() or None

    if not partial:
        out["currency"] = "MMK"
    return out, None


def _id_list(payload) -> List:
    ids = []
    for raw in (payload.get("ids") or []):
        oid = to_object_id(raw)
        if oid:
            ids.append(oid)
    return ids


@admin_products_bp.route("/admin/api/products", methods=["GET"])
def admin_list_products():
    _, resp = require_admin_json()
    if resp:
        return resp

    query = build_catalog_query(request.args, active_only=False)
    status = (request.args.get("status") or "").strip().lower()
    if status in ("active", "inactive"):
        query = {"$and": [query, {"is_active": status == "active"}]} if query else {"is_active": status == "active"}

    page, per_page, skip = page_args(request.args, default_per_page=50)
    total = products_col.count_documents(query)
    items = list(products_col.find(query).sort("created_at", -1).skip(skip).limit(per_page))
    return jsonify({"success": True, "products": [serialize(p) for p in items], "total": total,
                    "page": page, "per_page": per_page})


@admin_products_bp.route("/admin/api/products", methods=["POST"])
def admin_create_product():
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    doc, err = _parse_product(request.get_json(silent=True) or {})
    if err:
        return jsonify({"success": False, "message": err}), 400

    now = _now()
    doc.update({"created_at": now, "updated_at": now})
    res = products_col.insert_one(doc)
    record_audit(admin_id, "create", "product", res.inserted_id, f"Created product: {doc['name']}",
                 new_values={k: doc.get(k) for k in _EDITABLE})
    return jsonify({"success": True, "product": serialize(doc)}), 201


@admin_products_bp.route("/admin/api/products/<product_id>", methods=["PUT", "PATCH"])
def admin_update_product(product_id):
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    oid = to_object_id(product_id)
    existing = products_col.find_one({"_id": oid}) if oid else None
    if not existing:
        return jsonify({"success": False, "message": "Product not found"}), 404

    changes, err = _parse_product(request.get_json(silent=True) or {}, partial=True)
    if err:
        return jsonify({"success": False, "message": err}), 400
    if not changes:
        return jsonify({"success": True, "message": "No changes detected", "product": serialize(existing)})

    changes["updated_at"] = _now()
    products_col.update_one({"_id": oid}, {"$set": changes})
    updated = products_col.find_one({"_id": oid})
    record_audit(admin_id, "update", "product", oid, f"Updated product: {updated.get('name')}",
                 old_values={k: existing.get(k) for k in changes if k in _EDITABLE},
                 new_values={k: changes.get(k) for k in changes if k in _EDITABLE})
    return jsonify({"success": True, "product": serialize(updated)})


@admin_products_bp.route("/admin/api/products/<product_id>", methods=["DELETE"])
def admin_delete_product(product_id):
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    oid = to_object_id(product_id)
    existing = products_col.find_one({"_id": oid}, {"name": 1}) if oid else None
    if not existing:
        return jsonify({"success": False, "message": "Product not found"}), 404

    products_col.delete_one({"_id": oid})
    record_audit(admin_id, "delete", "product", oid, f"Deleted product: {existing.get('name')}")
    return jsonify({"success": True, "message": "Product deleted successfully"})


@admin_products_bp.route("/admin/api/products/bulk-delete", methods=["POST"])
def admin_bulk_delete():
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    ids = _id_list(request.get_json(silent=True) or {})
    if not ids:
        return jsonify({"success": False, "message": "Please select at least one product"}), 400

    deleted = 0
    for p in list(products_col.find({"_id": {"$in": ids}}, {"name": 1})):
        res = products_col.delete_one({"_id": p["_id"]})
        if res.deleted_count:
            deleted += 1
            record_audit(admin_id, "bulk_delete", "product", p["_id"], f"Bulk deleted product: {p.get('name')}")
    return jsonify({"success": True, "deleted": deleted, "message": f"{deleted} products deleted successfully"})


@admin_products_bp.route("/admin/api/products/bulk-status", methods=["POST"])
def admin_bulk_status():
    admin_id, resp = require_admin_json()
    if resp:
        return resp

    payload = request.get_json(silent=True) or {}
    ids = _id_list(payload)
    active = _to_bool(payload.get("is_active"))
    if not ids or active is None:
        return jsonify({"success": False, "message": "Select products and a target status"}), 400

    updated = 0
    verb = "activated" if active else "deactivated"
    for p in list(products_col.find({"_id": {"$in": ids}}, {"name": 1, "is_active": 1})):
        if bool(p.get("is_active")) == active:
            continue
        res = products_col.update_one({"_id": p["_id"]}, {"$set": {"is_active": active, "updated_at": _now()}})
        if res.modified_count:
            updated += 1
            record_audit(admin_id, "bulk_status_update", "product", p["_id"],
                         f"Bulk {verb} product: {p.get('name')}",
                         old_values={"is_active": p.get("is_active")}, new_values={"is_active": active})
    return jsonify({"success": True, "updated": updated, "message": f"{updated} products {verb}"})
