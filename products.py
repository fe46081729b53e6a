# products.py — public storefront catalog (browse + filter by operator / category)
from __future__ import annotations

import re

from flask import Blueprint, jsonify, request

from common import serialize, to_object_id
from db import db

products_bp = Blueprint("products", __name__)
products_col = db["products"]

OPERATORS = ["MPT", "OOREDOO", "ATOM", "MYTEL"]
CATEGORIES = ["Data", "Minutes", "Points", "Packages", "Beautiful Numbers"]


def normalize_operator(raw) -> str | None:
    op = (raw or "").strip().upper()
    return op if op in OPERATORS else None


def normalize_category(raw) -> str | None:
    c = (raw or "").strip().lower()
    for cat in CATEGORIES:
        if cat.lower() == c:
            return cat
    return None


def build_catalog_query(args, active_only: bool = True) -> dict:
    conditions = []
    if active_only:
        conditions.append({"is_active": True})

    operator = (args.get("operator") or "").strip()
    if operator and operator.lower() != "all":
        conditions.append({"operator": normalize_operator(operator) or operator.upper()})

    category = (args.get("category") or "").strip()
    if category and category.lower() != "all":
        conditions.append({"category": normalize_category(category) or category})

    q = (args.get("q") or "").strip()
    if q:
        rx = {"$regex": re.escape(q), "$options": "i"}
        conditions.append({"$or": [{"name": rx}, {"description": rx}]})

    if not conditions:
        return {}
    return {"$and": conditions} if len(conditions) > 1 else conditions[0]


@products_bp.route("/api/products", methods=["GET"])
def list_products():
    query = build_catalog_query(request.args)
    items = list(products_col.find(query).sort([("operator", 1), ("price", 1)]))
    return jsonify({"success": True, "products": [serialize(p) for p in items], "count": len(items)})


@products_bp.route("/api/products/filters", methods=["GET"])
def product_filters():
    return jsonify({"success": True, "operators": OPERATORS, "categories": CATEGORIES})


@products_bp.route("/api/products/<product_id>", methods=["GET"])
def get_product(product_id):
    oid = to_object_id(product_id)
    product = products_col.find_one({"_id": oid, "is_active": True}) if oid else None
    if not product:
        return jsonify({"success": False, "message": "Product not found"}), 404
    return jsonify({"success": True, "product": serialize(product)})
