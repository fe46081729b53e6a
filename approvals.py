# approvals.py — approval workflow records that track admin decisions per order / payment request
from __future__ import annotations

from typing import Any, Optional

from flask import Blueprint, jsonify, request

from access import require_admin_json
from common import _now, jlog, page_args, serialize, to_object_id
from db import db

approvals_bp = Blueprint("approvals", __name__)

workflows_col = db["approval_workflows"]

TARGET_TYPES = {"order", "payment_request"}
WORKFLOW_STATUSES = {"pending", "approved", "rejected"}


def open_workflow(target_type: str, target_id: Any, requested_by: Any = None) -> None:
    """Create the pending record for a new order or payment request (no-op if it exists)."""
    now = _now()
    try:
        workflows_col.update_one(
            {"target_type": target_type, "target_id": str(target_id)},
            {"$setOnInsert": {
                "target_type": target_type,
                "target_id": str(target_id),
                "status": "pending",
                "requested_by": to_object_id(requested_by),
                "decided_by": None,
                "decided_at": None,
                "notes": None,
                "created_at": now,
                "updated_at": now,
            }},
            upsert=True,
        )
    except Exception as e:
        jlog("workflow_open_failed", target_type=target_type, target_id=str(target_id), error=str(e))


def resolve_workflow(target_type: str, target_id: Any, status: str,
                     decided_by: Any = None, notes: Optional[str] = None) -> None:
    if status not in WORKFLOW_STATUSES:
        raise ValueError(f"Invalid workflow status: {status}")
    now = _now()
    try:
        workflows_col.update_one(
            {"target_type": target_type, "target_id": str(target_id)},
            {
                "$set": {
                    "status": status,
                    "decided_by": to_object_id(decided_by) or decided_by,
                    "decided_at": now,
                    "notes": notes,
                    "updated_at": now,
                },
                "$setOnInsert": {"created_at": now, "requested_by": None},
            },
            upsert=True,
        )
    except Exception as e:
        jlog("workflow_resolve_failed", target_type=target_type, target_id=str(target_id), error=str(e))


def drop_workflows(target_type: str, target_ids) -> int:
    ids = [str(t) for t in target_ids]
    if not ids:
        return 0
    return workflows_col.delete_many({"target_type": target_type, "target_id": {"$in": ids}}).deleted_count


@approvals_bp.route("/admin/api/approvals", methods=["GET"])
def list_approvals():
    _, resp = require_admin_json()
    if resp:
        return resp

    query = {}
    status = (request.args.get("status") or "").strip().lower()
    target_type = (request.args.get("target_type") or "").strip().lower()
    if status in WORKFLOW_STATUSES:
        query["status"] = status
    if target_type in TARGET_TYPES:
        query["target_type"] = target_type

    page, per_page, skip = page_args(request.args)
    total = workflows_col.count_documents(query)
    rows = list(workflows_col.find(query).sort("created_at", -1).skip(skip).limit(per_page))
    return jsonify({
        "success": True,
        "workflows": [serialize(r) for r in rows],
        "total": total,
        "page": page,
        "per_page": per_page,
    })
