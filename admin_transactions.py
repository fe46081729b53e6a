from datetime import datetime, timedelta
from html import escape
from io import BytesIO

import pandas as pd
from flask import Blueprint, jsonify, request, send_file

# PDF export deps
from reportlab.lib import colors
from reportlab.lib.pagesizes import landscape, letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Table, TableStyle

from access import require_admin_json
from common import page_args, serialize, to_object_id
from db import db
from ledger import CREDIT_TYPES, DEBIT_TYPES

admin_transactions_bp = Blueprint("admin_transactions", __name__)

credit_tx_col = db["credit_transactions"]
audit_logs_col = db["admin_audit_logs"]
profiles_col = db["user_profiles"]

EXPORT_LIMIT = 5000


# ---------------- Helpers ----------------
def _fmt_dt(dt):
    try:
        return dt.strftime("%Y-%m-%d %H:%M")
    except Exception:
        return ""


def _date_filter(args):
    """
    start_date: >= start 00:00
    end_date: exclusive upper bound at end + 1 day
    """
    created = {}
    for key, op in (("start_date", "$gte"), ("end_date", "$lt")):
        raw = (args.get(key) or "").strip()
        if not raw:
            continue
        try:
            dt = datetime.strptime(raw, "%Y-%m-%d")
        except ValueError:
            continue
        created[op] = dt + timedelta(days=1) if op == "$lt" else dt
    return created


def _audit_query(args):
    query = {}
    action_type = (args.get("action_type") or "").strip()
    target_type = (args.get("target_type") or "").strip()
    admin_id = (args.get("admin_id") or "").strip()
    if action_type:
        query["action_type"] = action_type
    if target_type:
        query["target_type"] = target_type
    if admin_id:
        query["admin_id"] = to_object_id(admin_id) or admin_id
    created = _date_filter(args)
    if created:
        query["created_at"] = created
    return query


def _admin_names(rows):
    ids = list({r.get("admin_id") for r in rows if r.get("admin_id") is not None})
    names = {}
    oids = [i for i in ids if to_object_id(i) == i]
    if oids:
        for p in profiles_col.find({"user_id": {"$in": oids}}, {"user_id": 1, "full_name": 1, "email": 1}):
            names[p["user_id"]] = p.get("full_name") or p.get("email") or ""
    # telegram-driven actions carry a "telegram:<id>" actor
    return {i: names.get(i, str(i)) for i in ids}


@admin_transactions_bp.route("/admin/api/audit-logs", methods=["GET"])
def admin_audit_logs():
    _, resp = require_admin_json()
    if resp:
        return resp

    query = _audit_query(request.args)
    page, per_page, skip = page_args(request.args, default_per_page=20)
    total = audit_logs_col.count_documents(query)
    rows = list(audit_logs_col.find(query).sort("created_at", -1).skip(skip).limit(per_page))

    names = _admin_names(rows)
    logs = []
    for r in rows:
        item = serialize(r)
        item["admin_name"] = names.get(r.get("admin_id"), "")
        logs.append(item)
    return jsonify({"success": True, "logs": logs, "total": total, "page": page, "per_page": per_page})


@admin_transactions_bp.route("/admin/api/transactions", methods=["GET"])
def admin_view_transactions():
    _, resp = require_admin_json()
    if resp:
        return resp

    query = {}
    customer_id = (request.args.get("user_id") or "").strip()
    tx_type = (request.args.get("type") or "").strip().lower()
    if customer_id:
        uid = to_object_id(customer_id)
        if not uid:
            return jsonify({"success": False, "message": "Invalid user id"}), 400
        query["user_id"] = uid
    if tx_type in CREDIT_TYPES | DEBIT_TYPES:
        query["transaction_type"] = tx_type
    created = _date_filter(request.args)
    if created:
        query["created_at"] = created

    page, per_page, skip = page_args(request.args, default_per_page=10)
    total = credit_tx_col.count_documents(query)
    txns = list(credit_tx_col.find(query).sort("created_at", -1).skip(skip).limit(per_page))

    user_ids = list({t["user_id"] for t in txns if t.get("user_id")})
    users_map = {}
    if user_ids:
        for p in profiles_col.find({"user_id": {"$in": user_ids}}, {"user_id": 1, "full_name": 1, "email": 1}):
            users_map[p["user_id"]] = {"full_name": p.get("full_name"), "email": p.get("email")}

    rows = []
    for t in txns:
        row = serialize(t)
        row["user"] = users_map.get(t.get("user_id")) or {}
        rows.append(row)
    return jsonify({
        "success": True,
        "transactions": rows,
        "total": total,
        "page": page,
        "per_page": per_page,
        "total_pages": max((total + per_page - 1) // per_page, 1),
    })


# ---------------- Export ----------------
def _export_rows(rows):
    names = _admin_names(rows)
    out = []
    for r in rows:
        out.append({
            "When": _fmt_dt(r.get("created_at")),
            "Admin": names.get(r.get("admin_id"), ""),
            "Action": r.get("action_type", ""),
            "Target Type": r.get("target_type") or "",
            "Target ID": r.get("target_id") or "",
            "Notes": r.get("notes") or "",
        })
    return out


def _export_audit_to_excel(rows):
    df = pd.DataFrame(_export_rows(rows), columns=["When", "Admin", "Action", "Target Type", "Target ID", "Notes"])
    output = BytesIO()
    with pd.ExcelWriter(output, engine="xlsxwriter") as writer:
        df.to_excel(writer, index=False, sheet_name="Audit Log")
    output.seek(0)
    return send_file(output, download_name="audit_logs.xlsx", as_attachment=True)


def _export_audit_to_pdf(rows):
    output = BytesIO()
    doc = SimpleDocTemplate(output, pagesize=landscape(letter), leftMargin=30, rightMargin=30,
                            topMargin=36, bottomMargin=30)
    styles = getSampleStyleSheet()
    elements = [Paragraph("Admin Audit Log", styles["Title"])]

    data = [["When", "Admin", "Action", "Target", "Notes"]]
    for r in _export_rows(rows):
        data.append([
            r["When"],
            r["Admin"],
            r["Action"],
            f"{r['Target Type']} {r['Target ID'][:8]}".strip(),
            Paragraph(escape(r["Notes"][:200]), styles["BodyText"]),
        ])

    table = Table(data, repeatRows=1, hAlign="LEFT", colWidths=[90, 120, 110, 110, 300])
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.darkblue),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("ALIGN", (0, 0), (-1, -1), "LEFT"),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.black),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.whitesmoke, colors.lightgrey]),
    ]))
    elements.append(table)
    doc.build(elements)
    output.seek(0)
    return send_file(output, download_name="audit_logs.pdf", as_attachment=True)


@admin_transactions_bp.route("/admin/api/audit-logs/export", methods=["GET"])
def export_audit_logs():
    _, resp = require_admin_json()
    if resp:
        return resp

    fmt = (request.args.get("format") or "xlsx").strip().lower()
    if fmt not in ("xlsx", "pdf"):
        return jsonify({"success": False, "message": "format must be xlsx or pdf"}), 400

    rows = list(audit_logs_col.find(_audit_query(request.args)).sort("created_at", -1).limit(EXPORT_LIMIT))
    if fmt == "pdf":
        return _export_audit_to_pdf(rows)
    return _export_audit_to_excel(rows)
