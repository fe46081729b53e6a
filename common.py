# common.py — small helpers shared by every blueprint
from __future__ import annotations

import json
import math
import re
from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId

# Telegram chat ids are integers (negative for groups)
CHAT_ID_RE = re.compile(r"^-?\d{3,20}$")


def jlog(event: str, **kv):
    rec = {"evt": event, **kv}
    try:
        print(json.dumps(rec, ensure_ascii=False, separators=(",", ":"), default=str))
    except Exception:
        print(f"[LOG_FALLBACK] {event} {kv}")


def _now() -> datetime:
    return datetime.utcnow()


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value).strip())
    except Exception:
        return None


def to_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Parse whole numbers from ints, floats like 5.0, and strings like '1,000'."""
    try:
        if isinstance(value, bool):
            return default
        if isinstance(value, str):
            value = value.replace(",", "").strip()
        f = float(value)
        if not math.isfinite(f) or f != int(f):
            return default
        return int(f)
    except Exception:
        return default


def short_id(value: Any) -> str:
    return str(value or "")[:8]


def page_args(args, default_per_page: int = 20, max_per_page: int = 100):
    """Return (page, per_page, skip) from request args, clamped."""
    try:
        page = max(1, int(args.get("page", 1)))
    except (TypeError, ValueError):
        page = 1
    try:
        per_page = max(1, min(int(args.get("per_page", default_per_page)), max_per_page))
    except (TypeError, ValueError):
        per_page = default_per_page
    return page, per_page, (page - 1) * per_page


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Make a Mongo document JSON-safe (ObjectIds and datetimes become strings)."""
    if doc is None:
        return None
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        key = "id" if k == "_id" else k
        if isinstance(v, ObjectId):
            out[key] = str(v)
        elif isinstance(v, datetime):
            out[key] = v.isoformat()
        elif isinstance(v, dict):
            out[key] = serialize(v)
        elif isinstance(v, list):
            out[key] = [serialize(x) if isinstance(x, dict) else (str(x) if isinstance(x, ObjectId) else x) for x in v]
        else:
            out[key] = v
    return out
