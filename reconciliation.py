# reconciliation.py — periodic check that every balance equals the sum of its ledger deltas
from __future__ import annotations

import traceback
from typing import Any, Dict

# Background scheduler
from apscheduler.schedulers.background import BackgroundScheduler

import ledger
from common import _now, jlog
from db import db

profiles_col = db["user_profiles"]

scheduler = None


def run_reconciliation() -> Dict[str, Any]:
    """Sweep all profiles. Mismatches are logged, never auto-corrected."""
    checked = 0
    mismatches = []
    for prof in profiles_col.find({}, {"user_id": 1}):
        uid = prof.get("user_id")
        if not uid:
            continue
        try:
            result = ledger.reconcile(uid)
        except ledger.ProfileNotFound:
            # purged between the find and the check
            continue
        checked += 1
        if not result["ok"]:
            mismatches.append(result)
            jlog("ledger_mismatch", **result)

    summary = {"checked": checked, "mismatches": len(mismatches), "run_at": _now()}
    jlog("reconcile_done", **summary)
    return {**summary, "details": mismatches}


def _scheduled_reconcile_job():
    try:
        jlog("reconcile_scheduled_run_start")
        run_reconciliation()
    except Exception:
        jlog("reconcile_scheduled_run_error", error=traceback.format_exc())


def start_scheduler(app) -> None:
    global scheduler
    if not app.config.get("ENABLE_RECONCILE_JOB") or scheduler is not None:
        return

    minutes = int(app.config.get("RECONCILE_INTERVAL_MINUTES") or 60)
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        _scheduled_reconcile_job,
        "interval",
        minutes=minutes,
        max_instances=1,
        coalesce=True,
        id="ledger_reconcile",
    )
    try:
        scheduler.start()
        jlog("reconcile_scheduler_started", interval_minutes=minutes)
    except Exception:
        scheduler = None
        jlog("reconcile_scheduler_start_failed", error=traceback.format_exc())
