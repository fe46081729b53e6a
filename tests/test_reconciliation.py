import ledger
import reconciliation
from conftest import make_user
from db import db


def test_sweep_reports_only_drifted_profiles():
    good = make_user(email="good@example.com")
    bad = make_user(email="bad@example.com")
    ledger.credit(good, 100, "bonus")
    ledger.credit(bad, 100, "bonus")
    db["user_profiles"].update_one({"user_id": bad}, {"$inc": {"credits_balance": -40}})

    summary = reconciliation.run_reconciliation()

    assert summary["checked"] == 2
    assert summary["mismatches"] == 1
    detail = summary["details"][0]
    assert detail["user_id"] == str(bad)
    assert detail["difference"] == -40


def test_sweep_does_not_correct_balances():
    uid = make_user(balance=55)
    reconciliation.run_reconciliation()
    assert ledger.get_balance(uid) == 55


def test_scheduler_only_starts_when_enabled(app, monkeypatch):
    started = []

    class FakeScheduler:
        def __init__(self, timezone=None):
            self.jobs = []

        def add_job(self, fn, trigger, **kw):
            self.jobs.append((fn, trigger, kw))

        def start(self):
            started.append(self)

    monkeypatch.setattr(reconciliation, "BackgroundScheduler", FakeScheduler)
    monkeypatch.setattr(reconciliation, "scheduler", None)

    reconciliation.start_scheduler(app)
    assert started == []

    app.config["ENABLE_RECONCILE_JOB"] = True
    app.config["RECONCILE_INTERVAL_MINUTES"] = 15
    reconciliation.start_scheduler(app)

    assert len(started) == 1
    fn, trigger, kw = started[0].jobs[0]
    assert trigger == "interval"
    assert kw["minutes"] == 15
    assert kw["max_instances"] == 1
    assert kw["coalesce"] is True

    reconciliation.start_scheduler(app)
    assert len(started) == 1
