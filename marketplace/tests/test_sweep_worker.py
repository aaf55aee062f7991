from datetime import datetime, timedelta, timezone

import pytest

from marketplace.features.subscriptions.activation import activate_subscription
from marketplace.models.subscription import PaymentMethod
from marketplace.workers import subscription_sweeps


def test_once_runs_single_pass(capsys):
    calls = []

    def runner(job, fix):
        calls.append((job, fix))
        return {"job": job, "processed": 0}

    subscription_sweeps.main(["--job", "reconcile", "--fix", "--once"], runner=runner)

    assert calls == [("reconcile", True)]
    assert "[sweep-worker] reconcile" in capsys.readouterr().out


def test_loop_stops_on_interrupt(monkeypatch):
    calls = []

    def runner(job, fix):
        calls.append(job)
        return {}

    def interrupt(seconds):
        raise KeyboardInterrupt

    monkeypatch.setattr(subscription_sweeps.time, "sleep", interrupt)
    subscription_sweeps.main(["--job", "expire", "--sleep", "5"], runner=runner)

    assert calls == ["expire"]


def test_unknown_job_rejected():
    with pytest.raises(SystemExit):
        subscription_sweeps.main(["--job", "archive", "--once"])


def test_run_job_expire_respects_toggle(seeded_plans, store):
    past = datetime.now(timezone.utc) - timedelta(days=60)
    activate_subscription(store.store_id, seeded_plans["basic"].plan_id, PaymentMethod.MANUAL, "admin-1", now=past)

    assert subscription_sweeps.run_job("expire")["skipped"] is True


def test_run_job_reconcile_reports(seeded_plans, store):
    stats = subscription_sweeps.run_job("reconcile")
    assert stats["stores_checked"] == 1
    assert stats["drift_detected"] == 0
