"""Subscription sweep worker.

Usage:
    python -m marketplace.workers.subscription_sweeps --job expire --once
    python -m marketplace.workers.subscription_sweeps --job warn
    python -m marketplace.workers.subscription_sweeps --job reconcile --fix --once

Jobs:
- expire: ACTIVE subscriptions past their end date become EXPIRED (hourly)
- warn: expiry warnings inside the configured horizon (daily)
- reconcile: report (or with --fix, correct) store snapshot drift

Environment flags:
- SUBSCRIPTION_EXPIRATION_SWEEP_SECONDS (default 3600)
- SUBSCRIPTION_WARNING_SWEEP_SECONDS (default 86400)
- SUBSCRIPTION_RECONCILE_SWEEP_SECONDS (default 86400)
"""
from __future__ import annotations

import argparse
import time
from typing import Callable, Dict, Optional

from marketplace.core.config import settings
from marketplace.core.logging import configure_logging, log_event
from marketplace.features.events import get_event_bus
from marketplace.features.notifications.listener import register_notification_listener
from marketplace.features.subscriptions.reconcile import run_reconcile_job
from marketplace.features.subscriptions.sweeps import run_expiration_sweep, run_expiry_warning_sweep


JOBS = ("expire", "warn", "reconcile")

DEFAULT_SLEEP_SECONDS: Dict[str, int] = {
    "expire": settings.SUBSCRIPTION_EXPIRATION_SWEEP_SECONDS,
    "warn": settings.SUBSCRIPTION_WARNING_SWEEP_SECONDS,
    "reconcile": settings.SUBSCRIPTION_RECONCILE_SWEEP_SECONDS,
}


def run_job(job: str, fix: bool = False) -> dict:
    """Run one pass of a job and return its stats."""
    if job == "expire":
        return run_expiration_sweep().as_dict()
    if job == "warn":
        return run_expiry_warning_sweep().as_dict()
    if job == "reconcile":
        return run_reconcile_job(fix=fix)
    raise ValueError(f"Unknown job: {job}")


def _run_and_log(job: str, fix: bool, runner: Callable[[str, bool], dict]) -> dict:
    stats = runner(job, fix)
    log_event("info", "[sweep-worker] pass complete", event_type=job, extra=stats)
    return stats


def main(argv: Optional[list] = None, runner: Callable[[str, bool], dict] = run_job) -> None:
    parser = argparse.ArgumentParser(description="Subscription sweep worker")
    parser.add_argument("--job", choices=JOBS, required=True, help="Job to run")
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    parser.add_argument("--fix", action="store_true", help="Correct drift (reconcile job only)")
    parser.add_argument(
        "--sleep",
        type=int,
        default=None,
        help="Seconds to sleep between passes (loop mode)",
    )
    args = parser.parse_args(argv)

    configure_logging(settings.ENV)
    register_notification_listener(get_event_bus())

    if args.once:
        stats = _run_and_log(args.job, args.fix, runner)
        print(f"[sweep-worker] {args.job}: {stats}")
        return

    sleep_seconds = args.sleep if args.sleep is not None else DEFAULT_SLEEP_SECONDS[args.job]
    print(f"[sweep-worker] Starting {args.job} loop (sleep={sleep_seconds}s). CTRL+C to stop.")
    try:
        while True:
            _run_and_log(args.job, args.fix, runner)
            time.sleep(sleep_seconds)
    except KeyboardInterrupt:
        print("[sweep-worker] Stopped")


if __name__ == "__main__":
    main()
