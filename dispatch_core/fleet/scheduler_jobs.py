"""
DISPATCH-CORE Fleet — Scheduler Jobs

Own APScheduler BackgroundScheduler instance for the availability
reconciliation job.
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler

from ..config import Settings
from ..errors import DispatchError
from .availability import reconcile_all

logger = logging.getLogger(__name__)

_scheduler = None

RECONCILE_JOB_ID = "fleet_reconcile_availability"


def get_fleet_scheduler() -> BackgroundScheduler:
    """Get or create the singleton fleet scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler(
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 120}
        )
    return _scheduler


def run_reconcile_job():
    """Scheduled entry point; a failed pass is logged and retried next interval."""
    try:
        repairs = reconcile_all()
    except DispatchError as e:
        logger.error(f"[Fleet] Reconcile pass failed: {e.kind} {e.message}")
        return
    if repairs:
        logger.warning(f"[Fleet] Reconcile pass repaired {len(repairs)} vehicle(s)")
    else:
        logger.debug("[Fleet] Reconcile pass clean")


def init_fleet_scheduler() -> bool:
    """Register and start the reconcile job. Returns False when disabled."""
    if Settings.get("test_mode") or not Settings.get("reconcile_enabled"):
        logger.info("[Fleet] Reconcile scheduler disabled")
        return False

    scheduler = get_fleet_scheduler()
    if scheduler.running:
        return True

    interval = Settings.get("reconcile_interval_seconds")
    scheduler.add_job(
        run_reconcile_job,
        "interval",
        seconds=interval,
        id=RECONCILE_JOB_ID,
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"[Fleet] Scheduler started, reconcile every {interval}s")
    return True


def shutdown_fleet_scheduler():
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("[Fleet] Scheduler stopped")
    _scheduler = None
