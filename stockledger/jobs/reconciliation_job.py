"""
Reconciliation Scheduler - Periodic cache-vs-ledger checks
"""
from typing import Optional
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from stockledger.core import settings
from stockledger.services import ReconciliationService

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler = None


class ReconciliationScheduler:
    """
    Runs reconciliation on a fixed interval in a background thread
    """

    JOB_ID = "reconcile_inventory"

    def __init__(self, service: ReconciliationService, interval_minutes: Optional[int] = None):
        self.service = service
        self.interval_minutes = interval_minutes or settings.RECONCILE_INTERVAL_MINUTES
        self.scheduler = BackgroundScheduler()
        self.is_running = False

    def start(self):
        """Start the scheduler"""
        if not self.is_running:
            self.scheduler.add_job(
                func=self.run_once,
                trigger=IntervalTrigger(minutes=self.interval_minutes),
                id=self.JOB_ID,
                name="Inventory reconciliation",
                replace_existing=True,
                max_instances=1,  # Prevent overlapping runs
            )
            self.scheduler.start()
            self.is_running = True
            logger.info(f"Reconciliation scheduler started, every {self.interval_minutes} minutes")

    def stop(self):
        """Stop the scheduler"""
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Reconciliation scheduler stopped")

    def run_once(self):
        """Execute one reconciliation pass and log the outcome"""
        try:
            results = self.service.reconcile_inventory()
        except Exception as e:
            logger.error(f"Scheduled reconciliation failed: {e}")
            return None

        summary = self.service.summarize(results)
        if summary.critical:
            logger.error(
                f"Reconciliation found {len(summary.critical)} critical variances: "
                f"{', '.join(r.sku for r in summary.critical)}"
            )
        else:
            logger.info(f"Reconciliation completed: {summary.by_status}")
        return summary


# ========== Global Functions ==========

def start_scheduler(service: ReconciliationService, interval_minutes: Optional[int] = None) -> ReconciliationScheduler:
    """Start the global scheduler"""
    global _scheduler
    if _scheduler is None:
        _scheduler = ReconciliationScheduler(service, interval_minutes)
    _scheduler.start()
    return _scheduler


def stop_scheduler():
    """Stop the global scheduler"""
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None
