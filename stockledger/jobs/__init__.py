# Jobs Package - Scheduled background tasks
from .reconciliation_job import ReconciliationScheduler, start_scheduler, stop_scheduler

__all__ = ["ReconciliationScheduler", "start_scheduler", "stop_scheduler"]
