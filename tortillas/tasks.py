"""
Celery Tasks
Background report exports for the admin dashboard.
"""

import logging
import time
from datetime import datetime, timezone

from tortillas.celery_worker import celery_app
from tortillas.services.reports import ReportExporter

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
)
def export_orders_report(self, period: str, rows: list[dict]) -> dict:
    """
    Write the orders of one analytics period to an Excel report.

    Args:
        period: today, week or month
        rows: JSON-safe order rows prepared by the API

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    logger.info(f"Task {task_id}: exporting {len(rows)} orders ({period})")
    start_time = time.time()

    result = ReportExporter().export_orders(period, rows)

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed

    if result['success']:
        logger.info(f"Task {task_id}: report ready in {elapsed}s")
    elif result['message'].startswith("Lock timeout"):
        # Another export holds the lock; try again later
        raise self.retry()
    else:
        logger.warning(f"Task {task_id}: export failed - {result['message']}")

    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now(timezone.utc).isoformat()
    }
