"""Celery tasks for periodic ticket housekeeping."""
import logging

from helpdesk.workers.celery_app import celery_app
from helpdesk.database import SessionLocal, unit_of_work
from helpdesk.services.system_settings import SystemSettingsService
from helpdesk.services.tickets import auto_close_pending_tickets as close_stale_pending

logger = logging.getLogger(__name__)


def run_auto_close(db, system_settings: SystemSettingsService | None = None) -> dict:
    """Close stale pending tickets using the configured number of days."""
    system_settings = system_settings or SystemSettingsService(ttl_seconds=0)
    days = system_settings.pending_auto_resolve_days(db)
    with unit_of_work(db):
        closed = close_stale_pending(db, days)
    return {"status": "ok", "closed": closed, "days": days}


@celery_app.task(bind=True, max_retries=3)
def auto_close_pending_tickets(self):
    """
    Hourly job: `pending` tickets with no activity for `pending_auto_resolve_days`
    days are closed with a public note.
    """
    db = SessionLocal()

    try:
        result = run_auto_close(db)
        logger.info(f"Auto-close run finished: {result['closed']} ticket(s) closed")
        return result

    except Exception as e:
        logger.exception(f"Auto-close run failed: {e}")
        raise self.retry(exc=e, countdown=60)

    finally:
        db.close()
