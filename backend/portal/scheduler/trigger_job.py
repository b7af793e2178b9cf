"""Runs every TRIGGER_POLL_INTERVAL_SECONDS: deliver due notifications, else evaluate triggers."""
import logging

from portal.db.session import SessionLocal
from portal.services.push.registry import get_gateway
from portal.services.triggers.runner import TriggerRunner

logger = logging.getLogger(__name__)


def run_trigger_job() -> None:
    db = SessionLocal()
    try:
        summary = TriggerRunner(get_gateway()).run_periodic(db)
        if summary.errors:
            logger.warning("Trigger job finished with %s errors: %s", len(summary.errors), summary.errors[:5])
    except Exception as e:
        logger.exception("Trigger job failed: %s", e)
        db.rollback()
    finally:
        db.close()
