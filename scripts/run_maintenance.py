"""
Periodic maintenance, meant to be run from cron once a day.

    python scripts/run_maintenance.py [--skip-backup] [--skip-overdue] [--skip-activity]

1. daily backup + removal of backups older than BACKUP_RETENTION_DAYS
2. overdue-ticket emails to assignees
3. removal of activity log entries older than ACTIVITY_RETENTION_DAYS
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

try:
    from dotenv import load_dotenv
    load_dotenv()
except Exception as e:
    print(f"WARNING: Could not load .env file: {e}")

import structlog

from gripcrm.config import settings
from gripcrm.db import SessionLocal
from gripcrm.logging import setup_logging
from gripcrm.services.activity import ActivityService
from gripcrm.services.backup import BackupService
from gripcrm.services.notifications import Notifier
from gripcrm.services.tickets import TicketService


logger = structlog.get_logger("maintenance")


def run(skip_backup: bool = False, skip_overdue: bool = False, skip_activity: bool = False) -> int:
    failures = 0
    db = SessionLocal()
    try:
        if not skip_backup:
            backup = BackupService(db).run_scheduled_backup()
            if backup is None:
                failures += 1

        if not skip_overdue:
            try:
                sent = TicketService(db, notifier=Notifier(settings)).notify_overdue()
                logger.info("overdue_notifications_sent", count=sent)
            except Exception as e:
                db.rollback()
                failures += 1
                logger.error("overdue_notifications_failed", error=str(e))

        if not skip_activity:
            try:
                removed = ActivityService(db).cleanup(settings.activity_retention_days)
                logger.info("activity_cleanup_finished", removed=removed)
            except Exception as e:
                db.rollback()
                failures += 1
                logger.error("activity_cleanup_failed", error=str(e))
    finally:
        db.close()
    return 1 if failures else 0


if __name__ == "__main__":
    setup_logging()
    sys.exit(
        run(
            skip_backup="--skip-backup" in sys.argv,
            skip_overdue="--skip-overdue" in sys.argv,
            skip_activity="--skip-activity" in sys.argv,
        )
    )
