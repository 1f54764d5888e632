"""Background jobs for the subscription lifecycle."""
import logging
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.exc import SQLAlchemyError

from hnvpm.database import SessionLocal
from hnvpm.auth.models import UserAccount
from hnvpm.modules.organizations.models import Organization
from hnvpm.modules.subscriptions.models import Plan
from hnvpm.modules.subscriptions import service as subscription_service
from hnvpm.utils.email_service import send_expiry_warning_email

logger = logging.getLogger(__name__)


def run_expiry_check(session_factory=SessionLocal) -> int:
    db = session_factory()
    try:
        count = subscription_service.check_expired_subscriptions(db)
        logger.info("Expiry check evaluated %d subscription(s)", count)
        return count
    except SQLAlchemyError:
        logger.exception("Expiry check failed")
        db.rollback()
        return 0
    finally:
        db.close()


def run_monthly_usage_reset(session_factory=SessionLocal) -> int:
    db = session_factory()
    try:
        count = subscription_service.reset_monthly_usage(db)
        logger.info("Monthly usage reset for %d subscription(s)", count)
        return count
    except SQLAlchemyError:
        logger.exception("Monthly usage reset failed")
        db.rollback()
        return 0
    finally:
        db.close()


def run_expiry_warnings(session_factory=SessionLocal, now=None) -> int:
    """Email the owner of every organization whose paid period ends soon. Returns emails sent."""
    now = now or datetime.utcnow()
    db = session_factory()
    sent = 0
    try:
        for sub in subscription_service.find_expiring_soon(db, now):
            org = db.query(Organization).filter(Organization.id == sub.organization_id).first()
            owner = db.query(UserAccount).filter(UserAccount.id == org.owner_id).first() if org else None
            if not owner:
                logger.warning("No owner to warn for subscription %s", sub.id)
                continue
            plan = db.query(Plan).filter(Plan.id == sub.plan_id).first()
            days = max(0, (sub.current_period_end - now).days)
            if send_expiry_warning_email(owner.email, owner.full_name, plan.name if plan else "current", days):
                sent += 1
        logger.info("Sent %d expiry warning(s)", sent)
        return sent
    except SQLAlchemyError:
        logger.exception("Expiry warning job failed")
        return sent
    finally:
        db.close()


class SubscriptionScheduler:
    """Wraps an APScheduler BackgroundScheduler with the three lifecycle cron jobs."""

    def __init__(self):
        self._scheduler = None

    @property
    def running(self) -> bool:
        return bool(self._scheduler and self._scheduler.running)

    def start(self):
        if self.running:
            return
        self._scheduler = BackgroundScheduler(timezone="UTC")
        self._scheduler.add_job(
            run_expiry_check,
            trigger=CronTrigger(hour=0, minute=0),
            id="subscription_expiry_check",
            name="Subscription expiry check",
            replace_existing=True,
        )
        self._scheduler.add_job(
            run_monthly_usage_reset,
            trigger=CronTrigger(day=1, hour=0, minute=0),
            id="monthly_usage_reset",
            name="Monthly usage reset",
            replace_existing=True,
        )
        self._scheduler.add_job(
            run_expiry_warnings,
            trigger=CronTrigger(hour=9, minute=0),
            id="expiry_warning_emails",
            name="Subscription expiry warnings",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Scheduler started with %d job(s)", len(self._scheduler.get_jobs()))

    def stop(self):
        if self.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        self._scheduler = None


scheduler = SubscriptionScheduler()
