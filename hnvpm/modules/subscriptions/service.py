"""Subscription lifecycle and plan usage-limit enforcement.

Every function takes the request (or job) session and an optional ``now``
so the status rules can be evaluated against a fixed clock in tests.
Functions that change state commit before returning.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from hnvpm.auth.models import UserAccount
from hnvpm.config import get_settings
from hnvpm.errors import UsageLimitExceeded
from hnvpm.modules.organizations.models import Organization
from hnvpm.modules.properties.models import Property
from hnvpm.modules.subscriptions.models import (
    Plan, Subscription, LIMIT_TYPES,
    ACTIVE, TRIALING, INACTIVE, PAST_DUE, CANCELED, EXPIRED, ACTIVE_STATUSES,
)
from hnvpm.modules.tenants.models import Tenant
from hnvpm.utils.event_service import emit_outbox_event

logger = logging.getLogger(__name__)

BILLING_PERIOD_DAYS = {"monthly": 30, "yearly": 365}
LIFETIME_REVOKE_DAYS = 30


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.utcnow()


def _check_limit_type(limit_type: str) -> None:
    if limit_type not in LIMIT_TYPES:
        raise ValueError(f"Unknown limit type: {limit_type}")


def _days_until(end: Optional[datetime], now: datetime) -> Optional[int]:
    if end is None:
        return None
    return math.ceil((end - now).total_seconds() / 86400)


def _set_org_status(db: Session, org_id: int, status: str) -> None:
    org = db.query(Organization).filter(Organization.id == org_id).first()
    if org and org.status != status:
        org.status = status


def _transition(db: Session, sub: Subscription, status: str, now: datetime, end: bool = True) -> None:
    previous = sub.status
    sub.status = status
    if end:
        sub.ended_at = now
    _set_org_status(db, sub.organization_id, "inactive")
    emit_outbox_event(
        db, sub.organization_id, f"subscription.{status}", "subscription", sub.id,
        {"from": previous, "to": status},
    )
    db.commit()
    logger.info("Subscription %s for org %s: %s -> %s", sub.id, sub.organization_id, previous, status)


def current_subscription(db: Session, org_id: Optional[int]) -> Optional[Subscription]:
    """Newest subscription that is not a pending checkout, falling back to the newest of any status."""
    if not org_id:
        return None
    base = db.query(Subscription).filter(Subscription.organization_id == org_id)
    order = (Subscription.created_at.desc(), Subscription.id.desc())
    sub = base.filter(Subscription.status != INACTIVE).order_by(*order).first()
    return sub or base.order_by(*order).first()


def check_subscription_status(db: Session, org_id: Optional[int], now: Optional[datetime] = None) -> dict:
    now = _now(now)
    sub = current_subscription(db, org_id)
    if not sub:
        return {"is_active": False, "reason": "No subscription found", "subscription": None}

    period_over = (
        not sub.is_lifetime
        and sub.current_period_end is not None
        and sub.current_period_end < now
    )

    if period_over and sub.cancel_at_period_end:
        if sub.status != CANCELED:
            _transition(db, sub, CANCELED, now)
        return {"is_active": False, "reason": "Subscription canceled", "subscription": sub}

    if period_over:
        if sub.status not in (EXPIRED, CANCELED):
            _transition(db, sub, EXPIRED, now)
        return {"is_active": False, "reason": "Subscription expired", "subscription": sub}

    if sub.status == TRIALING and sub.trial_end and sub.trial_end < now:
        _transition(db, sub, EXPIRED, now)
        return {"is_active": False, "reason": "Trial expired", "subscription": sub}

    max_failures = get_settings().MAX_FAILED_PAYMENT_ATTEMPTS
    if (sub.failed_payment_attempts or 0) >= max_failures:
        if sub.status != PAST_DUE:
            _transition(db, sub, PAST_DUE, now, end=False)
        return {"is_active": False, "reason": "Payment past due", "subscription": sub}

    is_active = sub.status in ACTIVE_STATUSES
    return {
        "is_active": is_active,
        "reason": None if is_active else f"Subscription is {sub.status}",
        "subscription": sub,
        "days_until_expiry": None if sub.is_lifetime else _days_until(sub.current_period_end, now),
    }


def check_usage_limit(db: Session, org_id: Optional[int], limit_type: str) -> dict:
    _check_limit_type(limit_type)
    sub = current_subscription(db, org_id)
    if not sub:
        return {"allowed": False, "reason": "No subscription found"}

    usage = sub.get_usage(limit_type)
    limit = sub.get_limit(limit_type)
    if limit < 0:
        return {"allowed": True, "current_usage": usage, "limit": limit, "remaining": None}
    if usage >= limit:
        return {
            "allowed": False,
            "reason": f"{limit_type} limit reached ({usage}/{limit})",
            "current_usage": usage,
            "limit": limit,
        }
    return {"allowed": True, "current_usage": usage, "limit": limit, "remaining": limit - usage}


def ensure_within_limit(db: Session, org_id: Optional[int], limit_type: str) -> dict:
    result = check_usage_limit(db, org_id, limit_type)
    if not result["allowed"]:
        raise UsageLimitExceeded(
            limit_type, result["reason"], result.get("current_usage"), result.get("limit"),
        )
    return result


def update_usage(db: Session, org_id: Optional[int], limit_type: str, increment: int = 1) -> bool:
    _check_limit_type(limit_type)
    sub = current_subscription(db, org_id)
    if not sub:
        return False
    setattr(sub, f"usage_{limit_type}", max(0, sub.get_usage(limit_type) + increment))
    db.commit()
    return True


def reset_monthly_usage(db: Session, now: Optional[datetime] = None) -> int:
    now = _now(now)
    month_start = datetime(now.year, now.month, 1)
    subs = db.query(Subscription).filter(Subscription.usage_last_reset < month_start).all()
    for sub in subs:
        sub.usage_exports = 0
        sub.usage_last_reset = now
    db.commit()
    logger.info("Reset monthly usage for %d subscriptions", len(subs))
    return len(subs)


def get_subscription_countdown(db: Session, org_id: Optional[int], now: Optional[datetime] = None) -> Optional[dict]:
    now = _now(now)
    sub = current_subscription(db, org_id)
    if not sub:
        return None

    base = {
        "end_date": sub.current_period_end,
        "billing_cycle": sub.billing_cycle,
        "next_billing_date": sub.next_billing_date,
        "cancel_at_period_end": bool(sub.cancel_at_period_end),
        "is_lifetime": bool(sub.is_lifetime),
    }
    if sub.is_lifetime or sub.current_period_end is None:
        return base | {
            "days_remaining": None,
            "hours_remaining": None,
            "is_expiring_soon": False,
            "is_expired": False,
        }

    seconds = (sub.current_period_end - now).total_seconds()
    days = math.ceil(seconds / 86400)
    hours = math.ceil(seconds / 3600)
    return base | {
        "days_remaining": max(0, days),
        "hours_remaining": max(0, hours),
        "is_expiring_soon": days <= get_settings().EXPIRY_WARNING_DAYS,
        "is_expired": days <= 0,
    }


def _copy_plan_limits(sub: Subscription, plan: Plan) -> None:
    for limit_type in LIMIT_TYPES:
        value = getattr(plan, f"max_{limit_type}")
        if value is not None:
            setattr(sub, f"limit_{limit_type}", value)


def create_trial_subscription(db: Session, org_id: int, plan_id: Optional[int],
                              now: Optional[datetime] = None) -> Subscription:
    now = _now(now)
    trial_end = now + timedelta(days=get_settings().TRIAL_DAYS)
    sub = Subscription(
        organization_id=org_id,
        plan_id=plan_id,
        status=TRIALING,
        trial_end=trial_end,
        current_period_start=now,
        current_period_end=trial_end,
        usage_last_reset=now,
    )
    plan = db.query(Plan).filter(Plan.id == plan_id).first() if plan_id else None
    if plan:
        _copy_plan_limits(sub, plan)
        sub.billing_cycle = plan.billing_cycle
        sub.currency = plan.currency
        sub.amount = plan.price
    db.add(sub)
    db.flush()
    emit_outbox_event(db, org_id, "subscription.trial_started", "subscription", sub.id,
                      {"plan_id": plan_id, "trial_end": trial_end.isoformat()})
    db.commit()
    db.refresh(sub)
    logger.info("Trial subscription %s created for org %s", sub.id, org_id)
    return sub


def get_subscription(db: Session, subscription_id: int) -> Optional[Subscription]:
    return db.query(Subscription).filter(Subscription.id == subscription_id).first()


def activate_subscription(db: Session, subscription_id: int) -> Optional[Subscription]:
    sub = get_subscription(db, subscription_id)
    if sub:
        sub.status = ACTIVE
        _set_org_status(db, sub.organization_id, "active")
        db.commit()
    return sub


def cancel_subscription(db: Session, subscription_id: int, now: Optional[datetime] = None) -> Optional[Subscription]:
    sub = get_subscription(db, subscription_id)
    if sub:
        sub.cancel_at_period_end = True
        sub.canceled_at = _now(now)
        db.commit()
    return sub


def reactivate_subscription(db: Session, subscription_id: int) -> Optional[Subscription]:
    sub = get_subscription(db, subscription_id)
    if sub:
        sub.status = ACTIVE
        sub.cancel_at_period_end = False
        sub.canceled_at = None
        sub.ended_at = None
        _set_org_status(db, sub.organization_id, "active")
        db.commit()
    return sub


def record_payment(db: Session, sub: Subscription, amount=None, now: Optional[datetime] = None) -> Subscription:
    """A successful charge: start a fresh billing period and clear failures."""
    now = _now(now)
    period = timedelta(days=BILLING_PERIOD_DAYS.get(sub.billing_cycle or "monthly", 30))
    sub.status = ACTIVE
    sub.last_payment_date = now
    sub.current_period_start = now
    sub.next_billing_date = now + period
    if not sub.is_lifetime:
        sub.current_period_end = sub.next_billing_date
    sub.failed_payment_attempts = 0
    sub.cancel_at_period_end = False
    sub.ended_at = None
    if amount is not None:
        sub.amount = amount
    _set_org_status(db, sub.organization_id, "active")
    emit_outbox_event(db, sub.organization_id, "subscription.payment_received", "subscription", sub.id,
                      {"amount": str(sub.amount), "period_end": sub.next_billing_date.isoformat()})
    db.commit()
    logger.info("Payment recorded for subscription %s (org %s)", sub.id, sub.organization_id)
    return sub


def record_failed_payment(db: Session, sub: Subscription) -> Subscription:
    sub.failed_payment_attempts = (sub.failed_payment_attempts or 0) + 1
    emit_outbox_event(db, sub.organization_id, "subscription.payment_failed", "subscription", sub.id,
                      {"attempts": sub.failed_payment_attempts})
    db.commit()
    logger.warning("Payment failed for subscription %s (attempt %s)", sub.id, sub.failed_payment_attempts)
    return sub


def grant_lifetime(db: Session, sub: Subscription) -> Subscription:
    sub.is_lifetime = True
    sub.status = ACTIVE
    sub.current_period_end = None
    sub.cancel_at_period_end = False
    sub.ended_at = None
    _set_org_status(db, sub.organization_id, "active")
    db.commit()
    return sub


def revoke_lifetime(db: Session, sub: Subscription, now: Optional[datetime] = None) -> Subscription:
    sub.is_lifetime = False
    sub.current_period_end = _now(now) + timedelta(days=LIFETIME_REVOKE_DAYS)
    db.commit()
    return sub


def check_expired_subscriptions(db: Session, now: Optional[datetime] = None) -> int:
    now = _now(now)
    subs = (
        db.query(Subscription)
        .filter(
            Subscription.status.in_(ACTIVE_STATUSES),
            Subscription.current_period_end < now,
            Subscription.is_lifetime.isnot(True),
        )
        .all()
    )
    org_ids = {s.organization_id for s in subs}
    for org_id in org_ids:
        check_subscription_status(db, org_id, now=now)
    logger.info("Processed %d expired subscriptions", len(subs))
    return len(subs)


def find_expiring_soon(db: Session, now: Optional[datetime] = None) -> list[Subscription]:
    now = _now(now)
    horizon = now + timedelta(days=get_settings().EXPIRY_WARNING_DAYS)
    return (
        db.query(Subscription)
        .filter(
            Subscription.status == ACTIVE,
            Subscription.current_period_end > now,
            Subscription.current_period_end <= horizon,
            Subscription.cancel_at_period_end.isnot(True),
        )
        .all()
    )


def _utilization(usage: int, limit: int) -> Optional[int]:
    if limit < 0:
        return None
    if limit == 0:
        return 100 if usage else 0
    return round(usage / limit * 100)


def sync_usage(db: Session, org_id: int) -> Optional[dict]:
    """Recount the live resources of an organization into its subscription."""
    sub = current_subscription(db, org_id)
    if not sub:
        return None
    sub.usage_properties = (
        db.query(Property)
        .filter(Property.organization_id == org_id, Property.status != "Archived")
        .count()
    )
    sub.usage_tenants = (
        db.query(Tenant)
        .filter(Tenant.organization_id == org_id, Tenant.status != "Archived")
        .count()
    )
    sub.usage_users = db.query(UserAccount).filter(UserAccount.organization_id == org_id).count()
    db.commit()

    usage = sub.usage_dict()
    limits = sub.limits_dict()
    return {
        "usage": usage,
        "limits": limits,
        "utilization": {t: _utilization(usage[t], limits[t]) for t in LIMIT_TYPES},
    }
