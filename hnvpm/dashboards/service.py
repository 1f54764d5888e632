"""Dashboard aggregates computed from live tables."""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hnvpm.auth.models import UserAccount
from hnvpm.modules.properties.models import Property
from hnvpm.modules.tenants.models import Tenant
from hnvpm.modules.payments.models import Payment, PAID_STATUSES
from hnvpm.modules.maintenance.models import MaintenanceRequest, OPEN_STATUSES
from hnvpm.modules.expenses.models import Expense
from hnvpm.utils.scoping import org_scoped

logger = logging.getLogger(__name__)

EMPTY_STATS = {
    "total_properties": 0,
    "total_tenants": 0,
    "monthly_revenue": 0.0,
    "occupancy_rate": 0,
    "pending_maintenance": 0,
    "recent_payments": 0,
}
CASH_FLOW_MONTHS = 6
MAX_CASH_FLOW_BUCKETS = 12


def _safe(db: Session, label: str, fn: Callable, default):
    """Run one aggregate; a failing query yields ``default`` instead of failing the whole dashboard."""
    try:
        return fn()
    except SQLAlchemyError:
        logger.exception("Dashboard query '%s' failed", label)
        db.rollback()
        return default


def _months_back(now: datetime, months: int) -> datetime:
    month = now.month - months
    year = now.year
    while month < 1:
        month += 12
        year -= 1
    day = min(now.day, 28)
    return now.replace(year=year, month=month, day=day)


def get_stats(db: Session, user: UserAccount, now: Optional[datetime] = None) -> dict:
    if not user.organization_id:
        return dict(EMPTY_STATS)
    now = now or datetime.utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    day_ago = now - timedelta(hours=24)

    def properties():
        return (
            org_scoped(db.query(Property.number_of_units), Property, user)
            .filter(Property.status != "Archived")
            .all()
        )

    def tenant_statuses():
        return [
            row.status for row in
            org_scoped(db.query(Tenant.status), Tenant, user).filter(Tenant.status != "Archived").all()
        ]

    def paid_payments():
        return (
            org_scoped(db.query(Payment.amount, Payment.payment_date), Payment, user)
            .filter(
                Payment.status.in_(PAID_STATUSES),
                Payment.payment_date >= min(month_start, day_ago),
            )
            .all()
        )

    def open_maintenance():
        return (
            org_scoped(db.query(MaintenanceRequest), MaintenanceRequest, user)
            .filter(MaintenanceRequest.status.in_(OPEN_STATUSES))
            .count()
        )

    props = _safe(db, "properties", properties, [])
    statuses = _safe(db, "tenants", tenant_statuses, [])
    payments = _safe(db, "payments", paid_payments, [])
    pending = _safe(db, "maintenance", open_maintenance, 0)

    total_units = sum(max(1, p.number_of_units or 1) for p in props)
    occupied = sum(1 for s in statuses if s in ("Active", "Late"))
    monthly_revenue = sum(float(p.amount or 0) for p in payments if p.payment_date >= month_start)

    return {
        "total_properties": len(props),
        "total_tenants": len(statuses),
        "monthly_revenue": round(monthly_revenue, 2),
        "occupancy_rate": round(occupied / total_units * 100) if total_units else 0,
        "pending_maintenance": pending,
        "recent_payments": sum(1 for p in payments if p.payment_date >= day_ago),
    }


def get_cash_flow(db: Session, user: UserAccount, now: Optional[datetime] = None) -> list[dict]:
    """Paid income and active expenses per ``YYYY-MM`` month over the last six months, oldest first."""
    if not user.organization_id:
        return []
    since = _months_back(now or datetime.utcnow(), CASH_FLOW_MONTHS)

    def paid_since():
        return (
            org_scoped(db.query(Payment.amount, Payment.payment_date), Payment, user)
            .filter(Payment.status.in_(PAID_STATUSES), Payment.payment_date >= since)
            .all()
        )

    def spent_since():
        return (
            org_scoped(db.query(Expense.amount, Expense.expense_date), Expense, user)
            .filter(Expense.status == "Active", Expense.expense_date >= since)
            .all()
        )

    buckets: dict[str, dict] = {}

    def add(when, amount, key):
        if not when:
            return
        row = buckets.setdefault(when.strftime("%Y-%m"), {"income": 0.0, "expenses": 0.0})
        row[key] += float(amount or 0)

    for payment in _safe(db, "cash_flow", paid_since, []):
        add(payment.payment_date, payment.amount, "income")
    for expense in _safe(db, "cash_flow_expenses", spent_since, []):
        add(expense.expense_date, expense.amount, "expenses")

    rows = [
        {"month": month, "income": round(row["income"], 2), "expenses": round(row["expenses"], 2)}
        for month, row in sorted(buckets.items())
    ]
    return rows[-MAX_CASH_FLOW_BUCKETS:]
