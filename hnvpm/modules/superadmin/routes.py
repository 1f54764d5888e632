"""Platform administration routes (Super Admin only)."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import or_, func
from sqlalchemy.orm import Session

from hnvpm.database import get_db
from hnvpm.auth.dependencies import get_current_user, require_roles
from hnvpm.auth.models import UserAccount, SUPER_ADMIN
from hnvpm.modules.organizations.models import Organization
from hnvpm.modules.subscriptions.models import Plan, Subscription, ACTIVE, INACTIVE, ACTIVE_STATUSES, LIMIT_TYPES
from hnvpm.modules.subscriptions import service as subscription_service
from hnvpm.modules.subscriptions.routes import plan_dict, subscription_dict, check_status
from hnvpm.modules.properties.models import Property, Unit
from hnvpm.modules.tenants.models import Tenant, Lease, UnitHistory, TenantMovement
from hnvpm.modules.payments.models import Payment
from hnvpm.modules.maintenance.models import MaintenanceRequest
from hnvpm.modules.expenses.models import Expense
from hnvpm.modules.system.models import EventOutbox
from hnvpm.utils.audit_service import record_audit
from hnvpm.utils.payload import sanitize_payload, require_fields, to_dict

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/super-admin",
    tags=["Super Admin"],
    dependencies=[Depends(require_roles([SUPER_ADMIN]))],
)

USER_FIELDS_HIDDEN = {"password_hash", "email_verification_token", "invitation_token"}


def _user_dict(user: UserAccount) -> dict:
    return to_dict(user, exclude=USER_FIELDS_HIDDEN)


def _subscription_summary(db: Session, org_id: int) -> Optional[dict]:
    sub = subscription_service.current_subscription(db, org_id)
    if not sub:
        return None
    plan = db.query(Plan).filter(Plan.id == sub.plan_id).first() if sub.plan_id else None
    return {
        "id": sub.id,
        "status": sub.status,
        "plan_id": sub.plan_id,
        "plan_name": plan.name if plan else None,
        "is_lifetime": bool(sub.is_lifetime),
        "trial_end": sub.trial_end.isoformat() if sub.trial_end else None,
        "current_period_end": sub.current_period_end.isoformat() if sub.current_period_end else None,
    }


def _get_org(db: Session, org_id: int) -> Organization:
    org = db.query(Organization).filter(Organization.id == org_id).first()
    if not org:
        raise HTTPException(404, "Organization not found")
    return org


def _latest_subscription(db: Session, org_id: int) -> Optional[Subscription]:
    return (
        db.query(Subscription)
        .filter(Subscription.organization_id == org_id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )


def _month_windows(now: datetime, count: int) -> list[tuple[str, datetime, datetime]]:
    """The last ``count`` calendar months, oldest first, as (YYYY-MM, start, next_start)."""
    windows = []
    year, month = now.year, now.month
    for _ in range(count):
        start = datetime(year, month, 1)
        nxt = datetime(year + (month == 12), month % 12 + 1, 1)
        windows.append((start.strftime("%Y-%m"), start, nxt))
        year, month = (year - 1, 12) if month == 1 else (year, month - 1)
    return list(reversed(windows))


def _monthly_amount(sub: Subscription) -> float:
    amount = float(sub.amount or 0)
    return amount / 12 if sub.billing_cycle == "yearly" else amount


# --- Dashboard ---
@router.get("/dashboard")
def dashboard_stats(db: Session = Depends(get_db)):
    total_orgs = db.query(Organization).count()
    active_orgs = db.query(Organization).filter(Organization.status == "active").count()
    active_subs = [
        s for s in (subscription_service.current_subscription(db, o.id) for o in db.query(Organization).all())
        if s is not None and s.status in ACTIVE_STATUSES
    ]
    paying = [s for s in active_subs if s.status == ACTIVE and not s.is_lifetime]
    return {
        "total_organizations": total_orgs,
        "active_organizations": active_orgs,
        "inactive_organizations": total_orgs - active_orgs,
        "total_users": db.query(UserAccount).count(),
        "active_subscriptions": len(active_subs),
        "trialing_subscriptions": sum(1 for s in active_subs if s.status == "trialing"),
        "monthly_recurring_revenue": round(sum(_monthly_amount(s) for s in paying), 2),
        "conversion_rate": round(len(paying) / total_orgs * 100, 1) if total_orgs else 0,
    }


@router.get("/plan-distribution")
def plan_distribution(db: Session = Depends(get_db)):
    counts: dict[int, int] = {}
    for org in db.query(Organization).all():
        sub = subscription_service.current_subscription(db, org.id)
        if sub and sub.plan_id:
            counts[sub.plan_id] = counts.get(sub.plan_id, 0) + 1
    plans = db.query(Plan).order_by(Plan.sort_order.asc(), Plan.price.asc()).all()
    return [{"plan_id": p.id, "name": p.name, "value": counts.get(p.id, 0)} for p in plans]


@router.get("/platform-growth")
def platform_growth(db: Session = Depends(get_db)):
    out = []
    for label, start, end in _month_windows(datetime.utcnow(), 6):
        out.append({
            "month": label,
            "organizations": db.query(Organization)
            .filter(Organization.created_at >= start, Organization.created_at < end).count(),
            "users": db.query(UserAccount)
            .filter(UserAccount.created_at >= start, UserAccount.created_at < end).count(),
        })
    return out


# --- Organizations ---
@router.get("/organizations")
def list_organizations(
    search: Optional[str] = None,
    status: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    q = db.query(Organization)
    if status:
        q = q.filter(Organization.status == status)
    if search:
        q = q.filter(or_(Organization.name.ilike(f"%{search}%"), Organization.email.ilike(f"%{search}%")))
    total = q.count()
    items = q.order_by(Organization.created_at.desc(), Organization.id.desc()).offset(skip).limit(limit).all()
    out = []
    for org in items:
        row = to_dict(org)
        owner = db.query(UserAccount).filter(UserAccount.id == org.owner_id).first() if org.owner_id else None
        row["owner"] = {"id": owner.id, "name": owner.full_name, "email": owner.email} if owner else None
        row["member_count"] = db.query(UserAccount).filter(UserAccount.organization_id == org.id).count()
        row["subscription"] = _subscription_summary(db, org.id)
        out.append(row)
    return {"total": total, "items": out}


@router.delete("/organizations/{org_id}")
def delete_organization(
    org_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    org = _get_org(db, org_id)
    record_audit(db, user, "organization_deleted", "organization", org.id,
                 {"organization_name": org.name}, request)

    # Children before parents.
    for model in (UnitHistory, TenantMovement, Lease, Payment, Expense, MaintenanceRequest, Tenant, Unit, Property,
                  Subscription, EventOutbox):
        deleted = db.query(model).filter(model.organization_id == org_id).delete(synchronize_session=False)
        logger.info("Deleted %d %s rows for org %s", deleted, model.__tablename__, org_id)
    db.query(UserAccount).filter(
        UserAccount.organization_id == org_id, UserAccount.role != SUPER_ADMIN,
    ).delete(synchronize_session=False)
    # Super Admins attached to the org survive, detached.
    db.query(UserAccount).filter(UserAccount.organization_id == org_id).update(
        {UserAccount.organization_id: None}, synchronize_session=False,
    )
    db.delete(org)
    db.commit()
    return {"message": "Organization deleted successfully", "deleted_org_id": org_id}


def _set_org_active(db: Session, org: Organization, active: bool) -> Optional[Subscription]:
    org.status = "active" if active else "inactive"
    sub = _latest_subscription(db, org.id) if active else subscription_service.current_subscription(db, org.id)
    if sub:
        sub.status = ACTIVE if active else INACTIVE
        if active:
            now = datetime.utcnow()
            if not sub.is_lifetime and (sub.current_period_end is None or sub.current_period_end < now):
                days = subscription_service.BILLING_PERIOD_DAYS.get(sub.billing_cycle or "monthly", 30)
                sub.current_period_start = now
                sub.current_period_end = now + timedelta(days=days)
            sub.cancel_at_period_end = False
            sub.ended_at = None
            sub.failed_payment_attempts = 0
    db.query(UserAccount).filter(
        UserAccount.organization_id == org.id, UserAccount.role != SUPER_ADMIN,
    ).update({UserAccount.status: "active" if active else "suspended"}, synchronize_session=False)
    return sub


@router.post("/organizations/{org_id}/activate")
def activate_organization(
    org_id: int, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user),
):
    org = _get_org(db, org_id)
    _set_org_active(db, org, True)
    record_audit(db, user, "organization_activated", "organization", org.id, {"organization_name": org.name}, request)
    db.commit()
    db.refresh(org)
    return {"message": "Organization activated successfully", "organization": to_dict(org)}


@router.post("/organizations/{org_id}/deactivate")
def deactivate_organization(
    org_id: int, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user),
):
    org = _get_org(db, org_id)
    _set_org_active(db, org, False)
    record_audit(db, user, "organization_deactivated", "organization", org.id, {"organization_name": org.name}, request)
    db.commit()
    db.refresh(org)
    return {"message": "Organization deactivated successfully", "organization": to_dict(org)}


@router.post("/organizations/{org_id}/lifetime")
def grant_lifetime(
    org_id: int, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user),
):
    org = _get_org(db, org_id)
    sub = _latest_subscription(db, org.id)
    if not sub:
        sub = Subscription(organization_id=org.id, status=ACTIVE, current_period_start=datetime.utcnow())
        db.add(sub)
        db.flush()
    sub.next_billing_date = None
    subscription_service.grant_lifetime(db, sub)
    record_audit(db, user, "lifetime_access_granted", "subscription", sub.id, {"organization_name": org.name}, request)
    db.commit()
    return {"message": "Lifetime access granted successfully", "subscription": subscription_dict(db, sub)}


@router.delete("/organizations/{org_id}/lifetime")
def revoke_lifetime(
    org_id: int, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user),
):
    org = _get_org(db, org_id)
    sub = _latest_subscription(db, org.id)
    if not sub or not sub.is_lifetime:
        raise HTTPException(400, "Organization does not have lifetime access")
    subscription_service.revoke_lifetime(db, sub)
    sub.next_billing_date = sub.current_period_end
    record_audit(db, user, "lifetime_access_revoked", "subscription", sub.id, {"organization_name": org.name}, request)
    db.commit()
    return {"message": "Lifetime access revoked successfully", "subscription": subscription_dict(db, sub)}


@router.put("/organizations/{org_id}/subscription")
def override_subscription(
    org_id: int,
    data: dict,
    request: Request,
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    org = _get_org(db, org_id)
    clean = sanitize_payload(Subscription, data, blocked_fields={"twocheckout_subscription_id", "external_reference"})
    check_status(clean.get("status"))
    plan = None
    if clean.get("plan_id") is not None:
        plan = db.query(Plan).filter(Plan.id == clean["plan_id"]).first()
        if not plan:
            raise HTTPException(404, "Plan not found")

    sub = _latest_subscription(db, org.id)
    if not sub:
        sub = Subscription(organization_id=org.id, status=clean.get("status") or ACTIVE)
        db.add(sub)

    now = datetime.utcnow()
    if plan:
        sub.plan_id = plan.id
        if "amount" not in clean:
            sub.amount = plan.price
        for limit_type in LIMIT_TYPES:
            if f"limit_{limit_type}" not in clean:
                setattr(sub, f"limit_{limit_type}", getattr(plan, f"max_{limit_type}"))
    for k, v in clean.items():
        setattr(sub, k, v)
    if sub.current_period_start is None:
        sub.current_period_start = now
    if sub.status == ACTIVE and "last_payment_date" not in clean:
        sub.last_payment_date = now
    org.status = "active" if sub.status in ACTIVE_STATUSES else "inactive"
    db.flush()
    record_audit(db, user, "subscription_overridden", "subscription", sub.id,
                 {"organization_name": org.name, "fields": sorted(clean)}, request)
    db.commit()
    usage = subscription_service.sync_usage(db, org.id)
    return {"subscription": subscription_dict(db, sub), "usage": usage}


# --- Users ---
@router.get("/users")
def list_users(
    search: Optional[str] = None,
    role: Optional[str] = None,
    status: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(200, ge=1, le=500),
    db: Session = Depends(get_db),
):
    q = db.query(UserAccount)
    if role:
        q = q.filter(UserAccount.role == role)
    if status:
        q = q.filter(UserAccount.status == status)
    if search:
        q = q.filter(or_(
            UserAccount.email.ilike(f"%{search}%"),
            UserAccount.first_name.ilike(f"%{search}%"),
            UserAccount.last_name.ilike(f"%{search}%"),
        ))
    total = q.count()
    items = q.order_by(UserAccount.created_at.desc(), UserAccount.id.desc()).offset(skip).limit(limit).all()
    org_names = dict(db.query(Organization.id, Organization.name).all())
    out = []
    for u in items:
        row = _user_dict(u)
        row["organization_name"] = org_names.get(u.organization_id)
        row["subscription"] = _subscription_summary(db, u.organization_id) if u.organization_id else None
        out.append(row)
    return {"total": total, "items": out}


@router.put("/users/{user_id}/status")
def update_user_status(
    user_id: int,
    data: dict,
    request: Request,
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    new_status = str(data.get("status") or "").lower()
    if new_status not in ("active", "suspended"):
        raise HTTPException(422, "status must be 'active' or 'suspended'")
    target = db.query(UserAccount).filter(UserAccount.id == user_id).first()
    if not target:
        raise HTTPException(404, "User not found")
    if target.id == user.id:
        raise HTTPException(400, "You cannot change your own status")
    target.status = new_status
    record_audit(db, user, "user_status_updated", "user", target.id, {"status": new_status}, request)
    db.commit()
    db.refresh(target)
    return _user_dict(target)


@router.delete("/users/{user_id}")
def delete_user(
    user_id: int, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user),
):
    target = db.query(UserAccount).filter(UserAccount.id == user_id).first()
    if not target:
        raise HTTPException(404, "User not found")
    if target.role == SUPER_ADMIN:
        raise HTTPException(403, "Cannot delete Super Admin users")
    record_audit(db, user, "user_deleted", "user", target.id,
                 {"email": target.email, "role": target.role}, request)
    org_id, email, name = target.organization_id, target.email, target.full_name
    db.delete(target)
    db.commit()
    if org_id:
        subscription_service.update_usage(db, org_id, "users", -1)
    logger.info("User %s deleted by Super Admin %s", email, user.id)
    return {"message": f"User {name} deleted successfully", "deleted_user_id": user_id}


# --- Plans ---
@router.get("/plans")
def list_plans(db: Session = Depends(get_db)):
    items = db.query(Plan).order_by(Plan.sort_order.asc(), Plan.price.asc()).all()
    return {"total": len(items), "items": [plan_dict(p) for p in items]}


@router.post("/plans", status_code=201)
def create_plan(data: dict, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    clean = sanitize_payload(Plan, data)
    require_fields(clean, "name")
    if clean.get("price") is not None and clean["price"] < 0:
        raise HTTPException(422, "price must not be negative")
    plan = Plan(**clean)
    db.add(plan)
    db.flush()
    record_audit(db, user, "plan_created", "plan", plan.id, {"name": plan.name, "price": str(plan.price)}, request)
    db.commit()
    db.refresh(plan)
    return plan_dict(plan)


def _get_plan(db: Session, plan_id: int) -> Plan:
    plan = db.query(Plan).filter(Plan.id == plan_id).first()
    if not plan:
        raise HTTPException(404, "Plan not found")
    return plan


@router.put("/plans/{plan_id}")
def update_plan(
    plan_id: int, data: dict, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user),
):
    plan = _get_plan(db, plan_id)
    old_price = plan.price
    clean = sanitize_payload(Plan, data)
    for k, v in clean.items():
        setattr(plan, k, v)
    record_audit(db, user, "plan_updated", "plan", plan.id,
                 {"name": plan.name, "old_price": str(old_price), "new_price": str(plan.price)}, request)
    db.commit()
    db.refresh(plan)
    return plan_dict(plan)


@router.post("/plans/{plan_id}/toggle")
def toggle_plan(plan_id: int, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    plan = _get_plan(db, plan_id)
    plan.is_active = not plan.is_active
    record_audit(db, user, "plan_activated" if plan.is_active else "plan_deactivated", "plan", plan.id,
                 {"name": plan.name}, request)
    db.commit()
    db.refresh(plan)
    return plan_dict(plan)


@router.delete("/plans/{plan_id}")
def delete_plan(plan_id: int, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    plan = _get_plan(db, plan_id)
    in_use = db.query(Subscription).filter(Subscription.plan_id == plan.id).count()
    if in_use:
        raise HTTPException(409, f"Plan is used by {in_use} subscription(s); deactivate it instead")
    record_audit(db, user, "plan_deleted", "plan", plan.id, {"name": plan.name}, request)
    db.delete(plan)
    db.commit()
    return {"message": "Plan deleted"}


# --- Billing ---
@router.get("/billing")
def billing_overview(db: Session = Depends(get_db)):
    total_orgs = db.query(Organization).count()
    current = [
        (org, subscription_service.current_subscription(db, org.id)) for org in db.query(Organization).all()
    ]
    active = [(o, s) for o, s in current if s is not None and s.status == ACTIVE]
    plans = {p.id: p.name for p in db.query(Plan).all()}

    paid = (
        db.query(Subscription)
        .filter(Subscription.last_payment_date.isnot(None))
        .order_by(Subscription.last_payment_date.desc())
    )
    org_names = dict(db.query(Organization.id, Organization.name).all())
    recent = [
        {
            "subscription_id": s.id,
            "organization_name": org_names.get(s.organization_id),
            "plan_name": plans.get(s.plan_id),
            "amount": float(s.amount or 0),
            "status": s.status,
            "date": s.last_payment_date.isoformat(),
        }
        for s in paid.limit(10).all()
    ]

    chart = []
    for label, start, end in _month_windows(datetime.utcnow(), 6):
        revenue = (
            db.query(func.coalesce(func.sum(Subscription.amount), 0))
            .filter(Subscription.last_payment_date >= start, Subscription.last_payment_date < end)
            .scalar()
        )
        new_subs = (
            db.query(Subscription)
            .filter(Subscription.created_at >= start, Subscription.created_at < end,
                    Subscription.status != INACTIVE)
            .count()
        )
        chart.append({"month": label, "revenue": float(revenue or 0), "subscriptions": new_subs})

    return {
        "total_revenue": float(
            db.query(func.coalesce(func.sum(Subscription.amount), 0))
            .filter(Subscription.last_payment_date.isnot(None)).scalar() or 0
        ),
        "monthly_recurring_revenue": round(sum(_monthly_amount(s) for _, s in active if not s.is_lifetime), 2),
        "active_subscriptions": len(active),
        "churn_rate": round((total_orgs - len(active)) / total_orgs * 100, 1) if total_orgs else 0,
        "recent_transactions": recent,
        "revenue_chart": chart,
    }
