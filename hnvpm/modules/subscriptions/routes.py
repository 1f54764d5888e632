"""Subscription lifecycle routes for the signed-in organization, plus admin listing."""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from hnvpm.database import get_db
from hnvpm.auth.dependencies import get_current_user, require_roles
from hnvpm.auth.models import UserAccount, SUPER_ADMIN, LANDLORD
from hnvpm.modules.organizations.models import Organization
from hnvpm.modules.subscriptions.models import Plan, Subscription, SUBSCRIPTION_STATUSES
from hnvpm.modules.subscriptions import service as subscription_service
from hnvpm.utils.audit_service import record_audit
from hnvpm.utils.payload import sanitize_payload, to_dict

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/subscriptions", tags=["Subscriptions"])


def plan_dict(plan: Optional[Plan]) -> Optional[dict]:
    return to_dict(plan)


def subscription_dict(db: Session, sub: Optional[Subscription]) -> Optional[dict]:
    if sub is None:
        return None
    data = to_dict(sub)
    plan = db.query(Plan).filter(Plan.id == sub.plan_id).first() if sub.plan_id else None
    data["plan"] = {"id": plan.id, "name": plan.name, "price": float(plan.price or 0)} if plan else None
    return data


def status_dict(db: Session, result: dict) -> dict:
    out = {k: v for k, v in result.items() if k != "subscription"}
    sub = result.get("subscription")
    out["status"] = sub.status if sub else None
    out["subscription"] = subscription_dict(db, sub)
    return out


def check_status(status: Optional[str]) -> None:
    if status is not None and status not in SUBSCRIPTION_STATUSES:
        raise HTTPException(422, f"status must be one of: {', '.join(SUBSCRIPTION_STATUSES)}")


def _require_org(user: UserAccount) -> int:
    if not user.organization_id:
        raise HTTPException(400, "Organization required")
    return user.organization_id


def _org_subscription(db: Session, user: UserAccount) -> Subscription:
    sub = subscription_service.current_subscription(db, _require_org(user))
    if not sub:
        raise HTTPException(404, "Subscription not found")
    return sub


def _period_ended(sub: Subscription) -> bool:
    return (
        not sub.is_lifetime
        and sub.current_period_end is not None
        and sub.current_period_end < datetime.utcnow()
    )


@router.get("/status")
def get_status(db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    if not user.organization_id:
        return {"has_subscription": False, "status": None}
    result = subscription_service.check_subscription_status(db, user.organization_id)
    return {"has_subscription": result["subscription"] is not None, **status_dict(db, result)}


@router.post("/trial", status_code=201)
def start_trial(data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    org_id = _require_org(user)
    if subscription_service.current_subscription(db, org_id):
        raise HTTPException(409, "Organization already has a subscription")
    plan_id = data.get("plan_id")
    plan = db.query(Plan).filter(Plan.id == plan_id, Plan.is_active == True).first() if plan_id else None
    if not plan:
        raise HTTPException(404, "Plan not found")
    sub = subscription_service.create_trial_subscription(db, org_id, plan.id)
    subscription_service.sync_usage(db, org_id)
    return subscription_dict(db, sub)


@router.post("/activate")
def activate(
    db: Session = Depends(get_db),
    user: UserAccount = Depends(require_roles([SUPER_ADMIN, LANDLORD])),
):
    sub = _org_subscription(db, user)
    if _period_ended(sub):
        raise HTTPException(400, "Subscription period has ended; renew through billing")
    sub = subscription_service.activate_subscription(db, sub.id)
    record_audit(db, user, "subscription.activate", "subscription", sub.id)
    db.commit()
    return subscription_dict(db, sub)


@router.post("/cancel")
def cancel(
    db: Session = Depends(get_db),
    user: UserAccount = Depends(require_roles([SUPER_ADMIN, LANDLORD])),
):
    sub = _org_subscription(db, user)
    sub = subscription_service.cancel_subscription(db, sub.id)
    record_audit(db, user, "subscription.cancel", "subscription", sub.id)
    db.commit()
    return subscription_dict(db, sub)


@router.post("/reactivate")
def reactivate(
    db: Session = Depends(get_db),
    user: UserAccount = Depends(require_roles([SUPER_ADMIN, LANDLORD])),
):
    sub = _org_subscription(db, user)
    if _period_ended(sub):
        raise HTTPException(400, "Subscription period has ended; renew through billing")
    sub = subscription_service.reactivate_subscription(db, sub.id)
    record_audit(db, user, "subscription.reactivate", "subscription", sub.id)
    db.commit()
    return subscription_dict(db, sub)


@router.get("/plans")
def available_plans(db: Session = Depends(get_db)):
    items = (
        db.query(Plan)
        .filter(Plan.is_active == True, Plan.is_public == True)
        .order_by(Plan.price.asc())
        .all()
    )
    return {"total": len(items), "items": [plan_dict(p) for p in items]}


@router.get("")
def list_subscriptions(
    status: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: UserAccount = Depends(require_roles([SUPER_ADMIN])),
):
    q = db.query(Subscription)
    if status:
        q = q.filter(Subscription.status == status)
    total = q.count()
    items = q.order_by(Subscription.created_at.desc(), Subscription.id.desc()).offset(skip).limit(limit).all()
    orgs = {
        o.id: o.name
        for o in db.query(Organization).filter(Organization.id.in_({s.organization_id for s in items})).all()
    }
    out = []
    for sub in items:
        row = subscription_dict(db, sub)
        row["organization_name"] = orgs.get(sub.organization_id)
        out.append(row)
    return {"total": total, "items": out}


@router.put("/{subscription_id}")
def update_subscription(
    subscription_id: int,
    data: dict,
    db: Session = Depends(get_db),
    user: UserAccount = Depends(require_roles([SUPER_ADMIN])),
):
    sub = db.query(Subscription).filter(Subscription.id == subscription_id).first()
    if not sub:
        raise HTTPException(404, "Subscription not found")
    clean = sanitize_payload(Subscription, data)
    check_status(clean.get("status"))
    for k, v in clean.items():
        setattr(sub, k, v)
    record_audit(db, user, "subscription.update", "subscription", sub.id, {"fields": sorted(clean)})
    db.commit()
    db.refresh(sub)
    return subscription_dict(db, sub)
