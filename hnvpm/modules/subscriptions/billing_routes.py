"""Billing routes – plan catalogue, 2Checkout checkout, IPN webhook, usage."""
import logging
import re
import time
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from hnvpm.database import get_db
from hnvpm.config import get_settings
from hnvpm.auth.dependencies import get_current_user, require_roles
from hnvpm.auth.models import UserAccount, SUPER_ADMIN, LANDLORD
from hnvpm.modules.organizations.models import Organization
from hnvpm.modules.subscriptions.models import Plan, Subscription, INACTIVE, CANCELED, EXPIRED, ACTIVE
from hnvpm.modules.subscriptions import service as subscription_service
from hnvpm.modules.subscriptions.routes import plan_dict, subscription_dict, status_dict
from hnvpm.modules.subscriptions.twocheckout import TwoCheckoutClient, get_twocheckout_client
from hnvpm.utils.audit_service import record_audit
from hnvpm.utils.event_service import emit_outbox_event
from hnvpm.utils.payload import to_dict

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/billing", tags=["Billing"])

REFERENCE_RE = re.compile(r"^org_(\d+)_plan_(\d+)_\d+$")


def _require_org(user: UserAccount) -> int:
    if not user.organization_id:
        raise HTTPException(400, "Organization ID is required")
    return user.organization_id


@router.get("/plans")
def list_plans(db: Session = Depends(get_db)):
    items = db.query(Plan).filter(Plan.is_active == True).order_by(Plan.sort_order.asc(), Plan.price.asc()).all()
    return {"total": len(items), "items": [plan_dict(p) for p in items]}


@router.get("/current")
def current_billing(db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    org_id = _require_org(user)
    status_check = subscription_service.check_subscription_status(db, org_id)
    sub = subscription_service.current_subscription(db, org_id)
    org = db.query(Organization).filter(Organization.id == org_id).first()
    return {
        "subscription": subscription_dict(db, sub),
        "organization": to_dict(org),
        "countdown": subscription_service.get_subscription_countdown(db, org_id),
        "status_check": status_dict(db, status_check),
    }


@router.post("/checkout")
def create_checkout(
    data: dict,
    db: Session = Depends(get_db),
    user: UserAccount = Depends(require_roles([LANDLORD, SUPER_ADMIN])),
    client: TwoCheckoutClient = Depends(get_twocheckout_client),
):
    org_id = _require_org(user)
    plan = db.query(Plan).filter(Plan.id == data.get("plan_id"), Plan.is_active == True).first()
    if not plan:
        raise HTTPException(404, "Plan not found")
    org = db.query(Organization).filter(Organization.id == org_id).first()
    if not org:
        raise HTTPException(404, "Organization not found")

    settings = get_settings()
    reference = f"org_{org_id}_plan_{plan.id}_{int(time.time() * 1000)}"
    checkout_url = client.generate_buy_link(
        product_id=plan.twocheckout_product_id or str(plan.id),
        customer_email=user.email,
        customer_name=user.full_name or org.name,
        currency=plan.currency or "USD",
        return_url=f"{settings.FRONTEND_URL}/billing/success?ref={reference}",
        cancel_url=f"{settings.FRONTEND_URL}/billing/cancel",
        external_reference=reference,
    )

    now = datetime.utcnow()
    period_days = subscription_service.BILLING_PERIOD_DAYS.get(plan.billing_cycle or "monthly", 30)
    pending = Subscription(
        organization_id=org_id,
        plan_id=plan.id,
        status=INACTIVE,
        current_period_start=now,
        current_period_end=now + timedelta(days=period_days),
        amount=plan.price,
        currency=plan.currency,
        billing_cycle=plan.billing_cycle,
        payment_method="card",
        external_reference=reference,
        usage_last_reset=now,
    )
    for limit_type in ("properties", "tenants", "users", "exports", "storage"):
        setattr(pending, f"limit_{limit_type}", getattr(plan, f"max_{limit_type}"))
    db.add(pending)
    db.flush()
    record_audit(db, user, "billing.checkout", "subscription", pending.id, {"plan_id": plan.id})
    db.commit()
    logger.info("Checkout %s started for org %s", reference, org_id)
    return {"checkout_url": checkout_url, "external_reference": reference, "subscription_id": pending.id}


def _activate_pending(db: Session, org_id: int, reference: str, provider_id: Optional[str]) -> Optional[Subscription]:
    sub = (
        db.query(Subscription)
        .filter(
            Subscription.organization_id == org_id,
            Subscription.status == INACTIVE,
            Subscription.external_reference == reference,
        )
        .first()
    )
    if not sub:
        return None

    # Superseded subscriptions stop counting as current.
    for old in (
        db.query(Subscription)
        .filter(Subscription.organization_id == org_id, Subscription.id != sub.id,
                Subscription.status.notin_((INACTIVE, CANCELED, EXPIRED)))
        .all()
    ):
        old.status = CANCELED
        old.ended_at = datetime.utcnow()

    if provider_id:
        sub.twocheckout_subscription_id = provider_id
    subscription_service.record_payment(db, sub)
    subscription_service.sync_usage(db, org_id)
    return sub


@router.post("/payment-success")
def payment_success(data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    reference = data.get("external_reference")
    if not reference:
        raise HTTPException(400, "External reference is required")
    match = REFERENCE_RE.match(str(reference))
    if not match:
        raise HTTPException(400, "Invalid external reference format")
    org_id = int(match.group(1))
    if not user.is_super_admin and user.organization_id != org_id:
        raise HTTPException(403, "Reference belongs to another organization")

    sub = _activate_pending(db, org_id, reference, data.get("twocheckout_order_id"))
    if not sub:
        raise HTTPException(404, "Subscription not found")
    record_audit(db, user, "billing.payment_success", "subscription", sub.id, {"reference": reference})
    db.commit()
    return {"message": "Payment processed successfully", "subscription": subscription_dict(db, sub)}


def _by_provider_id(db: Session, refno) -> Optional[Subscription]:
    if not refno:
        return None
    return db.query(Subscription).filter(Subscription.twocheckout_subscription_id == str(refno)).first()


def _on_payment_received(db: Session, ipn: dict) -> None:
    sub = _by_provider_id(db, ipn.get("REFNO"))
    if sub:
        subscription_service.record_payment(db, sub)
        return
    match = REFERENCE_RE.match(str(ipn.get("EXTERNAL_REFERENCE") or ""))
    if match:
        _activate_pending(db, int(match.group(1)), ipn["EXTERNAL_REFERENCE"], ipn.get("REFNO"))
    else:
        logger.warning("PAYMENT_RECEIVED for unknown subscription %s", ipn.get("REFNO"))


def _on_payment_failed(db: Session, ipn: dict) -> None:
    sub = _by_provider_id(db, ipn.get("REFNO"))
    if sub:
        subscription_service.record_failed_payment(db, sub)


def _on_canceled(db: Session, ipn: dict) -> None:
    sub = _by_provider_id(db, ipn.get("REFNO"))
    if sub:
        sub.status = CANCELED
        sub.canceled_at = datetime.utcnow()
        emit_outbox_event(db, sub.organization_id, "subscription.canceled", "subscription", sub.id, {"source": "ipn"})
        db.commit()


def _on_expired(db: Session, ipn: dict) -> None:
    sub = _by_provider_id(db, ipn.get("REFNO"))
    if sub:
        sub.status = EXPIRED
        sub.ended_at = datetime.utcnow()
        emit_outbox_event(db, sub.organization_id, "subscription.expired", "subscription", sub.id, {"source": "ipn"})
        db.commit()


WEBHOOK_HANDLERS = {
    "PAYMENT_RECEIVED": _on_payment_received,
    "PAYMENT_FAILED": _on_payment_failed,
    "SUBSCRIPTION_CANCELED": _on_canceled,
    "SUBSCRIPTION_EXPIRED": _on_expired,
}


@router.post("/webhook")
async def webhook(
    request: Request,
    db: Session = Depends(get_db),
    client: TwoCheckoutClient = Depends(get_twocheckout_client),
):
    try:
        ipn = await request.json()
    except ValueError:
        raise HTTPException(400, "Invalid IPN payload")
    signature = request.headers.get("x-2checkout-signature")
    if not isinstance(ipn, dict) or not client.verify_ipn(ipn, signature):
        raise HTTPException(400, "Invalid IPN signature")

    message_type = ipn.get("MESSAGE_TYPE")
    handler = WEBHOOK_HANDLERS.get(message_type)
    if handler:
        handler(db, ipn)
    elif message_type in ("ORDER_CREATED", "PAYMENT_AUTHORIZED"):
        logger.info("2Checkout %s for order %s", message_type, ipn.get("REFNO"))
    else:
        logger.info("Unhandled 2Checkout webhook event: %s", message_type)
    return {"success": True}


@router.post("/cancel")
def cancel(
    db: Session = Depends(get_db),
    user: UserAccount = Depends(require_roles([LANDLORD, SUPER_ADMIN])),
    client: TwoCheckoutClient = Depends(get_twocheckout_client),
):
    org_id = _require_org(user)
    sub = (
        db.query(Subscription)
        .filter(Subscription.organization_id == org_id, Subscription.status == ACTIVE)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )
    if not sub:
        raise HTTPException(404, "Active subscription not found")

    if sub.twocheckout_subscription_id:
        result = client.cancel_subscription(sub.twocheckout_subscription_id)
        if not result["success"]:
            raise HTTPException(400, result["error"])

    subscription_service.cancel_subscription(db, sub.id)
    record_audit(db, user, "billing.cancel", "subscription", sub.id)
    db.commit()
    return {
        "message": "Subscription will be canceled at the end of the current period",
        "subscription": subscription_dict(db, sub),
    }


@router.get("/usage")
def usage(db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    org_id = _require_org(user)
    stats = subscription_service.sync_usage(db, org_id)
    if stats is None:
        raise HTTPException(404, "Subscription not found")
    sub = subscription_service.current_subscription(db, org_id)
    plan = db.query(Plan).filter(Plan.id == sub.plan_id).first() if sub.plan_id else None
    return {**stats, "plan": plan_dict(plan), "status": sub.status}
