"""Rent payment routes."""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from hnvpm.database import get_db
from hnvpm.auth.dependencies import get_current_user, require_active_access
from hnvpm.auth.models import UserAccount
from hnvpm.modules.payments.models import Payment, PAID_STATUSES
from hnvpm.modules.properties.models import Property
from hnvpm.modules.tenants.models import Tenant
from hnvpm.utils.audit_service import record_audit
from hnvpm.utils.event_service import emit_outbox_event
from hnvpm.utils.payload import sanitize_payload, require_fields, to_dict
from hnvpm.utils.scoping import org_scoped, require_org, scoped_get

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/payments",
    tags=["Payments"],
    dependencies=[Depends(require_active_access)],
)

PAYMENT_STATUSES = ("Pending", "Processing", "Paid", "Failed", "Cancelled")
PAYMENT_BLOCKED = {"cancelled_at"}


def _get_payment(db: Session, user: UserAccount, payment_id: int) -> Payment:
    payment = org_scoped(db.query(Payment), Payment, user).filter(Payment.id == payment_id).first()
    if not payment:
        raise HTTPException(404, "Payment not found")
    return payment


def _check_status(status) -> None:
    if status is not None and status not in PAYMENT_STATUSES + PAID_STATUSES:
        raise HTTPException(422, f"status must be one of: {', '.join(PAYMENT_STATUSES)}")


@router.get("")
def list_payments(
    tenant_id: Optional[int] = None,
    property_id: Optional[int] = None,
    status: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    q = org_scoped(db.query(Payment), Payment, user)
    if tenant_id:
        q = q.filter(Payment.tenant_id == tenant_id)
    if property_id:
        q = q.filter(Payment.property_id == property_id)
    if status:
        q = q.filter(Payment.status == status)
    if date_from:
        q = q.filter(Payment.payment_date >= date_from)
    if date_to:
        q = q.filter(Payment.payment_date <= date_to)
    total = q.count()
    items = q.order_by(Payment.payment_date.desc(), Payment.id.desc()).offset(skip).limit(limit).all()
    return {"total": total, "items": [to_dict(p) for p in items]}


@router.post("", status_code=201)
def create_payment(data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    org_id = require_org(user)
    clean = sanitize_payload(Payment, data, blocked_fields=PAYMENT_BLOCKED)
    require_fields(clean, "tenant_id", "amount")
    if clean["amount"] <= 0:
        raise HTTPException(422, "amount must be greater than zero")
    _check_status(clean.get("status"))
    tenant = scoped_get(db, user, Tenant, clean["tenant_id"], "Tenant")
    if clean.get("property_id") is not None:
        scoped_get(db, user, Property, clean["property_id"], "Property")

    payment = Payment(**clean)
    payment.organization_id = org_id
    payment.property_id = payment.property_id or tenant.property_id
    payment.payment_date = payment.payment_date or datetime.utcnow()
    payment.created_by = user.id
    db.add(payment)
    db.flush()
    emit_outbox_event(db, org_id, "payment.recorded", "payment", payment.id,
                      {"tenant_id": tenant.id, "amount": str(payment.amount), "status": payment.status})
    db.commit()
    db.refresh(payment)
    return to_dict(payment)


@router.get("/{payment_id}")
def get_payment(payment_id: int, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    return to_dict(_get_payment(db, user, payment_id))


@router.put("/{payment_id}")
def update_payment(payment_id: int, data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    payment = _get_payment(db, user, payment_id)
    if payment.status == "Cancelled":
        raise HTTPException(400, "Cancelled payments cannot be edited")
    clean = sanitize_payload(Payment, data, blocked_fields=PAYMENT_BLOCKED | {"tenant_id", "property_id"})
    _check_status(clean.get("status"))
    if clean.get("amount") is not None and clean["amount"] <= 0:
        raise HTTPException(422, "amount must be greater than zero")
    for k, v in clean.items():
        setattr(payment, k, v)
    db.commit()
    db.refresh(payment)
    return to_dict(payment)


@router.post("/{payment_id}/cancel")
def cancel_payment(payment_id: int, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    payment = _get_payment(db, user, payment_id)
    if payment.status == "Cancelled":
        raise HTTPException(400, "Payment is already cancelled")
    if payment.status in PAID_STATUSES:
        raise HTTPException(400, "Paid payments cannot be cancelled")
    payment.status = "Cancelled"
    payment.cancelled_at = datetime.utcnow()
    record_audit(db, user, "payment_cancelled", "payment", payment.id, {"amount": str(payment.amount)}, request)
    db.commit()
    db.refresh(payment)
    return to_dict(payment)
