"""Tenant (renter) and lease routes."""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import or_
from sqlalchemy.orm import Session

from hnvpm.database import get_db
from hnvpm.auth.dependencies import get_current_user, require_active_access
from hnvpm.auth.models import UserAccount
from hnvpm.modules.properties.models import Property, Unit
from hnvpm.modules.tenants.models import Tenant, Lease, TenantMovement
from hnvpm.modules.payments.models import Payment, UNSETTLED_STATUSES
from hnvpm.modules.subscriptions import service as subscription_service
from hnvpm.utils import history_service
from hnvpm.utils.audit_service import record_audit
from hnvpm.utils.event_service import emit_outbox_event
from hnvpm.utils.payload import sanitize_payload, require_fields, to_dict
from hnvpm.utils.scoping import org_scoped, require_org, forbid_agents, scoped_get

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/tenants",
    tags=["Tenants"],
    dependencies=[Depends(require_active_access)],
)
lease_router = APIRouter(
    prefix="/api/leases",
    tags=["Leases"],
    dependencies=[Depends(require_active_access)],
)

TENANT_BLOCKED = {"archived_at"}
LEASE_BLOCKED = {"terminated_at", "tenant_id"}


def _scoped_property(db: Session, user: UserAccount, prop_id) -> Property:
    prop = (
        org_scoped(db.query(Property), Property, user)
        .filter(Property.id == prop_id, Property.status != "Archived")
        .first()
    )
    if not prop:
        raise HTTPException(404, "Property not found")
    return prop


def _get_tenant(db: Session, user: UserAccount, tenant_id: int) -> Tenant:
    tenant = org_scoped(db.query(Tenant), Tenant, user).filter(Tenant.id == tenant_id).first()
    if not tenant:
        raise HTTPException(404, "Tenant not found")
    return tenant


def _free_unit(db: Session, property_id, unit_id, tenant_id: Optional[int] = None) -> Optional[Unit]:
    if not unit_id:
        return None
    unit = (
        db.query(Unit)
        .filter(Unit.id == unit_id, Unit.property_id == property_id, Unit.status != "Archived")
        .first()
    )
    if not unit:
        raise HTTPException(404, "Unit not found")
    if unit.tenant_id and unit.tenant_id != tenant_id:
        raise HTTPException(409, "Unit is already occupied")
    return unit


def _occupy(db: Session, unit: Optional[Unit], tenant: Tenant, user: UserAccount) -> None:
    if unit is None or unit.tenant_id == tenant.id:
        return
    history_service.record_unit_event(
        db, unit, history_service.MOVED_IN, user, tenant.id,
        previous={"status": unit.status}, new={"status": "occupied", "tenant_id": tenant.id},
    )
    unit.tenant_id = tenant.id
    unit.status = "occupied"


def _release_unit(db: Session, tenant: Tenant, user: UserAccount, notes: Optional[str] = None) -> None:
    if not tenant.unit_id:
        return
    unit = db.query(Unit).filter(Unit.id == tenant.unit_id, Unit.tenant_id == tenant.id).first()
    if unit is None:
        return
    history_service.record_unit_event(
        db, unit, history_service.MOVED_OUT, user, tenant.id,
        previous={"status": unit.status, "tenant_id": tenant.id}, new={"status": "vacant"}, notes=notes,
    )
    unit.tenant_id = None
    unit.status = "vacant"


@router.get("")
def list_tenants(
    search: Optional[str] = None,
    status: Optional[str] = None,
    property_id: Optional[int] = None,
    include_archived: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    q = org_scoped(db.query(Tenant), Tenant, user)
    if status:
        q = q.filter(Tenant.status == status)
    elif not include_archived:
        q = q.filter(Tenant.status != "Archived")
    if property_id:
        q = q.filter(Tenant.property_id == property_id)
    if search:
        q = q.filter(or_(
            Tenant.first_name.ilike(f"%{search}%"),
            Tenant.last_name.ilike(f"%{search}%"),
            Tenant.email.ilike(f"%{search}%"),
            Tenant.phone.ilike(f"%{search}%"),
        ))
    total = q.count()
    items = q.order_by(Tenant.id.desc()).offset(skip).limit(limit).all()
    return {"total": total, "items": [to_dict(t) for t in items]}


@router.post("", status_code=201)
def create_tenant(data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    org_id = require_org(user)
    clean = sanitize_payload(Tenant, data, blocked_fields=TENANT_BLOCKED | {"status"})
    require_fields(clean, "first_name", "last_name", "property_id")
    _scoped_property(db, user, clean["property_id"])
    unit = _free_unit(db, clean["property_id"], clean.get("unit_id"))

    subscription_service.ensure_within_limit(db, org_id, "tenants")

    tenant = Tenant(**clean)
    tenant.organization_id = org_id
    tenant.status = data.get("status") if data.get("status") in ("Active", "Pending") else "Active"
    tenant.created_by = user.id
    db.add(tenant)
    db.flush()
    _occupy(db, unit, tenant, user)
    history_service.record_movement(db, tenant, "move_in", user, to_place=(tenant.property_id, tenant.unit_id),
                                    new_rent=tenant.rent_amount)
    emit_outbox_event(db, org_id, "tenant.created", "tenant", tenant.id, {"property_id": tenant.property_id})
    db.commit()
    db.refresh(tenant)
    subscription_service.update_usage(db, org_id, "tenants", 1)
    return to_dict(tenant)


@router.get("/{tenant_id}")
def get_tenant(tenant_id: int, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    tenant = _get_tenant(db, user, tenant_id)
    data = to_dict(tenant)
    data["leases"] = [to_dict(l) for l in db.query(Lease).filter(Lease.tenant_id == tenant.id).order_by(Lease.start_date.desc()).all()]
    return data


@router.get("/{tenant_id}/movements")
def tenant_movements(tenant_id: int, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    tenant = _get_tenant(db, user, tenant_id)
    items = (
        db.query(TenantMovement)
        .filter(TenantMovement.organization_id == tenant.organization_id, TenantMovement.tenant_id == tenant.id)
        .order_by(TenantMovement.movement_date.desc(), TenantMovement.id.desc())
        .all()
    )
    return {"total": len(items), "items": [to_dict(m) for m in items]}


@router.put("/{tenant_id}")
def update_tenant(tenant_id: int, data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    tenant = _get_tenant(db, user, tenant_id)
    if tenant.status == "Archived":
        raise HTTPException(400, "Archived tenants cannot be edited")
    clean = sanitize_payload(Tenant, data, blocked_fields=TENANT_BLOCKED)
    if clean.get("status") == "Archived":
        raise HTTPException(400, "Use DELETE to archive a tenant")
    if "property_id" in clean and clean["property_id"] != tenant.property_id:
        _scoped_property(db, user, clean["property_id"])
    unit_id = clean.get("unit_id", tenant.unit_id)
    unit = _free_unit(db, clean.get("property_id", tenant.property_id), unit_id, tenant.id)
    before = (tenant.property_id, tenant.unit_id)
    old_rent = tenant.rent_amount
    if unit_id != tenant.unit_id:
        _release_unit(db, tenant, user, notes="transfer")
    for k, v in clean.items():
        setattr(tenant, k, v)
    _occupy(db, unit, tenant, user)
    after = (tenant.property_id, tenant.unit_id)
    if after != before:
        history_service.record_movement(db, tenant, "transfer", user, from_place=before, to_place=after,
                                        old_rent=old_rent, new_rent=tenant.rent_amount, reason=data.get("reason"))
    db.commit()
    db.refresh(tenant)
    return to_dict(tenant)


@router.delete("/{tenant_id}")
def archive_tenant(tenant_id: int, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    tenant = _get_tenant(db, user, tenant_id)
    if tenant.status == "Archived":
        raise HTTPException(400, "Tenant is already archived")
    unsettled = (
        db.query(Payment)
        .filter(Payment.organization_id == tenant.organization_id, Payment.tenant_id == tenant.id,
                Payment.status.in_(UNSETTLED_STATUSES))
        .count()
    )
    if unsettled:
        raise HTTPException(
            400,
            f"Cannot delete tenant with {unsettled} active payment(s). Please complete or cancel payments first.",
        )
    _release_unit(db, tenant, user, notes="tenant archived")
    history_service.record_movement(db, tenant, "move_out", user, from_place=(tenant.property_id, tenant.unit_id),
                                    old_rent=tenant.rent_amount, reason="archived")
    tenant.status = "Archived"
    tenant.archived_at = datetime.utcnow()
    record_audit(db, user, "tenant_archived", "tenant", tenant.id,
                 {"name": f"{tenant.first_name} {tenant.last_name}", "property_id": tenant.property_id}, request)
    emit_outbox_event(db, tenant.organization_id, "tenant.archived", "tenant", tenant.id, {})
    db.commit()
    subscription_service.update_usage(db, tenant.organization_id, "tenants", -1)
    return {"message": "Tenant archived successfully"}


@router.post("/{tenant_id}/restore")
def restore_tenant(tenant_id: int, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    forbid_agents(user, "restore tenants")
    tenant = _get_tenant(db, user, tenant_id)
    if tenant.status != "Archived":
        raise HTTPException(400, "Tenant is not archived")
    subscription_service.ensure_within_limit(db, tenant.organization_id, "tenants")
    tenant.status = "Active"
    tenant.archived_at = None
    tenant.unit_id = None
    record_audit(db, user, "tenant_restored", "tenant", tenant.id, None, request)
    db.commit()
    subscription_service.update_usage(db, tenant.organization_id, "tenants", 1)
    db.refresh(tenant)
    return to_dict(tenant)


# --- Leases ---
def _validate_lease_dates(lease_data: dict, current: Optional[Lease] = None) -> None:
    start = lease_data.get("start_date") or (current.start_date if current else None)
    end = lease_data.get("end_date") or (current.end_date if current else None)
    if start and end and end <= start:
        raise HTTPException(422, "end_date must be after start_date")


def _check_lease_refs(db: Session, user: UserAccount, clean: dict, property_id) -> None:
    if clean.get("property_id") is not None:
        scoped_get(db, user, Property, clean["property_id"], "Property")
    if clean.get("unit_id") is not None:
        scoped_get(db, user, Unit, clean["unit_id"], "Unit",
                   Unit.property_id == clean.get("property_id", property_id))


def _get_lease(db: Session, user: UserAccount, lease_id: int) -> Lease:
    lease = org_scoped(db.query(Lease), Lease, user).filter(Lease.id == lease_id).first()
    if not lease:
        raise HTTPException(404, "Lease not found")
    return lease


@lease_router.get("")
def list_leases(
    tenant_id: Optional[int] = None,
    property_id: Optional[int] = None,
    status: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    q = org_scoped(db.query(Lease), Lease, user)
    if tenant_id:
        q = q.filter(Lease.tenant_id == tenant_id)
    if property_id:
        q = q.filter(Lease.property_id == property_id)
    if status:
        q = q.filter(Lease.status == status)
    total = q.count()
    items = q.order_by(Lease.start_date.desc(), Lease.id.desc()).offset(skip).limit(limit).all()
    return {"total": total, "items": [to_dict(l) for l in items]}


@lease_router.post("", status_code=201)
def create_lease(data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    require_org(user)
    tenant = _get_tenant(db, user, data.get("tenant_id"))
    if tenant.status == "Archived":
        raise HTTPException(400, "Cannot create a lease for an archived tenant")
    clean = sanitize_payload(Lease, data, blocked_fields=LEASE_BLOCKED)
    require_fields(clean, "start_date", "end_date")
    _validate_lease_dates(clean)
    _check_lease_refs(db, user, clean, tenant.property_id)
    lease = Lease(**clean)
    lease.tenant_id = tenant.id
    lease.organization_id = tenant.organization_id
    lease.property_id = lease.property_id or tenant.property_id
    lease.unit_id = lease.unit_id or tenant.unit_id
    if lease.rent_amount is None:
        lease.rent_amount = tenant.rent_amount or 0
    db.add(lease)
    db.flush()
    emit_outbox_event(db, lease.organization_id, "lease.created", "lease", lease.id, {"tenant_id": tenant.id})
    db.commit()
    db.refresh(lease)
    return to_dict(lease)


@lease_router.get("/{lease_id}")
def get_lease(lease_id: int, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    return to_dict(_get_lease(db, user, lease_id))


@lease_router.put("/{lease_id}")
def update_lease(lease_id: int, data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    lease = _get_lease(db, user, lease_id)
    if lease.status == "Terminated":
        raise HTTPException(400, "Terminated leases cannot be edited")
    clean = sanitize_payload(Lease, data, blocked_fields=LEASE_BLOCKED)
    _validate_lease_dates(clean, lease)
    _check_lease_refs(db, user, clean, lease.property_id)
    for k, v in clean.items():
        setattr(lease, k, v)
    db.commit()
    db.refresh(lease)
    return to_dict(lease)


@lease_router.post("/{lease_id}/terminate")
def terminate_lease(lease_id: int, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    lease = _get_lease(db, user, lease_id)
    if lease.status == "Terminated":
        raise HTTPException(400, "Lease is already terminated")
    lease.status = "Terminated"
    lease.terminated_at = datetime.utcnow()
    record_audit(db, user, "lease_terminated", "lease", lease.id, {"tenant_id": lease.tenant_id}, request)
    emit_outbox_event(db, lease.organization_id, "lease.terminated", "lease", lease.id, {})
    db.commit()
    db.refresh(lease)
    return to_dict(lease)
