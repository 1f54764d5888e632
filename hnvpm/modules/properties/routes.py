"""Property and unit routes."""
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
from hnvpm.modules.tenants.models import Tenant, UnitHistory
from hnvpm.modules.payments.models import Payment, PAID_STATUSES
from hnvpm.modules.maintenance.models import MaintenanceRequest, OPEN_STATUSES
from hnvpm.modules.subscriptions import service as subscription_service
from hnvpm.utils import history_service
from hnvpm.utils.audit_service import record_audit
from hnvpm.utils.event_service import emit_outbox_event
from hnvpm.utils.payload import sanitize_payload, require_fields, to_dict
from hnvpm.utils.scoping import org_scoped, require_org, forbid_agents

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/properties",
    tags=["Properties"],
    dependencies=[Depends(require_active_access)],
)

PROPERTY_BLOCKED = {"status", "is_active", "archived_at", "archived_by"}
UNIT_BLOCKED = {"property_id", "tenant_id", "archived_at"}


def _get_property(db: Session, user: UserAccount, prop_id: int) -> Property:
    prop = org_scoped(db.query(Property), Property, user).filter(Property.id == prop_id).first()
    if not prop:
        raise HTTPException(404, "Property not found")
    return prop


@router.get("")
def list_properties(
    search: Optional[str] = None,
    status: Optional[str] = None,
    property_type: Optional[str] = None,
    include_archived: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    q = org_scoped(db.query(Property), Property, user)
    if status:
        q = q.filter(Property.status == status)
    elif not include_archived:
        q = q.filter(Property.status != "Archived")
    if property_type:
        q = q.filter(Property.property_type == property_type)
    if search:
        q = q.filter(or_(
            Property.name.ilike(f"%{search}%"),
            Property.address_line1.ilike(f"%{search}%"),
            Property.city.ilike(f"%{search}%"),
        ))
    total = q.count()
    items = q.order_by(Property.id.desc()).offset(skip).limit(limit).all()
    return {"total": total, "items": [to_dict(p) for p in items]}


@router.post("", status_code=201)
def create_property(data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    org_id = require_org(user)
    clean = sanitize_payload(Property, data, blocked_fields=PROPERTY_BLOCKED)
    require_fields(clean, "name")
    if clean.get("number_of_units") is not None and clean["number_of_units"] < 1:
        raise HTTPException(422, "number_of_units must be at least 1")

    subscription_service.ensure_within_limit(db, org_id, "properties")

    prop = Property(**clean)
    prop.organization_id = org_id
    prop.created_by = user.id
    db.add(prop)
    db.flush()
    emit_outbox_event(db, org_id, "property.created", "property", prop.id, {"name": prop.name})
    db.commit()
    db.refresh(prop)
    subscription_service.update_usage(db, org_id, "properties", 1)
    return to_dict(prop)


@router.get("/{prop_id}")
def get_property(prop_id: int, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    prop = _get_property(db, user, prop_id)
    data = to_dict(prop)
    data["unit_count"] = db.query(Unit).filter(Unit.property_id == prop.id, Unit.status != "Archived").count()
    data["active_tenants"] = (
        db.query(Tenant).filter(Tenant.property_id == prop.id, Tenant.status.in_(("Active", "Late"))).count()
    )
    return data


@router.put("/{prop_id}")
def update_property(prop_id: int, data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    prop = _get_property(db, user, prop_id)
    if prop.status == "Archived":
        raise HTTPException(400, "Archived properties cannot be edited")
    clean = sanitize_payload(Property, data, blocked_fields=PROPERTY_BLOCKED - {"status"})
    if clean.get("status") == "Archived":
        raise HTTPException(400, "Use DELETE to archive a property")
    for k, v in clean.items():
        setattr(prop, k, v)
    if "status" in clean:
        prop.is_active = clean["status"] == "Active"
    db.commit()
    db.refresh(prop)
    return to_dict(prop)


@router.delete("/{prop_id}")
def archive_property(
    prop_id: int,
    request: Request,
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    forbid_agents(user, "delete properties")
    prop = _get_property(db, user, prop_id)
    if prop.status == "Archived":
        raise HTTPException(400, "Property is already archived")

    active_tenants = (
        db.query(Tenant)
        .filter(Tenant.organization_id == prop.organization_id, Tenant.property_id == prop.id,
                Tenant.status == "Active")
        .count()
    )
    if active_tenants:
        open_maintenance = (
            db.query(MaintenanceRequest)
            .filter(MaintenanceRequest.organization_id == prop.organization_id,
                    MaintenanceRequest.property_id == prop.id, MaintenanceRequest.status.in_(OPEN_STATUSES))
            .count()
        )
        raise HTTPException(400, detail={
            "message": f"Cannot archive property with {active_tenants} active tenant(s). "
                       "Please move or deactivate tenants first.",
            "active_tenants": active_tenants,
            "open_maintenance": open_maintenance,
        })

    now = datetime.utcnow()
    prop.status = "Archived"
    prop.is_active = False
    prop.archived_at = now
    prop.archived_by = user.id

    live_units = (
        db.query(Unit)
        .filter(Unit.organization_id == prop.organization_id, Unit.property_id == prop.id,
                Unit.status != "Archived")
        .all()
    )
    for unit in live_units:
        if unit.tenant_id:
            history_service.record_unit_event(
                db, unit, history_service.MOVED_OUT, user, unit.tenant_id,
                previous={"status": unit.status, "tenant_id": unit.tenant_id}, notes="property archived",
            )
        history_service.record_unit_event(
            db, unit, history_service.UNIT_ARCHIVED, user,
            previous={"status": unit.status}, new={"status": "Archived"},
        )
        unit.status = "Archived"
        unit.tenant_id = None
        unit.archived_at = now
    units = len(live_units)
    payments = (
        db.query(Payment)
        .filter(Payment.organization_id == prop.organization_id, Payment.property_id == prop.id,
                Payment.status.notin_(PAID_STATUSES + ("Cancelled",)))
        .update({Payment.status: "Cancelled", Payment.cancelled_at: now}, synchronize_session=False)
    )
    maintenance = (
        db.query(MaintenanceRequest)
        .filter(MaintenanceRequest.organization_id == prop.organization_id,
                MaintenanceRequest.property_id == prop.id,
                MaintenanceRequest.status.in_(OPEN_STATUSES))
        .update({MaintenanceRequest.status: "Cancelled", MaintenanceRequest.cancelled_at: now},
                synchronize_session=False)
    )
    cascade = {"archived_units": units, "cancelled_payments": payments, "cancelled_maintenance": maintenance}
    record_audit(db, user, "property_archived", "property", prop.id, cascade, request)
    emit_outbox_event(db, prop.organization_id, "property.archived", "property", prop.id, cascade)
    db.commit()
    subscription_service.update_usage(db, prop.organization_id, "properties", -1)
    logger.info("Property %s archived: %s", prop.id, cascade)
    return {"message": "Property archived successfully", "cascade": cascade}


@router.post("/{prop_id}/restore")
def restore_property(prop_id: int, request: Request, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    forbid_agents(user, "restore properties")
    prop = _get_property(db, user, prop_id)
    if prop.status != "Archived":
        raise HTTPException(400, "Property is not archived")
    subscription_service.ensure_within_limit(db, prop.organization_id, "properties")
    prop.status = "Active"
    prop.is_active = True
    prop.archived_at = None
    prop.archived_by = None
    db.query(Unit).filter(Unit.organization_id == prop.organization_id, Unit.property_id == prop.id).update(
        {Unit.status: "vacant", Unit.archived_at: None}, synchronize_session=False,
    )
    record_audit(db, user, "property_restored", "property", prop.id, None, request)
    db.commit()
    subscription_service.update_usage(db, prop.organization_id, "properties", 1)
    db.refresh(prop)
    return to_dict(prop)


# --- Units ---
@router.get("/{prop_id}/units")
def list_units(
    prop_id: int,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    prop = _get_property(db, user, prop_id)
    q = db.query(Unit).filter(Unit.property_id == prop.id)
    if status:
        q = q.filter(Unit.status == status)
    items = q.order_by(Unit.unit_number).all()
    return {"total": len(items), "items": [to_dict(u) for u in items]}


@router.post("/{prop_id}/units", status_code=201)
def create_unit(prop_id: int, data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    prop = _get_property(db, user, prop_id)
    if prop.status == "Archived":
        raise HTTPException(400, "Cannot add units to an archived property")
    clean = sanitize_payload(Unit, data, blocked_fields=UNIT_BLOCKED)
    require_fields(clean, "unit_number")
    exists = db.query(Unit).filter(Unit.property_id == prop.id, Unit.unit_number == clean["unit_number"]).first()
    if exists:
        raise HTTPException(409, "Unit number already exists for this property")
    unit = Unit(**clean)
    unit.property_id = prop.id
    unit.organization_id = prop.organization_id
    db.add(unit)
    db.commit()
    db.refresh(unit)
    return to_dict(unit)


def _get_unit(db: Session, user: UserAccount, prop_id: int, unit_id: int) -> Unit:
    prop = _get_property(db, user, prop_id)
    unit = db.query(Unit).filter(Unit.id == unit_id, Unit.property_id == prop.id).first()
    if not unit:
        raise HTTPException(404, "Unit not found")
    return unit


@router.get("/{prop_id}/units/{unit_id}")
def get_unit(prop_id: int, unit_id: int, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    return to_dict(_get_unit(db, user, prop_id, unit_id))


@router.put("/{prop_id}/units/{unit_id}")
def update_unit(prop_id: int, unit_id: int, data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    unit = _get_unit(db, user, prop_id, unit_id)
    for k, v in sanitize_payload(Unit, data, blocked_fields=UNIT_BLOCKED).items():
        setattr(unit, k, v)
    db.commit()
    db.refresh(unit)
    return to_dict(unit)


@router.delete("/{prop_id}/units/{unit_id}")
def delete_unit(prop_id: int, unit_id: int, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    forbid_agents(user, "delete units")
    unit = _get_unit(db, user, prop_id, unit_id)
    occupied = db.query(Tenant).filter(Tenant.unit_id == unit.id, Tenant.status.in_(("Active", "Late"))).count()
    if occupied:
        raise HTTPException(400, "Cannot archive an occupied unit")
    history_service.record_unit_event(db, unit, history_service.UNIT_ARCHIVED, user,
                                      previous={"status": unit.status}, new={"status": "Archived"})
    unit.status = "Archived"
    unit.tenant_id = None
    unit.archived_at = datetime.utcnow()
    db.commit()
    return {"message": "Unit archived"}


@router.get("/{prop_id}/units/{unit_id}/history")
def unit_history(prop_id: int, unit_id: int, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    unit = _get_unit(db, user, prop_id, unit_id)
    items = (
        db.query(UnitHistory)
        .filter(UnitHistory.organization_id == unit.organization_id, UnitHistory.unit_id == unit.id)
        .order_by(UnitHistory.event_date.desc(), UnitHistory.id.desc())
        .all()
    )
    return {"total": len(items), "items": [to_dict(h) for h in items]}
