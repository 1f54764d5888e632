"""Maintenance request routes."""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from hnvpm.database import get_db
from hnvpm.auth.dependencies import get_current_user, require_active_access
from hnvpm.auth.models import UserAccount
from hnvpm.modules.maintenance.models import MaintenanceRequest
from hnvpm.modules.properties.models import Property
from hnvpm.modules.tenants.models import Tenant
from hnvpm.utils.event_service import emit_outbox_event
from hnvpm.utils.payload import sanitize_payload, require_fields, to_dict
from hnvpm.utils.scoping import org_scoped, require_org, scoped_get

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/maintenance",
    tags=["Maintenance"],
    dependencies=[Depends(require_active_access)],
)

STATUSES = ("Open", "In Progress", "Completed", "Cancelled")
PRIORITIES = ("Low", "Medium", "High", "Urgent")
UPDATE_BLOCKED = {"property_id", "tenant_id", "cancelled_at", "completed_at"}


def _validate(clean: dict) -> None:
    if clean.get("status") is not None and clean["status"] not in STATUSES:
        raise HTTPException(422, f"status must be one of: {', '.join(STATUSES)}")
    if clean.get("priority") is not None and clean["priority"] not in PRIORITIES:
        raise HTTPException(422, f"priority must be one of: {', '.join(PRIORITIES)}")


@router.get("")
def list_requests(
    property_id: Optional[int] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: UserAccount = Depends(get_current_user),
):
    q = org_scoped(db.query(MaintenanceRequest), MaintenanceRequest, user)
    if property_id:
        q = q.filter(MaintenanceRequest.property_id == property_id)
    if status:
        q = q.filter(MaintenanceRequest.status == status)
    if priority:
        q = q.filter(MaintenanceRequest.priority == priority)
    total = q.count()
    items = q.order_by(MaintenanceRequest.id.desc()).offset(skip).limit(limit).all()
    return {"total": total, "items": [to_dict(m) for m in items]}


@router.post("", status_code=201)
def create_request(data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    org_id = require_org(user)
    clean = sanitize_payload(MaintenanceRequest, data, blocked_fields={"cancelled_at", "completed_at", "status"})
    require_fields(clean, "property_id", "description")
    _validate(clean)
    prop = scoped_get(db, user, Property, clean["property_id"], "Property", Property.status != "Archived")
    if clean.get("tenant_id") is not None:
        scoped_get(db, user, Tenant, clean["tenant_id"], "Tenant", Tenant.property_id == prop.id)
    req = MaintenanceRequest(**clean)
    req.organization_id = org_id
    req.status = "Open"
    req.created_by = user.id
    db.add(req)
    db.flush()
    emit_outbox_event(db, org_id, "maintenance.opened", "maintenance_request", req.id,
                      {"property_id": prop.id, "priority": req.priority})
    db.commit()
    db.refresh(req)
    return to_dict(req)


@router.put("/{request_id}")
def update_request(request_id: int, data: dict, db: Session = Depends(get_db), user: UserAccount = Depends(get_current_user)):
    req = (
        org_scoped(db.query(MaintenanceRequest), MaintenanceRequest, user)
        .filter(MaintenanceRequest.id == request_id)
        .first()
    )
    if not req:
        raise HTTPException(404, "Maintenance request not found")
    clean = sanitize_payload(MaintenanceRequest, data, blocked_fields=UPDATE_BLOCKED)
    _validate(clean)
    for k, v in clean.items():
        setattr(req, k, v)
    if clean.get("status") == "Completed":
        req.completed_at = datetime.utcnow()
    elif clean.get("status") == "Cancelled":
        req.cancelled_at = datetime.utcnow()
    db.commit()
    db.refresh(req)
    return to_dict(req)
