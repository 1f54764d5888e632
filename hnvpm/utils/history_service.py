"""Occupancy history: unit events and tenant movements, staged in the caller's transaction."""
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from hnvpm.modules.tenants.models import UnitHistory, TenantMovement

MOVED_IN = "tenant_moved_in"
MOVED_OUT = "tenant_moved_out"
UNIT_ARCHIVED = "unit_archived"


def record_unit_event(
    db: Session,
    unit,
    event_type: str,
    user=None,
    tenant_id: Optional[int] = None,
    previous: Optional[dict] = None,
    new: Optional[dict] = None,
    notes: Optional[str] = None,
) -> UnitHistory:
    entry = UnitHistory(
        organization_id=unit.organization_id,
        property_id=unit.property_id,
        unit_id=unit.id,
        tenant_id=tenant_id,
        event_type=event_type,
        previous_data=previous or {},
        new_data=new or {},
        notes=notes,
        triggered_by=getattr(user, "id", None),
        event_date=datetime.utcnow(),
    )
    db.add(entry)
    return entry


def record_movement(
    db: Session,
    tenant,
    movement_type: str,
    user=None,
    from_place: tuple = (None, None),
    to_place: tuple = (None, None),
    old_rent=None,
    new_rent=None,
    reason: Optional[str] = None,
) -> TenantMovement:
    """``from_place`` and ``to_place`` are ``(property_id, unit_id)`` pairs."""
    movement = TenantMovement(
        organization_id=tenant.organization_id,
        tenant_id=tenant.id,
        movement_type=movement_type,
        from_property_id=from_place[0],
        from_unit_id=from_place[1],
        to_property_id=to_place[0],
        to_unit_id=to_place[1],
        old_rent=old_rent,
        new_rent=new_rent,
        reason=reason,
        processed_by=getattr(user, "id", None),
        movement_date=datetime.utcnow(),
    )
    db.add(movement)
    return movement
