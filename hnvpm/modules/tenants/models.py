"""Tenant (renter), Lease and occupancy history models."""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, Numeric, ForeignKey, Text, JSON
from sqlalchemy.sql import func
from hnvpm.database import Base


class Tenant(Base):
    __tablename__ = "tenants"
    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), index=True)
    unit_id = Column(Integer, ForeignKey("units.id"))
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(200))
    phone = Column(String(30))
    rent_amount = Column(Numeric(12, 2), default=0)
    status = Column(String(20), nullable=False, default="Active", index=True)  # Active/Inactive/Late/Pending/Archived
    move_in_date = Column(Date)
    move_out_date = Column(Date)
    notes = Column(Text)
    archived_at = Column(DateTime)
    created_by = Column(Integer)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Lease(Base):
    __tablename__ = "leases"
    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"))
    unit_id = Column(Integer, ForeignKey("units.id"))
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    rent_amount = Column(Numeric(12, 2), nullable=False, default=0)
    deposit_amount = Column(Numeric(12, 2), default=0)
    status = Column(String(20), default="Active")  # Active/Expired/Terminated
    auto_renew = Column(Boolean, default=False)
    terminated_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class UnitHistory(Base):
    """One occupancy event on a unit: a tenant moving in or out, or the unit being archived."""
    __tablename__ = "unit_history"
    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), index=True)
    unit_id = Column(Integer, ForeignKey("units.id"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"))
    event_type = Column(String(30), nullable=False)  # tenant_moved_in/tenant_moved_out/unit_archived
    previous_data = Column(JSON, default=dict)
    new_data = Column(JSON, default=dict)
    notes = Column(Text)
    triggered_by = Column(Integer)
    event_date = Column(DateTime, server_default=func.now(), index=True)
    created_at = Column(DateTime, server_default=func.now())


class TenantMovement(Base):
    __tablename__ = "tenant_movements"
    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    movement_type = Column(String(20), nullable=False)  # move_in/transfer/move_out
    from_property_id = Column(Integer)
    from_unit_id = Column(Integer)
    to_property_id = Column(Integer)
    to_unit_id = Column(Integer)
    old_rent = Column(Numeric(12, 2))
    new_rent = Column(Numeric(12, 2))
    reason = Column(String(200))
    processed_by = Column(Integer)
    movement_date = Column(DateTime, server_default=func.now(), index=True)
    created_at = Column(DateTime, server_default=func.now())
