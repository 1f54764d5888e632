"""Property and Unit models."""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, ForeignKey, Text
from sqlalchemy.sql import func
from hnvpm.database import Base


class Property(Base):
    __tablename__ = "properties"
    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    property_type = Column(String(50), default="Residential")
    address_line1 = Column(String(300))
    address_line2 = Column(String(300))
    city = Column(String(100))
    state = Column(String(100))
    postal_code = Column(String(20))
    country = Column(String(100))
    number_of_units = Column(Integer, default=1)
    description = Column(Text)
    status = Column(String(20), nullable=False, default="Active", index=True)  # Active/Inactive/Archived
    is_active = Column(Boolean, default=True)
    archived_at = Column(DateTime)
    archived_by = Column(Integer)
    created_by = Column(Integer)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Unit(Base):
    __tablename__ = "units"
    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    unit_number = Column(String(50), nullable=False)
    rent = Column(Numeric(12, 2), default=0)
    deposit = Column(Numeric(12, 2), default=0)
    bedrooms = Column(Integer)
    bathrooms = Column(Numeric(4, 1))
    square_feet = Column(Integer)
    status = Column(String(20), default="vacant")  # vacant/occupied/maintenance/reserved/Archived
    tenant_id = Column(Integer)
    archived_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
