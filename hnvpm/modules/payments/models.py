"""Rent payment model."""
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Text
from sqlalchemy.sql import func
from hnvpm.database import Base

PAID_STATUSES = ("Paid", "completed", "Completed")
UNSETTLED_STATUSES = ("Pending", "Processing")


class Payment(Base):
    __tablename__ = "payments"
    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(DateTime, server_default=func.now(), index=True)
    payment_method = Column(String(30))
    status = Column(String(20), nullable=False, default="Pending", index=True)  # Pending/Processing/Paid/Failed/Cancelled
    reference = Column(String(100))
    cancelled_at = Column(DateTime)
    notes = Column(Text)
    created_by = Column(Integer)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
