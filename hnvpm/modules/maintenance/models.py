from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.sql import func
from hnvpm.database import Base

OPEN_STATUSES = ("Open", "In Progress")


class MaintenanceRequest(Base):
    __tablename__ = "maintenance_requests"
    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"))
    title = Column(String(200))
    description = Column(Text, nullable=False)
    priority = Column(String(20), default="Medium")  # Low/Medium/High/Urgent
    status = Column(String(20), nullable=False, default="Open", index=True)  # Open/In Progress/Completed/Cancelled
    cancelled_at = Column(DateTime)
    completed_at = Column(DateTime)
    created_by = Column(Integer)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
