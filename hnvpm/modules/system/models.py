"""System models - audit trail and domain event outbox."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text
from sqlalchemy.sql import func
from hnvpm.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, index=True)
    organization_id = Column(Integer, index=True)
    action = Column(String(100), nullable=False, index=True)
    resource = Column(String(50), nullable=False)
    resource_id = Column(Integer)
    details = Column(JSON, default=dict)
    ip_address = Column(String(64))
    user_agent = Column(String(300))
    created_at = Column(DateTime, server_default=func.now())


class EventOutbox(Base):
    __tablename__ = "event_outbox"
    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"))
    event_type = Column(String(100), nullable=False, index=True)
    aggregate_type = Column(String(50), nullable=False)
    aggregate_id = Column(Integer, nullable=False)
    event_key = Column(String(200))
    payload = Column(JSON, nullable=False)
    status = Column(String(20), default="Pending")  # Pending/Published/Failed
    retries = Column(Integer, default=0)
    available_at = Column(DateTime, server_default=func.now())
    published_at = Column(DateTime)
    error_message = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
