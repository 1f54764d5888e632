"""Organization (a landlord's account on the platform)."""
from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from hnvpm.database import Base


class Organization(Base):
    __tablename__ = "organizations"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    email = Column(String(200))
    phone = Column(String(30))
    website = Column(String(300))
    invite_code = Column(String(20), unique=True, index=True)
    # Not a foreign key: user_accounts already references organizations.
    owner_id = Column(Integer, index=True)
    status = Column(String(20), nullable=False, default="active", index=True)  # active/inactive
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
