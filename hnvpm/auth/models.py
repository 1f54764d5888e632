"""User account model."""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from hnvpm.database import Base

SUPER_ADMIN = "Super Admin"
LANDLORD = "Landlord"
MANAGER = "Manager"
AGENT = "Agent"
TENANT = "Tenant"
ROLES = (SUPER_ADMIN, LANDLORD, MANAGER, AGENT, TENANT)


class UserAccount(Base):
    __tablename__ = "user_accounts"
    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(200), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    phone = Column(String(30))
    role = Column(String(20), nullable=False, default=LANDLORD, index=True)
    status = Column(String(20), nullable=False, default="active")  # active/pending/suspended
    is_email_verified = Column(Boolean, default=False)
    email_verification_token = Column(String(100), index=True)
    invitation_token = Column(String(100), index=True)
    invitation_expires_at = Column(DateTime)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True)
    managed_property_ids = Column(JSON, default=list)
    last_login_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @property
    def is_super_admin(self) -> bool:
        return self.role == SUPER_ADMIN
