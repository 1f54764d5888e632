"""Plan and Subscription models."""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric, ForeignKey, JSON, Text
from sqlalchemy.sql import func
from hnvpm.database import Base

LIMIT_TYPES = ("properties", "tenants", "users", "exports", "storage")

TRIALING = "trialing"
ACTIVE = "active"
INACTIVE = "inactive"
PAST_DUE = "past_due"
CANCELED = "canceled"
EXPIRED = "expired"
ACTIVE_STATUSES = (ACTIVE, TRIALING)
SUBSCRIPTION_STATUSES = (TRIALING, ACTIVE, INACTIVE, PAST_DUE, CANCELED, EXPIRED)


class Plan(Base):
    __tablename__ = "plans"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(10), default="USD")
    billing_cycle = Column(String(10), default="monthly")  # monthly/yearly
    features = Column(JSON, default=list)
    # Negative limit = unlimited
    max_properties = Column(Integer, default=5)
    max_tenants = Column(Integer, default=25)
    max_users = Column(Integer, default=2)
    max_exports = Column(Integer, default=10)
    max_storage = Column(Integer, default=1024)  # MB
    is_active = Column(Boolean, default=True)
    is_public = Column(Boolean, default=True)
    sort_order = Column(Integer, default=0)
    twocheckout_product_id = Column(String(100))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Subscription(Base):
    __tablename__ = "subscriptions"
    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"))
    status = Column(String(20), nullable=False, default=INACTIVE, index=True)
    is_lifetime = Column(Boolean, default=False)
    trial_end = Column(DateTime)
    current_period_start = Column(DateTime)
    current_period_end = Column(DateTime, index=True)
    cancel_at_period_end = Column(Boolean, default=False)
    canceled_at = Column(DateTime)
    ended_at = Column(DateTime)
    billing_cycle = Column(String(10), default="monthly")
    amount = Column(Numeric(10, 2), default=0)
    currency = Column(String(10), default="USD")
    payment_method = Column(String(30))
    last_payment_date = Column(DateTime)
    next_billing_date = Column(DateTime)
    failed_payment_attempts = Column(Integer, default=0)
    twocheckout_subscription_id = Column(String(100), index=True)
    external_reference = Column(String(200), index=True)
    notes = Column(Text)

    limit_properties = Column(Integer, default=5)
    limit_tenants = Column(Integer, default=25)
    limit_users = Column(Integer, default=2)
    limit_exports = Column(Integer, default=10)
    limit_storage = Column(Integer, default=1024)

    usage_properties = Column(Integer, default=0)
    usage_tenants = Column(Integer, default=0)
    usage_users = Column(Integer, default=0)
    usage_exports = Column(Integer, default=0)
    usage_storage = Column(Integer, default=0)
    usage_last_reset = Column(DateTime, server_default=func.now())

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def get_usage(self, limit_type: str) -> int:
        return getattr(self, f"usage_{limit_type}") or 0

    def get_limit(self, limit_type: str) -> int:
        value = getattr(self, f"limit_{limit_type}")
        return -1 if value is None else value

    def usage_dict(self) -> dict:
        return {t: self.get_usage(t) for t in LIMIT_TYPES} | {"last_reset": self.usage_last_reset}

    def limits_dict(self) -> dict:
        return {t: self.get_limit(t) for t in LIMIT_TYPES}
