"""Idempotent seeding of default plans and the platform Super Admin."""
import logging

from sqlalchemy.orm import Session

from hnvpm.config import get_settings
from hnvpm.auth.dependencies import hash_password
from hnvpm.auth.models import UserAccount, SUPER_ADMIN
from hnvpm.modules.subscriptions.models import Plan

logger = logging.getLogger(__name__)

DEFAULT_PLANS = [
    {
        "name": "Starter",
        "description": "For independent landlords getting started",
        "price": 19,
        "max_properties": 5,
        "max_tenants": 25,
        "max_users": 2,
        "max_exports": 10,
        "max_storage": 1024,
        "sort_order": 1,
        "features": ["Property & tenant management", "Payment tracking", "CSV/XLSX export"],
    },
    {
        "name": "Professional",
        "description": "For growing portfolios with a small team",
        "price": 49,
        "max_properties": 25,
        "max_tenants": 150,
        "max_users": 5,
        "max_exports": 50,
        "max_storage": 5120,
        "sort_order": 2,
        "features": ["Everything in Starter", "Agent accounts", "Maintenance tracking"],
    },
    {
        "name": "Enterprise",
        "description": "Unlimited properties, tenants and users",
        "price": 149,
        "max_properties": -1,
        "max_tenants": -1,
        "max_users": -1,
        "max_exports": -1,
        "max_storage": -1,
        "sort_order": 3,
        "features": ["Everything in Professional", "Unlimited usage"],
    },
]


def get_or_create(db: Session, model, defaults=None, **filters):
    defaults = defaults or {}
    instance = db.query(model).filter_by(**filters).first()
    if instance:
        return instance, False
    instance = model(**filters, **defaults)
    db.add(instance)
    db.flush()
    return instance, True


def seed_plans(db: Session) -> int:
    created = 0
    for spec in DEFAULT_PLANS:
        defaults = {k: v for k, v in spec.items() if k != "name"}
        _, was_created = get_or_create(db, Plan, defaults=defaults, name=spec["name"])
        created += int(was_created)
    db.flush()
    return created


def seed_super_admin(db: Session) -> UserAccount:
    settings = get_settings()
    admin, created = get_or_create(
        db,
        UserAccount,
        email=settings.SUPER_ADMIN_EMAIL.lower(),
        defaults={
            "password_hash": hash_password(settings.SUPER_ADMIN_PASSWORD),
            "first_name": "Platform",
            "last_name": "Admin",
            "role": SUPER_ADMIN,
            "status": "active",
            "is_email_verified": True,
        },
    )
    if not created and admin.role != SUPER_ADMIN:
        logger.warning("Seed email %s belongs to a %s account; leaving it unchanged", admin.email, admin.role)
    return admin


def seed_defaults(db: Session) -> None:
    plans = seed_plans(db)
    seed_super_admin(db)
    db.commit()
    logger.info("Seeded defaults (%d new plan(s))", plans)
