"""Seed default plans, the Super Admin and a sample landlord organization.

Usage:
    python scripts/seed_data.py
"""

import os
import sys
from datetime import datetime, timedelta

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from hnvpm.database import SessionLocal, init_db
from hnvpm.auth.dependencies import hash_password
from hnvpm.auth.models import UserAccount, LANDLORD, AGENT
from hnvpm.modules.organizations.models import Organization
from hnvpm.modules.subscriptions.models import Plan
from hnvpm.modules.subscriptions import service as subscription_service
from hnvpm.modules.properties.models import Property, Unit
from hnvpm.modules.tenants.models import Tenant
from hnvpm.modules.payments.models import Payment
from hnvpm.modules.expenses.models import Expense
from hnvpm.seed import get_or_create, seed_plans, seed_super_admin
from hnvpm.utils import history_service


def seed_sample_org(db):
    org, _ = get_or_create(
        db,
        Organization,
        name="Sample Rentals",
        defaults={"email": "owner@sample-rentals.local", "status": "active"},
    )
    landlord, _ = get_or_create(
        db,
        UserAccount,
        email="owner@sample-rentals.local",
        defaults={
            "password_hash": hash_password("sample123"),
            "first_name": "Sam",
            "last_name": "Owner",
            "role": LANDLORD,
            "organization_id": org.id,
            "is_email_verified": True,
        },
    )
    org.owner_id = landlord.id
    db.commit()

    if not subscription_service.current_subscription(db, org.id):
        plan = db.query(Plan).filter(Plan.name == "Professional").first()
        subscription_service.create_trial_subscription(db, org.id, plan.id)
    return org, landlord


def seed_portfolio(db, org, landlord):
    property_specs = [
        {"name": "Maple Residency", "city": "Austin", "state": "TX", "address": "121 Maple Ave", "units": 4, "rent": 1450},
        {"name": "Riverfront Lofts", "city": "Dallas", "state": "TX", "address": "88 River St", "units": 2, "rent": 2100},
    ]
    properties = []
    for spec in property_specs:
        prop, created = get_or_create(
            db,
            Property,
            organization_id=org.id,
            name=spec["name"],
            defaults={
                "property_type": "Residential",
                "address_line1": spec["address"],
                "city": spec["city"],
                "state": spec["state"],
                "country": "US",
                "number_of_units": spec["units"],
                "created_by": landlord.id,
            },
        )
        for n in range(1, spec["units"] + 1):
            get_or_create(
                db,
                Unit,
                property_id=prop.id,
                unit_number=f"{n:02d}",
                defaults={"organization_id": org.id, "rent": spec["rent"], "bedrooms": 2},
            )
        properties.append((prop, spec))

    tenant_specs = [("Ava", "Reed"), ("Liam", "Shaw"), ("Mia", "Cole")]
    for idx, (first, last) in enumerate(tenant_specs):
        prop, spec = properties[idx % len(properties)]
        unit = db.query(Unit).filter(Unit.property_id == prop.id, Unit.tenant_id.is_(None)).first()
        tenant, created = get_or_create(
            db,
            Tenant,
            organization_id=org.id,
            email=f"{first.lower()}.{last.lower()}@tenant.local",
            defaults={
                "first_name": first,
                "last_name": last,
                "property_id": prop.id,
                "unit_id": unit.id if unit else None,
                "rent_amount": spec["rent"],
                "created_by": landlord.id,
            },
        )
        if created and unit:
            history_service.record_unit_event(db, unit, history_service.MOVED_IN, landlord, tenant.id,
                                              previous={"status": unit.status}, new={"status": "occupied"})
            unit.tenant_id = tenant.id
            unit.status = "occupied"
        if created:
            history_service.record_movement(db, tenant, "move_in", landlord,
                                            to_place=(tenant.property_id, tenant.unit_id), new_rent=spec["rent"])
            for months_ago in range(3):
                db.add(Payment(
                    organization_id=org.id,
                    tenant_id=tenant.id,
                    property_id=prop.id,
                    amount=spec["rent"],
                    payment_date=datetime.utcnow() - timedelta(days=30 * months_ago),
                    payment_method="bank_transfer",
                    status="Paid",
                ))

    expense_specs = [
        ("Roof gutter cleaning", 180, "Repairs", 0),
        ("Common area electricity", 240, "Utilities", 0),
        ("Building insurance", 960, "Insurance", None),
    ]
    for description, amount, category, prop_idx in expense_specs:
        get_or_create(
            db,
            Expense,
            organization_id=org.id,
            description=description,
            defaults={
                "amount": amount,
                "category": category,
                "property_id": properties[prop_idx][0].id if prop_idx is not None else None,
                "expense_date": datetime.utcnow() - timedelta(days=10),
                "created_by": landlord.id,
            },
        )

    get_or_create(
        db,
        UserAccount,
        email="agent@sample-rentals.local",
        defaults={
            "password_hash": hash_password("sample123"),
            "first_name": "Alex",
            "last_name": "Agent",
            "role": AGENT,
            "organization_id": org.id,
            "is_email_verified": True,
            "managed_property_ids": [properties[0][0].id],
        },
    )
    db.commit()
    subscription_service.sync_usage(db, org.id)


def main():
    init_db()
    db = SessionLocal()
    try:
        seed_plans(db)
        seed_super_admin(db)
        db.commit()
        org, landlord = seed_sample_org(db)
        seed_portfolio(db, org, landlord)
        print(f"Seeded organization '{org.name}' (id={org.id}); login owner@sample-rentals.local / sample123")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
