"""Dashboard stats and cash-flow aggregates."""
from datetime import datetime, timedelta

from hnvpm.dashboards import service
from hnvpm.modules.expenses.models import Expense
from hnvpm.modules.maintenance.models import MaintenanceRequest
from hnvpm.modules.payments.models import Payment
from hnvpm.modules.properties.models import Property
from hnvpm.modules.tenants.models import Tenant
from tests.conftest import auth, add_user

NOW = datetime(2025, 3, 15, 12, 0)


def _portfolio(db, org):
    main = Property(organization_id=org.id, name="Main", number_of_units=4)
    side = Property(organization_id=org.id, name="Side", number_of_units=0)
    gone = Property(organization_id=org.id, name="Gone", number_of_units=9, status="Archived")
    db.add_all([main, side, gone])
    db.flush()
    ivy = Tenant(organization_id=org.id, property_id=main.id, first_name="Ivy", last_name="A", status="Active")
    late = Tenant(organization_id=org.id, property_id=main.id, first_name="Lee", last_name="B", status="Late")
    db.add_all([
        ivy,
        late,
        Tenant(organization_id=org.id, property_id=side.id, first_name="Pat", last_name="C", status="Pending"),
        Tenant(organization_id=org.id, property_id=main.id, first_name="Old", last_name="D", status="Archived"),
    ])
    db.flush()

    def pay(tenant, amount, when, status="Paid"):
        return Payment(organization_id=org.id, tenant_id=tenant.id, property_id=tenant.property_id,
                       amount=amount, payment_date=when, status=status)

    db.add_all([
        pay(ivy, 500, datetime(2025, 3, 10)),
        pay(late, 100, NOW - timedelta(hours=6)),
        pay(ivy, 999, datetime(2025, 3, 12), status="Pending"),
        pay(ivy, 300, datetime(2025, 2, 28)),
        pay(ivy, 250, datetime(2025, 1, 5)),
        pay(ivy, 700, datetime(2024, 6, 1)),
        MaintenanceRequest(organization_id=org.id, property_id=main.id, title="Leak", description="x", status="Open"),
        MaintenanceRequest(organization_id=org.id, property_id=side.id, title="Door", description="y",
                           status="In Progress"),
        MaintenanceRequest(organization_id=org.id, property_id=main.id, title="Paint", description="z",
                           status="Completed"),
    ])
    db.commit()
    return main, side


def test_stats_for_landlord(db, landlord):
    org, user = landlord
    _portfolio(db, org)
    stats = service.get_stats(db, user, now=NOW)
    assert stats["total_properties"] == 2
    assert stats["total_tenants"] == 3
    assert stats["monthly_revenue"] == 600.0
    assert stats["recent_payments"] == 1
    assert stats["pending_maintenance"] == 2
    # Two occupying tenants over 4 + 1 units.
    assert stats["occupancy_rate"] == 40


def test_stats_for_agent_cover_managed_properties_only(db, landlord):
    org, _ = landlord
    main, _ = _portfolio(db, org)
    agent = add_user(db, org, "agent@example.com", "Agent", managed_property_ids=[main.id])
    stats = service.get_stats(db, agent, now=NOW)
    assert stats["total_properties"] == 1
    assert stats["total_tenants"] == 2
    assert stats["pending_maintenance"] == 1
    assert stats["occupancy_rate"] == 50


def test_stats_without_organization_are_empty(db, super_admin):
    assert service.get_stats(db, super_admin, now=NOW) == service.EMPTY_STATS
    assert service.get_cash_flow(db, super_admin, now=NOW) == []


def test_cash_flow_groups_paid_income_by_month(db, landlord):
    org, user = landlord
    _portfolio(db, org)
    rows = service.get_cash_flow(db, user, now=NOW)
    assert rows == [
        {"month": "2025-01", "income": 250.0, "expenses": 0},
        {"month": "2025-02", "income": 300.0, "expenses": 0},
        {"month": "2025-03", "income": 600.0, "expenses": 0},
    ]


def test_cash_flow_includes_active_expenses(db, landlord):
    org, user = landlord
    main, _ = _portfolio(db, org)
    db.add_all([
        Expense(organization_id=org.id, property_id=main.id, description="Plumber", amount=120,
                category="Repairs", expense_date=datetime(2025, 2, 3)),
        Expense(organization_id=org.id, description="Insurance", amount=40, category="Insurance",
                expense_date=datetime(2024, 12, 20)),
        Expense(organization_id=org.id, description="Voided", amount=75, category="Other",
                expense_date=datetime(2025, 3, 1), status="Archived"),
        Expense(organization_id=org.id, description="Too old", amount=60, category="Taxes",
                expense_date=datetime(2024, 5, 1)),
    ])
    db.commit()
    rows = service.get_cash_flow(db, user, now=NOW)
    assert rows == [
        {"month": "2024-12", "income": 0.0, "expenses": 40.0},
        {"month": "2025-01", "income": 250.0, "expenses": 0.0},
        {"month": "2025-02", "income": 300.0, "expenses": 120.0},
        {"month": "2025-03", "income": 600.0, "expenses": 0.0},
    ]


def test_dashboard_routes(client, db, landlord):
    org, user = landlord
    db.add(Property(organization_id=org.id, name="Solo", number_of_units=1))
    db.commit()
    stats = client.get("/api/dashboard/stats", headers=auth(user))
    assert stats.status_code == 200
    assert stats.json()["total_properties"] == 1
    assert stats.json()["occupancy_rate"] == 0
    flow = client.get("/api/dashboard/cash-flow", headers=auth(user))
    assert flow.json() == {"items": []}


def test_dashboard_requires_login(client):
    assert client.get("/api/dashboard/stats").status_code == 401
