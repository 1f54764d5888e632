"""Platform administration: organizations, users, plans and billing overview."""
from hnvpm.auth.models import UserAccount
from hnvpm.modules.organizations.models import Organization
from hnvpm.modules.properties.models import Property
from hnvpm.modules.subscriptions.models import Plan, Subscription
from hnvpm.modules.subscriptions import service as subscription_service
from hnvpm.modules.system.models import AuditLog
from tests.conftest import auth, add_user, make_org


def test_super_admin_routes_reject_other_roles(client, landlord):
    _, user = landlord
    assert client.get("/api/super-admin/dashboard", headers=auth(user)).status_code == 403
    assert client.get("/api/super-admin/organizations").status_code == 401


def test_dashboard_counts(client, db, landlord, plan, super_admin):
    make_org(db, plan, email="second@example.com")
    body = client.get("/api/super-admin/dashboard", headers=auth(super_admin)).json()
    assert body["total_organizations"] == 2
    assert body["active_organizations"] == 2
    assert body["trialing_subscriptions"] == 2
    assert body["monthly_recurring_revenue"] == 0
    assert body["total_users"] == 3

    dist = client.get("/api/super-admin/plan-distribution", headers=auth(super_admin)).json()
    assert dist == [{"plan_id": plan.id, "name": "Starter", "value": 2}]


def test_list_organizations_includes_owner_and_subscription(client, landlord, super_admin):
    org, user = landlord
    body = client.get("/api/super-admin/organizations?search=owner", headers=auth(super_admin)).json()
    assert body["total"] == 1
    row = body["items"][0]
    assert row["owner"]["email"] == user.email
    assert row["member_count"] == 1
    assert row["subscription"]["status"] == "trialing"
    assert row["subscription"]["plan_name"] == "Starter"


def test_deactivate_and_activate_organization(client, db, landlord, super_admin):
    org, user = landlord
    resp = client.post(f"/api/super-admin/organizations/{org.id}/deactivate", headers=auth(super_admin))
    assert resp.status_code == 200
    assert resp.json()["organization"]["status"] == "inactive"
    db.expire_all()
    assert db.get(UserAccount, user.id).status == "suspended"
    assert subscription_service.check_subscription_status(db, org.id)["is_active"] is False

    resp = client.post(f"/api/super-admin/organizations/{org.id}/activate", headers=auth(super_admin))
    assert resp.json()["organization"]["status"] == "active"
    db.expire_all()
    assert db.get(UserAccount, user.id).status == "active"
    sub = subscription_service.current_subscription(db, org.id)
    assert sub.status == "active"
    assert db.query(AuditLog).filter(AuditLog.action == "organization_activated").count() == 1


def test_lifetime_grant_and_revoke(client, db, landlord, super_admin):
    org, _ = landlord
    granted = client.post(f"/api/super-admin/organizations/{org.id}/lifetime", headers=auth(super_admin))
    assert granted.status_code == 200
    assert granted.json()["subscription"]["is_lifetime"] is True
    assert granted.json()["subscription"]["current_period_end"] is None

    revoked = client.delete(f"/api/super-admin/organizations/{org.id}/lifetime", headers=auth(super_admin))
    assert revoked.status_code == 200
    assert revoked.json()["subscription"]["is_lifetime"] is False
    assert revoked.json()["subscription"]["current_period_end"] is not None

    again = client.delete(f"/api/super-admin/organizations/{org.id}/lifetime", headers=auth(super_admin))
    assert again.status_code == 400


def test_override_subscription_applies_plan_limits(client, db, landlord, super_admin):
    org, _ = landlord
    bigger = Plan(name="Professional", price=49, max_properties=10, max_tenants=50, max_users=5, max_exports=20)
    db.add(bigger)
    db.commit()
    resp = client.put(
        f"/api/super-admin/organizations/{org.id}/subscription",
        json={"plan_id": bigger.id, "status": "active", "limit_users": 8},
        headers=auth(super_admin),
    )
    assert resp.status_code == 200
    sub = resp.json()["subscription"]
    assert sub["status"] == "active"
    assert sub["plan"]["name"] == "Professional"
    assert sub["limit_properties"] == 10
    assert sub["limit_users"] == 8
    assert resp.json()["usage"]["usage"]["users"] == 1

    missing = client.put(f"/api/super-admin/organizations/{org.id}/subscription", json={"plan_id": 999},
                         headers=auth(super_admin))
    assert missing.status_code == 404


def test_user_status_and_delete(client, db, landlord, super_admin):
    org, _ = landlord
    agent = add_user(db, org, "agent@example.com", "Agent")
    subscription_service.update_usage(db, org.id, "users", 1)

    bad = client.put(f"/api/super-admin/users/{agent.id}/status", json={"status": "gone"}, headers=auth(super_admin))
    assert bad.status_code == 422
    ok = client.put(f"/api/super-admin/users/{agent.id}/status", json={"status": "Suspended"},
                    headers=auth(super_admin))
    assert ok.json()["status"] == "suspended"
    assert "password_hash" not in ok.json()
    own = client.put(f"/api/super-admin/users/{super_admin.id}/status", json={"status": "suspended"},
                     headers=auth(super_admin))
    assert own.status_code == 400

    deleted = client.delete(f"/api/super-admin/users/{agent.id}", headers=auth(super_admin))
    assert deleted.status_code == 200
    assert deleted.json()["deleted_user_id"] == agent.id
    assert subscription_service.current_subscription(db, org.id).usage_users == 1

    protected = client.delete(f"/api/super-admin/users/{super_admin.id}", headers=auth(super_admin))
    assert protected.status_code == 403


def test_list_users_filters_by_role(client, landlord, super_admin):
    body = client.get("/api/super-admin/users?role=Landlord", headers=auth(super_admin)).json()
    assert body["total"] == 1
    assert body["items"][0]["organization_name"] == "Org of owner@example.com"


def test_plan_management(client, db, landlord, plan, super_admin):
    headers = auth(super_admin)
    assert client.post("/api/super-admin/plans", json={"price": 5}, headers=headers).status_code == 422
    assert client.post("/api/super-admin/plans", json={"name": "Neg", "price": -1}, headers=headers).status_code == 422

    created = client.post("/api/super-admin/plans", json={"name": "Micro", "price": "5.00", "max_properties": 1},
                          headers=headers)
    assert created.status_code == 201
    micro_id = created.json()["id"]

    toggled = client.post(f"/api/super-admin/plans/{micro_id}/toggle", headers=headers)
    assert toggled.json()["is_active"] is False

    updated = client.put(f"/api/super-admin/plans/{micro_id}", json={"price": 7}, headers=headers)
    assert updated.json()["price"] == 7.0

    in_use = client.delete(f"/api/super-admin/plans/{plan.id}", headers=headers)
    assert in_use.status_code == 409
    assert client.delete(f"/api/super-admin/plans/{micro_id}", headers=headers).status_code == 200
    assert db.get(Plan, micro_id) is None


def test_delete_organization_cascades(client, db, landlord, super_admin):
    org, user = landlord
    db.add(Property(organization_id=org.id, name="Doomed", number_of_units=1))
    db.commit()
    resp = client.delete(f"/api/super-admin/organizations/{org.id}", headers=auth(super_admin))
    assert resp.status_code == 200
    db.expire_all()
    assert db.get(Organization, org.id) is None
    assert db.query(UserAccount).filter(UserAccount.email == user.email).count() == 0
    assert db.query(Property).count() == 0
    assert db.query(Subscription).count() == 0
    assert db.get(UserAccount, super_admin.id) is not None


def test_billing_overview(client, db, landlord, super_admin):
    org, _ = landlord
    sub = subscription_service.current_subscription(db, org.id)
    subscription_service.record_payment(db, sub)
    body = client.get("/api/super-admin/billing", headers=auth(super_admin)).json()
    assert body["active_subscriptions"] == 1
    assert body["monthly_recurring_revenue"] == 19.0
    assert body["recent_transactions"][0]["plan_name"] == "Starter"
    assert len(body["revenue_chart"]) == 6


def test_override_subscription_rejects_unknown_status(client, db, landlord, super_admin):
    org, _ = landlord
    resp = client.put(f"/api/super-admin/organizations/{org.id}/subscription", json={"status": "bogus"},
                      headers=auth(super_admin))
    assert resp.status_code == 422
    assert resp.json()["detail"].startswith("status must be one of: trialing, active")
    db.expire_all()
    assert subscription_service.current_subscription(db, org.id).status == "trialing"
