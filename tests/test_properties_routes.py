"""Property CRUD, plan limits, archive cascade and unit management."""
from datetime import datetime, timedelta

from hnvpm.modules.maintenance.models import MaintenanceRequest
from hnvpm.modules.payments.models import Payment
from hnvpm.modules.properties.models import Unit
from hnvpm.modules.subscriptions import service as subscription_service
from hnvpm.modules.tenants.models import Tenant
from tests.conftest import auth, add_user, make_org, expire_subscription


def _create(client, user, **data):
    payload = {"name": "Elm Court", "city": "Austin", "number_of_units": 3, **data}
    return client.post("/api/properties", json=payload, headers=auth(user))


def test_create_and_list_properties(client, db, landlord):
    org, user = landlord
    resp = _create(client, user)
    assert resp.status_code == 201
    body = resp.json()
    assert body["organization_id"] == org.id
    assert body["status"] == "Active"
    assert subscription_service.current_subscription(db, org.id).usage_properties == 1

    listing = client.get("/api/properties", headers=auth(user)).json()
    assert listing["total"] == 1
    assert listing["items"][0]["name"] == "Elm Court"


def test_create_requires_name_and_valid_units(client, landlord):
    _, user = landlord
    missing = client.post("/api/properties", json={"city": "Austin"}, headers=auth(user))
    assert missing.status_code == 422
    assert missing.json()["detail"] == "Missing required fields: name"
    assert _create(client, user, number_of_units=0).status_code == 422


def test_system_fields_are_ignored(client, db, landlord, plan):
    org, user = landlord
    other_org, _ = make_org(db, plan, email="rival@example.com")
    resp = _create(client, user, organization_id=other_org.id, id=999)
    assert resp.status_code == 201
    assert resp.json()["organization_id"] == org.id
    assert resp.json()["id"] != 999


def test_property_limit_is_enforced(client, landlord):
    _, user = landlord
    assert _create(client, user, name="One").status_code == 201
    assert _create(client, user, name="Two").status_code == 201
    blocked = _create(client, user, name="Three")
    assert blocked.status_code == 403
    body = blocked.json()
    assert body["detail"] == "Property limit exceeded"
    assert body["limit_type"] == "properties"
    assert body["current_usage"] == 2
    assert body["limit"] == 2


def test_other_orgs_properties_are_invisible(client, db, landlord, plan):
    _, user = landlord
    _, rival = make_org(db, plan, email="rival@example.com")
    prop_id = _create(client, rival).json()["id"]
    assert client.get(f"/api/properties/{prop_id}", headers=auth(user)).status_code == 404
    assert client.get("/api/properties", headers=auth(user)).json()["total"] == 0


def test_agent_sees_only_managed_properties(client, db, landlord):
    org, user = landlord
    first = _create(client, user, name="Managed").json()["id"]
    _create(client, user, name="Elsewhere")
    agent = add_user(db, org, "agent@example.com", "Agent", managed_property_ids=[first])
    listing = client.get("/api/properties", headers=auth(agent)).json()
    assert [p["id"] for p in listing["items"]] == [first]
    assert client.delete(f"/api/properties/{first}", headers=auth(agent)).status_code == 403


def test_archive_blocked_by_active_tenants(client, db, landlord):
    org, user = landlord
    prop_id = _create(client, user).json()["id"]
    db.add(Tenant(organization_id=org.id, property_id=prop_id, first_name="Tia", last_name="Ng", status="Active"))
    db.commit()
    resp = client.delete(f"/api/properties/{prop_id}", headers=auth(user))
    assert resp.status_code == 400
    assert resp.json()["detail"]["active_tenants"] == 1


def test_archive_cascades_units_payments_and_maintenance(client, db, landlord):
    org, user = landlord
    prop_id = _create(client, user).json()["id"]
    unit = Unit(organization_id=org.id, property_id=prop_id, unit_number="1A")
    former = Tenant(organization_id=org.id, property_id=prop_id, first_name="Ex", last_name="Tenant", status="Inactive")
    db.add_all([unit, former])
    db.flush()
    db.add_all([
        Payment(organization_id=org.id, tenant_id=former.id, property_id=prop_id, amount=100, status="Pending"),
        Payment(organization_id=org.id, tenant_id=former.id, property_id=prop_id, amount=100, status="Paid"),
        MaintenanceRequest(organization_id=org.id, property_id=prop_id, title="Leak", description="Sink", status="Open"),
        MaintenanceRequest(organization_id=org.id, property_id=prop_id, title="Paint", description="Hall", status="Completed"),
    ])
    db.commit()

    resp = client.delete(f"/api/properties/{prop_id}", headers=auth(user))
    assert resp.status_code == 200
    assert resp.json()["cascade"] == {"archived_units": 1, "cancelled_payments": 1, "cancelled_maintenance": 1}

    db.expire_all()
    assert db.get(Unit, unit.id).status == "Archived"
    statuses = sorted(p.status for p in db.query(Payment).all())
    assert statuses == ["Cancelled", "Paid"]
    assert subscription_service.current_subscription(db, org.id).usage_properties == 0
    assert client.get("/api/properties", headers=auth(user)).json()["total"] == 0
    assert client.get("/api/properties?include_archived=true", headers=auth(user)).json()["total"] == 1


def test_archived_property_cannot_be_edited_but_can_be_restored(client, db, landlord):
    org, user = landlord
    prop_id = _create(client, user).json()["id"]
    client.delete(f"/api/properties/{prop_id}", headers=auth(user))
    assert client.put(f"/api/properties/{prop_id}", json={"name": "X"}, headers=auth(user)).status_code == 400
    restored = client.post(f"/api/properties/{prop_id}/restore", headers=auth(user))
    assert restored.status_code == 200
    assert restored.json()["status"] == "Active"
    assert subscription_service.current_subscription(db, org.id).usage_properties == 1


def test_update_rejects_invalid_values(client, landlord):
    _, user = landlord
    prop_id = _create(client, user).json()["id"]
    resp = client.put(f"/api/properties/{prop_id}", json={"number_of_units": "many"}, headers=auth(user))
    assert resp.status_code == 422
    ok = client.put(f"/api/properties/{prop_id}", json={"city": "Dallas"}, headers=auth(user))
    assert ok.json()["city"] == "Dallas"


def test_units_crud(client, landlord):
    _, user = landlord
    prop_id = _create(client, user).json()["id"]
    created = client.post(f"/api/properties/{prop_id}/units", json={"unit_number": "2B", "rent": "1200.50"},
                          headers=auth(user))
    assert created.status_code == 201
    assert created.json()["rent"] == 1200.5
    dup = client.post(f"/api/properties/{prop_id}/units", json={"unit_number": "2B"}, headers=auth(user))
    assert dup.status_code == 409
    unit_id = created.json()["id"]
    assert client.get(f"/api/properties/{prop_id}/units", headers=auth(user)).json()["total"] == 1
    archived = client.delete(f"/api/properties/{prop_id}/units/{unit_id}", headers=auth(user))
    assert archived.status_code == 200
    assert client.get(f"/api/properties/{prop_id}/units/{unit_id}", headers=auth(user)).json()["status"] == "Archived"


def test_expired_subscription_is_view_only(client, db, landlord):
    org, user = landlord
    prop_id = _create(client, user).json()["id"]
    expire_subscription(db, org.id)
    assert client.get("/api/properties", headers=auth(user)).status_code == 200
    assert client.get(f"/api/properties/{prop_id}", headers=auth(user)).status_code == 200
    blocked = _create(client, user, name="Blocked")
    assert blocked.status_code == 403
    assert blocked.json()["action"] == "renew_subscription"
    assert blocked.json()["upgrade_url"] == "/billing"


def test_unverified_email_after_grace_is_view_only(client, db, landlord):
    _, user = landlord
    user.is_email_verified = False
    user.created_at = datetime.utcnow() - timedelta(hours=48)
    db.commit()
    assert client.get("/api/properties", headers=auth(user)).status_code == 200
    blocked = _create(client, user)
    assert blocked.status_code == 403
    assert blocked.json()["action"] == "verify_email"


def test_archive_records_unit_history(client, db, landlord):
    org, user = landlord
    prop_id = _create(client, user).json()["id"]
    former = Tenant(organization_id=org.id, property_id=prop_id, first_name="Ex", last_name="Tenant", status="Inactive")
    db.add(former)
    db.flush()
    occupied = Unit(organization_id=org.id, property_id=prop_id, unit_number="1A", tenant_id=former.id,
                    status="occupied")
    empty = Unit(organization_id=org.id, property_id=prop_id, unit_number="1B")
    db.add_all([occupied, empty])
    db.commit()

    assert client.delete(f"/api/properties/{prop_id}", headers=auth(user)).status_code == 200
    history = client.get(f"/api/properties/{prop_id}/units/{occupied.id}/history", headers=auth(user)).json()
    assert sorted(e["event_type"] for e in history["items"]) == ["tenant_moved_out", "unit_archived"]
    moved_out = next(e for e in history["items"] if e["event_type"] == "tenant_moved_out")
    assert moved_out["tenant_id"] == former.id
    assert moved_out["triggered_by"] == user.id
    history = client.get(f"/api/properties/{prop_id}/units/{empty.id}/history", headers=auth(user)).json()
    assert [e["event_type"] for e in history["items"]] == ["unit_archived"]
