"""Checkout, payment confirmation, IPN webhook and subscription routes."""
import requests

from hnvpm.modules.organizations.models import Organization
from hnvpm.modules.subscriptions.models import Plan, Subscription
from hnvpm.modules.subscriptions import service as subscription_service
from tests.conftest import auth, add_user, make_org, expire_subscription


def _checkout(client, user, plan_id):
    resp = client.post("/api/billing/checkout", json={"plan_id": plan_id}, headers=auth(user))
    assert resp.status_code == 200
    return resp.json()


def test_plans_are_public(client, plan):
    resp = client.get("/api/billing/plans")
    assert resp.status_code == 200
    assert [p["name"] for p in resp.json()["items"]] == ["Starter"]


def test_checkout_creates_pending_subscription(client, db, landlord, plan):
    org, user = landlord
    body = _checkout(client, user, plan.id)
    assert body["external_reference"].startswith(f"org_{org.id}_plan_{plan.id}_")
    assert "signature=" in body["checkout_url"]
    pending = db.get(Subscription, body["subscription_id"])
    assert pending.status == "inactive"
    assert pending.limit_properties == plan.max_properties
    # The trial is still the current subscription until payment lands.
    assert subscription_service.current_subscription(db, org.id).status == "trialing"


def test_checkout_requires_landlord(client, db, landlord, plan):
    org, _ = landlord
    agent = add_user(db, org, "agent@example.com", "Agent")
    resp = client.post("/api/billing/checkout", json={"plan_id": plan.id}, headers=auth(agent))
    assert resp.status_code == 403


def test_checkout_unknown_plan(client, landlord):
    _, user = landlord
    resp = client.post("/api/billing/checkout", json={"plan_id": 999}, headers=auth(user))
    assert resp.status_code == 404


def test_payment_success_activates_pending_and_cancels_trial(client, db, landlord, plan):
    org, user = landlord
    trial = subscription_service.current_subscription(db, org.id)
    body = _checkout(client, user, plan.id)
    resp = client.post(
        "/api/billing/payment-success",
        json={"external_reference": body["external_reference"], "twocheckout_order_id": "REF-1"},
        headers=auth(user),
    )
    assert resp.status_code == 200
    sub = resp.json()["subscription"]
    assert sub["status"] == "active"
    assert sub["twocheckout_subscription_id"] == "REF-1"
    assert sub["plan"]["name"] == "Starter"
    db.refresh(trial)
    assert trial.status == "canceled"
    assert subscription_service.current_subscription(db, org.id).id == body["subscription_id"]


def test_payment_success_validates_reference(client, db, landlord, plan):
    _, user = landlord
    headers = auth(user)
    assert client.post("/api/billing/payment-success", json={}, headers=headers).status_code == 400
    bad = client.post("/api/billing/payment-success", json={"external_reference": "nope"}, headers=headers)
    assert bad.status_code == 400
    other_org, _ = make_org(db, plan, email="other@example.com")
    foreign = client.post(
        "/api/billing/payment-success",
        json={"external_reference": f"org_{other_org.id}_plan_{plan.id}_1"},
        headers=headers,
    )
    assert foreign.status_code == 403


def test_payment_success_without_pending_subscription(client, landlord, plan):
    org, user = landlord
    resp = client.post(
        "/api/billing/payment-success",
        json={"external_reference": f"org_{org.id}_plan_{plan.id}_1"},
        headers=auth(user),
    )
    assert resp.status_code == 404


def test_payment_success_requires_the_exact_pending_reference(client, db, landlord, plan):
    org, user = landlord
    body = _checkout(client, user, plan.id)
    resp = client.post(
        "/api/billing/payment-success",
        json={"external_reference": f"org_{org.id}_plan_999_1"},
        headers=auth(user),
    )
    assert resp.status_code == 404
    db.expire_all()
    assert db.get(Subscription, body["subscription_id"]).status == "inactive"
    assert subscription_service.current_subscription(db, org.id).status == "trialing"


def test_subscription_update_rejects_unknown_status(client, db, landlord, super_admin):
    org, _ = landlord
    sub = subscription_service.current_subscription(db, org.id)
    resp = client.put(f"/api/subscriptions/{sub.id}", json={"status": "bogus"}, headers=auth(super_admin))
    assert resp.status_code == 422
    db.expire_all()
    assert subscription_service.current_subscription(db, org.id).status == "trialing"
    ok = client.put(f"/api/subscriptions/{sub.id}", json={"status": "past_due"}, headers=auth(super_admin))
    assert ok.status_code == 200
    assert ok.json()["status"] == "past_due"


def test_webhook_rejects_bad_signature(client):
    resp = client.post("/api/billing/webhook", json={"MESSAGE_TYPE": "PAYMENT_RECEIVED"},
                       headers={"x-2checkout-signature": "forged"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid IPN signature"


def test_webhook_payment_received_activates_by_reference(client, db, twocheckout, landlord, plan):
    org, user = landlord
    body = _checkout(client, user, plan.id)
    ipn = {"MESSAGE_TYPE": "PAYMENT_RECEIVED", "REFNO": "777", "EXTERNAL_REFERENCE": body["external_reference"]}
    resp = client.post("/api/billing/webhook", json=ipn, headers={"x-2checkout-signature": twocheckout.sign_ipn(ipn)})
    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    sub = db.get(Subscription, body["subscription_id"])
    assert sub.status == "active"
    assert sub.twocheckout_subscription_id == "777"


def test_webhook_failed_payments_lead_to_past_due(client, db, twocheckout, landlord):
    org, _ = landlord
    sub = subscription_service.current_subscription(db, org.id)
    sub.twocheckout_subscription_id = "555"
    db.commit()
    ipn = {"MESSAGE_TYPE": "PAYMENT_FAILED", "REFNO": "555"}
    for _ in range(3):
        client.post("/api/billing/webhook", json=ipn, headers={"x-2checkout-signature": twocheckout.sign_ipn(ipn)})
    db.refresh(sub)
    assert sub.failed_payment_attempts == 3
    assert subscription_service.check_subscription_status(db, org.id)["reason"] == "Payment past due"


def test_webhook_cancel_and_expire(client, db, twocheckout, landlord):
    org, _ = landlord
    sub = subscription_service.current_subscription(db, org.id)
    sub.twocheckout_subscription_id = "888"
    db.commit()
    ipn = {"MESSAGE_TYPE": "SUBSCRIPTION_EXPIRED", "REFNO": "888"}
    client.post("/api/billing/webhook", json=ipn, headers={"x-2checkout-signature": twocheckout.sign_ipn(ipn)})
    db.refresh(sub)
    assert sub.status == "expired"
    assert sub.ended_at is not None


def test_webhook_unknown_event_is_acknowledged(client, twocheckout):
    ipn = {"MESSAGE_TYPE": "ORDER_CREATED", "REFNO": "1"}
    resp = client.post("/api/billing/webhook", json=ipn, headers={"x-2checkout-signature": twocheckout.sign_ipn(ipn)})
    assert resp.status_code == 200


def test_billing_cancel_calls_provider_first(client, db, stub_http, landlord):
    org, user = landlord
    sub = subscription_service.current_subscription(db, org.id)
    sub.status = "active"
    sub.twocheckout_subscription_id = "999"
    db.commit()

    stub_http.fail(requests.exceptions.ConnectionError("down"))
    failed = client.post("/api/billing/cancel", headers=auth(user))
    assert failed.status_code == 400
    assert failed.json()["detail"] == "Payment provider unavailable"
    db.refresh(sub)
    assert not sub.cancel_at_period_end

    stub_http.respond(200, b"{}")
    ok = client.post("/api/billing/cancel", headers=auth(user))
    assert ok.status_code == 200
    assert ok.json()["subscription"]["cancel_at_period_end"] is True
    assert stub_http.calls[-1][0] == "DELETE"


def test_billing_current_and_usage(client, landlord):
    org, user = landlord
    current = client.get("/api/billing/current", headers=auth(user))
    assert current.status_code == 200
    body = current.json()
    assert body["organization"]["id"] == org.id
    assert body["status_check"]["is_active"] is True
    assert body["countdown"]["days_remaining"] == 14

    usage = client.get("/api/billing/usage", headers=auth(user)).json()
    assert usage["usage"]["users"] == 1
    assert usage["limits"]["properties"] == 2
    assert usage["plan"]["name"] == "Starter"


def test_lapsed_org_can_still_reach_billing(client, db, landlord, plan):
    org, user = landlord
    expire_subscription(db, org.id)
    assert client.get("/api/billing/current", headers=auth(user)).status_code == 200
    assert client.post("/api/billing/checkout", json={"plan_id": plan.id}, headers=auth(user)).status_code == 200


def test_subscription_status_route(client, landlord):
    _, user = landlord
    body = client.get("/api/subscriptions/status", headers=auth(user)).json()
    assert body["has_subscription"] is True
    assert body["status"] == "trialing"
    assert body["subscription"]["plan"]["name"] == "Starter"


def test_trial_route_conflicts_when_subscription_exists(client, db, plan):
    org, user = make_org(db, plan, email="notrial@example.com", trial=False)
    first = client.post("/api/subscriptions/trial", json={"plan_id": plan.id}, headers=auth(user))
    assert first.status_code == 201
    assert first.json()["status"] == "trialing"
    again = client.post("/api/subscriptions/trial", json={"plan_id": plan.id}, headers=auth(user))
    assert again.status_code == 409


def test_cancel_and_reactivate_subscription(client, db, landlord):
    org, user = landlord
    canceled = client.post("/api/subscriptions/cancel", headers=auth(user))
    assert canceled.json()["cancel_at_period_end"] is True
    reactivated = client.post("/api/subscriptions/reactivate", headers=auth(user))
    assert reactivated.status_code == 200
    assert reactivated.json()["status"] == "active"
    assert reactivated.json()["cancel_at_period_end"] is False


def test_reactivate_refused_after_period_end(client, db, landlord):
    org, user = landlord
    expire_subscription(db, org.id)
    resp = client.post("/api/subscriptions/reactivate", headers=auth(user))
    assert resp.status_code == 400
    assert db.get(Organization, org.id).status == "active"


def test_subscription_admin_listing_requires_super_admin(client, landlord, super_admin):
    _, user = landlord
    assert client.get("/api/subscriptions", headers=auth(user)).status_code == 403
    resp = client.get("/api/subscriptions", headers=auth(super_admin))
    assert resp.status_code == 200
    assert resp.json()["items"][0]["organization_name"] == "Org of owner@example.com"


def test_public_plan_listing_hides_private_plans(client, db, plan):
    db.add(Plan(name="Internal", price=0, is_public=False))
    db.commit()
    names = [p["name"] for p in client.get("/api/subscriptions/plans").json()["items"]]
    assert names == ["Starter"]
