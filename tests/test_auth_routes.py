"""Registration, login, verification and password flows."""
from hnvpm.auth.models import UserAccount
from hnvpm.modules.organizations.models import Organization
from hnvpm.modules.subscriptions import service as subscription_service
from tests.conftest import auth

REGISTER = {
    "first_name": "Nora",
    "last_name": "Lane",
    "email": "Nora@Example.com",
    "password": "hunter22",
    "phone": "+1 (555) 010-2000",
    "organization_name": "Lane Lettings",
}


def test_register_creates_org_owner_and_trial(client, db, plan):
    resp = client.post("/api/auth/register", json=REGISTER)
    assert resp.status_code == 201
    body = resp.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["email"] == "nora@example.com"
    assert body["user"]["role"] == "Landlord"
    assert body["user"]["is_email_verified"] is False

    user = db.query(UserAccount).filter(UserAccount.email == "nora@example.com").one()
    org = db.get(Organization, user.organization_id)
    assert org.name == "Lane Lettings"
    assert org.owner_id == user.id
    assert user.email_verification_token

    sub = subscription_service.current_subscription(db, org.id)
    assert sub.status == "trialing"
    assert sub.plan_id == plan.id
    assert sub.usage_users == 1


def test_register_rejects_duplicate_email(client, plan):
    assert client.post("/api/auth/register", json=REGISTER).status_code == 201
    resp = client.post("/api/auth/register", json={**REGISTER, "email": "nora@example.com"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "User with this email already exists"


def test_register_validates_phone_and_password(client, plan):
    assert client.post("/api/auth/register", json={**REGISTER, "phone": "call me"}).status_code == 422
    assert client.post("/api/auth/register", json={**REGISTER, "password": "abc"}).status_code == 422


def test_login_and_me(client, landlord):
    _, user = landlord
    resp = client.post("/api/auth/login", json={"email": "OWNER@example.com", "password": "secret123"})
    assert resp.status_code == 200
    token = resp.json()["access_token"]
    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["id"] == user.id
    assert me.json()["full_name"] == "Olive Owner"


def test_login_wrong_password(client, landlord):
    resp = client.post("/api/auth/login", json={"email": "owner@example.com", "password": "nope"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Incorrect email or password"


def test_suspended_user_cannot_log_in_or_use_token(client, db, landlord):
    _, user = landlord
    headers = auth(user)
    user.status = "suspended"
    db.commit()
    assert client.post("/api/auth/login", json={"email": "owner@example.com", "password": "secret123"}).status_code == 401
    resp = client.get("/api/auth/me", headers=headers)
    assert resp.status_code == 401
    assert resp.json()["detail"] == "User account is suspended."


def test_me_requires_token(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401


def test_verify_email(client, db, landlord):
    _, user = landlord
    user.is_email_verified = False
    user.email_verification_token = "tok-123"
    db.commit()
    assert client.get("/api/auth/verify-email/bad").status_code == 400
    resp = client.get("/api/auth/verify-email/tok-123")
    assert resp.status_code == 200
    db.refresh(user)
    assert user.is_email_verified is True
    assert user.email_verification_token is None


def test_resend_verification_is_rate_limited(client, db, landlord):
    _, user = landlord
    user.is_email_verified = False
    db.commit()
    headers = auth(user)
    for _ in range(5):
        assert client.post("/api/auth/resend-verification", headers=headers).status_code == 200
    assert client.post("/api/auth/resend-verification", headers=headers).status_code == 429


def test_resend_verification_when_already_verified(client, landlord):
    _, user = landlord
    resp = client.post("/api/auth/resend-verification", headers=auth(user))
    assert resp.status_code == 400


def test_update_password(client, landlord):
    _, user = landlord
    headers = auth(user)
    bad = client.put("/api/auth/password", headers=headers,
                     json={"current_password": "wrong", "password": "newpass1", "password_confirm": "newpass1"})
    assert bad.status_code == 401
    mismatch = client.put("/api/auth/password", headers=headers,
                          json={"current_password": "secret123", "password": "newpass1", "password_confirm": "x"})
    assert mismatch.status_code == 400
    ok = client.put("/api/auth/password", headers=headers,
                    json={"current_password": "secret123", "password": "newpass1", "password_confirm": "newpass1"})
    assert ok.status_code == 200
    login = client.post("/api/auth/login", json={"email": "owner@example.com", "password": "newpass1"})
    assert login.status_code == 200
