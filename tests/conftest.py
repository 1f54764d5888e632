"""Shared fixtures: in-memory SQLite, a TestClient with overridden dependencies, seeded orgs."""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SEED_DEFAULTS"] = "false"
os.environ["SMTP_SERVER"] = ""

from datetime import datetime, timedelta

import pytest
import requests
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from hnvpm.database import get_db, init_db
from hnvpm.main import app
from hnvpm.auth.dependencies import create_access_token, hash_password, rate_limit_counter
from hnvpm.auth.models import UserAccount, LANDLORD, SUPER_ADMIN
from hnvpm.modules.organizations.models import Organization
from hnvpm.modules.subscriptions.models import Plan
from hnvpm.modules.subscriptions import service as subscription_service
from hnvpm.modules.subscriptions.twocheckout import TwoCheckoutClient, get_twocheckout_client


class StubSession:
    """Stands in for requests.Session; replays queued responses or exceptions."""

    def __init__(self):
        self.queue = []
        self.calls = []

    def respond(self, status_code=200, json_body=b"{}"):
        resp = requests.Response()
        resp.status_code = status_code
        resp._content = json_body if isinstance(json_body, bytes) else json_body.encode()
        self.queue.append(resp)

    def fail(self, exc):
        self.queue.append(exc)

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        item = self.queue.pop(0) if self.queue else None
        if item is None:
            self.respond()
            item = self.queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def stub_http():
    return StubSession()


@pytest.fixture
def twocheckout(stub_http):
    return TwoCheckoutClient(
        merchant_code="MERCHANT",
        secret_key="ipn-secret",
        buy_link_secret_word="buy-secret",
        api_url="https://api.example.test/rest/6.0/",
        buy_url="https://secure.example.test/checkout/buy",
        timeout=5,
        session=stub_http,
    )


@pytest.fixture
def client(db, twocheckout):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_twocheckout_client] = lambda: twocheckout
    rate_limit_counter.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def plan(db):
    p = Plan(
        name="Starter",
        price=19,
        billing_cycle="monthly",
        max_properties=2,
        max_tenants=3,
        max_users=2,
        max_exports=2,
        max_storage=100,
        sort_order=1,
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


def make_org(db, plan=None, email="owner@example.com", role=LANDLORD, verified=True, trial=True):
    org = Organization(name=f"Org of {email}", email=email, status="active")
    db.add(org)
    db.flush()
    user = UserAccount(
        email=email,
        password_hash=hash_password("secret123"),
        first_name="Olive",
        last_name="Owner",
        role=role,
        status="active",
        is_email_verified=verified,
        organization_id=org.id,
    )
    db.add(user)
    db.flush()
    org.owner_id = user.id
    db.commit()
    if trial and plan is not None:
        subscription_service.create_trial_subscription(db, org.id, plan.id)
        subscription_service.update_usage(db, org.id, "users", 1)
    db.refresh(user)
    return org, user


def add_user(db, org, email, role, **extra):
    user = UserAccount(
        email=email,
        password_hash=hash_password("secret123"),
        first_name=role,
        last_name="User",
        role=role,
        status="active",
        is_email_verified=True,
        organization_id=org.id if org else None,
        **extra,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


def expire_subscription(db, org_id):
    sub = subscription_service.current_subscription(db, org_id)
    sub.current_period_end = datetime.utcnow() - timedelta(days=1)
    sub.trial_end = sub.current_period_end
    db.commit()
    return sub


@pytest.fixture
def landlord(db, plan):
    return make_org(db, plan)


@pytest.fixture
def super_admin(db):
    return add_user(db, None, "root@example.com", SUPER_ADMIN)
