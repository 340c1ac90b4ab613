"""Shared pytest fixtures: application, clients and seeded tenants."""

import os

import pytest

os.environ["DATABASE_URI"] = "sqlite://"  # In-memory database for tests
os.environ["APP_SECRET_KEY"] = "test-secret-key"
os.environ["EMAIL_ENABLED"] = "false"

from werkzeug.security import generate_password_hash

from app import create_app
from extensions import db
from models import Business, Tenant, User
from services.auth import ADMIN_EMAIL, provision_user
from services.policy import Actor

TEST_PASSWORD = "testpassword"


@pytest.fixture
def app(tmp_path):
    """Create application for testing."""
    application = create_app(
        {
            "TESTING": True,
            "WTF_CSRF_ENABLED": False,
            "RATELIMIT_ENABLED": False,
        }
    )
    application.config["APP_CONFIG"].upload_dir = str(tmp_path / "uploads")
    with application.app_context():
        admin = User.query.filter_by(email=ADMIN_EMAIL).first()
        admin.password_hash = generate_password_hash(TEST_PASSWORD)
        db.session.commit()
    yield application


@pytest.fixture
def ctx(app):
    """Application context for service-level tests."""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


def login_as(client, user_id):
    with client.session_transaction() as sess:
        sess["user_id"] = user_id


def actor_for(user_id):
    user = db.session.get(User, user_id)
    return Actor.from_user(user, db.session.get(Tenant, user.tenant_id))


def seed_tenants(app):
    """Two regular tenants, the admin tenant and an admin-tenant member without ROLE_ADMIN.

    Returns plain ids so tests can use them outside the app context.
    """
    with app.app_context():
        admin = User.query.filter_by(email=ADMIN_EMAIL).first()
        owner1 = provision_user("owner1@example.com", TEST_PASSWORD)
        owner2 = provision_user("owner2@example.com", TEST_PASSWORD)
        staff = provision_user("staff@example.com", TEST_PASSWORD, tenant_id=admin.tenant_id)

        t1 = db.session.get(Tenant, owner1.tenant_id)
        t2 = db.session.get(Tenant, owner2.tenant_id)
        customer = Business(
            business_name="Customer LLC",
            created_by_id=owner1.id,
            tenant_id=t1.id,
        )
        db.session.add(customer)
        db.session.commit()
        return {
            "admin_id": admin.id,
            "admin_tenant_id": admin.tenant_id,
            "staff_id": staff.id,
            "owner1_id": owner1.id,
            "owner2_id": owner2.id,
            "t1_id": t1.id,
            "t2_id": t2.id,
            "b1_id": t1.issuer_business_id,
            "b2_id": t2.issuer_business_id,
            "customer_id": customer.id,
        }


@pytest.fixture
def tenants(app):
    return seed_tenants(app)


@pytest.fixture
def file_app(tmp_path, monkeypatch):
    """Application on a SQLite file so several threads share one database."""
    monkeypatch.setenv("DATABASE_URI", f"sqlite:///{tmp_path / 'invoicing.db'}")
    application = create_app(
        {
            "TESTING": True,
            "WTF_CSRF_ENABLED": False,
            "RATELIMIT_ENABLED": False,
        }
    )
    yield application
    with application.app_context():
        db.engine.dispose()


@pytest.fixture
def owner1_client(client, tenants):
    login_as(client, tenants["owner1_id"])
    return client


@pytest.fixture
def admin_client(client, tenants):
    login_as(client, tenants["admin_id"])
    return client
