"""
Pytest fixtures for Vitrine backend tests.

Provides test database setup, two tenants for isolation tests, admin users
with tokens, and product/promotion factories.
"""

import pytest
from vitrine import create_app
from vitrine.extensions import db
from vitrine.models import Tenant, User, Promotion
from vitrine.services import auth_service
from vitrine.services.auth_service import hash_password
from vitrine.services.products_service import create_product

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    # Minimum bcrypt cost keeps the suite fast
    auth_service.BCRYPT_ROUNDS = 4

    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'DEBUG',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        db.session.rollback()
        # Clear all data but keep schema; Core deletes skip the append-only guards
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Create Tenant A (first tenant)."""
    tenant = Tenant(name="Acme Store", slug="acme", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Create Tenant B (second tenant)."""
    tenant = Tenant(name="Beta Shop", slug="beta", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


def _make_user(db_session, tenant, username, name=None):
    user = User(
        owner_id=tenant.id,
        username=username,
        email=f"{username}@{tenant.slug}.test",
        name=name,
        password_hash=hash_password(PASSWORD),
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def user_a(db_session, tenant_a):
    return _make_user(db_session, tenant_a, "user_a", name="Alice Admin")


@pytest.fixture(scope='function')
def user_b(db_session, tenant_b):
    return _make_user(db_session, tenant_b, "user_b")


@pytest.fixture(scope='function')
def headers_a(client, tenant_a, user_a):
    return auth_headers(get_auth_token(client, tenant_a.slug, user_a.username, PASSWORD))


@pytest.fixture(scope='function')
def headers_b(client, tenant_b, user_b):
    return auth_headers(get_auth_token(client, tenant_b.slug, user_b.username, PASSWORD))


def make_product(owner_id: int, name: str = "Widget", stock: int = 10, price_cents: int = 1000, **fields):
    """Create a product through the service so the initial_stock entry exists."""
    patch = {"name": name, "price_cents": price_cents}
    patch.update(fields)
    return create_product(owner_id=owner_id, patch=patch, initial_stock=stock, actor="tests")


def make_promotion(owner_id: int, code: str = "SAVE10", **fields):
    values = {
        "discount_type": "percentage",
        "discount_value": 1000,
        "min_order_value_cents": 0,
        "max_discount_value_cents": 0,
        "usage_limit": 0,
        "usage_count": 0,
        "status": "active",
        "show_on_storefront": False,
    }
    values.update(fields)
    promo = Promotion(owner_id=owner_id, code=code, **values)
    db.session.add(promo)
    db.session.commit()
    return promo


def get_auth_token(client, tenant_slug: str, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'tenant': tenant_slug,
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
