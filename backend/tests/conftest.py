"""
Pytest fixtures for kasir backend tests.

Provides an in-memory database, operators with bearer tokens, and small
factories for catalog rows.
"""

from datetime import timedelta

import pytest
from kasir import create_app
from kasir.extensions import db
from kasir.models import Category, Customer, Event
from kasir.services.auth_service import create_user
from kasir.services.products_service import create_product
from kasir.time_utils import utcnow


ADMIN_PASSWORD = "admin-pass"
PETUGAS_PASSWORD = "kasir-pass"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_LOG_ROUNDS': 4,
        'CUSTOMER_DISCOUNT_BPS': 1000,
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
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def admin_user(db_session):
    return create_user(
        patch={"username": "admin", "display_name": "Admin Toko", "role": "ADMIN"},
        password=ADMIN_PASSWORD,
    )


@pytest.fixture(scope='function')
def petugas_user(db_session):
    return create_user(
        patch={"username": "kasir", "display_name": "Kasir Satu", "role": "PETUGAS"},
        password=PETUGAS_PASSWORD,
    )


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, "admin", ADMIN_PASSWORD))


@pytest.fixture(scope='function')
def petugas_headers(client, petugas_user):
    return auth_headers(get_auth_token(client, "kasir", PETUGAS_PASSWORD))


@pytest.fixture(scope='function')
def category(db_session):
    c = Category(name="Minuman")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def make_product(db_session, category):
    """Factory: make_product(name, sale_price, cost_price=..., stock=...)."""
    counter = {"n": 0}

    def _make(name="Teh Botol", sale_price=10000, cost_price=None, stock=10, barcode=None):
        counter["n"] += 1
        return create_product(patch={
            "category_id": category.id,
            "name": name,
            "sale_price": sale_price,
            "cost_price": cost_price if cost_price is not None else sale_price // 2,
            "stock": stock,
            "barcode": barcode or f"899{counter['n']:07d}",
        })

    return _make


@pytest.fixture(scope='function')
def customer(db_session):
    c = Customer(name="Budi", address="Jl. Merdeka 1", phone="0812000111", status="active")
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture(scope='function')
def make_event(db_session):
    """Factory: an event active from `starts_in` to `ends_in` relative to now."""
    def _make(name="Promo Akhir Tahun", starts_in=timedelta(days=-1), ends_in=timedelta(days=1)):
        now = utcnow()
        event = Event(name=name, starts_at=now + starts_in, ends_at=now + ends_in)
        db_session.add(event)
        db_session.commit()
        return event

    return _make


def get_auth_token(client, username: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
