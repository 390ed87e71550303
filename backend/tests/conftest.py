"""
Pytest fixtures for Credis backend tests.

Provides test database setup, store/customer/owner fixtures, and test client.
"""

import pytest

from credis import create_app
from credis.config import TestConfig
from credis.extensions import db
from credis.models import Customer, Store
from credis.services import auth_service


OWNER_PASSWORD = "secret-pass"


@pytest.fixture(scope='function')
def app():
    """Create application for testing (fresh in-memory database per test)."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """The session services receive explicitly."""
    yield db.session
    db.session.rollback()


@pytest.fixture(scope='function')
def store_a(db_session):
    """Create Store A (first tenant)."""
    store = Store(name="Store A", address="1 Market Rd", phone="0100000001")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session):
    """Create Store B (second tenant)."""
    store = Store(name="Store B", address="2 Harbour St", phone="0100000002")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def customer_a(db_session, store_a):
    """Create a customer of Store A with no credit limit."""
    customer = Customer(store_id=store_a.id, name="Amina", phone="0711000001")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, store_b):
    """Create a customer of Store B."""
    customer = Customer(store_id=store_b.id, name="Bakari", phone="0711000002")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def owner_a(db_session, store_a):
    """Create the owner of Store A."""
    return auth_service.register(
        db_session, name="Owner A", phone="0722000001", password=OWNER_PASSWORD, store_id=store_a.id
    )


@pytest.fixture(scope='function')
def owner_b(db_session, store_b):
    """Create the owner of Store B."""
    return auth_service.register(
        db_session, name="Owner B", phone="0722000002", password=OWNER_PASSWORD, store_id=store_b.id
    )


def get_auth_token(client, phone: str, password: str = OWNER_PASSWORD) -> str:
    """Helper to get an access token for an owner."""
    response = client.post('/api/auth/login', json={
        'phone': phone,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('access_token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
