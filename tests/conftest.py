"""
Shared fixtures for the storefront component tests.

Every test gets a fresh application wired to its own in-memory SQLite
database. Requests go through the real routes, services and database layer;
nothing internal is mocked.
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from storefront.main import create_app
from storefront.services import CatalogService
from storefront.shared.utils import Settings

PASSWORD = "secret123"

CATALOG = [
    {"name": "Mechanical Keyboard", "price": Decimal("10.00"), "image": "keyboard.png", "category": "peripherals", "stock": 25},
    {"name": "USB-C Cable", "price": Decimal("5.50"), "image": "cable.png", "category": "accessories", "stock": 100},
    {"name": "Graphics Card", "price": Decimal("1299.99"), "image": "gpu.png", "category": "components", "stock": 3},
]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        SECRET_KEY="test-secret-key",
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        RATE_LIMIT_ENABLED=False,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def test_client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def run_db(app, test_client):
    """Run ``fn(session)`` on the application's event loop and return its result."""
    def _run(fn):
        async def _with_session():
            async with app.state.sessionmaker() as session:
                return await fn(session)
        return test_client.portal.call(_with_session)
    return _run


@pytest.fixture
def products(run_db) -> dict:
    """Seed the catalog; returns product ids keyed by name."""
    async def _seed(session):
        rows = await CatalogService(session).seed_products(CATALOG)
        return {row.name: row.id for row in rows}
    return run_db(_seed)


@pytest.fixture
def register_user(test_client):
    """Register a user through the API; returns the response JSON."""
    def _register(email="alice@mailbox.org", name="Alice", password=PASSWORD, **overrides):
        payload = {
            "name": name,
            "email": email,
            "phone": "555-0100",
            "address": "1 Main Street",
            "password": password,
        }
        payload.update(overrides)
        response = test_client.post("/api/register", json=payload)
        assert response.status_code == 201, response.text
        return response.json()
    return _register


@pytest.fixture
def auth_headers(register_user):
    """Bearer headers for a freshly registered user."""
    def _headers(email="alice@mailbox.org"):
        token = register_user(email=email)["token"]
        return {"Authorization": f"Bearer {token}"}
    return _headers
