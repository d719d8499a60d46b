"""Pytest fixtures for the ERP sync engine.

Provides reusable test fixtures for:
- In-memory SQLite database session (fresh schema per test)
- An active ERP configuration with an encrypted token
- Product and order factories
- Test clients authenticated with JWTs per role (ADMIN, INTEGRATOR, OPS, VIEWER)

Usage:
    def test_sync_status(viewer_client):
        response = viewer_client.get("/api/v1/erp/sync/status")
        assert response.status_code == 200
"""

import itertools
import os
import sys
from decimal import Decimal
from pathlib import Path
from typing import Dict, Generator

# Set environment variables BEFORE any imports to ensure they take effect
TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4
TEST_API_TOKEN = "4000123-4000456-ABCDEFGHIJKL"

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ERP_ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-key-256-bits-minimum-length-required-for-security")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("LOG_JSON", "false")

backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))
sys.path.insert(0, str(Path(__file__).parent))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from auth.jwt import create_access_token
from connectors.config_service import save_config
from database import get_db as database_get_db
from models import (
    Base,
    ERPConfiguration,
    InventoryRecord,
    Order,
    OrderLine,
    Product,
    ProductVariant,
)
from models.base import utcnow


# One shared in-memory database; StaticPool keeps it alive across threads
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test.

    Creates all tables before the test and drops them after.
    """
    Base.metadata.create_all(bind=test_engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def erp_configuration(db_session: Session) -> ERPConfiguration:
    """Active ERP configuration for the default inventory 11235."""
    return save_config(db_session, api_token=TEST_API_TOKEN, inventory_id="11235")


@pytest.fixture(scope="function")
def make_product(db_session: Session):
    """Factory for products with one default variant and an inventory row."""

    def _make(
        external_product_id: str = "1001",
        tags=None,
        quantity: int = 10,
        reserved: int = 0,
        price: str = "49.99",
    ) -> Product:
        product = Product(
            external_product_id=external_product_id,
            name=f"Product {external_product_id}",
            sku=f"SKU-{external_product_id}",
            price=Decimal(price),
            tags=tags,
            tax_rate=23,
        )
        variant = ProductVariant(is_default=True, name="Domyślny", sku=product.sku, price=product.price)
        variant.inventory = InventoryRecord(quantity=quantity, reserved=reserved)
        product.variants.append(variant)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope="function")
def make_order(db_session: Session):
    """Factory for orders.

    lines: list of (product, quantity) or (product, quantity, unit_price)
    """
    numbers = itertools.count(1)

    def _make(
        lines,
        payment_status: str = "PENDING",
        status: str = None,
        shipping_total: str = "15.00",
        **fields,
    ) -> Order:
        paid = payment_status == "PAID"
        order = Order(
            number=f"WB-2026-{next(numbers):06d}",
            customer_email="jan.kowalski@example.com",
            customer_phone="+48500100200",
            status=status or ("CONFIRMED" if paid else "OPEN"),
            payment_status=payment_status,
            currency="PLN",
            shipping_method="inpost_kurier",
            payment_method="payu",
            shipping_total=Decimal(shipping_total),
            shipping_address={
                "first_name": "Jan",
                "last_name": "Kowalski",
                "street": "ul. Długa 1",
                "city": "Kraków",
                "postal_code": "30-001",
                "country": "PL",
            },
            paid_at=utcnow() if paid else None,
        )

        subtotal = Decimal("0.00")
        for position, entry in enumerate(lines):
            product, quantity = entry[0], entry[1]
            unit_price = Decimal(entry[2]) if len(entry) > 2 else product.price
            variant = product.variants[0]
            order.lines.append(OrderLine(
                position=position,
                variant_id=variant.id,
                product_name=product.name,
                sku=variant.sku,
                quantity=quantity,
                unit_price=unit_price,
                line_total=unit_price * quantity,
            ))
            subtotal += unit_price * quantity

        order.subtotal = subtotal
        order.total = subtotal + order.shipping_total
        for key, value in fields.items():
            setattr(order, key, value)

        db_session.add(order)
        db_session.commit()
        return order

    return _make


def auth_headers(role: str) -> Dict[str, str]:
    """Authorization header with a token for the given role."""
    token = create_access_token(
        user_id=f"user-{role.lower()}",
        role=role,
        email=f"{role.lower()}@shop.test",
    )
    return {"Authorization": f"Bearer {token}"}


def _client_for(db_session: Session, role: str = None) -> TestClient:
    from main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[database_get_db] = override_get_db

    client = TestClient(app)
    if role:
        client.headers.update(auth_headers(role))
    return client


@pytest.fixture(scope="function")
def client(db_session: Session):
    """Unauthenticated test client."""
    yield _client_for(db_session)
    from main import app
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def admin_client(db_session: Session):
    yield _client_for(db_session, "ADMIN")
    from main import app
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def integrator_client(db_session: Session):
    yield _client_for(db_session, "INTEGRATOR")
    from main import app
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def ops_client(db_session: Session):
    yield _client_for(db_session, "OPS")
    from main import app
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def viewer_client(db_session: Session):
    yield _client_for(db_session, "VIEWER")
    from main import app
    app.dependency_overrides.clear()
