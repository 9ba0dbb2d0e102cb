"""Shared fixtures: a fresh in-memory database per test."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from shop import crud, schemas
from shop.database import create_db_engine, create_session_factory, init_db
from shop.main import create_app


@pytest.fixture()
def engine():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db(engine):
    session = create_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(engine, monkeypatch):
    monkeypatch.delenv("SHOP_BASE_CURRENCY", raising=False)
    app = create_app(engine=engine)
    with TestClient(app) as client:
        yield client


def add_product(db, name="Men Red Shirt", category="Men Shirts", quantity=10, price="19.99"):
    """Helper: create a product and return its id."""
    return crud.create_product(
        db,
        schemas.ProductCreate(
            name=name,
            category=category,
            quantity=quantity,
            price=Decimal(price),
        ),
    )


def order_request(*lines, name="Ivan Ivanov", address="Sofia Mladost 2", phone="0888888888"):
    """Helper: build an OrderCreate from (product_id, quantity) pairs."""
    return schemas.OrderCreate(
        name=name,
        address=address,
        phone=phone,
        products=[schemas.OrderLineRequest(id=pid, quantity=qty) for pid, qty in lines],
    )
