"""Tests for the order placement workflow."""

from decimal import Decimal
from unittest import mock

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from conftest import add_product, order_request
from shop import crud
from shop.errors import InsufficientStockError, NotFoundError, StoreError


class TestPlaceOrderHappyPath:

    def test_decrements_stock_and_computes_price(self, db):
        a = add_product(db, name="Shirt", category="Tops", quantity=10, price="19.99")
        b = add_product(db, name="Cap", category="Hats", quantity=3, price="5.25")

        order_id, total = crud.place_order(db, order_request((a, 2), (b, 1)))

        assert total == Decimal("45.23")
        assert crud.get_product(db, a).quantity == 8
        assert crud.get_product(db, b).quantity == 2

        order = crud.get_order(db, order_id)
        assert order.price == Decimal("45.23")
        assert order.status == "pending"
        assert order.name == "Ivan Ivanov"
        assert order.address == "Sofia Mladost 2"
        assert order.phone == "0888888888"
        assert [(p.id, p.name, p.category, p.quantity, p.price) for p in order.products] == [
            (a, "Shirt", "Tops", 2, Decimal("19.99")),
            (b, "Cap", "Hats", 1, Decimal("5.25")),
        ]

    def test_order_appears_in_listing(self, db):
        product_id = add_product(db)
        order_id, _ = crud.place_order(db, order_request((product_id, 1)))
        assert [o.id for o in crud.get_orders(db)] == [order_id]

    def test_exact_stock_is_enough(self, db):
        product_id = add_product(db, quantity=2)
        crud.place_order(db, order_request((product_id, 2)))
        assert crud.get_product(db, product_id).quantity == 0

    def test_same_product_on_two_lines(self, db):
        product_id = add_product(db, quantity=5, price="1.00")
        order_id, total = crud.place_order(db, order_request((product_id, 2), (product_id, 3)))
        assert total == Decimal("5.00")
        assert crud.get_product(db, product_id).quantity == 0
        assert crud.get_order_lines(db, order_id) == [(product_id, 2), (product_id, 3)]


class TestPlaceOrderRejected:

    def test_insufficient_stock_identifies_product(self, db):
        plenty = add_product(db, name="Plenty", quantity=10)
        scarce = add_product(db, name="Scarce", quantity=1)

        with pytest.raises(InsufficientStockError) as excinfo:
            crud.place_order(db, order_request((plenty, 1), (scarce, 2)))

        assert excinfo.value.product_id == scarce
        assert excinfo.value.product_name == "Scarce"

    def test_rejected_order_is_not_persisted(self, db):
        plenty = add_product(db, quantity=10)
        scarce = add_product(db, quantity=1)

        with pytest.raises(InsufficientStockError):
            crud.place_order(db, order_request((plenty, 1), (scarce, 2)))

        assert crud.get_orders(db) == []

    def test_rejected_order_rolls_back_earlier_decrements(self, db):
        plenty = add_product(db, quantity=10)
        scarce = add_product(db, quantity=1)

        with pytest.raises(InsufficientStockError):
            crud.place_order(db, order_request((plenty, 4), (scarce, 2)))

        assert crud.get_product(db, plenty).quantity == 10
        assert crud.get_product(db, scarce).quantity == 1

    def test_lines_after_failure_are_not_processed(self, db):
        scarce = add_product(db, quantity=0)
        later = add_product(db, quantity=10)

        with pytest.raises(InsufficientStockError):
            crud.place_order(db, order_request((scarce, 1), (later, 1)))

        assert crud.get_product(db, later).quantity == 10

    def test_unknown_product(self, db):
        known = add_product(db, quantity=10)

        with pytest.raises(NotFoundError, match="no product with id: ghost"):
            crud.place_order(db, order_request((known, 1), ("ghost", 1)))

        assert crud.get_product(db, known).quantity == 10
        assert crud.get_orders(db) == []

    def test_store_failure_leaves_nothing_behind(self, db):
        product_id = add_product(db, quantity=10)

        with mock.patch.object(
            crud, "add_order_line", side_effect=StoreError("adding ordered product failed")
        ):
            with pytest.raises(StoreError):
                crud.place_order(db, order_request((product_id, 3)))

        assert crud.get_product(db, product_id).quantity == 10
        assert crud.get_orders(db) == []

    def test_database_error_becomes_store_error(self, db):
        product_id = add_product(db, quantity=10)

        with mock.patch.object(
            db, "commit", side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error"))
        ):
            with pytest.raises(StoreError, match="placing order failed"):
                crud.place_order(db, order_request((product_id, 3)))

        assert crud.get_product(db, product_id).quantity == 10
        assert crud.get_orders(db) == []


class TestPlaceOrderLocking:

    def test_rows_locked_in_id_order_before_decrementing(self, engine, db):
        a = add_product(db, quantity=5)
        b = add_product(db, quantity=5)
        low, high = sorted([a, b])
        statements = []

        def capture(conn, cursor, statement, parameters, context, executemany):
            statements.append((statement, parameters))

        event.listen(engine, "before_cursor_execute", capture)
        try:
            crud.place_order(db, order_request((high, 1), (low, 1)))
        finally:
            event.remove(engine, "before_cursor_execute", capture)

        lock_index = next(
            i for i, (sql, _) in enumerate(statements) if "ORDER BY products.id" in sql
        )
        update_index = next(
            i for i, (sql, _) in enumerate(statements) if sql.startswith("UPDATE products")
        )
        assert lock_index < update_index
        assert [p for p in statements[lock_index][1] if p in (a, b)] == [low, high]

    def test_first_failing_line_in_request_order_is_reported(self, db):
        a = add_product(db, quantity=0)
        b = add_product(db, quantity=0)
        low, high = sorted([a, b])

        with pytest.raises(InsufficientStockError) as excinfo:
            crud.place_order(db, order_request((high, 1), (low, 1)))

        assert excinfo.value.product_id == high

    def test_lock_products_skips_unknown_ids(self, db):
        a = add_product(db)
        b = add_product(db)
        assert crud.lock_products(db, [b, "ghost", a, b]) == sorted([a, b])
