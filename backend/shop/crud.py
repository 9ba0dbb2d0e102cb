"""
CRUD Operations
===============

Store layer for products and orders, plus the order placement workflow.

Every function takes the request's Session explicitly:

def operation_name(db: Session, parameters) -> ReturnType:
    # Database operations
    return result

Failures are raised, never returned:
- NotFoundError when an id does not exist
- InsufficientStockError when stock is too low
- StoreError wrapping any SQLAlchemyError (the session is rolled back)

Write functions commit by default. The placement workflow calls them with
commit=False and commits once at the end, so an order is placed entirely
or not at all.
"""

from contextlib import contextmanager
from decimal import Decimal
from typing import List, Tuple

import structlog
from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shop import models, schemas
from shop.errors import InsufficientStockError, NotFoundError, StoreError

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_ORDER_STATUS = "pending"


@contextmanager
def _store_errors(db: Session, action: str):
    """Roll back and re-raise database failures as StoreError."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("store_error", action=action, error=str(exc))
        raise StoreError(f"{action} failed with: {exc}") from exc


def _commit(db: Session, action: str) -> None:
    with _store_errors(db, action):
        db.commit()


# ============================================================================
# PRODUCT CRUD OPERATIONS (catalog store)
# ============================================================================

def get_products(db: Session) -> List[models.Product]:
    """
    Retrieve all products in storage order.

    SQL generated:
        SELECT * FROM products
    """
    with _store_errors(db, "reading all products"):
        return db.query(models.Product).all()


def get_product(db: Session, product_id: str) -> models.Product:
    """
    Retrieve a single product by ID.

    Raises:
        NotFoundError: no product has this id
    """
    with _store_errors(db, f"searching for product {product_id}"):
        product = db.query(models.Product).filter(models.Product.id == product_id).first()

    if product is None:
        raise NotFoundError("product", product_id)
    return product


def create_product(db: Session, product: schemas.ProductCreate, commit: bool = True) -> str:
    """
    Create a new product and return its generated id.

    SQL generated:
        INSERT INTO products (id, name, category, quantity, price)
        VALUES (?, ?, ?, ?, ?)
    """
    product_id = models.new_id()
    db_product = models.Product(id=product_id, **product.model_dump())

    with _store_errors(db, "adding product"):
        db.add(db_product)
        db.flush()

    if commit:
        _commit(db, "adding product")

    logger.info("product_created", product_id=product_id, name=product.name)
    return product_id


def update_product(
    db: Session,
    product_id: str,
    product: schemas.ProductUpdate,
    commit: bool = True,
) -> None:
    """
    Replace every field of an existing product.

    SQL generated:
        UPDATE products
        SET name = ?, category = ?, quantity = ?, price = ?
        WHERE id = ?

    Raises:
        NotFoundError: zero rows matched
    """
    with _store_errors(db, f"updating product {product_id}"):
        matched = (
            db.query(models.Product)
            .filter(models.Product.id == product_id)
            .update(product.model_dump(), synchronize_session="evaluate")
        )

    if matched == 0:
        raise NotFoundError("product", product_id)

    if commit:
        _commit(db, f"updating product {product_id}")

    logger.info("product_updated", product_id=product_id)


def delete_product(db: Session, product_id: str, commit: bool = True) -> None:
    """
    Delete a product by ID.

    Orders that reference the product keep their lines; product_id on
    orderedProduct has no foreign key.

    Raises:
        NotFoundError: zero rows matched
    """
    with _store_errors(db, f"deleting product {product_id}"):
        deleted = (
            db.query(models.Product)
            .filter(models.Product.id == product_id)
            .delete(synchronize_session="evaluate")
        )

    if deleted == 0:
        raise NotFoundError("product", product_id)

    if commit:
        _commit(db, f"deleting product {product_id}")

    logger.info("product_deleted", product_id=product_id)


def decrement_product_quantity(
    db: Session,
    product_id: str,
    amount: int,
    commit: bool = True,
) -> models.Product:
    """
    Atomically take ``amount`` units out of stock.

    Check and decrement happen in one conditional statement, so two
    concurrent orders can never both take the last units:

    SQL generated:
        UPDATE products
        SET quantity = quantity - :amount
        WHERE id = :id AND quantity >= :amount

    Zero affected rows means the product is missing or has too little
    stock. In both cases nothing was changed.

    Returns:
        The product with its new quantity

    Raises:
        ValueError: amount is not positive
        NotFoundError: no product has this id
        InsufficientStockError: quantity < amount
    """
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")

    with _store_errors(db, f"updating quantity of product {product_id}"):
        updated = (
            db.query(models.Product)
            .filter(models.Product.id == product_id, models.Product.quantity >= amount)
            .update(
                {models.Product.quantity: models.Product.quantity - amount},
                synchronize_session=False,
            )
        )
        product = db.get(models.Product, product_id, populate_existing=True)

    if updated == 0:
        if product is None:
            raise NotFoundError("product", product_id)
        raise InsufficientStockError(
            product_id=product.id,
            product_name=product.name,
            requested=amount,
            available=product.quantity,
        )

    if commit:
        _commit(db, f"updating quantity of product {product_id}")

    return product


# ============================================================================
# ORDER CRUD OPERATIONS (order store)
# ============================================================================

def get_order_lines(db: Session, order_id: str) -> List[Tuple[str, int]]:
    """
    Raw (product_id, quantity) rows of an order, in the order they were placed.

    An order without lines, or an unknown order id, gives an empty list.
    """
    with _store_errors(db, f"reading ordered products of order {order_id}"):
        rows = (
            db.query(models.OrderedProduct.product_id, models.OrderedProduct.quantity)
            .filter(models.OrderedProduct.order_id == order_id)
            .order_by(models.OrderedProduct.position)
            .all()
        )
    return [(product_id, quantity) for product_id, quantity in rows]


def _resolve_order(db: Session, order: models.Order) -> schemas.Order:
    # Lines are joined with the product's *current* name/category/price.
    # A line whose product was deleted makes the whole read fail.
    products = []
    for product_id, quantity in get_order_lines(db, order.id):
        product = get_product(db, product_id)
        products.append(
            schemas.OrderedProduct(
                id=product.id,
                name=product.name,
                category=product.category,
                quantity=quantity,
                price=product.price,
            )
        )

    return schemas.Order(
        id=order.id,
        name=order.name,
        address=order.address,
        phone=order.phone,
        products=products,
        price=order.price,
        status=order.status,
    )


def get_orders(db: Session) -> List[schemas.Order]:
    """
    Retrieve all orders with their lines resolved.

    Any line that fails to resolve aborts the whole listing.
    """
    with _store_errors(db, "reading all orders"):
        orders = db.query(models.Order).all()
    return [_resolve_order(db, order) for order in orders]


def get_order(db: Session, order_id: str) -> schemas.Order:
    """
    Retrieve a single order by ID with its lines resolved.

    Raises:
        NotFoundError: no order has this id (or a line's product is gone)
    """
    with _store_errors(db, f"searching for order {order_id}"):
        order = db.query(models.Order).filter(models.Order.id == order_id).first()

    if order is None:
        raise NotFoundError("order", order_id)
    return _resolve_order(db, order)


def create_order_record(
    db: Session,
    name: str,
    address: str,
    phone: str,
    price: Decimal,
    status: str = DEFAULT_ORDER_STATUS,
    commit: bool = True,
) -> str:
    """Insert the scalar fields of an order. Lines are added separately."""
    order_id = models.new_id()
    db_order = models.Order(
        id=order_id,
        name=name,
        address=address,
        phone=phone,
        price=price,
        status=status,
    )

    with _store_errors(db, "adding order"):
        db.add(db_order)
        db.flush()

    if commit:
        _commit(db, "adding order")
    return order_id


def add_order_line(
    db: Session,
    order_id: str,
    product_id: str,
    quantity: int,
    position: int = 0,
    commit: bool = True,
) -> None:
    """Insert one orderedProduct row."""
    line = models.OrderedProduct(
        id=models.new_id(),
        order_id=order_id,
        product_id=product_id,
        quantity=quantity,
        position=position,
    )

    with _store_errors(db, "adding ordered product"):
        db.add(line)
        db.flush()

    if commit:
        _commit(db, "adding ordered product")


def update_order_record(
    db: Session,
    order_id: str,
    order: schemas.OrderUpdate,
    commit: bool = True,
) -> None:
    """
    Replace the scalar fields of an order.

    name, address, phone and price are always replaced; status only when
    given. Order lines are not touched.

    Raises:
        NotFoundError: zero rows matched
    """
    values = order.model_dump(exclude_none=True)

    with _store_errors(db, f"updating order {order_id}"):
        matched = (
            db.query(models.Order)
            .filter(models.Order.id == order_id)
            .update(values, synchronize_session="evaluate")
        )

    if matched == 0:
        raise NotFoundError("order", order_id)

    if commit:
        _commit(db, f"updating order {order_id}")

    logger.info("order_updated", order_id=order_id)


def delete_order(db: Session, order_id: str) -> None:
    """
    Delete an order and all of its lines in one transaction.

    Lines go first so no orphaned orderedProduct rows are left behind.
    An order with zero lines is fine.

    SQL generated:
        DELETE FROM orderedProduct WHERE order_id = ?;
        DELETE FROM orders WHERE id = ?;

    Raises:
        NotFoundError: the order row does not exist
    """
    with _store_errors(db, f"deleting order {order_id}"):
        lines_deleted = (
            db.query(models.OrderedProduct)
            .filter(models.OrderedProduct.order_id == order_id)
            .delete(synchronize_session=False)
        )
        deleted = (
            db.query(models.Order)
            .filter(models.Order.id == order_id)
            .delete(synchronize_session=False)
        )

    if deleted == 0:
        db.rollback()
        raise NotFoundError("order", order_id)

    _commit(db, f"deleting order {order_id}")
    logger.info("order_deleted", order_id=order_id, lines_deleted=lines_deleted)


# ============================================================================
# ORDER PLACEMENT WORKFLOW
# ============================================================================

def lock_products(db: Session, product_ids: List[str]) -> List[str]:
    """
    Take row locks on the given products in ascending id order.

    SQL generated (PostgreSQL; SQLite ignores FOR UPDATE):
        SELECT id FROM products WHERE id IN (...) ORDER BY id FOR UPDATE

    Unknown ids are skipped; the decrement reports them.
    """
    ids = sorted(set(product_ids))
    with _store_errors(db, "locking products"):
        rows = (
            db.query(models.Product.id)
            .filter(models.Product.id.in_(ids))
            .order_by(models.Product.id)
            .with_for_update()
            .all()
        )
    return [product_id for (product_id,) in rows]


def place_order(db: Session, order: schemas.OrderCreate) -> Tuple[str, Decimal]:
    """
    Place a new order.

    Process (one transaction):
        1. Lock the requested product rows, sorted by id
        2. For each line, in request order, atomically decrement stock
        3. Total = sum of unit price x quantity
        4. Insert the order record (status "pending")
        5. Insert one orderedProduct row per line
        6. Commit

    Locking in id order means two orders for {A, B} and {B, A} queue
    behind each other instead of deadlocking. Errors are still reported
    for the first failing line in request order.

    If any step fails the transaction is rolled back: no order, no lines,
    and every decrement already applied for this request is undone.

    Returns:
        (order id, total price in base currency)

    Raises:
        NotFoundError: a requested product does not exist
        InsufficientStockError: a requested product has too little stock
        StoreError: the database failed
    """
    with tracer.start_as_current_span("place_order") as span:
        span.set_attribute("order.line_count", len(order.products))

        try:
            with tracer.start_as_current_span("reserve_stock"):
                lock_products(db, [line.id for line in order.products])
                total = Decimal("0")
                for line in order.products:
                    product = decrement_product_quantity(
                        db, line.id, line.quantity, commit=False
                    )
                    total += Decimal(product.price) * line.quantity

            span.set_attribute("order.total_amount", float(total))

            with tracer.start_as_current_span("save_order"):
                order_id = create_order_record(
                    db,
                    name=order.name,
                    address=order.address,
                    phone=order.phone,
                    price=total,
                    commit=False,
                )
                for position, line in enumerate(order.products):
                    add_order_line(
                        db,
                        order_id,
                        line.id,
                        line.quantity,
                        position=position,
                        commit=False,
                    )

            _commit(db, "placing order")

        except (NotFoundError, InsufficientStockError) as exc:
            db.rollback()
            span.add_event("order_rejected", {"reason": str(exc)})
            logger.info("order_rejected", reason=str(exc))
            raise
        except Exception as exc:
            db.rollback()
            span.record_exception(exc)
            span.set_attribute("error", True)
            raise

        span.set_attribute("order.id", order_id)
        logger.info(
            "order_placed",
            order_id=order_id,
            lines=len(order.products),
            total=str(total),
        )
        return order_id, total
