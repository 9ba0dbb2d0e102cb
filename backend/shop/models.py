"""
Database Models
===============

Defines the database schema using SQLAlchemy ORM.

Tables:
- products: Items for sale and their available stock
- orders: Customer orders
- orderedProduct: Products in each order (association table)

Ids are UUID4 strings generated by the application.
"""

import uuid

from sqlalchemy import Column, ForeignKey, Integer, Numeric, String

from shop.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


# ============================================================================
# PRODUCT MODEL
# ============================================================================

class Product(Base):
    """
    Products available for purchase.

    Attributes:
        id: Primary key (UUID string)
        name: Display name
        category: Display category
        quantity: Available stock, never negative
        price: Unit price in the base currency
    """
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=new_id)

    name = Column(String(200), nullable=False, index=True)
    category = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(12, 2), nullable=False)

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', quantity={self.quantity})>"


# ============================================================================
# ORDER MODEL
# ============================================================================

class Order(Base):
    """
    Customer orders.

    Attributes:
        id: Primary key (UUID string)
        name, address, phone: Customer contact fields
        price: Sum of unit price x quantity over all lines, computed at placement
        status: Free-form status string ("pending" on placement)
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)

    name = Column(String(200), nullable=False)
    address = Column(String(500), nullable=False)
    phone = Column(String(50), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    status = Column(String(50), nullable=False, default="pending")


# ============================================================================
# ORDERED PRODUCT MODEL (association table)
# ============================================================================

class OrderedProduct(Base):
    """
    One (product, quantity) pairing within an order.

    product_id has no foreign key: a product may be deleted while old
    orders still reference it. Display data (name, category, price) is
    joined from products at read time.

    position keeps the order in which lines were requested.
    """
    __tablename__ = "orderedProduct"

    id = Column(String(36), primary_key=True, default=new_id)

    product_id = Column(String(36), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
