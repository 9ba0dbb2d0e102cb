"""
Shop Errors
===========

Every failure the store and workflow functions raise is a ShopError.
The HTTP layer maps them to status codes:

- NotFoundError          -> 404
- InsufficientStockError -> 400
- StoreError             -> 500

None of them is retried.
"""


class ShopError(Exception):
    """Base class for all shop errors."""


class NotFoundError(ShopError):
    """A requested entity id does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"no {entity} with id: {entity_id}")


class InsufficientStockError(ShopError):
    """A product has less stock than an order line asked for."""

    def __init__(self, product_id: str, product_name: str, requested: int, available: int):
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(
            f"not enough quantity of product: {product_name} "
            f"(requested {requested}, available {available})"
        )


class StoreError(ShopError):
    """The database failed (connectivity, constraint, serialization)."""
