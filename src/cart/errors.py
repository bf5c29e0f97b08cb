from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from db.models import Order


class CartError(Exception):
    """Base class for cart, sync and checkout failures."""


class CheckoutValidationError(CartError, ValueError):
    """Rejected before any I/O was attempted."""


class EmptyCartError(CheckoutValidationError):
    def __init__(self, message: str = "Cannot check out an empty cart."):
        super().__init__(message)


class InvalidBuyerDetailsError(CheckoutValidationError):
    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"Missing buyer details: {', '.join(missing)}.")


class OrderCreationError(CartError):
    """
    Creating an order or its lines failed for one shop group. Remaining groups
    were not processed and the cart was not cleared; orders already placed in
    the same checkout are listed in ``placed_orders``.
    """

    def __init__(
        self,
        shop_id: str,
        placed_orders: Optional[List["Order"]] = None,
        stage: str = "order",
    ):
        self.shop_id = shop_id
        self.placed_orders = list(placed_orders or [])
        self.stage = stage
        message = f"Failed to create {stage} for shop {shop_id}."
        if self.placed_orders:
            message += (
                f" {len(self.placed_orders)} order(s) for other shops were already placed."
            )
        super().__init__(message)

    @property
    def is_partial(self) -> bool:
        return bool(self.placed_orders)


class StockUpdateError(CartError):
    """Non-fatal: an order stands but its stock decrement did not apply."""

    def __init__(self, product_id: str, message: str):
        self.product_id = product_id
        super().__init__(message)


class StockConflictError(StockUpdateError):
    """The stock value changed underneath us on every compare-and-swap attempt."""

    def __init__(self, product_id: str, attempts: int):
        self.attempts = attempts
        super().__init__(
            product_id,
            f"Stock for product {product_id} kept changing; gave up after {attempts} attempts.",
        )


class CartSyncError(CartError):
    """Reading or writing the server-side cart mirror failed."""

    def __init__(self, customer_id: str, action: str):
        self.customer_id = customer_id
        self.action = action
        super().__init__(f"Could not {action} cart for customer {customer_id}.")
