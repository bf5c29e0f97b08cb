"""
Turns the cart into one pending order per shop.

For each shop group, in cart order: create the order, snapshot its lines, then
decrement stock line by line. Groups run one after another so a failure leaves
a well-defined set of already-placed orders. Every attempt reuses the cart's
checkout token, and the backend keeps one order per (token, shop), so retrying
after a partial failure picks up where the last attempt stopped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import db.crud
from cart.engine import Cart
from cart.errors import (
    EmptyCartError,
    InvalidBuyerDetailsError,
    OrderCreationError,
    StockConflictError,
    StockUpdateError,
)
from cart.sync import CartSynchronizer
from db.models import CartLine, Identity, Order, OrderDraft, OrderLineDraft
from utils.config import STOCK_CAS_ATTEMPTS
from utils.logger import get_logger

_logger = get_logger(__name__)


@dataclass(frozen=True)
class BuyerDetails:
    name: str
    email: str
    phone: str = ""

    def normalized(self, identity: Optional[Identity] = None) -> "BuyerDetails":
        email = (self.email or "").strip().lower()
        if not email and identity is not None:
            email = identity.email.strip().lower()
        return BuyerDetails(
            name=(self.name or "").strip(),
            email=email,
            phone=(self.phone or "").strip(),
        )

    def validate(self) -> None:
        missing = [f for f in ("name", "email") if not getattr(self, f)]
        if missing:
            raise InvalidBuyerDetailsError(missing)


@dataclass
class CheckoutResult:
    checkout_token: str
    orders: List[Order] = field(default_factory=list)
    warnings: List[StockUpdateError] = field(default_factory=list)
    # shop groups an earlier attempt with the same token had already placed
    resumed_shop_ids: List[str] = field(default_factory=list)

    @property
    def grand_total(self) -> float:
        return round(sum(o.total_amount for o in self.orders), 2)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


def group_by_shop(lines: List[CartLine]) -> Dict[str, List[CartLine]]:
    """Partition lines by shop, keeping the order shops first appear in the cart."""
    groups: Dict[str, List[CartLine]] = {}
    for line in lines:
        groups.setdefault(line.shop_id, []).append(line)
    return groups


def group_total(lines: List[CartLine]) -> float:
    return round(sum(line.line_total for line in lines), 2)


class CheckoutOrchestrator:
    def __init__(
        self,
        cart: Cart,
        backend=db.crud,
        synchronizer: Optional[CartSynchronizer] = None,
        identity_provider: Optional[Callable[[], Optional[Identity]]] = None,
        stock_attempts: int = STOCK_CAS_ATTEMPTS,
    ):
        self.cart = cart
        self.backend = backend
        self.synchronizer = synchronizer
        self.identity_provider = identity_provider or (lambda: None)
        self.stock_attempts = max(1, stock_attempts)

    async def checkout(self, buyer: BuyerDetails) -> CheckoutResult:
        """
        Place the cart's orders.

        Raises EmptyCartError or InvalidBuyerDetailsError before any I/O, and
        OrderCreationError if an order or its lines could not be written (the
        cart is then kept for a retry). Stock problems never fail the checkout;
        they come back as ``CheckoutResult.warnings``.
        """
        lines = self.cart.lines
        if not lines:
            raise EmptyCartError()

        identity = self.identity_provider()
        buyer = buyer.normalized(identity)
        buyer.validate()

        token = self.cart.begin_checkout()
        groups = group_by_shop(lines)
        result = CheckoutResult(checkout_token=token)
        _logger.info(
            f"Checkout {token}: {len(lines)} line(s) across {len(groups)} shop(s)"
        )

        for shop_id, group in groups.items():
            await self._place_shop_order(shop_id, group, buyer, identity, result)

        await self._drain_cart(identity)

        _logger.info(
            f"Checkout {token} placed {len(result.orders)} order(s), "
            f"total {result.grand_total:.2f}, {len(result.warnings)} stock warning(s)"
        )
        return result

    async def _place_shop_order(
        self,
        shop_id: str,
        group: List[CartLine],
        buyer: BuyerDetails,
        identity: Optional[Identity],
        result: CheckoutResult,
    ) -> None:
        draft = OrderDraft(
            shop_id=shop_id,
            customer_name=buyer.name,
            customer_email=buyer.email,
            customer_phone=buyer.phone,
            total_amount=group_total(group),
            customer_id=identity.id if identity else None,
            checkout_token=result.checkout_token,
        )
        try:
            order = await self.backend.create_order(draft)
        except Exception as e:
            _logger.error(f"Creating order for shop {shop_id} failed: {e}")
            raise OrderCreationError(shop_id, result.orders, "order") from e

        order_lines = [
            OrderLineDraft(product_id=line.product_id, quantity=line.quantity, price=line.unit_price)
            for line in group
        ]
        try:
            inserted = await self.backend.create_order_lines(order.id, order_lines)
        except Exception as e:
            _logger.error(f"Creating lines for order {order.id} (shop {shop_id}) failed: {e}")
            await self._discard_order(order)
            raise OrderCreationError(shop_id, result.orders, "order lines") from e

        result.orders.append(order)
        if not inserted:
            # placed by an earlier attempt, its stock was already taken then
            _logger.info(f"Order {order.id} for shop {shop_id} was already placed")
            result.resumed_shop_ids.append(shop_id)
            return

        for line in group:
            warning = await self._decrement_stock(line)
            if warning is not None:
                result.warnings.append(warning)

    async def _discard_order(self, order: Order) -> None:
        # a retry recreates it under the current token
        try:
            if await self.backend.discard_empty_order(order.id):
                _logger.info(f"Discarded order {order.id} left without lines")
        except Exception as e:
            _logger.error(f"Could not discard order {order.id}: {e}")

    async def _decrement_stock(self, line: CartLine) -> Optional[StockUpdateError]:
        product_id = line.product_id
        for attempt in range(1, self.stock_attempts + 1):
            try:
                product = await self.backend.get_product(product_id)
                if product is None:
                    warning = StockUpdateError(product_id, f"Product {product_id} no longer exists.")
                    _logger.warning(str(warning))
                    return warning
                new_stock = await self.backend.decrement_stock(
                    product_id, line.quantity, product.stock
                )
            except Exception as e:
                warning = StockUpdateError(product_id, f"Stock update for {product_id} failed: {e}")
                warning.__cause__ = e
                _logger.warning(str(warning))
                return warning

            if new_stock is not None:
                _logger.debug(f"Stock for {product_id}: {product.stock} -> {new_stock}")
                return None
            _logger.debug(f"Stock for {product_id} changed concurrently (attempt {attempt})")

        warning = StockConflictError(product_id, self.stock_attempts)
        _logger.warning(str(warning))
        return warning

    async def _drain_cart(self, identity: Optional[Identity]) -> None:
        if identity is not None:
            if self.synchronizer is not None:
                await self.synchronizer.clear_remote_cart(identity.id)
            else:
                try:
                    await self.backend.replace_cart_rows(identity.id, [])
                except Exception as e:
                    _logger.error(f"Clearing server cart for {identity.id} failed: {e}")
        self.cart.clear_cart()
        self.cart.end_checkout()
