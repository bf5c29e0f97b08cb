"""
Local cart arithmetic. Synchronous, no network I/O.

One ``Cart`` instance is created per running app and handed to whoever needs
it; every mutation is persisted to local storage and announced to subscribers
(the synchronizer listens to mirror the cart for signed-in customers).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

from cart.storage import LocalCartStorage
from db.models import CartLine, Product, ProductSnapshot
from utils.logger import get_logger

_logger = get_logger(__name__)


@dataclass(frozen=True)
class CartChange:
    action: str  # add | remove | update | clear | replace
    product_id: Optional[str] = None


CartListener = Callable[[CartChange], None]


def _merge_duplicates(lines: List[CartLine]) -> List[CartLine]:
    """Collapse lines sharing a product id into the first one, summing quantities."""
    merged: Dict[str, CartLine] = {}
    for line in lines:
        if line.quantity < 1:
            continue
        if line.product_id in merged:
            first = merged[line.product_id]
            merged[line.product_id] = replace(
                first,
                quantity=first.quantity + line.quantity,
                product=line.product or first.product,
            )
        else:
            merged[line.product_id] = line
    return list(merged.values())


class Cart:
    def __init__(self, storage: Optional[LocalCartStorage] = None):
        self._storage = storage
        self._listeners: List[CartListener] = []
        self.customer_id: Optional[str] = None

        self.checkout_token: Optional[str] = None

        state = storage.load() if storage else None
        if state:
            self._lines = _merge_duplicates(state["items"])
            self._session_id = state["session_id"]
            self.checkout_token = state["checkout_token"]
            _logger.debug(f"Restored cart {self._session_id} with {len(self._lines)} line(s)")
        else:
            self._lines = []
            self._session_id = str(uuid.uuid4())
            self._persist()

    # ---------------------------
    # Reads
    # ---------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines)

    def get_line(self, product_id: str) -> Optional[CartLine]:
        return next((line for line in self._lines if line.product_id == product_id), None)

    def quantity_of(self, product_id: str) -> int:
        line = self.get_line(product_id)
        return line.quantity if line else 0

    def shop_ids(self) -> List[str]:
        return list(dict.fromkeys(line.shop_id for line in self._lines))

    def get_total(self) -> float:
        return round(sum(line.line_total for line in self._lines), 2)

    def addable_quantity(self, product: Product, requested: int = 1) -> int:
        """
        How much of ``requested`` still fits under the product's live stock,
        given what is already in the cart. The cart itself never enforces this.
        """
        room = product.stock - self.quantity_of(product.id)
        return max(0, min(requested, room))

    # ---------------------------
    # Mutations
    # ---------------------------

    def add_item(self, product: Union[Product, ProductSnapshot], quantity: int = 1) -> CartLine:
        """Add ``quantity`` of a product, merging into an existing line for it."""
        if quantity < 1:
            raise ValueError("Quantity must be at least 1.")
        snapshot = product.snapshot() if isinstance(product, Product) else product

        existing = self.get_line(product.id)
        if existing:
            line = replace(existing, quantity=existing.quantity + quantity, product=snapshot)
            self._lines = [line if other.product_id == product.id else other for other in self._lines]
        else:
            line = CartLine(
                line_id=str(uuid.uuid4()),
                product_id=product.id,
                shop_id=product.shop_id,
                quantity=quantity,
                session_id=self._session_id,
                created_at=datetime.now(),
                customer_id=self.customer_id,
                product=snapshot,
            )
            self._lines = self._lines + [line]

        _logger.debug(f"Cart: {product.id} x{line.quantity}")
        self._commit(CartChange("add", product.id))
        return line

    def remove_item(self, product_id: str) -> bool:
        """Drop the line for a product. Returns False if there was none."""
        if self.get_line(product_id) is None:
            return False
        self._lines = [other for other in self._lines if other.product_id != product_id]
        self._commit(CartChange("remove", product_id))
        return True

    def update_quantity(self, product_id: str, quantity: int) -> Optional[CartLine]:
        """Set a line's quantity outright; zero or less removes the line."""
        if quantity <= 0:
            self.remove_item(product_id)
            return None
        existing = self.get_line(product_id)
        if existing is None:
            return None
        line = replace(existing, quantity=quantity)
        self._lines = [line if other.product_id == product_id else other for other in self._lines]
        self._commit(CartChange("update", product_id))
        return line

    def clear_cart(self) -> None:
        had_lines = bool(self._lines)
        self._lines = []
        if had_lines:
            self._commit(CartChange("clear"))
        else:
            self._persist()

    def replace_lines(self, lines: List[CartLine], notify: bool = True) -> None:
        """Swap in a whole new set of lines, e.g. the server copy after sign-in."""
        self._lines = _merge_duplicates(list(lines))
        if notify:
            self._commit(CartChange("replace"))
        else:
            self.checkout_token = None
            self._persist()

    # ---------------------------
    # Identity & checkout token
    # ---------------------------

    def bind_customer(self, customer_id: str) -> None:
        self.customer_id = customer_id
        self._lines = [replace(other, customer_id=customer_id) for other in self._lines]
        self._persist()

    def unbind_customer(self) -> None:
        self.customer_id = None
        self._lines = [replace(other, customer_id=None) for other in self._lines]
        self._persist()

    def begin_checkout(self) -> str:
        """
        Return the pending checkout token, minting one if this is a fresh attempt.

        The token only survives while the cart is unchanged: any mutation drops
        it, so a retry after editing the cart places new orders.
        """
        if not self.checkout_token:
            self.checkout_token = str(uuid.uuid4())
            self._persist()
        return self.checkout_token

    def end_checkout(self) -> None:
        self.checkout_token = None
        self._persist()

    # ---------------------------
    # Observers & persistence
    # ---------------------------

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self, change: CartChange) -> None:
        self.checkout_token = None
        self._persist()
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                _logger.exception(f"Cart listener failed on {change.action}")

    def _persist(self) -> None:
        if self._storage is None:
            return
        try:
            self._storage.save(self._lines, self._session_id, self.checkout_token)
        except OSError as e:
            # in-memory state stays authoritative; next mutation tries again
            _logger.error(f"Could not persist cart to {self._storage.path}: {e}")
