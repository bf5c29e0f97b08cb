"""
Mirrors a signed-in customer's cart into the backend's cart table.

The local cart is authoritative. Each mutation while a customer is bound drops
a sync intent into an outbox; a background task drains it with retries, always
pushing the current local snapshot as a full replace. Guest carts never leave
local storage.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Deque, List, Optional

import db.crud
from cart.engine import Cart, CartChange
from cart.errors import CartSyncError
from db.models import CartLine
from utils.config import SYNC_MAX_ATTEMPTS, SYNC_RETRY_DELAY
from utils.logger import get_logger

_logger = get_logger(__name__)


@dataclass
class SyncIntent:
    customer_id: str
    reason: str = ""
    enqueued_at: datetime = field(default_factory=datetime.now)
    attempts: int = 0


class CartSynchronizer:
    def __init__(
        self,
        cart: Cart,
        backend=db.crud,
        max_attempts: int = SYNC_MAX_ATTEMPTS,
        retry_delay: float = SYNC_RETRY_DELAY,
    ):
        self.cart = cart
        self.backend = backend
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay

        self.last_synced_at: Optional[datetime] = None
        self.last_error: Optional[CartSyncError] = None

        self._outbox: Deque[SyncIntent] = deque()
        self._wakeup = asyncio.Event()
        self._drain_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe = cart.subscribe(self._on_cart_changed)

    # ---------------------------
    # Direct operations
    # ---------------------------

    async def load_cart_from_database(self, customer_id: str) -> List[CartLine]:
        """
        Replace the local cart with the customer's persisted cart. On failure the
        local cart is left exactly as it was and CartSyncError is raised.
        """
        try:
            lines = await self.backend.fetch_cart_rows(customer_id)
        except Exception as e:
            _logger.error(f"Loading cart for {customer_id} failed: {e}")
            raise CartSyncError(customer_id, "load") from e

        self.cart.bind_customer(customer_id)
        # server copy wins; no echo sync for what we just read
        self.cart.replace_lines(lines, notify=False)
        self._outbox = deque(i for i in self._outbox if i.customer_id != customer_id)
        _logger.info(f"Loaded {len(lines)} cart line(s) for customer {customer_id}")
        return self.cart.lines

    async def sync_cart_to_database(self, customer_id: str) -> None:
        """Full-replace the customer's persisted cart with the local lines."""
        lines = [replace(line, customer_id=customer_id) for line in self.cart.lines]
        try:
            await self.backend.replace_cart_rows(customer_id, lines)
        except Exception as e:
            raise CartSyncError(customer_id, "sync") from e
        self.last_synced_at = datetime.now()
        self.last_error = None
        _logger.debug(f"Synced {len(lines)} cart line(s) for customer {customer_id}")

    async def clear_remote_cart(self, customer_id: str) -> bool:
        """
        Delete the persisted cart. A failure is logged and left in the outbox
        for the background drain; returns whether the delete went through now.
        """
        try:
            await self.backend.replace_cart_rows(customer_id, [])
        except Exception as e:
            self.last_error = CartSyncError(customer_id, "clear")
            self.last_error.__cause__ = e
            _logger.error(f"Clearing server cart for {customer_id} failed: {e}")
            self.enqueue(customer_id, "clear")
            return False
        self.last_synced_at = datetime.now()
        return True

    # ---------------------------
    # Outbox
    # ---------------------------

    @property
    def pending(self) -> int:
        return len(self._outbox)

    @property
    def is_stale(self) -> bool:
        return bool(self._outbox) or self.last_error is not None

    def enqueue(self, customer_id: str, reason: str = "") -> SyncIntent:
        # a full replace pushes whatever is local at send time, so one intent
        # per customer is enough
        for intent in self._outbox:
            if intent.customer_id == customer_id:
                intent.reason = reason or intent.reason
                return intent
        intent = SyncIntent(customer_id=customer_id, reason=reason)
        self._outbox.append(intent)
        self._wakeup.set()
        return intent

    def _on_cart_changed(self, change: CartChange) -> None:
        if self.cart.customer_id:
            self.enqueue(self.cart.customer_id, change.action)

    async def drain(self) -> bool:
        """
        Deliver every pending intent. Returns False if any intent was dropped
        after exhausting its retries.
        """
        all_synced = True
        async with self._drain_lock:
            while self._outbox:
                intent = self._outbox.popleft()
                try:
                    delivered = await self._deliver(intent)
                except asyncio.CancelledError:
                    self._outbox.appendleft(intent)
                    raise
                all_synced = all_synced and delivered
        return all_synced

    async def _deliver(self, intent: SyncIntent) -> bool:
        if self.cart.customer_id != intent.customer_id:
            _logger.debug(f"Skipping sync for {intent.customer_id}, no longer signed in")
            return True

        delay = self.retry_delay
        while True:
            intent.attempts += 1
            try:
                await self.sync_cart_to_database(intent.customer_id)
                return True
            except CartSyncError as e:
                self.last_error = e
                if intent.attempts >= self.max_attempts:
                    _logger.error(
                        f"Giving up on cart sync for {intent.customer_id} after "
                        f"{intent.attempts} attempt(s): {e.__cause__}"
                    )
                    return False
                _logger.warning(
                    f"Cart sync for {intent.customer_id} failed ({e.__cause__}), "
                    f"retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                delay *= 2

    # ---------------------------
    # Background task
    # ---------------------------

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="cart-sync-outbox")
        if self._outbox:
            self._wakeup.set()

    async def stop(self) -> bool:
        """Stop the background task and flush what is left. Returns drain()'s result."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        return await self.drain()

    async def _run(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            await self.drain()

    def close(self) -> None:
        self._unsubscribe()
