from typing import List, Optional

from textual.message import Message

from db.models import Role


# ---------------------------
# Session
# ---------------------------


class UserLoginMessage(Message):
    """Session bound. ``role`` is None when the user continued as guest."""

    bubble = True

    def __init__(self, role: Optional[Role]) -> None:
        super().__init__()
        self.role = role


class UserLogoutMessage(Message):
    """Sidebar asked to end the session; the app signs out and shows login again."""

    bubble = True


class QuitRequestedMessage(Message):
    """Confirmed quit. The app flushes the cart outbox before exiting."""

    bubble = True


# ---------------------------
# Cart & orders
# ---------------------------


class CartChangedMessage(Message):
    """
    A cart mutation happened (``action`` is the cart's change kind: add,
    remove, update, clear or replace). Refreshes the cart screen, the product
    table's in-cart column and the sidebar totals.
    """

    bubble = True

    def __init__(self, action: str, product_id: Optional[str] = None) -> None:
        super().__init__()
        self.action = action
        self.product_id = product_id


class NewOrderMessage(Message):
    """Checkout placed orders, one per shop. Past orders and shop dashboards reload."""

    bubble = True

    def __init__(self, order_ids: List[str]) -> None:
        super().__init__()
        self.order_ids = order_ids


class ModeSwitchedMessage(Message):
    """
    fired whenever switch_mode is called
    must be fired from app level
    """

    bubble = True

    def __init__(self, old_mode: str, new_mode: str) -> None:
        super().__init__()
        self.old_mode = old_mode
        self.new_mode = new_mode
