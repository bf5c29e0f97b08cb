from __future__ import annotations

from typing import Optional

import db.crud
from cart.checkout import CheckoutOrchestrator
from cart.engine import Cart
from cart.errors import CartSyncError
from cart.storage import LocalCartStorage
from cart.sync import CartSynchronizer
from db.models import Identity, Role, User
from utils.logger import get_logger

_logger = get_logger(__name__)


class AppContext:
    """
    Centralized application state shared by screens.

    Fields:
      - identity: who is signed in, None for guests
      - role: resolved once at sign-in, None for guests
      - cart / sync / checkout: the single cart and the services built around it
    """

    def __init__(self, storage: Optional[LocalCartStorage] = None, backend=db.crud):
        self.backend = backend
        self.identity: Optional[Identity] = None
        self.role: Optional[Role] = None

        self.cart = Cart(storage if storage is not None else LocalCartStorage())
        self.sync = CartSynchronizer(self.cart, backend=backend)
        self.checkout = CheckoutOrchestrator(
            self.cart,
            backend=backend,
            synchronizer=self.sync,
            identity_provider=self.current_identity,
        )

    def current_identity(self) -> Optional[Identity]:
        return self.identity

    @property
    def is_guest(self) -> bool:
        return self.identity is None

    async def sign_in(self, user: User) -> None:
        """
        Bind a signed-in user. Customers get their server cart loaded and the
        sync outbox started; if the load fails the local cart is kept and
        mirrored on the next change.
        """
        self.identity = Identity(id=user.id, email=user.email)
        self.role = Role(user.role)
        _logger.info(f"Signed in {user.email} as {self.role.value}")

        if self.role is not Role.CUSTOMER:
            return
        try:
            await self.sync.load_cart_from_database(user.id)
        except CartSyncError as e:
            _logger.warning(f"{e} Keeping the local cart.")
            self.cart.bind_customer(user.id)
        self.sync.start()

    async def sign_out(self) -> None:
        """Flush pending cart syncs, then drop back to a guest session."""
        if self.role is Role.CUSTOMER:
            if not await self.sync.stop():
                _logger.warning("Some cart changes were not synced before sign-out")
            self.cart.unbind_customer()
        if self.identity:
            _logger.info(f"Signed out {self.identity.email}")
        self.identity = None
        self.role = None

    def require_role(self, *roles: Role) -> Role:
        if self.role is None or self.role not in roles:
            allowed = ", ".join(r.value for r in roles)
            raise PermissionError(f"This action requires one of: {allowed}.")
        return self.role
