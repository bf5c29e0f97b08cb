from typing import Dict, Optional

from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import LoadingIndicator

from db.models import Role
from utils.logger import get_logger
from utils.messages import (
    ModeSwitchedMessage,
    NewOrderMessage,
    QuitRequestedMessage,
    UserLogoutMessage,
)
from utils.state import AppContext
from views.scr_admin import AdminScreen
from views.scr_cart import CartScreen
from views.scr_login import LoginScreen
from views.scr_past_orders import PastOrdersScreen
from views.scr_shop_dashboard import ShopDashboardScreen
from views.scr_shop_products import ShopProductsScreen
from views.scr_shops import ShopsScreen

_logger = get_logger(__name__)


class MarketApp(App):
    BINDINGS = [
        Binding("ctrl+t", "switch_light", "Toggle Theme", show=True),
    ]

    MODES = {
        "shops": ShopsScreen,
        "cart": CartScreen,
        "past_orders": PastOrdersScreen,
        "shop_dash": ShopDashboardScreen,
        "shop_products": ShopProductsScreen,
        "admin": AdminScreen,
    }

    CUSTOMER_MODES = {"shops": "Browse Shops", "cart": "Cart", "past_orders": "Past Orders"}
    SHOPKEEPER_MODES = {"shop_dash": "My Shop", "shop_products": "Products"}
    ADMIN_MODES = {"admin": "Moderation"}
    MODE_TITLES = {**CUSTOMER_MODES, **SHOPKEEPER_MODES, **ADMIN_MODES}

    # relative to this file, so it resolves both from src/ and when installed
    CSS_PATH = "views/market.tcss"

    state: AppContext

    def __init__(self, state: Optional[AppContext] = None):
        super().__init__()
        self.state = state or AppContext()

    def modes_for(self, role: Optional[Role]) -> Dict[str, str]:
        if role is Role.ADMIN:
            return self.ADMIN_MODES
        if role is Role.SHOPKEEPER:
            return self.SHOPKEEPER_MODES
        return self.CUSTOMER_MODES

    def compose(self) -> ComposeResult:
        yield LoadingIndicator()

    async def on_mount(self) -> None:
        self.main_flow()

    def action_switch_light(self):
        if self.theme == "textual-dark":
            self.theme = "solarized-light"
        else:
            self.theme = "textual-dark"
        self.notify(f"Theme changed to {self.theme}")

    @on(NewOrderMessage)
    def handle_new_order(self, message: NewOrderMessage):
        _logger.info(f"Checkout placed order(s): {', '.join(message.order_ids)}")

    @on(UserLogoutMessage)
    @work
    async def handle_user_logout(self):
        was_guest = self.state.is_guest
        await self.state.sign_out()
        if not was_guest:
            self.notify("Logout successful.")
        self.main_flow()

    @on(QuitRequestedMessage)
    @work
    async def handle_quit(self):
        await self.state.sign_out()
        self.state.sync.close()
        self.exit()

    @work
    async def main_flow(self):
        await self.push_screen_wait(LoginScreen())
        first_mode = next(iter(self.modes_for(self.state.role)))
        self.post_message(ModeSwitchedMessage(self.current_mode, first_mode))
        await self.switch_mode(first_mode)


def run() -> None:
    MarketApp().run()


if __name__ == "__main__":
    run()
