from typing import Callable, Optional

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Container, Horizontal, HorizontalGroup, VerticalScroll
from textual.events import ScreenResume
from textual.message import Message
from textual.widgets import Button, Label, Rule

from cart.engine import CartChange
from db.models import CartLine
from utils.messages import CartChangedMessage, ModeSwitchedMessage, NewOrderMessage
from utils.pure import format_price
from views.base_screen import BaseScreen
from views.modal_checkout import CheckoutModal
from views.modal_dialog import DialogModal


class CartLineActionMessage(Message):
    bubble = True

    def __init__(self, product_id: str, action: str) -> None:
        super().__init__()
        self.product_id = product_id
        self.action = action  # inc | dec | remove


class CartLineActionLabel(Label):
    def __init__(self, product_id: str, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.product_id = product_id

    def action_inc(self):
        self.post_message(CartLineActionMessage(self.product_id, "inc"))

    def action_dec(self):
        self.post_message(CartLineActionMessage(self.product_id, "dec"))

    def action_remove(self):
        self.post_message(CartLineActionMessage(self.product_id, "remove"))


class CartLineWidget(HorizontalGroup):
    def __init__(self, line: CartLine):
        super().__init__()
        self.line = line

    def compose(self):
        product = self.line.product
        title = product.title if product else self.line.product_id
        shop = product.shop_name if product and product.shop_name else self.line.shop_id
        pid = self.line.product_id
        with Container(classes="div-cart-item-group"):
            with Container(classes="div-item"):
                yield Label(title, classes="label-item-name")
                yield Label(shop, classes="label-item-shop")
                yield Label(f"x{self.line.quantity}", classes="label-item-qty")
                yield Label(format_price(self.line.unit_price), classes="label-item-price")
                yield Label(format_price(self.line.line_total), classes="label-item-total")
            with Container(classes="div-actions"):
                yield CartLineActionLabel(pid, "[@click=dec()]-[/]", classes="link-item-dec")
                yield CartLineActionLabel(pid, "[@click=inc()]+[/]", classes="link-item-inc")
                yield CartLineActionLabel(pid, "[@click=remove()]Remove[/]", classes="link-item-remove")


class CartScreen(BaseScreen):
    """
    Cart lines grouped in cart order, quantity controls, and checkout.
    """

    def __init__(self) -> None:
        super().__init__()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def compose(self) -> ComposeResult:
        yield from super().compose()
        yield VerticalScroll(id="vertscroll-content")
        yield Label("Total Cart Value: $0.00", id="label-cart-total")
        yield Rule(line_style="dashed")
        with Horizontal(id="hort-buttons"):
            yield Button("Clear Cart", id="btn-clear-cart")
            yield Button("Checkout", id="btn-checkout", variant="primary")

    def on_mount(self):
        self._unsubscribe = self.app.state.cart.subscribe(self._on_cart_change)
        self.handle_cart_change()

    def on_unmount(self):
        if self._unsubscribe:
            self._unsubscribe()

    def _on_cart_change(self, change: CartChange) -> None:
        self.post_message(CartChangedMessage(change.action, change.product_id))

    @on(CartChangedMessage)
    @on(ModeSwitchedMessage)
    @on(ScreenResume)
    @work(exclusive=True, group="cart")  # exclusive, else two refreshes race and duplicate rows
    async def handle_cart_change(self):
        cart = self.app.state.cart
        content = self.query_one("#vertscroll-content")
        await content.remove_children()
        await content.mount_all([CartLineWidget(line) for line in cart.lines])
        content.set_class(cart.is_empty, "no-items")

        total = f"Total Cart Value: {format_price(cart.get_total())}"
        shops = len(cart.shop_ids())
        if shops > 1:
            total += f" ({shops} shops, one order each)"
        self.query_one("#label-cart-total", Label).update(total)
        self.query_one("#btn-checkout", Button).disabled = cart.is_empty

    @on(CartLineActionMessage)
    @work()
    async def handle_line_action(self, message: CartLineActionMessage) -> None:
        cart = self.app.state.cart
        pid = message.product_id
        qty = cart.quantity_of(pid)

        if message.action == "inc":
            line = cart.get_line(pid)
            stock = line.product.stock if line and line.product else None
            if stock is not None and qty >= stock:
                self.notify("Cannot add more, stock limit reached.", severity="warning")
                return
            cart.update_quantity(pid, qty + 1)
        elif message.action == "dec":
            cart.update_quantity(pid, qty - 1)
        elif await self.app.push_screen_wait(
            DialogModal(
                "Do you really want to remove this item from cart?",
                primary_text="Yes",
                secondary_text="No",
                tone="warning",
            )
        ):
            cart.remove_item(pid)
            self.notify("Item removed from cart.", severity="information")

    @on(Button.Pressed, "#btn-clear-cart")
    @work()
    async def handle_clear_cart(self) -> None:
        if self.app.state.cart.is_empty:
            self.app.notify("Cart is empty.", severity="warning")
            return

        if await self.app.push_screen_wait(
            DialogModal(
                "Do you really want to remove all items from cart?",
                primary_text="Yes",
                secondary_text="No",
                tone="error",
            )
        ):
            self.app.state.cart.clear_cart()

    @on(Button.Pressed, "#btn-checkout")
    @work()
    async def handle_checkout(self) -> None:
        if self.app.state.cart.is_empty:
            self.app.notify("Cart is empty.", severity="warning")
            return

        result = await self.app.push_screen_wait(CheckoutModal())
        if result is not None and result.orders:
            self.post_message(NewOrderMessage([o.id for o in result.orders]))
