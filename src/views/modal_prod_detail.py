from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.reactive import reactive
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, MarkdownViewer

import db.crud
from db.models import Product, Shop
from utils.pure import format_price, generate_markdown_table, stock_label


class ProdDetailModal(ModalScreen[bool]):
    """
    Product detail plus add-to-cart.
    Returns True if the cart changed, False if not.

    The quantity picker is clamped to live stock minus what is already in the
    cart; the cart itself accepts anything.
    """

    order_qty = reactive(1)

    def __init__(self, product_id: str, shop: Shop) -> None:
        super().__init__()

        self._product_id = product_id
        self._shop = shop
        self._prod: Product = None
        self._room = 0

    def compose(self) -> ComposeResult:
        with Horizontal(id="hort-prod-detail"):
            yield MarkdownViewer("", show_table_of_contents=False)
            with Vertical(id="vert-prod-order"):
                yield Label("Quantity", id="label-order-qty")
                with Horizontal():
                    yield Button("-", id="btn-sub-qty")
                    yield Input(value="1", id="input-order-qty", type="integer")
                    yield Button("+", id="btn-add-qty")
                with Horizontal():
                    yield Button("Go Back", id="btn-quit")
                    yield Button("Add to Cart", id="btn-addcart", variant="primary")

    async def on_mount(self):
        self._prod = await db.crud.get_product(self._product_id)
        if self._prod is None:
            self.notify("This product is no longer available.", severity="error")
            self.dismiss(False)
            return

        cart = self.app.state.cart
        in_cart = cart.quantity_of(self._prod.id)
        self._room = cart.addable_quantity(self._prod, self._prod.stock)

        rows = [
            ["Shop", self._shop.name],
            ["Category", self._prod.category or "-"],
            ["Price", format_price(self._prod.price)],
            ["Availability", stock_label(self._prod.stock)],
            ["In your cart", in_cart],
        ]
        md = f"### {self._prod.title}\n\n"
        if self._prod.description:
            md += f"{self._prod.description}\n\n"
        md += generate_markdown_table(["Attribute", "Value"], rows, ["l", "l"])
        await self.query_one(MarkdownViewer).document.update(md)

        if self._room < 1:
            order_btn = self.query_one("#btn-addcart", Button)
            order_btn.label = "Out of Stock" if self._prod.stock < 1 else "Stock limit reached"
            order_btn.disabled = True
            order_btn.variant = "warning"
            self.query_one("#btn-add-qty", Button).disabled = True
            self.query_one("#btn-sub-qty", Button).disabled = True
            self.query_one("#btn-quit").focus()
            return

        self.query_one("#label-order-qty", Label).update(f"Quantity (up to {self._room})")
        self.watch_order_qty(self.order_qty)
        self.query_one("#input-order-qty").focus()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(False)

    def validate_order_qty(self, qty: int) -> int:
        return max(1, min(qty, self._room or 1))

    async def on_input_changed(self, message: Input.Changed) -> None:
        if (
            message.input.id == "input-order-qty"
            and message.value.isdigit()
            and self.focused == message.input
        ):
            self.order_qty = int(message.value)

    def watch_order_qty(self, qty: int):
        self.query_one("#btn-sub-qty", Button).disabled = qty <= 1
        self.query_one("#btn-add-qty", Button).disabled = qty >= self._room
        input_order_qty = self.query_one("#input-order-qty", Input)
        if input_order_qty.value != str(qty):
            input_order_qty.value = str(qty)

    @on(Button.Pressed, "#btn-add-qty")
    def handle_add_qty(self):
        self.order_qty += 1

    @on(Button.Pressed, "#btn-sub-qty")
    def handle_sub_qty(self):
        self.order_qty -= 1

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self.dismiss(False)

    @on(Button.Pressed, "#btn-addcart")
    @work(exclusive=True)
    async def handle_addcart(self):
        # stock may have moved while the modal was open
        self._prod = await db.crud.get_product(self._product_id) or self._prod
        qty = self.app.state.cart.addable_quantity(self._prod, self.order_qty)
        if qty < 1:
            self.notify("Cannot add more, stock limit reached.", severity="warning")
            return

        self.app.state.cart.add_item(self._prod.snapshot(shop_name=self._shop.name), qty)
        if qty < self.order_qty:
            self.app.notify(f"Only {qty} added, stock limit reached.", severity="warning")
        else:
            self.app.notify(f"Added {qty} x {self._prod.title} to cart.")
        self.dismiss(True)
