from __future__ import annotations

from typing import Dict, Optional

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.validation import Number
from textual.widgets import Button, DataTable, Input, Label

from db.crud import create_product, get_product, get_shop_for_keeper, list_products, update_product
from db.models import Product, Role, Shop
from utils.messages import ModeSwitchedMessage
from utils.pure import format_price
from views.base_screen import BaseScreen


class ShopProductsScreen(BaseScreen):
    """
    Shopkeepers list their products, update price/stock of the selected one,
    and add new products.
    """

    def __init__(self) -> None:
        super().__init__()
        self._shop: Optional[Shop] = None
        self._products: Dict[str, Product] = {}
        self.current_pid: Optional[str] = None

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            yield Label("", id="label-shop-name")
            yield DataTable(id="table-products")
            with Horizontal(id="hort-controls"):
                with Vertical():
                    yield Label("New Price ($):")
                    yield Input(
                        placeholder="leave blank to keep",
                        id="input-price",
                        type="number",
                        validators=[Number(minimum=0.0)],
                    )
                with Vertical():
                    yield Label("New Stock:")
                    yield Input(
                        placeholder="leave blank to keep",
                        id="input-stock",
                        type="integer",
                        validators=[Number(minimum=0)],
                    )
                yield Button("Update", id="btn-update", variant="success")
            yield Label("Add a product")
            with Horizontal(id="hort-new-product"):
                yield Input(placeholder="Title", id="input-new-title")
                yield Input(placeholder="Category", id="input-new-category")
                yield Input(placeholder="Price", id="input-new-price", type="number")
                yield Input(placeholder="Stock", id="input-new-stock", type="integer")
                yield Button("Add", id="btn-create", variant="primary")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Product", "Category", "Price", "Stock")

    @on(ScreenResume)
    @on(ModeSwitchedMessage)
    @work(exclusive=True, group="products")
    async def reload_products(self) -> None:
        state = self.app.state
        try:
            state.require_role(Role.SHOPKEEPER)
        except PermissionError as e:
            self.notify(str(e), severity="error")
            return
        self._shop = await get_shop_for_keeper(state.identity.id)
        self.query_one("#hort-controls").display = self._shop is not None
        self.query_one("#hort-new-product").display = self._shop is not None
        if self._shop is None:
            self.query_one("#label-shop-name", Label).update(
                "Register your shop on the dashboard first."
            )
            return

        products = await list_products(self._shop.id)
        self._products = {p.id: p for p in products}
        self.query_one("#label-shop-name", Label).update(
            f"{self._shop.name}: {len(products)} product(s)"
        )
        table = self.query_one(DataTable)
        table.clear()
        for p in products:
            table.add_row(p.title, p.category, format_price(p.price), p.stock, key=p.id)

    @on(DataTable.RowHighlighted)
    def handle_highlight(self, event: DataTable.RowHighlighted) -> None:
        self.current_pid = event.row_key.value if event.row_key else None
        prod = self._products.get(self.current_pid)
        if prod:
            # prefill inputs with current values for convenience
            self.query_one("#input-price", Input).value = f"{prod.price:.2f}"
            self.query_one("#input-stock", Input).value = str(prod.stock)

    @on(Button.Pressed, "#btn-update")
    @work(exclusive=True)
    async def handle_update(self) -> None:
        if not self.current_pid:
            self.notify("Select a product first.", severity="warning")
            return
        prod = await get_product(self.current_pid)
        if prod is None:
            self.notify("Product no longer exists.", severity="error")
            self.reload_products()
            return

        price_input = self.query_one("#input-price", Input)
        stock_input = self.query_one("#input-stock", Input)
        try:
            new_price = float(price_input.value) if price_input.value else None
            new_stock = int(stock_input.value) if stock_input.value else None
        except ValueError:
            self.notify("Price and stock must be numbers.", severity="error")
            return

        if (new_price is None or new_price == prod.price) and (
            new_stock is None or new_stock == prod.stock
        ):
            self.notify("Nothing to update.", severity="warning")
            return

        try:
            updated = await update_product(prod.id, new_price, new_stock)
        except ValueError as e:
            self.notify(str(e), severity="error")
            return
        if updated:
            self.notify("Product updated successfully.")
        else:
            self.notify("Update failed.", severity="error")
        self.reload_products()

    @on(Button.Pressed, "#btn-create")
    @work(exclusive=True)
    async def handle_create(self) -> None:
        if self._shop is None:
            return

        def val(field: str) -> str:
            return self.query_one(f"#input-new-{field}", Input).value.strip()

        try:
            prod = await create_product(
                self._shop.id,
                val("title"),
                float(val("price") or 0),
                int(val("stock") or 0),
                category=val("category"),
            )
        except ValueError as e:
            self.notify(str(e), severity="error")
            return
        for field in ("title", "category", "price", "stock"):
            self.query_one(f"#input-new-{field}", Input).value = ""
        self.notify(f"Added {prod.title}.")
        self.reload_products()
