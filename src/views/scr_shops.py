from typing import Dict, List, Optional

from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.widgets import DataTable, Input, Label, Select

import db.crud
from db.models import Shop, ShopStatus
from utils.messages import CartChangedMessage, ModeSwitchedMessage
from utils.pure import filter_shops, format_price, shop_categories, stock_label
from views.base_screen import BaseScreen
from views.modal_prod_detail import ProdDetailModal


class ShopsScreen(BaseScreen):
    """
    Browse approved shops and their products. Customers and guests only.
    """

    # footer hints, the actual handling is done through DataTable.RowSelected
    BINDINGS = [
        Binding("enter", "noop", "Open", show=True, key_display="⏎"),
    ]

    def __init__(self):
        super().__init__()
        self._shops: List[Shop] = []
        self._shops_by_id: Dict[str, Shop] = {}
        self._current_shop: Optional[Shop] = None

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical(id="vert-shops"):
            with Horizontal(id="hort-shop-filters"):
                yield Input(id="input-search", placeholder="Search shops by name or description...")
                yield Select([], prompt="All categories", id="select-category")
            yield DataTable(id="table-shops")
            yield Label("Select a shop to see its products.", id="label-shop-products")
            yield DataTable(id="table-products")

    def on_mount(self):
        shops_table = self.query_one("#table-shops", DataTable)
        shops_table.cursor_type = "row"
        shops_table.zebra_stripes = True
        shops_table.add_columns("Shop", "Category", "Address", "Phone")

        prods_table = self.query_one("#table-products", DataTable)
        prods_table.cursor_type = "row"
        prods_table.zebra_stripes = True
        prods_table.add_columns("Product", "Category", "Price", "Availability", "In cart")

        self.query_one("#input-search").focus()

    def action_noop(self) -> None:
        pass

    @on(ScreenResume)
    @on(ModeSwitchedMessage)
    @work(exclusive=True, group="shops")
    async def load_shops(self) -> None:
        self._shops = await db.crud.list_shops(ShopStatus.APPROVED.value)
        self._shops_by_id = {s.id: s for s in self._shops}
        select = self.query_one("#select-category", Select)
        select.set_options([(c, c) for c in shop_categories(self._shops)])
        self.render_shops()
        if self._current_shop:
            self.load_products(self._current_shop.id)

    @on(Input.Changed, "#input-search")
    @on(Select.Changed, "#select-category")
    def render_shops(self) -> None:
        term = self.query_one("#input-search", Input).value
        category = self.query_one("#select-category", Select).value
        if not isinstance(category, str):
            category = ""

        table = self.query_one("#table-shops", DataTable)
        table.clear()
        for shop in filter_shops(self._shops, term, category):
            table.add_row(shop.name, shop.category, shop.address, shop.phone, key=shop.id)

    @on(DataTable.RowSelected, "#table-shops")
    def handle_shop_selected(self, event: DataTable.RowSelected) -> None:
        self._current_shop = self._shops_by_id.get(event.row_key.value)
        if self._current_shop:
            self.load_products(self._current_shop.id)
            self.query_one("#table-products").focus()

    @work(exclusive=True, group="products")
    async def load_products(self, shop_id: str) -> None:
        products = await db.crud.list_products(shop_id)
        shop = self._shops_by_id.get(shop_id)
        self.query_one("#label-shop-products", Label).update(
            f"{shop.name}: {len(products)} product(s)" if shop else ""
        )
        cart = self.app.state.cart
        table = self.query_one("#table-products", DataTable)
        table.clear()
        for p in products:
            table.add_row(
                p.title,
                p.category,
                format_price(p.price),
                stock_label(p.stock),
                cart.quantity_of(p.id) or "",
                key=p.id,
            )

    @on(DataTable.RowSelected, "#table-products")
    @work()
    async def handle_product_selected(self, event: DataTable.RowSelected) -> None:
        if self._current_shop is None:
            return
        if await self.app.push_screen_wait(
            ProdDetailModal(event.row_key.value, self._current_shop)
        ):
            self.post_message(CartChangedMessage("add", event.row_key.value))
            self.load_products(self._current_shop.id)
