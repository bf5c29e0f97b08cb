import asyncio
from typing import Dict, List, Optional, Tuple

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.widgets import Button, DataTable, Input, Label, MarkdownViewer

import db.crud
from db.models import Order, OrderLine, Product
from utils.messages import ModeSwitchedMessage, NewOrderMessage
from utils.pure import format_price, generate_markdown_table
from views.base_screen import BaseScreen


class PastOrdersScreen(BaseScreen):
    """
    Customers browse their orders (looked up by email) and view details.

    Layout:
    - Markdown detail view at the top, showing the highlighted order.
    - Orders table below, newest first.
    """

    def __init__(self) -> None:
        super().__init__()
        self._orders: List[Order] = []
        self._shop_names: Dict[str, str] = {}

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            with Horizontal(id="hort-order-lookup"):
                yield Input(placeholder="Email used at checkout", id="input-order-email")
                yield Button("Refresh", id="btn-refresh")
            yield Label("", id="label-order-stats")
            yield MarkdownViewer(id="md-order-detail", show_table_of_contents=False)
            yield DataTable(id="table-orders")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Order", "Date", "Shop", "Status", "Total")

        identity = self.app.state.current_identity()
        if identity:
            email_input = self.query_one("#input-order-email", Input)
            email_input.value = identity.email
            email_input.disabled = True

    @on(Button.Pressed, "#btn-refresh")
    @on(Input.Submitted, "#input-order-email")
    @on(ModeSwitchedMessage)
    @on(ScreenResume)
    @on(NewOrderMessage)
    def handle_refresh(self):
        self._load_orders(self.query_one("#input-order-email", Input).value)

    @work(exclusive=True, group="orders")
    async def _load_orders(self, email: str) -> None:
        email = email.strip().lower()
        table = self.query_one(DataTable)
        table.clear()
        if not email:
            self.query_one("#label-order-stats", Label).update("")
            self._render_detail(None, [])
            return

        orders, stats = await asyncio.gather(
            db.crud.list_orders_for_customer(email),
            db.crud.customer_order_stats(email),
        )
        for shop_id in {o.shop_id for o in orders} - self._shop_names.keys():
            shop = await db.crud.get_shop(shop_id)
            self._shop_names[shop_id] = shop.name if shop else shop_id

        for o in orders:
            table.add_row(
                o.id[:8],
                o.created_at.strftime("%Y-%m-%d %H:%M") if o.created_at else "-",
                self._shop_names.get(o.shop_id, o.shop_id),
                o.status.value.title(),
                format_price(o.total_amount),
                key=o.id,
            )
        self._orders = orders
        self.query_one("#label-order-stats", Label).update(
            f"{stats['total_orders']} order(s), {format_price(stats['total_spent'])} spent, "
            f"{stats['recent_orders']} in the last 30 days"
        )
        if orders:
            table.move_cursor(row=0)
            self._load_and_render_detail(orders[0].id)
        else:
            self._render_detail(None, [])

    @on(DataTable.RowHighlighted)
    def handle_row_highlight(self, event: DataTable.RowHighlighted) -> None:
        if event.row_key is not None and event.row_key.value:
            self._load_and_render_detail(event.row_key.value)

    @work(exclusive=True, group="detail")
    async def _load_and_render_detail(self, order_id: str) -> None:
        order, lines = await db.crud.get_order_detail(order_id)
        if not order:
            self._render_detail(None, [])
            return
        prods = await asyncio.gather(*(db.crud.get_product(ol.product_id) for ol in lines))
        self._render_detail(order, list(zip(lines, prods)))

    def _render_detail(
        self,
        order: Optional[Order],
        lines_with_prod: List[Tuple[OrderLine, Optional[Product]]],
    ) -> None:
        viewer = self.query_one("#md-order-detail", MarkdownViewer)
        if not order:
            viewer.document.update("### Select an order to view its details.")
            return

        header = (
            f"### Order {order.id[:8]} ({order.status.value})\n"
            f"Shop: {self._shop_names.get(order.shop_id, order.shop_id)}  \n"
            f"Placed: {order.created_at}  \n"
            f"Buyer: {order.customer_name} <{order.customer_email}>\n\n"
        )
        rows = [
            [
                prod.title if prod else ol.product_id,
                ol.quantity,
                format_price(ol.price),
                format_price(ol.amount),
            ]
            for ol, prod in lines_with_prod
        ]
        table = generate_markdown_table(
            ["Product", "Qty", "Unit Price", "Line Total"], rows, ["l", "r", "r", "r"]
        )
        footer = f"\n\n**Order Total:** {format_price(order.total_amount)}"
        viewer.document.update(header + table + footer)
