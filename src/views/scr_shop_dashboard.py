from typing import Optional

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.widgets import Button, DataTable, Input, Label, MarkdownViewer

import db.crud as crud
from db.models import ORDER_TRANSITIONS, OrderStatus, Role, Shop, ShopStatus
from utils.messages import ModeSwitchedMessage, NewOrderMessage
from utils.pure import format_price
from views.base_screen import BaseScreen


class ShopDashboardScreen(BaseScreen):
    """
    Shopkeeper home: register a shop if there is none, otherwise analytics
    and incoming orders with status controls.
    """

    def __init__(self) -> None:
        super().__init__()
        self._shop: Optional[Shop] = None

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical(id="div-shop-register"):
            yield Label("You have no shop yet. Tell us about it:")
            yield Input(placeholder="Shop name", id="input-shop-name")
            yield Input(placeholder="What you sell", id="input-shop-description")
            yield Input(placeholder="Category, e.g. Bakery", id="input-shop-category")
            yield Input(placeholder="Address", id="input-shop-address")
            yield Input(placeholder="Phone", id="input-shop-phone")
            yield Input(placeholder="Contact email", id="input-shop-email")
            yield Button("Submit for approval", id="btn-shop-register", variant="primary")
        with Vertical(id="div-shop-dashboard"):
            yield MarkdownViewer(id="md-top", show_table_of_contents=False)
            yield DataTable(id="table-shop-orders")
            with Horizontal(id="hort-order-status"):
                yield Button("Confirm", id="btn-order-confirmed", variant="success", classes="btn-order-status")
                yield Button("Complete", id="btn-order-completed", variant="primary", classes="btn-order-status")
                yield Button("Cancel", id="btn-order-cancelled", variant="error", classes="btn-order-status")

    def on_mount(self) -> None:
        table = self.query_one("#table-shop-orders", DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Order", "Date", "Buyer", "Email", "Status", "Total")

    @on(NewOrderMessage)
    @on(ScreenResume)
    @on(ModeSwitchedMessage)
    @work(exclusive=True)
    async def handle_reload(self) -> None:
        state = self.app.state
        try:
            state.require_role(Role.SHOPKEEPER)
        except PermissionError as e:
            self.notify(str(e), severity="error")
            return
        self._shop = await crud.get_shop_for_keeper(state.identity.id)

        has_shop = self._shop is not None
        self.query_one("#div-shop-register").display = not has_shop
        self.query_one("#div-shop-dashboard").display = has_shop
        if not has_shop:
            self.query_one("#input-shop-name").focus()
            return

        analytics = await crud.shop_analytics(self._shop.id)
        md = (
            f"### {self._shop.name}\n\n"
            f"Status: **{self._shop.status.value}**"
            + (" (customers cannot see your shop until an admin approves it)"
               if self._shop.status != ShopStatus.APPROVED else "")
            + "\n\n"
            f"- Products: {analytics['total_products']}\n"
            f"- Orders: {analytics['total_orders']}\n"
            f"- Revenue (excluding cancelled): {format_price(analytics['total_revenue'])}\n\n"
        )
        if analytics["popular_products"]:
            md += "#### Popular products\n\n" + "\n".join(
                f"{i}. {p.title} ({p.stock} left)"
                for i, p in enumerate(analytics["popular_products"], start=1)
            )
        self.query_one("#md-top", MarkdownViewer).document.update(md)

        table = self.query_one("#table-shop-orders", DataTable)
        table.clear()
        for o in await crud.list_orders_for_shop(self._shop.id):
            table.add_row(
                o.id[:8],
                o.created_at.strftime("%Y-%m-%d %H:%M") if o.created_at else "-",
                o.customer_name,
                o.customer_email,
                o.status.value,
                format_price(o.total_amount),
                key=o.id,
            )
        self._refresh_status_buttons()

    @on(DataTable.RowHighlighted, "#table-shop-orders")
    def _refresh_status_buttons(self) -> None:
        table = self.query_one("#table-shop-orders", DataTable)
        current: Optional[OrderStatus] = None
        if table.row_count:
            current = OrderStatus(table.get_row_at(table.cursor_row)[4])
        allowed = ORDER_TRANSITIONS.get(current, set()) if current else set()
        for status in (OrderStatus.CONFIRMED, OrderStatus.COMPLETED, OrderStatus.CANCELLED):
            self.query_one(f"#btn-order-{status.value}", Button).disabled = status not in allowed

    @on(Button.Pressed, ".btn-order-status")
    @work(exclusive=True, group="status")
    async def handle_status_change(self, event: Button.Pressed) -> None:
        table = self.query_one("#table-shop-orders", DataTable)
        if not table.row_count:
            return
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        new_status = event.button.id.removeprefix("btn-order-")
        try:
            order = await crud.update_order_status(row_key.value, new_status)
        except ValueError as e:
            self.notify(str(e), severity="error")
            return
        if order is None:
            self.notify("Order not found.", severity="error")
        else:
            self.notify(f"Order {order.id[:8]} is now {order.status.value}.")
        self.handle_reload()

    @on(Button.Pressed, "#btn-shop-register")
    @work(exclusive=True, group="register")
    async def handle_register_shop(self) -> None:
        def val(field: str) -> str:
            return self.query_one(f"#input-shop-{field}", Input).value.strip()

        try:
            shop = await crud.register_shop(
                self.app.state.identity.id,
                val("name"),
                description=val("description"),
                category=val("category"),
                address=val("address"),
                phone=val("phone"),
                email=val("email") or self.app.state.identity.email,
            )
        except (ValueError, PermissionError) as e:
            self.notify(str(e), severity="error")
            return
        self.notify(f"'{shop.name}' submitted; an admin will review it.")
        self.handle_reload()
