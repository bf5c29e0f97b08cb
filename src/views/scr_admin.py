from typing import Dict

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.widgets import Button, DataTable, MarkdownViewer

import db.crud as crud
from db.models import Role, Shop, ShopStatus
from utils.messages import ModeSwitchedMessage
from views.base_screen import BaseScreen
from views.modal_dialog import DialogModal


class AdminScreen(BaseScreen):
    """
    Marketplace overview and moderation of shop applications.
    """

    def __init__(self) -> None:
        super().__init__()
        self._shops: Dict[str, Shop] = {}

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            yield MarkdownViewer(id="md-summary", show_table_of_contents=False)
            yield DataTable(id="table-admin-shops")
            with Horizontal(id="hort-moderation"):
                yield Button("Approve", id="btn-approve", variant="success")
                yield Button("Reject", id="btn-reject", variant="error")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Shop", "Category", "Status", "Email", "Submitted")

    @on(ScreenResume)
    @on(ModeSwitchedMessage)
    @work(exclusive=True)
    async def handle_reload(self) -> None:
        try:
            self.app.state.require_role(Role.ADMIN)
        except PermissionError as e:
            self.notify(str(e), severity="error")
            return

        summary = await crud.marketplace_summary()
        md = (
            "### Marketplace\n\n"
            f"- Shops: {summary['total_shops']} "
            f"({summary['approved_shops']} approved, {summary['pending_shops']} pending, "
            f"{summary['rejected_shops']} rejected)\n"
            f"- Products: {summary['total_products']}\n"
        )
        self.query_one("#md-summary", MarkdownViewer).document.update(md)

        # pending applications first, they need action
        shops = await crud.list_shops()
        shops.sort(key=lambda s: s.status != ShopStatus.PENDING)
        self._shops = {s.id: s for s in shops}
        table = self.query_one(DataTable)
        table.clear()
        for s in shops:
            table.add_row(
                s.name,
                s.category,
                s.status.value,
                s.email,
                s.created_at.strftime("%Y-%m-%d") if s.created_at else "-",
                key=s.id,
            )

    @on(Button.Pressed, "#btn-approve")
    def handle_approve(self) -> None:
        self._moderate(ShopStatus.APPROVED)

    @on(Button.Pressed, "#btn-reject")
    def handle_reject(self) -> None:
        self._moderate(ShopStatus.REJECTED)

    @work(exclusive=True, group="moderate")
    async def _moderate(self, status: ShopStatus) -> None:
        table = self.query_one(DataTable)
        if not table.row_count:
            return
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        shop = self._shops.get(row_key.value)
        if shop is None or shop.status == status:
            self.notify("Nothing to change.", severity="warning")
            return

        verb = "Approve" if status == ShopStatus.APPROVED else "Reject"
        if not await self.app.push_screen_wait(
            DialogModal(
                f"{verb} '{shop.name}'?",
                primary_text="Yes",
                secondary_text="No",
                tone="positive" if status == ShopStatus.APPROVED else "warning",
            )
        ):
            return

        if await crud.set_shop_status(shop.id, status.value):
            self.notify(f"'{shop.name}' is now {status.value}.")
        else:
            self.notify("Shop not found.", severity="error")
        self.handle_reload()
