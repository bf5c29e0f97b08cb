from typing import Optional

from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, MarkdownViewer

from cart.checkout import BuyerDetails, CheckoutResult, group_by_shop, group_total
from cart.errors import CheckoutValidationError, InvalidBuyerDetailsError, OrderCreationError
from utils.pure import format_price, generate_markdown_table
from views.modal_dialog import DialogModal, SimpleDialogModal


class CheckoutModal(ModalScreen[Optional[CheckoutResult]]):
    """
    Order summary per shop plus buyer details.
    Dismisses with the CheckoutResult on success, None if cancelled or failed.
    """

    def compose(self) -> ComposeResult:
        with Vertical():
            yield MarkdownViewer("", show_table_of_contents=False)
            yield Label("Full name")
            yield Input(placeholder="Jane Doe", id="input-buyer-name")
            yield Label("Email")
            yield Input(placeholder="jane@example.com", id="input-buyer-email")
            yield Label("Phone (optional)")
            yield Input(placeholder="+1 555 0100", id="input-buyer-phone")
            with Horizontal():
                yield Button("Go Back", id="btn-quit")
                yield Button("Place Order", id="btn-submit", variant="primary")

    async def on_mount(self):
        cart = self.app.state.cart
        md = "### Order Summary\n\n"
        for shop_id, lines in group_by_shop(cart.lines).items():
            shop_name = next(
                (ln.product.shop_name for ln in lines if ln.product and ln.product.shop_name),
                shop_id,
            )
            rows = [
                [
                    ln.product.title if ln.product else ln.product_id,
                    format_price(ln.unit_price),
                    ln.quantity,
                    format_price(ln.line_total),
                ]
                for ln in lines
            ]
            md += f"#### {shop_name}\n\n"
            md += generate_markdown_table(
                ["Product", "Unit Price", "Quantity", "Total"], rows, ["l", "r", "c", "r"]
            )
            md += f"\n\nShop subtotal: {format_price(group_total(lines))}\n\n"
        md += f"**Total:** {format_price(cart.get_total())}"
        if len(cart.shop_ids()) > 1:
            md += f"  \nThis places {len(cart.shop_ids())} separate orders, one per shop."
        await self.query_one(MarkdownViewer).document.update(md)

        identity = self.app.state.current_identity()
        if identity:
            self.query_one("#input-buyer-email", Input).value = identity.email
        self.query_one("#input-buyer-name").focus()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(None)

    def _mark_invalid(self, missing) -> None:
        for field in missing:
            widget = self.query_one(f"#input-buyer-{field}", Input)
            widget.add_class("-invalid")
        self.query_one(f"#input-buyer-{missing[0]}", Input).focus()

    @on(Button.Pressed, "#btn-submit")
    @work(exclusive=True)
    async def handle_submit(self):
        buyer = BuyerDetails(
            name=self.query_one("#input-buyer-name", Input).value,
            email=self.query_one("#input-buyer-email", Input).value,
            phone=self.query_one("#input-buyer-phone", Input).value,
        )
        try:
            buyer.normalized(self.app.state.current_identity()).validate()
        except InvalidBuyerDetailsError as e:
            self._mark_invalid(e.missing)
            self.notify(str(e), severity="error")
            return

        if not await self.app.push_screen_wait(
            DialogModal(
                "Place order? This cannot be undone.",
                primary_text="Yes",
                secondary_text="No",
                tone="positive",
            )
        ):
            return

        submit_btn = self.query_one("#btn-submit", Button)
        submit_btn.disabled = True
        try:
            result = await self.app.state.checkout.checkout(buyer)
        except CheckoutValidationError as e:
            self.notify(str(e), severity="error")
            submit_btn.disabled = False
            return
        except OrderCreationError as e:
            msg = str(e)
            if e.is_partial:
                msg += " Your cart was kept; placing the order again will not duplicate them."
            await self.app.push_screen_wait(SimpleDialogModal(msg, tone="error"))
            submit_btn.disabled = False
            return

        ids = ", ".join(o.id[:8] for o in result.orders)
        msg = f"{len(result.orders)} order(s) placed ({ids}), total {format_price(result.grand_total)}."
        if result.has_warnings:
            msg += f" {len(result.warnings)} stock update(s) did not apply; the shops will confirm availability."
            await self.app.push_screen_wait(SimpleDialogModal(msg, tone="warning"))
        else:
            self.notify(msg)
        self.dismiss(result)

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self.dismiss(None)
