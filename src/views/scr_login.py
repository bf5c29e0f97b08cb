from typing import Optional

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.events import Key
from textual.widgets import Button, Input, Label, RadioButton, RadioSet, TabbedContent, TabPane

import db.crud
from db.models import Role, User
from utils.messages import UserLoginMessage
from views.base_screen import BaseScreen
from views.modal_dialog import QuitDialogModal, SimpleDialogModal


class LoginScreen(BaseScreen):
    """
    Sign in, register, or continue as guest.
    Dismisses with the signed-in User, or None for a guest session.
    """

    def __init__(self):
        super().__init__()
        self.configure(header_sub_title="Login", show_sidebar=False)

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with TabbedContent(id="super-tab-loginscr"):
            with TabPane("Login", id="tab-login"):
                with Vertical(id="div-login"):
                    yield Label("Email")
                    yield Input(placeholder="alice@market.test", id="input-login-email")
                    yield Label("Password")
                    yield Input(
                        placeholder="*********", password=True, id="input-login-pwd"
                    )
                    with Horizontal(id="div-login-btns"):
                        yield Button("Quit", id="btn-quit")
                        yield Button("Continue as guest", id="btn-guest")
                        yield Button("Login", id="btn-login", variant="primary")

            with TabPane("Sign up", id="tab-signup"):
                with Vertical(id="div-reg"):
                    yield Label("Email")
                    yield Input(placeholder="user@example.com", id="input-reg-email")
                    yield Label("Password")
                    yield Input(
                        placeholder="*********", password=True, id="input-reg-pwd"
                    )
                    yield Label("I am a")
                    with RadioSet(id="radio-reg-role"):
                        yield RadioButton("Customer", value=True, id="radio-customer")
                        yield RadioButton("Shopkeeper", id="radio-shopkeeper")
                    with Container(id="div-reg-btns"):
                        yield Button("Register", id="btn-reg", variant="primary")

    def on_mount(self):
        self.query_one("#input-login-email").focus()

    def on_key(self, event: Key) -> None:
        if event.key == "enter" and self.focused == self.query_one("#input-login-pwd"):
            self.handle_login_submit()
        if event.key == "enter" and self.focused == self.query_one("#input-reg-pwd"):
            self.handle_registration_submit()

    async def _complete(self, user: Optional[User]) -> None:
        if user is None:
            await self.app.state.sign_out()
            self.notify("Browsing as guest.")
        else:
            await self.app.state.sign_in(user)
            self.notify(f"Hello {user.email}!")
        self.app.post_message(UserLoginMessage(self.app.state.role))
        self.dismiss(user)

    @on(Button.Pressed, "#btn-login")
    @work(exclusive=True)
    async def handle_login_submit(self) -> None:
        email = self.query_one("#input-login-email", Input).value.strip()
        pwd = self.query_one("#input-login-pwd", Input).value

        if not email or not pwd:
            self.notify("Email or password cannot be empty!", severity="error")
            return

        user = await db.crud.login(email, pwd)
        if user:
            await self._complete(user)
        else:
            self.notify("Invalid email or password.", severity="error")
            input_login_pwd = self.query_one("#input-login-pwd", Input)
            input_login_pwd.value = ""
            input_login_pwd.focus()
            input_login_pwd.add_class("-invalid")

    @on(Button.Pressed, "#btn-guest")
    @work(exclusive=True)
    async def handle_guest(self) -> None:
        await self._complete(None)

    @on(Button.Pressed, "#btn-reg")
    @work(exclusive=True)
    async def handle_registration_submit(self) -> None:
        email = self.query_one("#input-reg-email", Input).value.strip()
        pwd = self.query_one("#input-reg-pwd", Input).value
        role_set = self.query_one("#radio-reg-role", RadioSet)
        role = Role.SHOPKEEPER if role_set.pressed_index == 1 else Role.CUSTOMER

        if not email or not pwd:
            self.notify("Make sure all inputs are filled.", severity="error")
            return

        if not await db.crud.email_available(email):
            self.notify("Email already taken.", severity="error")
            return

        try:
            user = await db.crud.register_user(email, pwd, role.value)
        except ValueError as e:
            self.notify(str(e), severity="error")
            return

        await self.app.push_screen_wait(
            SimpleDialogModal(f"Registration successful. Welcome, {user.email}.", tone="positive")
        )

        self.get_child_by_type(TabbedContent).active = "tab-login"
        self.query_one("#input-login-email", Input).value = user.email
        input_login_pwd = self.query_one("#input-login-pwd", Input)
        input_login_pwd.value = pwd
        input_login_pwd.focus()

    @on(Button.Pressed, "#btn-quit")
    def handle_quit_(self) -> None:
        self.app.push_screen(QuitDialogModal())
