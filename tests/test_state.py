import os
import sys
import tempfile
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from cart.checkout import BuyerDetails  # noqa: E402
from cart.storage import LocalCartStorage  # noqa: E402
from db import crud  # noqa: E402
from db import database as db_database  # noqa: E402
from db.models import Role  # noqa: E402
from utils.state import AppContext  # noqa: E402


class AppContextTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        db_database.DB_PATH = os.path.join(self.temp_dir.name, "test.sqlite")
        db_database._initialized = False
        self.state = AppContext(storage=LocalCartStorage(self.temp_dir.name, "cart-test"))

    async def asyncTearDown(self):
        await self.state.sign_out()
        self.state.sync.close()

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_guest_has_no_identity_or_role(self):
        self.assertTrue(self.state.is_guest)
        self.assertIsNone(self.state.current_identity())
        with self.assertRaises(PermissionError):
            self.state.require_role(Role.CUSTOMER)

    async def test_customer_sign_in_loads_server_cart_and_syncs(self):
        await crud.replace_cart_rows("u-cust-1", [])
        user = await crud.login("alice@market.test", "alice123")
        await self.state.sign_in(user)

        self.assertEqual(self.state.current_identity().email, "alice@market.test")
        self.assertIs(self.state.require_role(Role.CUSTOMER, Role.ADMIN), Role.CUSTOMER)
        self.assertEqual(self.state.cart.customer_id, "u-cust-1")

        self.state.cart.add_item(await crud.get_product("p-102"), 3)
        await self.state.sign_out()

        rows = await crud.fetch_cart_rows("u-cust-1")
        self.assertEqual([(r.product_id, r.quantity) for r in rows], [("p-102", 3)])
        self.assertTrue(self.state.is_guest)
        self.assertIsNone(self.state.cart.customer_id)

    async def test_shopkeeper_does_not_touch_cart(self):
        self.state.cart.add_item(await crud.get_product("p-101"), 1)
        user = await crud.login("keeper1@market.test", "keeper123")
        await self.state.sign_in(user)

        self.assertIs(self.state.role, Role.SHOPKEEPER)
        self.assertIsNone(self.state.cart.customer_id)
        self.assertEqual(self.state.cart.quantity_of("p-101"), 1)
        with self.assertRaises(PermissionError):
            self.state.require_role(Role.ADMIN)

    async def test_checkout_uses_signed_in_identity(self):
        user = await crud.login("bob@market.test", "bob123")
        await self.state.sign_in(user)
        self.state.cart.add_item(await crud.get_product("p-201"), 1)

        result = await self.state.checkout.checkout(BuyerDetails(name="Bob", email=""))

        self.assertEqual(result.orders[0].customer_email, "bob@market.test")
        self.assertEqual(result.orders[0].customer_id, "u-cust-2")
        self.assertTrue(self.state.cart.is_empty)


if __name__ == "__main__":
    unittest.main()
