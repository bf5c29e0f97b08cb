import itertools
import os
import sys
import tempfile
import unittest
from dataclasses import replace
from datetime import datetime

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from cart.checkout import BuyerDetails, CheckoutOrchestrator, group_by_shop  # noqa: E402
from cart.engine import Cart  # noqa: E402
from cart.errors import (  # noqa: E402
    EmptyCartError,
    InvalidBuyerDetailsError,
    OrderCreationError,
    StockConflictError,
    StockUpdateError,
)
from cart.storage import LocalCartStorage  # noqa: E402
from cart.sync import CartSynchronizer  # noqa: E402
from db import crud  # noqa: E402
from db import database as db_database  # noqa: E402
from db.models import Identity, Order, OrderStatus, Product  # noqa: E402

P1 = Product(id="P1", shop_id="S1", title="Mug", price=10.0, stock=5)
P2 = Product(id="P2", shop_id="S2", title="Tea", price=15.0, stock=5)
P3 = Product(id="P3", shop_id="S1", title="Spoon", price=2.5, stock=5)

BUYER = BuyerDetails(name="Jane Doe", email="Jane@Example.com", phone="555")


class FakeShopBackend:
    """In-memory orders/stock with per-shop failure switches."""

    def __init__(self, *products: Product):
        self.products = {p.id: p for p in products}
        self.orders = {}
        self.order_lines = {}
        self.cart_rows = {}
        self.fail_orders_for = set()
        self.fail_lines_for = set()
        self.fail_cart_clear = False
        self.forced_conflicts = {}
        self.broken_stock = set()
        self.fail_discard = False
        self.calls = []
        self._order_ids = itertools.count(1)

    async def get_product(self, product_id):
        self.calls.append(("get_product", product_id))
        return self.products.get(product_id)

    async def decrement_stock(self, product_id, amount, expected_stock):
        self.calls.append(("decrement_stock", product_id))
        if product_id in self.broken_stock:
            raise ConnectionError("stock service down")
        if self.forced_conflicts.get(product_id):
            self.forced_conflicts[product_id] -= 1
            return None
        product = self.products.get(product_id)
        if product is None or product.stock != expected_stock:
            return None
        new_stock = max(expected_stock - amount, 0)
        self.products[product_id] = replace(product, stock=new_stock)
        return new_stock

    async def create_order(self, draft):
        self.calls.append(("create_order", draft.shop_id))
        if draft.shop_id in self.fail_orders_for:
            raise ConnectionError("orders table unavailable")
        for order in self.orders.values():
            if draft.checkout_token and (order.checkout_token, order.shop_id) == (
                draft.checkout_token,
                draft.shop_id,
            ):
                return order
        order = Order(
            id=f"O{next(self._order_ids)}",
            customer_name=draft.customer_name,
            customer_email=draft.customer_email,
            customer_phone=draft.customer_phone,
            shop_id=draft.shop_id,
            total_amount=round(draft.total_amount, 2),
            status=OrderStatus.PENDING,
            created_at=datetime.now(),
            customer_id=draft.customer_id,
            checkout_token=draft.checkout_token,
        )
        self.orders[order.id] = order
        return order

    async def create_order_lines(self, order_id, lines):
        self.calls.append(("create_order_lines", order_id))
        if self.orders[order_id].shop_id in self.fail_lines_for:
            raise ConnectionError("order_items insert failed")
        if self.order_lines.get(order_id):
            return 0
        self.order_lines[order_id] = list(lines)
        return len(lines)

    async def discard_empty_order(self, order_id):
        self.calls.append(("discard_empty_order", order_id))
        if self.fail_discard:
            raise ConnectionError("orders table unavailable")
        if order_id not in self.orders or self.order_lines.get(order_id):
            return False
        del self.orders[order_id]
        return True

    def assert_totals_match_lines(self, test):
        for order_id, order in self.orders.items():
            lines = self.order_lines.get(order_id, [])
            test.assertTrue(lines, f"order {order_id} has no lines")
            test.assertEqual(order.total_amount, round(sum(ln.quantity * ln.price for ln in lines), 2))

    async def replace_cart_rows(self, customer_id, lines):
        self.calls.append(("replace_cart_rows", customer_id))
        if self.fail_cart_clear:
            raise ConnectionError("cart table unavailable")
        self.cart_rows[customer_id] = list(lines)


class CheckoutTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.cart = Cart(LocalCartStorage(self.temp_dir.name, "cart-test"))
        self.backend = FakeShopBackend(P1, P2, P3)
        self.identity = None
        self.orchestrator = CheckoutOrchestrator(
            self.cart, backend=self.backend, identity_provider=lambda: self.identity
        )

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_two_shops_make_two_orders_and_empty_the_cart(self):
        self.cart.add_item(P1, 2)
        self.cart.add_item(P2, 1)

        result = await self.orchestrator.checkout(BUYER)

        self.assertEqual([(o.shop_id, o.total_amount) for o in result.orders], [("S1", 20.0), ("S2", 15.0)])
        self.assertEqual(result.grand_total, 35.0)
        self.assertEqual(result.warnings, [])
        self.assertTrue(all(o.status == OrderStatus.PENDING for o in result.orders))
        self.assertTrue(all(o.customer_email == "jane@example.com" for o in result.orders))
        self.assertTrue(self.cart.is_empty)
        self.assertEqual(self.cart.get_total(), 0)
        self.assertIsNone(self.cart.checkout_token)

        self.assertEqual(self.backend.products["P1"].stock, 3)
        self.assertEqual(self.backend.products["P2"].stock, 4)
        s1_lines = self.backend.order_lines[result.orders[0].id]
        self.assertEqual([(ln.product_id, ln.quantity, ln.price) for ln in s1_lines], [("P1", 2, 10.0)])

    async def test_lines_of_one_shop_share_an_order(self):
        self.cart.add_item(P1, 1)
        self.cart.add_item(P2, 1)
        self.cart.add_item(P3, 2)
        self.assertEqual(list(group_by_shop(self.cart.lines)), ["S1", "S2"])

        result = await self.orchestrator.checkout(BUYER)

        self.assertEqual(len(result.orders), 2)
        self.assertEqual(result.orders[0].total_amount, 15.0)
        self.assertEqual(len(self.backend.order_lines[result.orders[0].id]), 2)

    async def test_empty_cart_fails_before_any_io(self):
        with self.assertRaises(EmptyCartError):
            await self.orchestrator.checkout(BUYER)
        self.assertEqual(self.backend.calls, [])

    async def test_missing_buyer_details_fail_before_any_io(self):
        self.cart.add_item(P1)
        with self.assertRaises(InvalidBuyerDetailsError) as ctx:
            await self.orchestrator.checkout(BuyerDetails(name="  ", email=""))
        self.assertEqual(ctx.exception.missing, ["name", "email"])
        self.assertEqual(self.backend.calls, [])
        self.assertIsNone(self.cart.checkout_token)
        self.assertFalse(self.cart.is_empty)

    async def test_blank_email_defaults_to_signed_in_identity(self):
        self.identity = Identity(id="C1", email="c1@market.test")
        self.cart.add_item(P1)
        result = await self.orchestrator.checkout(BuyerDetails(name="Cee", email=""))
        self.assertEqual(result.orders[0].customer_email, "c1@market.test")
        self.assertEqual(result.orders[0].customer_id, "C1")
        # no synchronizer: the server cart is cleared directly
        self.assertEqual(self.backend.cart_rows["C1"], [])

    async def test_guest_checkout_leaves_server_cart_alone(self):
        self.cart.add_item(P1)
        result = await self.orchestrator.checkout(BUYER)
        self.assertIsNone(result.orders[0].customer_id)
        self.assertNotIn("replace_cart_rows", [name for name, _ in self.backend.calls])

    async def test_partial_failure_keeps_cart_and_retry_does_not_duplicate(self):
        self.cart.add_item(P1, 2)
        self.cart.add_item(P2, 1)
        self.backend.fail_lines_for.add("S2")

        with self.assertRaises(OrderCreationError) as ctx:
            await self.orchestrator.checkout(BUYER)

        err = ctx.exception
        self.assertEqual(err.shop_id, "S2")
        self.assertEqual(err.stage, "order lines")
        self.assertTrue(err.is_partial)
        self.assertEqual([o.shop_id for o in err.placed_orders], ["S1"])
        self.assertEqual(self.cart.item_count, 3)
        token = self.cart.checkout_token
        self.assertIsNotNone(token)
        self.assertEqual(self.backend.products["P1"].stock, 3)

        # backend recovers, user retries with the same cart
        self.backend.fail_lines_for.clear()
        result = await self.orchestrator.checkout(BUYER)

        self.assertEqual(result.checkout_token, token)
        self.assertEqual(result.orders[0].id, err.placed_orders[0].id)
        self.assertEqual(result.resumed_shop_ids, ["S1"])
        self.assertEqual(len(self.backend.orders), 2)
        self.assertEqual(len(self.backend.order_lines[result.orders[0].id]), 1)
        # stock for the resumed shop was not taken twice
        self.assertEqual(self.backend.products["P1"].stock, 3)
        self.assertEqual(self.backend.products["P2"].stock, 4)
        self.assertTrue(self.cart.is_empty)
        self.backend.assert_totals_match_lines(self)

    async def test_edited_cart_after_failure_orders_every_line(self):
        self.cart.add_item(P1, 1)
        self.cart.add_item(P2, 1)
        self.backend.fail_orders_for.add("S2")
        with self.assertRaises(OrderCreationError):
            await self.orchestrator.checkout(BUYER)
        first_token = self.cart.checkout_token
        self.assertEqual(self.backend.products["P1"].stock, 4)

        # the buyer starts over with a different cart
        self.cart.clear_cart()
        self.assertIsNone(self.cart.checkout_token)
        self.cart.add_item(P3, 3)
        result = await self.orchestrator.checkout(BUYER)

        self.assertNotEqual(result.checkout_token, first_token)
        self.assertEqual(result.resumed_shop_ids, [])
        self.assertEqual(len(result.orders), 1)
        lines = self.backend.order_lines[result.orders[0].id]
        self.assertEqual([(ln.product_id, ln.quantity) for ln in lines], [("P3", 3)])
        self.assertEqual(result.orders[0].total_amount, 7.5)
        self.assertEqual(self.backend.products["P3"].stock, 2)
        self.assertTrue(self.cart.is_empty)
        self.backend.assert_totals_match_lines(self)

    async def test_quantity_change_after_lines_failure_reprices_the_order(self):
        self.cart.add_item(P1, 1)
        self.backend.fail_lines_for.add("S1")
        with self.assertLogs("cart.checkout", level="ERROR"):
            with self.assertRaises(OrderCreationError) as ctx:
                await self.orchestrator.checkout(BUYER)
        self.assertEqual(ctx.exception.stage, "order lines")
        # the line-less order was dropped
        self.assertEqual(self.backend.orders, {})

        self.backend.fail_lines_for.clear()
        self.cart.update_quantity("P1", 4)
        result = await self.orchestrator.checkout(BUYER)

        self.assertEqual(result.orders[0].total_amount, 40.0)
        lines = self.backend.order_lines[result.orders[0].id]
        self.assertEqual([(ln.product_id, ln.quantity) for ln in lines], [("P1", 4)])
        self.assertEqual(self.backend.products["P1"].stock, 1)
        self.assertEqual(len(self.backend.orders), 1)
        self.backend.assert_totals_match_lines(self)

    async def test_failed_discard_is_logged_and_still_raises(self):
        self.cart.add_item(P1, 1)
        self.backend.fail_lines_for.add("S1")
        self.backend.fail_discard = True
        with self.assertLogs("cart.checkout", level="ERROR") as logs:
            with self.assertRaises(OrderCreationError):
                await self.orchestrator.checkout(BUYER)
        self.assertTrue(any("Could not discard" in msg for msg in logs.output))
        self.assertFalse(self.cart.is_empty)

    async def test_first_order_failure_is_not_partial(self):
        self.cart.add_item(P1)
        self.backend.fail_orders_for.add("S1")
        with self.assertLogs("cart.checkout", level="ERROR"):
            with self.assertRaises(OrderCreationError) as ctx:
                await self.orchestrator.checkout(BUYER)
        self.assertFalse(ctx.exception.is_partial)
        self.assertEqual(ctx.exception.stage, "order")
        self.assertIsInstance(ctx.exception.__cause__, ConnectionError)
        self.assertFalse(self.cart.is_empty)

    async def test_stock_conflict_retries_then_succeeds(self):
        self.cart.add_item(P1, 1)
        self.backend.forced_conflicts["P1"] = 1
        result = await self.orchestrator.checkout(BUYER)
        self.assertEqual(result.warnings, [])
        self.assertEqual(self.backend.products["P1"].stock, 4)
        self.assertEqual(self.backend.calls.count(("get_product", "P1")), 2)

    async def test_persistent_stock_conflict_is_a_warning(self):
        self.cart.add_item(P1, 1)
        self.cart.add_item(P2, 1)
        self.backend.forced_conflicts["P1"] = 99

        with self.assertLogs("cart.checkout", level="WARNING"):
            result = await self.orchestrator.checkout(BUYER)

        self.assertEqual(len(result.orders), 2)
        self.assertEqual(len(result.warnings), 1)
        warning = result.warnings[0]
        self.assertIsInstance(warning, StockConflictError)
        self.assertEqual(warning.product_id, "P1")
        self.assertEqual(warning.attempts, 3)
        self.assertEqual(self.backend.products["P1"].stock, 5)
        self.assertEqual(self.backend.products["P2"].stock, 4)
        self.assertTrue(self.cart.is_empty)

    async def test_missing_product_and_stock_errors_are_warnings(self):
        self.cart.add_item(P1, 1)
        self.cart.add_item(P3, 1)
        del self.backend.products["P1"]
        self.backend.broken_stock.add("P3")

        with self.assertLogs("cart.checkout", level="WARNING"):
            result = await self.orchestrator.checkout(BUYER)

        self.assertEqual(len(result.orders), 1)
        self.assertEqual([w.product_id for w in result.warnings], ["P1", "P3"])
        self.assertTrue(all(type(w) is StockUpdateError for w in result.warnings))
        self.assertTrue(result.has_warnings)
        self.assertTrue(self.cart.is_empty)

    async def test_server_cart_clear_failure_is_not_fatal(self):
        self.identity = Identity(id="C1", email="c1@market.test")
        sync = CartSynchronizer(self.cart, backend=self.backend, retry_delay=0)
        orchestrator = CheckoutOrchestrator(
            self.cart,
            backend=self.backend,
            synchronizer=sync,
            identity_provider=lambda: self.identity,
        )
        self.cart.bind_customer("C1")
        self.cart.add_item(P1)
        await sync.drain()
        self.backend.fail_cart_clear = True

        with self.assertLogs("cart.sync", level="ERROR"):
            result = await orchestrator.checkout(BUYER)

        self.assertEqual(len(result.orders), 1)
        self.assertTrue(self.cart.is_empty)
        self.assertTrue(sync.is_stale)

        self.backend.fail_cart_clear = False
        self.assertTrue(await sync.drain())
        self.assertEqual(self.backend.cart_rows["C1"], [])
        sync.close()


class CheckoutDatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        db_database.DB_PATH = os.path.join(self.temp_dir.name, "test.sqlite")
        db_database._initialized = False

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_checkout_against_sqlite(self):
        cart = Cart(LocalCartStorage(self.temp_dir.name, "cart-test"))
        identity = Identity(id="u-cust-2", email="bob@market.test")
        sync = CartSynchronizer(cart, backend=crud, retry_delay=0)
        orchestrator = CheckoutOrchestrator(
            cart, backend=crud, synchronizer=sync, identity_provider=lambda: identity
        )
        await sync.load_cart_from_database(identity.id)
        cart.add_item(await crud.get_product("p-101"), 2)
        cart.add_item(await crud.get_product("p-202"), 5)  # more than the 3 in stock
        await sync.drain()
        self.assertEqual(len(await crud.fetch_cart_rows(identity.id)), 2)

        result = await orchestrator.checkout(BuyerDetails(name="Bob", email=""))

        self.assertEqual(sorted(o.shop_id for o in result.orders), ["s-bakery", "s-books"])
        self.assertEqual(result.grand_total, 35.5)
        self.assertEqual((await crud.get_product("p-101")).stock, 18)
        self.assertEqual((await crud.get_product("p-202")).stock, 0)
        self.assertEqual(await crud.fetch_cart_rows(identity.id), [])
        self.assertTrue(cart.is_empty)

        bob_orders = await crud.list_orders_for_customer("bob@market.test")
        self.assertEqual(len(bob_orders), 2)
        for order in result.orders:
            self.assertEqual(await crud.compute_order_total(order.id), order.total_amount)
        sync.close()


if __name__ == "__main__":
    unittest.main()
