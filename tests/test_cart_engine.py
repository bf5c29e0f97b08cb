import json
import os
import sys
import tempfile
import unittest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from cart.engine import Cart  # noqa: E402
from cart.storage import LocalCartStorage  # noqa: E402
from db.models import Product  # noqa: E402

P1 = Product(id="P1", shop_id="S1", title="Mug", price=10.0, stock=5)
P2 = Product(id="P2", shop_id="S2", title="Tea", price=15.0, stock=1)
P3 = Product(id="P3", shop_id="S1", title="Spoon", price=0.1, stock=100)


class CartEngineTestCase(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.storage = LocalCartStorage(self.temp_dir.name, "cart-test")
        self.cart = Cart(self.storage)

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_add_merges_same_product(self):
        self.cart.add_item(P1, 2)
        self.cart.add_item(P1, 3)
        self.assertEqual(len(self.cart.lines), 1)
        self.assertEqual(self.cart.quantity_of("P1"), 5)
        self.assertEqual(self.cart.get_total(), 50.0)

    def test_new_line_fields(self):
        line = self.cart.add_item(P1)
        self.assertEqual(line.quantity, 1)
        self.assertEqual(line.shop_id, "S1")
        self.assertEqual(line.session_id, self.cart.session_id)
        self.assertIsNone(line.customer_id)
        self.assertEqual(line.product.title, "Mug")
        self.assertIsNotNone(line.created_at)

    def test_add_rejects_non_positive_quantity(self):
        with self.assertRaises(ValueError):
            self.cart.add_item(P1, 0)
        self.assertTrue(self.cart.is_empty)

    def test_update_quantity_zero_or_negative_removes(self):
        self.cart.add_item(P1, 2)
        self.cart.add_item(P2, 1)
        self.assertIsNone(self.cart.update_quantity("P1", 0))
        self.assertIsNone(self.cart.get_line("P1"))
        self.assertIsNone(self.cart.update_quantity("P2", -5))
        self.assertTrue(self.cart.is_empty)

    def test_update_quantity_sets_and_ignores_missing(self):
        self.cart.add_item(P1, 2)
        self.assertEqual(self.cart.update_quantity("P1", 7).quantity, 7)
        self.assertIsNone(self.cart.update_quantity("nope", 3))
        self.assertEqual(self.cart.item_count, 7)

    def test_remove_and_clear(self):
        self.cart.add_item(P1)
        self.cart.add_item(P2)
        self.assertTrue(self.cart.remove_item("P1"))
        self.assertFalse(self.cart.remove_item("P1"))
        self.cart.clear_cart()
        self.assertTrue(self.cart.is_empty)
        self.assertEqual(self.cart.get_total(), 0)

    def test_total_across_shops(self):
        self.cart.add_item(P1, 2)
        self.cart.add_item(P2, 1)
        self.assertEqual(self.cart.get_total(), 35.0)
        self.assertEqual(self.cart.shop_ids(), ["S1", "S2"])

    def test_total_is_rounded(self):
        self.cart.add_item(P3, 3)
        self.assertEqual(self.cart.get_total(), 0.3)

    def test_addable_quantity_clamps_to_stock(self):
        self.assertEqual(self.cart.addable_quantity(P2, 3), 1)
        self.cart.add_item(P2, 1)
        self.assertEqual(self.cart.addable_quantity(P2, 1), 0)
        # the cart itself does not enforce stock
        self.cart.add_item(P2, 4)
        self.assertEqual(self.cart.quantity_of("P2"), 5)

    def test_listeners_see_changes(self):
        seen = []
        unsubscribe = self.cart.subscribe(lambda change: seen.append(change.action))
        self.cart.add_item(P1)
        self.cart.update_quantity("P1", 3)
        self.cart.update_quantity("missing", 3)
        self.cart.remove_item("P1")
        self.cart.clear_cart()  # already empty, nothing to announce
        unsubscribe()
        self.cart.add_item(P1)
        self.assertEqual(seen, ["add", "update", "remove"])

    def test_failing_listener_does_not_break_mutation(self):
        def boom(change):
            raise RuntimeError("listener bug")

        self.cart.subscribe(boom)
        with self.assertLogs("cart.engine", level="ERROR"):
            self.cart.add_item(P1)
        self.assertEqual(self.cart.quantity_of("P1"), 1)

    def test_bind_customer_tags_lines(self):
        self.cart.add_item(P1)
        self.cart.bind_customer("C1")
        self.assertEqual(self.cart.get_line("P1").customer_id, "C1")
        self.assertEqual(self.cart.add_item(P2).customer_id, "C1")
        self.cart.unbind_customer()
        self.assertTrue(all(line.customer_id is None for line in self.cart.lines))

    def test_checkout_token_is_reused_until_ended(self):
        token = self.cart.begin_checkout()
        self.assertEqual(self.cart.begin_checkout(), token)
        self.cart.end_checkout()
        self.assertNotEqual(self.cart.begin_checkout(), token)

    def test_any_mutation_drops_the_checkout_token(self):
        self.cart.add_item(P1, 1)
        edits = [
            lambda: self.cart.add_item(P2),
            lambda: self.cart.update_quantity("P1", 3),
            lambda: self.cart.remove_item("P2"),
            lambda: self.cart.replace_lines(self.cart.lines, notify=False),
            lambda: self.cart.clear_cart(),
        ]
        for edit in edits:
            token = self.cart.begin_checkout()
            edit()
            self.assertIsNone(self.cart.checkout_token)
            self.assertNotEqual(self.cart.begin_checkout(), token)


class CartPersistenceTestCase(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.storage = LocalCartStorage(self.temp_dir.name, "cart-test")

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_restart_restores_lines_session_and_token(self):
        cart = Cart(self.storage)
        cart.add_item(P1, 2)
        cart.add_item(P2, 1)
        token = cart.begin_checkout()

        restored = Cart(LocalCartStorage(self.temp_dir.name, "cart-test"))
        self.assertEqual(restored.session_id, cart.session_id)
        self.assertEqual(restored.lines, cart.lines)
        self.assertEqual(restored.checkout_token, token)
        self.assertEqual(restored.get_total(), 35.0)

    def test_session_id_is_minted_once(self):
        cart = Cart(self.storage)
        self.assertTrue(os.path.exists(self.storage.path))
        self.assertEqual(Cart(self.storage).session_id, cart.session_id)

    def test_separate_storage_names_are_independent(self):
        Cart(self.storage).add_item(P1)
        other = Cart(LocalCartStorage(self.temp_dir.name, "other-cart"))
        self.assertTrue(other.is_empty)

    def test_malformed_storage_starts_fresh(self):
        with open(self.storage.path, "w", encoding="utf-8") as f:
            f.write("{not json")
        with self.assertLogs("cart.storage", level="WARNING"):
            cart = Cart(self.storage)
        self.assertTrue(cart.is_empty)
        self.assertTrue(cart.session_id)

    def test_duplicate_stored_lines_are_merged(self):
        cart = Cart(self.storage)
        cart.add_item(P1, 1)
        with open(self.storage.path, encoding="utf-8") as f:
            raw = json.load(f)
        dup = dict(raw["items"][0], line_id="other", quantity=4)
        raw["items"].append(dup)
        with open(self.storage.path, "w", encoding="utf-8") as f:
            json.dump(raw, f)

        restored = Cart(self.storage)
        self.assertEqual(len(restored.lines), 1)
        self.assertEqual(restored.quantity_of("P1"), 5)

    def test_storage_clear(self):
        Cart(self.storage).add_item(P1)
        self.storage.clear()
        self.assertIsNone(self.storage.load())


if __name__ == "__main__":
    unittest.main()
