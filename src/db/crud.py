# src/db/crud.py
from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from db import models
from db.database import connect
from db.passwords import hash_password, verify_password
from utils.logger import get_logger

_logger = get_logger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


def _ts(val: Optional[datetime]) -> Optional[str]:
    return val.isoformat() if val is not None else None


def _parse_ts(val) -> Optional[datetime]:
    if val is None or isinstance(val, datetime):
        return val
    try:
        return datetime.fromisoformat(str(val))
    except ValueError:
        return None


def _row_to_user(row) -> models.User:
    return models.User(
        id=row["id"],
        email=row["email"],
        role=models.Role(row["role"]),
        created_at=_parse_ts(row["created_at"]),
    )


def _row_to_shop(row) -> models.Shop:
    return models.Shop(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        category=row["category"],
        address=row["address"],
        phone=row["phone"],
        email=row["email"],
        status=models.ShopStatus(row["status"]),
        shopkeeper_id=row["shopkeeper_id"],
        image_url=row["image_url"],
        qr_code_url=row["qr_code_url"],
        created_at=_parse_ts(row["created_at"]),
    )


def _row_to_product(row) -> models.Product:
    return models.Product(
        id=row["id"],
        shop_id=row["shop_id"],
        title=row["title"],
        price=float(row["price"]),
        stock=int(row["stock"]),
        category=row["category"],
        description=row["description"],
        image_url=row["image_url"],
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _row_to_order(row) -> models.Order:
    return models.Order(
        id=row["id"],
        customer_name=row["customer_name"],
        customer_email=row["customer_email"],
        customer_phone=row["customer_phone"],
        shop_id=row["shop_id"],
        total_amount=float(row["total_amount"]),
        status=models.OrderStatus(row["status"]),
        created_at=_parse_ts(row["created_at"]),
        customer_id=row["customer_id"],
        checkout_token=row["checkout_token"],
    )


def _row_to_order_line(row) -> models.OrderLine:
    return models.OrderLine(
        id=row["id"],
        order_id=row["order_id"],
        product_id=row["product_id"],
        quantity=int(row["quantity"]),
        price=float(row["price"]),
    )


_SHOP_COLS = (
    "id, name, description, category, address, phone, email, image_url, "
    "qr_code_url, status, shopkeeper_id, created_at"
)
_PRODUCT_COLS = (
    "id, shop_id, title, description, price, image_url, category, stock, "
    "created_at, updated_at"
)
_ORDER_COLS = (
    "id, customer_name, customer_email, customer_phone, total_amount, status, "
    "shop_id, customer_id, checkout_token, created_at"
)


# ---------------------------
# Auth & Registration
# ---------------------------


async def email_available(email: str) -> bool:
    """True if no user already registered with the given email."""
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT 1 FROM users WHERE email = ? LIMIT 1;", (email.strip().lower(),)
        )
        row = await cur.fetchone()
        await cur.close()
        return row is None


async def register_user(email: str, pwd: str, role: str = "customer") -> models.User:
    """
    Create a new account and return it. Admin accounts cannot be self-registered.
    """
    role = models.Role(role)
    if role == models.Role.ADMIN:
        raise ValueError("Admin accounts cannot be registered.")
    email = email.strip().lower()
    if not email or not pwd:
        raise ValueError("Email and password are required.")
    if not await email_available(email):
        raise ValueError("Email already registered.")

    uid = _new_id()
    now = _ts(_now())
    async with connect() as conn:
        await conn.execute(
            "INSERT INTO users(id, email, pwd_hash, role, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?);",
            (uid, email, hash_password(pwd), role.value, now, now),
        )
        await conn.commit()
    _logger.info(f"Registered {role.value} account {email}")
    return models.User(id=uid, email=email, role=role, created_at=_parse_ts(now))


async def login(email: str, pwd: str) -> Optional[models.User]:
    """Return User if email/pwd match; otherwise None."""
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT id, email, pwd_hash, role, created_at FROM users WHERE email = ?;",
            (email.strip().lower(),),
        )
        row = await cur.fetchone()
        await cur.close()
    if not row or not verify_password(pwd, row["pwd_hash"]):
        return None
    return _row_to_user(row)


async def get_user(user_id: str) -> Optional[models.User]:
    """Return a User object for the given id, or None if not found."""
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT id, email, role, created_at FROM users WHERE id = ?;",
            (user_id,),
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_user(row) if row else None


# ---------------------------
# Shops
# ---------------------------


async def list_shops(status: Optional[str] = None) -> List[models.Shop]:
    """All shops, newest first, optionally filtered by moderation status."""
    async with connect() as conn:
        if status is None:
            cur = await conn.execute(
                f"SELECT {_SHOP_COLS} FROM shops ORDER BY created_at DESC, name;"
            )
        else:
            cur = await conn.execute(
                f"SELECT {_SHOP_COLS} FROM shops WHERE status = ? ORDER BY created_at DESC, name;",
                (models.ShopStatus(status).value,),
            )
        rows = await cur.fetchall()
        await cur.close()
    return [_row_to_shop(row) for row in rows]


async def get_shop(shop_id: str) -> Optional[models.Shop]:
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {_SHOP_COLS} FROM shops WHERE id = ?;", (shop_id,)
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_shop(row) if row else None


async def get_shop_for_keeper(shopkeeper_id: str) -> Optional[models.Shop]:
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {_SHOP_COLS} FROM shops WHERE shopkeeper_id = ? ORDER BY created_at LIMIT 1;",
            (shopkeeper_id,),
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_shop(row) if row else None


async def register_shop(
    shopkeeper_id: str,
    name: str,
    description: str = "",
    category: str = "",
    address: str = "",
    phone: str = "",
    email: str = "",
) -> models.Shop:
    """
    Submit a shop application. New shops always start as pending and are
    invisible to customers until an admin approves them.
    """
    if not name.strip():
        raise ValueError("Shop name is required.")
    user = await get_user(shopkeeper_id)
    if user is None or user.role != models.Role.SHOPKEEPER:
        raise PermissionError("Only shopkeepers can register a shop.")
    if await get_shop_for_keeper(shopkeeper_id):
        raise ValueError("This shopkeeper already has a shop.")

    shop_id = _new_id()
    now = _ts(_now())
    async with connect() as conn:
        await conn.execute(
            """
            INSERT INTO shops(id, name, description, category, address, phone, email,
                              status, shopkeeper_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, 'pending', ?, ?, ?);
            """,
            (shop_id, name.strip(), description, category, address, phone, email,
             shopkeeper_id, now, now),
        )
        await conn.commit()
    _logger.info(f"Shop application '{name}' submitted by {shopkeeper_id}")
    return await get_shop(shop_id)


async def set_shop_status(shop_id: str, status: str) -> bool:
    """Admin moderation: approve or reject a shop. Return True if a row was updated."""
    status = models.ShopStatus(status)
    async with connect() as conn:
        res = await conn.execute(
            "UPDATE shops SET status = ?, updated_at = ? WHERE id = ?;",
            (status.value, _ts(_now()), shop_id),
        )
        await conn.commit()
        updated = res.rowcount > 0
    if updated:
        _logger.info(f"Shop {shop_id} marked {status.value}")
    return updated


# ---------------------------
# Products
# ---------------------------


async def list_products(shop_id: str) -> List[models.Product]:
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {_PRODUCT_COLS} FROM products WHERE shop_id = ? ORDER BY category, title;",
            (shop_id,),
        )
        rows = await cur.fetchall()
        await cur.close()
    return [_row_to_product(row) for row in rows]


async def get_product(product_id: str) -> Optional[models.Product]:
    """Fetch a product by id, with its live stock count."""
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {_PRODUCT_COLS} FROM products WHERE id = ?;", (product_id,)
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_product(row) if row else None


async def create_product(
    shop_id: str,
    title: str,
    price: float,
    stock: int,
    category: str = "",
    description: str = "",
    image_url: Optional[str] = None,
) -> models.Product:
    if not title.strip():
        raise ValueError("Product title is required.")
    if price < 0:
        raise ValueError("Price cannot be negative.")
    if stock < 0:
        raise ValueError("Stock cannot be negative.")

    product_id = _new_id()
    now = _ts(_now())
    async with connect() as conn:
        await conn.execute(
            """
            INSERT INTO products(id, shop_id, title, description, price, image_url,
                                 category, stock, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (product_id, shop_id, title.strip(), description, float(price), image_url,
             category, int(stock), now, now),
        )
        await conn.commit()
    return await get_product(product_id)


async def update_product(
    product_id: str,
    new_price: Optional[float] = None,
    new_stock: Optional[int] = None,
) -> bool:
    """
    Update price and/or stock (only provided fields). Return True if a row was updated.
    """
    if new_price is None and new_stock is None:
        return False
    if new_price is not None and new_price < 0:
        raise ValueError("Price cannot be negative.")
    if new_stock is not None and new_stock < 0:
        raise ValueError("Stock cannot be negative.")
    async with connect() as conn:
        res = await conn.execute(
            """
            UPDATE products
            SET price = COALESCE(?, price),
                stock = COALESCE(?, stock),
                updated_at = ?
            WHERE id = ?;
            """,
            (new_price, new_stock, _ts(_now()), product_id),
        )
        await conn.commit()
        return res.rowcount > 0


async def decrement_stock(
    product_id: str, amount: int, expected_stock: int
) -> Optional[int]:
    """
    Conditionally lower a product's stock by ``amount``, floored at zero.

    The update only applies if the stored stock still equals ``expected_stock``;
    returns the new stock on success and None if another writer got there first
    (or the product no longer exists).
    """
    if amount < 1:
        raise ValueError("Decrement amount must be at least 1.")
    new_stock = max(expected_stock - amount, 0)
    async with connect() as conn:
        res = await conn.execute(
            "UPDATE products SET stock = ?, updated_at = ? WHERE id = ? AND stock = ?;",
            (new_stock, _ts(_now()), product_id, expected_stock),
        )
        await conn.commit()
        if res.rowcount == 0:
            return None
    return new_stock


# ---------------------------
# Cart Mirror
# ---------------------------


async def fetch_cart_rows(customer_id: str) -> List[models.CartLine]:
    """Persisted cart rows for a customer, joined with current product and shop data."""
    async with connect() as conn:
        cur = await conn.execute(
            """
            SELECT c.id, c.product_id, c.shop_id, c.quantity, c.customer_id,
                   c.session_id, c.created_at,
                   p.title, p.price, p.stock, p.image_url, s.name AS shop_name
            FROM cart_items c
            JOIN products p ON p.id = c.product_id
            LEFT JOIN shops s ON s.id = p.shop_id
            WHERE c.customer_id = ?
            ORDER BY c.created_at, c.id;
            """,
            (customer_id,),
        )
        rows = await cur.fetchall()
        await cur.close()
    return [
        models.CartLine(
            line_id=row["id"],
            product_id=row["product_id"],
            shop_id=row["shop_id"],
            quantity=int(row["quantity"]),
            session_id=row["session_id"],
            created_at=_parse_ts(row["created_at"]),
            customer_id=row["customer_id"],
            product=models.ProductSnapshot(
                id=row["product_id"],
                shop_id=row["shop_id"],
                title=row["title"],
                price=float(row["price"]),
                stock=int(row["stock"]),
                image_url=row["image_url"],
                shop_name=row["shop_name"],
            ),
        )
        for row in rows
    ]


async def replace_cart_rows(customer_id: str, lines: Sequence[models.CartLine]) -> None:
    """
    Full-replace write of a customer's cart: delete every row, insert the given
    lines, commit once. Row ids are minted here; local line ids are per device
    and may have been mirrored for another customer before.
    """
    async with connect() as conn:
        try:
            await conn.execute("DELETE FROM cart_items WHERE customer_id = ?;", (customer_id,))
            await conn.executemany(
                """
                INSERT INTO cart_items(id, product_id, shop_id, quantity, customer_id,
                                       session_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                [
                    (
                        _new_id(),
                        line.product_id,
                        line.shop_id,
                        line.quantity,
                        customer_id,
                        line.session_id,
                        _ts(line.created_at or _now()),
                    )
                    for line in lines
                ],
            )
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise


# ---------------------------
# Checkout & Orders
# ---------------------------


async def _find_order_by_token(conn, checkout_token: str, shop_id: str):
    cur = await conn.execute(
        f"SELECT {_ORDER_COLS} FROM orders WHERE checkout_token = ? AND shop_id = ?;",
        (checkout_token, shop_id),
    )
    row = await cur.fetchone()
    await cur.close()
    return row


async def create_order(draft: models.OrderDraft) -> models.Order:
    """
    Insert a pending order for one shop and return it.

    Orders carrying a checkout token are unique per (token, shop): asking again
    returns the order that already exists instead of creating a duplicate.
    """
    async with connect() as conn:
        if draft.checkout_token:
            row = await _find_order_by_token(conn, draft.checkout_token, draft.shop_id)
            if row:
                _logger.info(
                    f"Order {row['id']} already exists for checkout {draft.checkout_token}"
                )
                return _row_to_order(row)

        order_id = _new_id()
        now = _ts(_now())
        await conn.execute(
            """
            INSERT INTO orders(id, customer_name, customer_email, customer_phone,
                               total_amount, status, shop_id, customer_id,
                               checkout_token, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, 'pending', ?, ?, ?, ?, ?);
            """,
            (
                order_id,
                draft.customer_name,
                draft.customer_email,
                draft.customer_phone,
                round(draft.total_amount, 2),
                draft.shop_id,
                draft.customer_id,
                draft.checkout_token,
                now,
                now,
            ),
        )
        await conn.commit()
        cur = await conn.execute(f"SELECT {_ORDER_COLS} FROM orders WHERE id = ?;", (order_id,))
        row = await cur.fetchone()
        await cur.close()
    return _row_to_order(row)


async def create_order_lines(
    order_id: str, lines: Sequence[models.OrderLineDraft]
) -> int:
    """
    Snapshot order lines for an order. Returns how many were inserted; an order
    that already has lines is left untouched and 0 is returned.
    """
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT COUNT(*) FROM order_items WHERE order_id = ?;", (order_id,)
        )
        existing = (await cur.fetchone())[0]
        await cur.close()
        if existing:
            return 0

        now = _ts(_now())
        try:
            await conn.executemany(
                """
                INSERT INTO order_items(id, order_id, product_id, quantity, price, created_at)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                [
                    (_new_id(), order_id, line.product_id, line.quantity, line.price, now)
                    for line in lines
                ],
            )
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
    return len(lines)


async def discard_empty_order(order_id: str) -> bool:
    """Delete an order that has no lines yet. Returns False if it has lines or is gone."""
    async with connect() as conn:
        res = await conn.execute(
            """
            DELETE FROM orders
            WHERE id = ? AND NOT EXISTS (SELECT 1 FROM order_items WHERE order_id = ?);
            """,
            (order_id, order_id),
        )
        await conn.commit()
        deleted = res.rowcount > 0
    if deleted:
        _logger.info(f"Discarded empty order {order_id}")
    return deleted


async def get_order(order_id: str) -> Optional[models.Order]:
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {_ORDER_COLS} FROM orders WHERE id = ?;", (order_id,)
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_order(row) if row else None


async def get_order_detail(
    order_id: str,
) -> Tuple[Optional[models.Order], List[models.OrderLine]]:
    """
    Return (order, lines) for a specific order.
    """
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {_ORDER_COLS} FROM orders WHERE id = ?;", (order_id,)
        )
        order_row = await cur.fetchone()
        await cur.close()
        if not order_row:
            return None, []
        cur = await conn.execute(
            """
            SELECT id, order_id, product_id, quantity, price
            FROM order_items
            WHERE order_id = ?
            ORDER BY created_at, id;
            """,
            (order_id,),
        )
        line_rows = await cur.fetchall()
        await cur.close()
    return _row_to_order(order_row), [_row_to_order_line(row) for row in line_rows]


async def list_orders_for_customer(customer_email: str) -> List[models.Order]:
    """A customer's orders in reverse chronological order."""
    async with connect() as conn:
        cur = await conn.execute(
            f"""
            SELECT {_ORDER_COLS}
            FROM orders
            WHERE customer_email = ?
            ORDER BY created_at DESC, id;
            """,
            (customer_email.strip().lower(),),
        )
        rows = await cur.fetchall()
        await cur.close()
    return [_row_to_order(row) for row in rows]


async def list_orders_for_shop(
    shop_id: str, status: Optional[str] = None
) -> List[models.Order]:
    async with connect() as conn:
        if status is None:
            cur = await conn.execute(
                f"SELECT {_ORDER_COLS} FROM orders WHERE shop_id = ? ORDER BY created_at DESC, id;",
                (shop_id,),
            )
        else:
            cur = await conn.execute(
                f"""
                SELECT {_ORDER_COLS} FROM orders
                WHERE shop_id = ? AND status = ?
                ORDER BY created_at DESC, id;
                """,
                (shop_id, models.OrderStatus(status).value),
            )
        rows = await cur.fetchall()
        await cur.close()
    return [_row_to_order(row) for row in rows]


async def update_order_status(order_id: str, status: str) -> Optional[models.Order]:
    """
    Move an order to a new status. Returns the updated order, or None if the
    order does not exist; raises ValueError for a transition that is not allowed.
    """
    new_status = models.OrderStatus(status)
    order = await get_order(order_id)
    if order is None:
        return None
    if new_status not in models.ORDER_TRANSITIONS[order.status]:
        raise ValueError(
            f"Cannot move order from {order.status.value} to {new_status.value}."
        )
    async with connect() as conn:
        await conn.execute(
            "UPDATE orders SET status = ?, updated_at = ? WHERE id = ?;",
            (new_status.value, _ts(_now()), order_id),
        )
        await conn.commit()
    _logger.info(f"Order {order_id}: {order.status.value} -> {new_status.value}")
    return await get_order(order_id)


async def compute_order_total(order_id: str) -> float:
    """Return the sum of the order's line amounts."""
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT COALESCE(SUM(quantity * price), 0.0) FROM order_items WHERE order_id = ?;",
            (order_id,),
        )
        row = await cur.fetchone()
        await cur.close()
    return round(float(row[0]), 2) if row and row[0] is not None else 0.0


# ---------------------------
# Reports
# ---------------------------


async def shop_analytics(shop_id: str, recent: int = 5, popular: int = 3) -> Dict:
    """
    Dashboard numbers for one shop. Cancelled orders do not count towards revenue.
    """
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT COUNT(*) FROM products WHERE shop_id = ?;", (shop_id,)
        )
        total_products = (await cur.fetchone())[0]
        await cur.close()

        cur = await conn.execute(
            """
            SELECT COUNT(*),
                   COALESCE(SUM(CASE WHEN status != 'cancelled' THEN total_amount END), 0.0)
            FROM orders
            WHERE shop_id = ?;
            """,
            (shop_id,),
        )
        total_orders, total_revenue = await cur.fetchone()
        await cur.close()

        cur = await conn.execute(
            f"SELECT {_ORDER_COLS} FROM orders WHERE shop_id = ? ORDER BY created_at DESC, id LIMIT ?;",
            (shop_id, recent),
        )
        recent_rows = await cur.fetchall()
        await cur.close()

        cur = await conn.execute(
            f"""
            SELECT {", ".join("p." + c.strip() for c in _PRODUCT_COLS.split(","))},
                   SUM(oi.quantity) AS sold
            FROM order_items oi
            JOIN orders o ON o.id = oi.order_id
            JOIN products p ON p.id = oi.product_id
            WHERE o.shop_id = ? AND o.status != 'cancelled'
            GROUP BY p.id
            ORDER BY sold DESC, p.title
            LIMIT ?;
            """,
            (shop_id, popular),
        )
        popular_rows = await cur.fetchall()
        await cur.close()

    return {
        "total_products": int(total_products),
        "total_orders": int(total_orders),
        "total_revenue": round(float(total_revenue), 2),
        "recent_orders": [_row_to_order(row) for row in recent_rows],
        "popular_products": [_row_to_product(row) for row in popular_rows],
    }


async def customer_order_stats(
    customer_email: str, as_of: Optional[datetime] = None
) -> Dict[str, float]:
    """Order count, total spent and orders placed in the 30 days before ``as_of``."""
    as_of = as_of or _now()
    since = as_of - timedelta(days=30)
    async with connect() as conn:
        cur = await conn.execute(
            """
            SELECT COUNT(*),
                   COALESCE(SUM(total_amount), 0.0),
                   COALESCE(SUM(CASE WHEN created_at > ? THEN 1 ELSE 0 END), 0)
            FROM orders
            WHERE customer_email = ?;
            """,
            (_ts(since), customer_email.strip().lower()),
        )
        total_orders, total_spent, recent_orders = await cur.fetchone()
        await cur.close()
    return {
        "total_orders": int(total_orders),
        "total_spent": round(float(total_spent), 2),
        "recent_orders": int(recent_orders),
    }


async def marketplace_summary() -> Dict[str, int]:
    """Admin overview: shop counts by status and catalog size."""
    async with connect() as conn:
        cur = await conn.execute("SELECT status, COUNT(*) FROM shops GROUP BY status;")
        by_status = {row[0]: int(row[1]) for row in await cur.fetchall()}
        await cur.close()
        cur = await conn.execute("SELECT COUNT(*) FROM products;")
        total_products = (await cur.fetchone())[0]
        await cur.close()
    return {
        "total_shops": sum(by_status.values()),
        "pending_shops": by_status.get("pending", 0),
        "approved_shops": by_status.get("approved", 0),
        "rejected_shops": by_status.get("rejected", 0),
        "total_products": int(total_products),
    }
