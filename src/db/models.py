# provide dataclass models

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Role(str, Enum):
    ADMIN = "admin"
    SHOPKEEPER = "shopkeeper"
    CUSTOMER = "customer"


class ShopStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# status changes a shopkeeper or admin may apply to an order
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}


@dataclass(frozen=True)
class User:
    id: str
    email: str
    role: Role
    created_at: datetime


@dataclass(frozen=True)
class Identity:
    """What the session store hands out: who is signed in, nothing more."""

    id: str
    email: str


@dataclass(frozen=True)
class Shop:
    id: str
    name: str
    description: str
    category: str
    address: str
    phone: str
    email: str
    status: ShopStatus
    shopkeeper_id: str
    image_url: Optional[str] = None
    qr_code_url: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ProductSnapshot:
    """Cached copy of a product kept on a cart line for display and totals."""

    id: str
    shop_id: str
    title: str
    price: float
    stock: int
    image_url: Optional[str] = None
    shop_name: Optional[str] = None


@dataclass(frozen=True)
class Product:
    id: str
    shop_id: str
    title: str
    price: float
    stock: int
    category: str = ""
    description: str = ""
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def snapshot(self, shop_name: Optional[str] = None) -> ProductSnapshot:
        return ProductSnapshot(
            id=self.id,
            shop_id=self.shop_id,
            title=self.title,
            price=self.price,
            stock=self.stock,
            image_url=self.image_url,
            shop_name=shop_name,
        )


@dataclass(frozen=True)
class CartLine:
    line_id: str
    product_id: str
    shop_id: str
    quantity: int
    session_id: str
    created_at: datetime
    customer_id: Optional[str] = None
    product: Optional[ProductSnapshot] = None

    @property
    def unit_price(self) -> float:
        # a line without a cached product contributes nothing to totals
        return self.product.price if self.product else 0.0

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Order:
    id: str
    customer_name: str
    customer_email: str
    customer_phone: str
    shop_id: str
    total_amount: float
    status: OrderStatus
    created_at: datetime
    customer_id: Optional[str] = None
    checkout_token: Optional[str] = None


@dataclass(frozen=True)
class OrderLine:
    id: str
    order_id: str
    product_id: str
    quantity: int
    price: float  # unit price at time of order

    @property
    def amount(self) -> float:
        return self.price * self.quantity


@dataclass(frozen=True)
class OrderDraft:
    shop_id: str
    customer_name: str
    customer_email: str
    customer_phone: str
    total_amount: float
    customer_id: Optional[str] = None
    checkout_token: Optional[str] = None


@dataclass(frozen=True)
class OrderLineDraft:
    product_id: str
    quantity: int
    price: float
