# persists the cart between runs, one JSON document per storage name
from __future__ import annotations

import json
import os
import tempfile
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from db.models import CartLine, ProductSnapshot
from utils.config import CART_DIR, CART_STORAGE_NAME
from utils.logger import get_logger

_logger = get_logger(__name__)


def line_to_dict(line: CartLine) -> Dict[str, Any]:
    data = asdict(line)
    data["created_at"] = line.created_at.isoformat() if line.created_at else None
    return data


def line_from_dict(data: Dict[str, Any]) -> CartLine:
    product = data.get("product")
    created_at = data.get("created_at")
    return CartLine(
        line_id=data["line_id"],
        product_id=data["product_id"],
        shop_id=data["shop_id"],
        quantity=int(data["quantity"]),
        session_id=data["session_id"],
        created_at=datetime.fromisoformat(created_at) if created_at else None,
        customer_id=data.get("customer_id"),
        product=ProductSnapshot(**product) if product else None,
    )


class LocalCartStorage:
    """
    File-backed cart cache keyed by a storage name, e.g. ``data/cart-storage.json``.

    Stored shape: ``{"items": [...], "session_id": str, "checkout_token": str | None}``.
    """

    def __init__(self, directory: str = CART_DIR, name: str = CART_STORAGE_NAME):
        self.directory = directory
        self.name = name

    @property
    def path(self) -> str:
        return os.path.join(self.directory, f"{self.name}.json")

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored state, or None if nothing usable is stored."""
        if not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            items: List[CartLine] = [line_from_dict(d) for d in raw.get("items", [])]
            session_id = raw["session_id"]
        except (OSError, ValueError, KeyError, TypeError) as e:
            _logger.warning(f"Ignoring unreadable cart storage {self.path}: {e}")
            return None
        return {
            "items": items,
            "session_id": session_id,
            "checkout_token": raw.get("checkout_token"),
        }

    def save(self, items: List[CartLine], session_id: str, checkout_token: Optional[str]) -> None:
        os.makedirs(self.directory or ".", exist_ok=True)
        payload = {
            "items": [line_to_dict(line) for line in items],
            "session_id": session_id,
            "checkout_token": checkout_token,
        }
        # write to a sibling temp file then swap, a crash never leaves half a cart
        fd, tmp_path = tempfile.mkstemp(dir=self.directory or ".", prefix=f".{self.name}-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def clear(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)
