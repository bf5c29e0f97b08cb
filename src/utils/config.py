# runtime settings, read once from the environment
import os


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


DB_PATH = os.getenv("MARKET_DB_PATH", "data/market.sqlite")

# local cart cache, the browser's localStorage equivalent
CART_DIR = os.getenv("MARKET_CART_DIR", "data")
CART_STORAGE_NAME = os.getenv("MARKET_CART_STORAGE_NAME", "cart-storage")

# outbox retry policy for the server-side cart mirror
SYNC_MAX_ATTEMPTS = _env_int("SYNC_MAX_ATTEMPTS", 3)
SYNC_RETRY_DELAY = _env_float("SYNC_RETRY_DELAY", 0.5)

# compare-and-swap attempts per stock decrement at checkout
STOCK_CAS_ATTEMPTS = _env_int("STOCK_CAS_ATTEMPTS", 3)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
