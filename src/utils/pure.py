from typing import Iterable, List, Literal, Optional, Sequence

from db.models import Shop

_ALIGN_MARKERS = {"l": ":---", "c": ":---:", "r": "---:"}


def generate_markdown_table(
    headers: Optional[List[str]],
    rows: List[List[object]],
    aligns: Optional[List[Literal["l", "c", "r"]]] = None,
) -> str:
    """
    Generate a Markdown table.

    Args:
        headers: column headers, or None to use the first row as headers.
        rows: table rows; cells are stringified, pipes escaped.
        aligns: 'l', 'c' or 'r' per column, center by default.

    Returns:
        str: Markdown formatted table, empty if there are no rows.
    """
    if not rows:
        return ""

    if not headers:
        headers, rows = rows[0], rows[1:]

    def cell(value) -> str:
        return str(value).replace("|", "\\|")

    header_cells = [cell(h) for h in headers]
    if aligns is None:
        aligns = ["c"] * len(header_cells)
    elif len(aligns) != len(header_cells):
        raise ValueError("Length of aligns must match number of headers.")

    lines = [
        "| " + " | ".join(header_cells) + " |",
        "| " + " | ".join(_ALIGN_MARKERS[a] for a in aligns) + " |",
    ]
    lines += ["| " + " | ".join(cell(v) for v in row) + " |" for row in rows]
    return "\n".join(lines)


def format_price(amount: float) -> str:
    return f"${amount:,.2f}"


def stock_label(stock: int) -> str:
    if stock <= 0:
        return "Out of stock"
    if stock < 5:
        return f"Only {stock} left"
    return f"{stock} in stock"


def shop_categories(shops: Iterable[Shop]) -> List[str]:
    return sorted({s.category for s in shops if s.category})


def filter_shops(shops: Sequence[Shop], term: str = "", category: str = "") -> List[Shop]:
    """Case-insensitive match of ``term`` on name or description, optionally within one category."""
    term = term.strip().lower()
    result = []
    for shop in shops:
        if category and shop.category != category:
            continue
        if term and term not in shop.name.lower() and term not in (shop.description or "").lower():
            continue
        result.append(shop)
    return result
