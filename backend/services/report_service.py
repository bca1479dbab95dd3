"""
Reporting — monthly spending by category and the trailing 6-month trend.

Two different sums on purpose:
  * category buckets (and the month total) are built from receipt *items*
    plus manual expenses;
  * the trend uses each receipt's recorded *total_amount* plus manual
    expenses.
They diverge whenever a receipt's total disagrees with its items.
"""
import re
from calendar import month_abbr
from datetime import date
from typing import Iterable, Optional

from models.schemas import CategoryAmount
from services.category_service import (
    UNCATEGORIZED_COLOR, UNCATEGORIZED_LABEL, UNRESOLVED_COLOR, UNRESOLVED_LABEL,
    category_lookup,
)

TREND_MONTHS = 6
YEAR_MONTH_RE = re.compile(r'^(\d{4})-(\d{2})$')


def parse_year_month(value: str) -> tuple[int, int]:
    """'2026-02' → (2026, 2).  Raises ValueError on anything else."""
    m = YEAR_MONTH_RE.match(value or "")
    if not m:
        raise ValueError(f"Expected YYYY-MM, got {value!r}")
    year, month = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Month out of range: {value!r}")
    return year, month


def format_year_month(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def month_range(year: int, month: int) -> tuple[str, str]:
    """Half-open ISO date range [first of month, first of next month)."""
    next_year, next_month = shift_month(year, month, 1)
    return date(year, month, 1).isoformat(), date(next_year, next_month, 1).isoformat()


def month_label(year: int, month: int) -> str:
    return f"{month_abbr[month]} {year}"


def trend_months(year: int, month: int, count: int = TREND_MONTHS) -> list[tuple[int, int]]:
    """The `count` months ending at (year, month) inclusive, oldest first."""
    return [shift_month(year, month, -i) for i in range(count - 1, -1, -1)]


def build_category_totals(
    item_rows: Iterable[dict],
    expense_rows: Iterable[dict],
    categories: list[dict],
) -> list[CategoryAmount]:
    """
    Merge per-category amounts from receipt items and manual expenses.

    item_rows:    {category_id, quantity, unit_price}
    expense_rows: {category_id, amount}
    Uncategorized spending gets its own bucket; ids that no longer resolve to
    a household category are labelled "Other".  Sorted by amount, largest
    first (ties keep first-seen order).
    """
    amounts: dict[Optional[int], float] = {}
    for row in item_rows:
        cid = row.get("category_id")
        amounts[cid] = amounts.get(cid, 0.0) + float(row.get("quantity") or 0) * float(row.get("unit_price") or 0)
    for row in expense_rows:
        cid = row.get("category_id")
        amounts[cid] = amounts.get(cid, 0.0) + float(row.get("amount") or 0)

    known = category_lookup(categories)
    result = []
    for cid, amount in amounts.items():
        if cid is None:
            name, color = UNCATEGORIZED_LABEL, UNCATEGORIZED_COLOR
        elif cid in known:
            name, color = known[cid]["name"], known[cid]["color"]
        else:
            name, color = UNRESOLVED_LABEL, UNRESOLVED_COLOR
        result.append(CategoryAmount(category_id=cid, name=name, color=color, amount=round(amount, 2)))

    result.sort(key=lambda c: c.amount, reverse=True)
    return result


def month_total(categories: Iterable[CategoryAmount]) -> float:
    return round(sum(c.amount for c in categories), 2)
