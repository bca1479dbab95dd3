"""
Reconciliation — derived, never-persisted checks over one loaded receipt.

Given the receipt row, its items and the household's categories this works
out which banners the receipt view shows (processing, truncated extraction,
total mismatch), the per-category subtotals, and which items are visible
under the current subtotal filter.  Pure functions only: no DB, no I/O.
"""
from typing import Iterable, Optional

from models.schemas import CategorySubtotal, ExtractionResult, Reconciliation
from services.category_service import (
    UNCATEGORIZED_COLOR, UNCATEGORIZED_KEY, UNCATEGORIZED_LABEL, category_lookup,
)

PROCESSING_STATUSES = ("pending", "processing")


def line_total(item: dict) -> float:
    return float(item.get("quantity") or 0) * float(item.get("unit_price") or 0)


def items_total(items: Iterable[dict]) -> float:
    return sum(line_total(i) for i in items)


def is_processing(status: str) -> bool:
    return status in PROCESSING_STATUSES


def is_truncated(ocr_raw) -> bool:
    extraction = ExtractionResult.from_ocr_raw(ocr_raw)
    return bool(extraction and extraction.truncated)


def mismatch_delta(status: str, total_amount: Optional[float], items: list[dict]) -> Optional[float]:
    """
    total_amount − Σ(quantity × unit_price) when the receipt should show a
    mismatch warning, otherwise None.  Compared at cent precision so float
    noise in the sum doesn't raise a false alarm.
    """
    if status == "processing" or not total_amount or not items:
        return None
    delta = round(total_amount - items_total(items), 2)
    return delta if delta != 0 else None


def group_key(category_id: Optional[int], known: dict[int, dict]) -> str:
    """Subtotal bucket key; missing or dangling category ids share one bucket."""
    if category_id is None or category_id not in known:
        return UNCATEGORIZED_KEY
    return str(category_id)


def category_subtotals(items: list[dict], categories: list[dict]) -> list[CategorySubtotal]:
    """
    Sum line totals per category, largest first.  sorted() is stable, so
    equal subtotals keep the order their first item appeared in.
    """
    known = category_lookup(categories)
    buckets: dict[str, CategorySubtotal] = {}
    for item in items:
        key = group_key(item.get("category_id"), known)
        bucket = buckets.get(key)
        if bucket is None:
            cat = known.get(item.get("category_id")) if key != UNCATEGORIZED_KEY else None
            bucket = CategorySubtotal(
                key=key,
                category_id=cat["id"] if cat else None,
                label=cat["name"] if cat else UNCATEGORIZED_LABEL,
                color=cat["color"] if cat else UNCATEGORIZED_COLOR,
                amount=0.0,
                item_count=0,
                uncategorized=cat is None,
            )
            buckets[key] = bucket
        bucket.amount += line_total(item)
        bucket.item_count += 1
    return sorted(buckets.values(), key=lambda b: b.amount, reverse=True)


def toggle_filter(active: Optional[str], selected: str) -> Optional[str]:
    """Selecting the active group clears the filter; any other group replaces it."""
    return None if active == selected else selected


def resolve_filter(active: Optional[str], selected: Optional[str] = None, clear: bool = False) -> Optional[str]:
    """Apply one filter interaction: the clear control wins, then a group click."""
    if clear:
        return None
    if selected is not None:
        return toggle_filter(active, selected)
    return active


def filter_items(items: list[dict], active: Optional[str], categories: list[dict]) -> list[dict]:
    if active is None:
        return list(items)
    known = category_lookup(categories)
    return [i for i in items if group_key(i.get("category_id"), known) == active]


def reconcile(
    receipt: dict,
    items: list[dict],
    categories: list[dict],
    active_category: Optional[str] = None,
) -> Reconciliation:
    """Everything the receipt view derives from a loaded receipt."""
    status = receipt.get("ocr_status") or "pending"
    show_breakdown = status != "processing" and bool(items)
    subtotals = category_subtotals(items, categories) if show_breakdown else []

    # A filter only applies to a group that actually exists right now
    if active_category is not None and active_category not in {s.key for s in subtotals}:
        active_category = None

    delta = mismatch_delta(status, receipt.get("total_amount"), items)
    return Reconciliation(
        processing=is_processing(status),
        truncated=is_truncated(receipt.get("ocr_raw")),
        items_total=round(items_total(items), 2),
        mismatch=delta is not None,
        mismatch_delta=delta,
        subtotals=subtotals,
        active_category=active_category,
        visible_item_ids=[i["id"] for i in filter_items(items, active_category, categories) if "id" in i],
    )
