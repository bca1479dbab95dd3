import json
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field


OcrStatus = Literal["pending", "processing", "done", "error"]


# ── Category ───────────────────────────────────────────
class CategoryBase(BaseModel):
    name: str = Field(min_length=1)
    color: str = "#94a3b8"

class CategoryCreate(CategoryBase):
    pass

class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    color: Optional[str] = None

class Category(CategoryBase):
    id: int
    household_id: int
    sort_order: int

    class Config:
        from_attributes = True


# ── Household ──────────────────────────────────────────
class HouseholdCreate(BaseModel):
    name: str = Field(min_length=1)

class Household(BaseModel):
    id: int
    name: str
    categories: List[Category] = []


# ── Receipt Item ───────────────────────────────────────
class ReceiptItemBase(BaseModel):
    name: str
    quantity: float = Field(default=1.0, gt=0)
    unit_price: float = Field(default=0.0, ge=0)
    category_id: Optional[int] = None

class ReceiptItemIn(ReceiptItemBase):
    pass

class ReceiptItem(ReceiptItemBase):
    id: int
    receipt_id: int

    class Config:
        from_attributes = True


# ── Extraction (typed view of receipts.ocr_raw) ────────
class ExtractionResult(BaseModel):
    """What the OCR worker stored, with the ``_truncated`` flag lifted out."""
    store_name: Optional[str] = None
    purchased_at: Optional[str] = None
    total_amount: Optional[float] = None
    items: List[dict] = []
    truncated: bool = False
    unparsed: Optional[str] = None

    @classmethod
    def from_ocr_raw(cls, raw: Any) -> Optional["ExtractionResult"]:
        """Decode a stored ocr_raw value (JSON text or dict).

        Returns None for anything that is not a JSON object, so callers never
        inspect arbitrary blobs for flags.
        """
        if raw is None:
            return None
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except ValueError:
                return None
        if not isinstance(raw, dict):
            return None
        items = raw.get("items")
        total = raw.get("total_amount")
        return cls(
            store_name=raw.get("store_name") if isinstance(raw.get("store_name"), str) else None,
            purchased_at=raw.get("purchased_at") if isinstance(raw.get("purchased_at"), str) else None,
            total_amount=total if isinstance(total, (int, float)) and not isinstance(total, bool) else None,
            items=[i for i in items if isinstance(i, dict)] if isinstance(items, list) else [],
            truncated=bool(raw.get("_truncated")),
            unparsed=raw.get("_unparsed") if isinstance(raw.get("_unparsed"), str) else None,
        )


# ── Reconciliation ─────────────────────────────────────
class CategorySubtotal(BaseModel):
    key: str                     # str(category_id) or "uncategorized"
    category_id: Optional[int]
    label: str
    color: Optional[str] = None
    amount: float
    item_count: int
    uncategorized: bool = False

class Reconciliation(BaseModel):
    processing: bool
    truncated: bool
    items_total: float
    mismatch: bool
    mismatch_delta: Optional[float] = None
    subtotals: List[CategorySubtotal] = []
    active_category: Optional[str] = None
    visible_item_ids: List[int] = []


# ── Receipt ────────────────────────────────────────────
class Receipt(BaseModel):
    id: int
    household_id: int
    user_id: str
    image_path: str
    store_name: Optional[str] = None
    total_amount: Optional[float] = None
    purchased_at: Optional[str] = None
    ocr_status: OcrStatus = "pending"
    ocr_raw: Optional[dict] = None
    created_at: str
    items: List[ReceiptItem] = []
    reconciliation: Optional[Reconciliation] = None

class ReceiptSummary(BaseModel):
    id: int
    store_name: Optional[str]
    total_amount: Optional[float]
    purchased_at: Optional[str]
    ocr_status: OcrStatus
    created_at: str
    item_count: int

class ReceiptSave(BaseModel):
    """Sent by the client after the user reviews a receipt; replaces everything."""
    store_name: Optional[str] = None
    total_amount: Optional[float] = None
    purchased_at: Optional[str] = None
    items: List[ReceiptItemIn] = []

class UploadResult(BaseModel):
    receipt_id: int
    image_path: str
    ocr_status: OcrStatus
    ocr_dispatched: bool


# ── OCR trigger ────────────────────────────────────────
class ProcessReceiptRequest(BaseModel):
    receipt_id: int

class ProcessReceiptResult(BaseModel):
    receipt_id: int
    ocr_status: OcrStatus
    truncated: bool = False
    item_count: int = 0
    error: Optional[str] = None


# ── Manual expense ─────────────────────────────────────
class ManualExpenseBase(BaseModel):
    amount: float = Field(gt=0)
    description: str = ""
    expense_date: str
    category_id: Optional[int] = None

class ManualExpenseCreate(ManualExpenseBase):
    pass

class ManualExpense(ManualExpenseBase):
    id: int
    household_id: int
    user_id: str

    class Config:
        from_attributes = True

class ExpenseEntry(BaseModel):
    id: int
    type: Literal["receipt", "manual"]
    description: str
    amount: float
    date: str
    category_name: Optional[str] = None
    category_color: Optional[str] = None

class ExpenseList(BaseModel):
    month: str
    total: float
    expenses: List[ExpenseEntry]


# ── Reports ────────────────────────────────────────────
class CategoryAmount(BaseModel):
    category_id: Optional[int]
    name: str
    color: str
    amount: float

class TrendPoint(BaseModel):
    year: int
    month: int
    month_label: str       # e.g. "Feb"
    amount: float

class MonthlyReport(BaseModel):
    month: str             # YYYY-MM
    month_label: str       # e.g. "Feb 2026"
    total: float
    categories: List[CategoryAmount]
    trend: List[TrendPoint]
