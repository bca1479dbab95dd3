"""
Reports Router

GET /api/reports/monthly?month=YYYY-MM  — category breakdown + 6-month trend
"""
from calendar import month_abbr
from datetime import date
from typing import Optional

import aiosqlite
from fastapi import APIRouter, Depends, HTTPException, Query

from db.database import get_db
from models.schemas import MonthlyReport, TrendPoint
from services.household_service import HouseholdContext, get_household_context
from services.report_service import (
    build_category_totals, format_year_month, month_label, month_range, month_total,
    parse_year_month, trend_months,
)

router = APIRouter()


async def _month_item_rows(db: aiosqlite.Connection, household_id: int, start: str, end: str) -> list[dict]:
    """Line items of every receipt purchased in [start, end)."""
    async with db.execute(
        """
        SELECT ri.category_id, ri.quantity, ri.unit_price
        FROM receipt_items ri
        JOIN receipts r ON r.id = ri.receipt_id
        WHERE r.household_id = ?
          AND r.purchased_at >= ? AND r.purchased_at < ?
        ORDER BY r.purchased_at, r.id, ri.id
        """,
        (household_id, start, end),
    ) as cur:
        rows = await cur.fetchall()
    return [dict(r) for r in rows]


async def _month_expense_rows(db: aiosqlite.Connection, household_id: int, start: str, end: str) -> list[dict]:
    async with db.execute(
        """
        SELECT category_id, amount
        FROM manual_expenses
        WHERE household_id = ?
          AND expense_date >= ? AND expense_date < ?
        ORDER BY expense_date, id
        """,
        (household_id, start, end),
    ) as cur:
        rows = await cur.fetchall()
    return [dict(r) for r in rows]


async def _month_spend(db: aiosqlite.Connection, household_id: int, start: str, end: str) -> float:
    """Σ receipt.total_amount (non-null) + Σ manual_expense.amount for one month."""
    async with db.execute(
        """
        SELECT
            (SELECT COALESCE(SUM(total_amount), 0) FROM receipts
              WHERE household_id = ? AND total_amount IS NOT NULL
                AND purchased_at >= ? AND purchased_at < ?)
          + (SELECT COALESCE(SUM(amount), 0) FROM manual_expenses
              WHERE household_id = ?
                AND expense_date >= ? AND expense_date < ?) AS total
        """,
        (household_id, start, end, household_id, start, end),
    ) as cur:
        row = await cur.fetchone()
    return round(row["total"] or 0.0, 2)


@router.get("/monthly", response_model=MonthlyReport)
async def monthly_report(
    month: Optional[str] = Query(default=None, description="YYYY-MM, defaults to the current month"),
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
):
    if month is None:
        today = date.today()
        month = format_year_month(today.year, today.month)
    try:
        year, mon = parse_year_month(month)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    start, end = month_range(year, mon)
    item_rows = await _month_item_rows(db, ctx.household_id, start, end)
    expense_rows = await _month_expense_rows(db, ctx.household_id, start, end)
    categories = build_category_totals(item_rows, expense_rows, ctx.categories)

    trend = []
    for y, m in trend_months(year, mon):
        m_start, m_end = month_range(y, m)
        trend.append(TrendPoint(
            year=y, month=m, month_label=month_abbr[m],
            amount=await _month_spend(db, ctx.household_id, m_start, m_end),
        ))

    return MonthlyReport(
        month=month,
        month_label=month_label(year, mon),
        total=month_total(categories),
        categories=categories,
        trend=trend,
    )
