"""
Expenses Router

GET    /api/expenses?month=YYYY-MM[&category_id=]  — receipts + manual expenses for a month
POST   /api/expenses                               — record a manual expense
GET    /api/expenses/{id}                          — one manual expense
PUT    /api/expenses/{id}                          — edit a manual expense
DELETE /api/expenses/{id}                          — remove a manual expense
"""
from datetime import date
from typing import Optional

import aiosqlite
from fastapi import APIRouter, Depends, HTTPException, Query

from db.database import get_db
from models.schemas import ExpenseEntry, ExpenseList, ManualExpense, ManualExpenseCreate
from services.household_service import HouseholdContext, get_household_context
from services.report_service import format_year_month, month_range, parse_year_month

router = APIRouter()

RECEIPT_FALLBACK_DESCRIPTION = "Receipt"


def _check_payload(body: ManualExpenseCreate, ctx: HouseholdContext):
    try:
        date.fromisoformat(body.expense_date)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Invalid expense_date: {body.expense_date!r}")
    if body.category_id is not None and body.category_id not in ctx.category_ids:
        raise HTTPException(status_code=422, detail=f"Unknown category: {body.category_id}")


async def _load_expense(db: aiosqlite.Connection, ctx: HouseholdContext, expense_id: int):
    async with db.execute(
        "SELECT * FROM manual_expenses WHERE id = ? AND household_id = ?",
        (expense_id, ctx.household_id),
    ) as cur:
        row = await cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Expense not found")
    return row


def _to_model(row) -> ManualExpense:
    return ManualExpense(
        id=row["id"], household_id=row["household_id"], user_id=row["user_id"],
        amount=row["amount"], description=row["description"],
        expense_date=row["expense_date"], category_id=row["category_id"],
    )


@router.get("", response_model=ExpenseList)
async def list_expenses(
    month: Optional[str] = Query(default=None, description="YYYY-MM, defaults to the current month"),
    category_id: Optional[int] = None,
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
):
    """
    Everything spent in a month, newest first.  Receipts appear as one line
    at their recorded total and carry no category, so the category filter
    only narrows the manual expenses.
    """
    if month is None:
        today = date.today()
        month = format_year_month(today.year, today.month)
    try:
        year, mon = parse_year_month(month)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    start, end = month_range(year, mon)

    entries: list[ExpenseEntry] = []

    async with db.execute(
        """SELECT id, store_name, total_amount, purchased_at
           FROM receipts
           WHERE household_id = ? AND purchased_at >= ? AND purchased_at < ?""",
        (ctx.household_id, start, end),
    ) as cur:
        for r in await cur.fetchall():
            entries.append(ExpenseEntry(
                id=r["id"], type="receipt",
                description=r["store_name"] or RECEIPT_FALLBACK_DESCRIPTION,
                amount=r["total_amount"] or 0.0,
                date=r["purchased_at"] or "",
            ))

    query = """SELECT id, amount, description, expense_date, category_id
               FROM manual_expenses
               WHERE household_id = ? AND expense_date >= ? AND expense_date < ?"""
    params: list = [ctx.household_id, start, end]
    if category_id is not None:
        query += " AND category_id = ?"
        params.append(category_id)

    async with db.execute(query, params) as cur:
        for e in await cur.fetchall():
            cat = ctx.category(e["category_id"])
            entries.append(ExpenseEntry(
                id=e["id"], type="manual",
                description=e["description"],
                amount=e["amount"],
                date=e["expense_date"],
                category_name=cat["name"] if cat else None,
                category_color=cat["color"] if cat else None,
            ))

    entries.sort(key=lambda x: x.date, reverse=True)
    return ExpenseList(
        month=month,
        total=round(sum(x.amount for x in entries), 2),
        expenses=entries,
    )


@router.post("", response_model=ManualExpense, status_code=201)
async def create_expense(
    body: ManualExpenseCreate,
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
):
    _check_payload(body, ctx)
    cur = await db.execute(
        """INSERT INTO manual_expenses
           (household_id, user_id, category_id, amount, description, expense_date)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (ctx.household_id, ctx.user_id, body.category_id, body.amount,
         body.description.strip(), body.expense_date),
    )
    await db.commit()
    return _to_model(await _load_expense(db, ctx, cur.lastrowid))


@router.get("/{expense_id}", response_model=ManualExpense)
async def get_expense(
    expense_id: int,
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
):
    return _to_model(await _load_expense(db, ctx, expense_id))


@router.put("/{expense_id}", response_model=ManualExpense)
async def update_expense(
    expense_id: int,
    body: ManualExpenseCreate,
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
):
    await _load_expense(db, ctx, expense_id)
    _check_payload(body, ctx)
    await db.execute(
        """UPDATE manual_expenses
           SET amount = ?, description = ?, expense_date = ?, category_id = ?
           WHERE id = ?""",
        (body.amount, body.description.strip(), body.expense_date, body.category_id, expense_id),
    )
    await db.commit()
    return _to_model(await _load_expense(db, ctx, expense_id))


@router.delete("/{expense_id}")
async def delete_expense(
    expense_id: int,
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
):
    await _load_expense(db, ctx, expense_id)
    await db.execute("DELETE FROM manual_expenses WHERE id = ?", (expense_id,))
    await db.commit()
    return {"status": "deleted"}
