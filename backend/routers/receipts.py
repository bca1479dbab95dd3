"""
Receipts Router

POST   /api/receipts/upload          — compress + store image, create pending receipt, start OCR
GET    /api/receipts                 — list the household's receipts (summary)
GET    /api/receipts/{id}            — receipt with items + reconciliation (polled while processing)
PUT    /api/receipts/{id}            — manual save: fields + full item list, forces status 'done'
POST   /api/receipts/{id}/reprocess  — clear items and run OCR again
GET    /api/receipts/{id}/image      — serve the stored image
DELETE /api/receipts/{id}            — remove a receipt, its items and its image
"""
import json
import logging
from datetime import date
from typing import Callable, Optional

import aiosqlite
from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse

from db.database import get_db
from models.schemas import Receipt, ReceiptItem, ReceiptSave, ReceiptSummary, UploadResult
from services.errors import NotFoundError, TransportError
from services.household_service import HouseholdContext, get_household_context
from services.image_service import ImageDecodeError, compress_image, jpeg_filename
from services.ocr_worker import run_ocr_job
from services.reconcile_service import reconcile, resolve_filter
from services.storage_service import ImageStore, get_image_store

logger = logging.getLogger("hearthbook.receipts")
router = APIRouter()


def get_ocr_trigger(background_tasks: BackgroundTasks) -> Callable[[int], None]:
    """Dependency: fire-and-forget OCR dispatch, run after the response is sent."""
    def trigger(receipt_id: int):
        background_tasks.add_task(run_ocr_job, receipt_id)
    return trigger


def _dispatch(trigger: Callable[[int], None], receipt_id: int) -> bool:
    # A failed dispatch leaves the receipt pending; it can be reprocessed later
    try:
        trigger(receipt_id)
        return True
    except Exception:
        logger.warning("Could not dispatch OCR for receipt %s", receipt_id, exc_info=True)
        return False


def decode_ocr_raw(value: Optional[str]) -> Optional[dict]:
    if not value:
        return None
    try:
        data = json.loads(value)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


async def _load_receipt(db: aiosqlite.Connection, ctx: HouseholdContext, receipt_id: int):
    async with db.execute(
        "SELECT * FROM receipts WHERE id = ? AND household_id = ?",
        (receipt_id, ctx.household_id),
    ) as cur:
        row = await cur.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return row


async def _load_items(db: aiosqlite.Connection, receipt_id: int) -> list[dict]:
    async with db.execute(
        """SELECT id, receipt_id, name, quantity, unit_price, category_id
           FROM receipt_items WHERE receipt_id = ? ORDER BY id""",
        (receipt_id,),
    ) as cur:
        rows = await cur.fetchall()
    return [dict(r) for r in rows]


# ── Upload ────────────────────────────────────────────────────────────────────

@router.post("/upload", response_model=UploadResult)
async def upload_receipt(
    file: UploadFile = File(...),
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
    store: ImageStore = Depends(get_image_store),
    trigger: Callable[[int], None] = Depends(get_ocr_trigger),
):
    """
    Compress and store the photo, create a 'pending' receipt and hand it to
    the OCR worker.  Returns immediately; the client polls GET /{id}.
    """
    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=422, detail="Empty upload")

    try:
        compressed, _ = compress_image(contents)
    except ImageDecodeError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        image_path = store.save(ctx.household_id, jpeg_filename(file.filename), compressed)
    except TransportError as e:
        logger.error("Image upload failed: %s", e)
        raise HTTPException(status_code=500, detail="Could not store image")

    cursor = await db.execute(
        """INSERT INTO receipts (household_id, user_id, image_path, ocr_status)
           VALUES (?, ?, ?, 'pending')""",
        (ctx.household_id, ctx.user_id, image_path),
    )
    receipt_id = cursor.lastrowid
    await db.commit()
    logger.info("Receipt %s created (%s, %d KB)", receipt_id, image_path, len(compressed) // 1024)

    dispatched = _dispatch(trigger, receipt_id)
    return UploadResult(
        receipt_id=receipt_id,
        image_path=image_path,
        ocr_status="pending",
        ocr_dispatched=dispatched,
    )


# ── List ──────────────────────────────────────────────────────────────────────

@router.get("", response_model=list[ReceiptSummary])
async def list_receipts(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
):
    async with db.execute(
        """
        SELECT r.id, r.store_name, r.total_amount, r.purchased_at,
               r.ocr_status, r.created_at,
               COUNT(ri.id) AS item_count
        FROM receipts r
        LEFT JOIN receipt_items ri ON ri.receipt_id = r.id
        WHERE r.household_id = ?
        GROUP BY r.id
        ORDER BY r.created_at DESC, r.id DESC
        LIMIT ? OFFSET ?
        """,
        (ctx.household_id, limit, offset),
    ) as cur:
        rows = await cur.fetchall()

    return [
        ReceiptSummary(
            id=row["id"],
            store_name=row["store_name"],
            total_amount=row["total_amount"],
            purchased_at=row["purchased_at"],
            ocr_status=row["ocr_status"],
            created_at=row["created_at"] or "",
            item_count=row["item_count"],
        )
        for row in rows
    ]


# ── Get (with reconciliation) ─────────────────────────────────────────────────

@router.get("/{receipt_id}", response_model=Receipt)
async def get_receipt(
    receipt_id: int,
    category: Optional[str] = Query(default=None, description="active subtotal filter key"),
    select: Optional[str] = Query(default=None, description="subtotal group the user clicked"),
    clear: bool = Query(default=False, description="reset the subtotal filter"),
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
):
    row = await _load_receipt(db, ctx, receipt_id)
    items = await _load_items(db, receipt_id)

    receipt = dict(row)
    receipt["ocr_raw"] = decode_ocr_raw(row["ocr_raw"])
    active = resolve_filter(category, select, clear)

    return Receipt(
        id=row["id"],
        household_id=row["household_id"],
        user_id=row["user_id"],
        image_path=row["image_path"],
        store_name=row["store_name"],
        total_amount=row["total_amount"],
        purchased_at=row["purchased_at"],
        ocr_status=row["ocr_status"],
        ocr_raw=receipt["ocr_raw"],
        created_at=row["created_at"] or "",
        items=[ReceiptItem(**i) for i in items],
        reconciliation=reconcile(receipt, items, ctx.categories, active),
    )


# ── Manual save ───────────────────────────────────────────────────────────────

@router.put("/{receipt_id}")
async def save_receipt(
    receipt_id: int,
    body: ReceiptSave,
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
):
    """
    Replace the receipt's fields and its entire item list in one transaction.
    Always sets status 'done'.  There is no guard against an OCR run still in
    flight for the same receipt: whichever write commits last wins.
    """
    await _load_receipt(db, ctx, receipt_id)

    if body.purchased_at:
        try:
            date.fromisoformat(body.purchased_at)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Invalid purchased_at: {body.purchased_at!r}")

    valid_ids = ctx.category_ids
    for item in body.items:
        if item.category_id is not None and item.category_id not in valid_ids:
            raise HTTPException(status_code=422, detail=f"Unknown category: {item.category_id}")

    store_name = (body.store_name or "").strip() or None
    try:
        await db.execute(
            """UPDATE receipts
               SET store_name = ?, total_amount = ?, purchased_at = ?, ocr_status = 'done'
               WHERE id = ?""",
            (store_name, body.total_amount or None, body.purchased_at or None, receipt_id),
        )
        await db.execute("DELETE FROM receipt_items WHERE receipt_id = ?", (receipt_id,))
        if body.items:
            await db.executemany(
                """INSERT INTO receipt_items (receipt_id, name, quantity, unit_price, category_id)
                   VALUES (?, ?, ?, ?, ?)""",
                [
                    (receipt_id, item.name.strip() or "unknown", item.quantity,
                     item.unit_price, item.category_id)
                    for item in body.items
                ],
            )
        await db.commit()
    except aiosqlite.Error:
        await db.rollback()
        logger.exception("Save failed for receipt %s", receipt_id)
        raise HTTPException(status_code=409, detail="Could not save receipt, please retry")

    return {"status": "ok", "receipt_id": receipt_id, "item_count": len(body.items)}


# ── Reprocess ─────────────────────────────────────────────────────────────────

@router.post("/{receipt_id}/reprocess", response_model=UploadResult)
async def reprocess_receipt(
    receipt_id: int,
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
    trigger: Callable[[int], None] = Depends(get_ocr_trigger),
):
    """
    Clear the items so none show while the new OCR attempt is queued.
    ocr_raw is left as-is until the worker overwrites it.
    """
    row = await _load_receipt(db, ctx, receipt_id)
    await db.execute("DELETE FROM receipt_items WHERE receipt_id = ?", (receipt_id,))
    await db.execute(
        "UPDATE receipts SET ocr_status = 'pending' WHERE id = ?", (receipt_id,)
    )
    await db.commit()

    dispatched = _dispatch(trigger, receipt_id)
    return UploadResult(
        receipt_id=receipt_id,
        image_path=row["image_path"],
        ocr_status="pending",
        ocr_dispatched=dispatched,
    )


# ── Image ─────────────────────────────────────────────────────────────────────

@router.get("/{receipt_id}/image")
async def get_receipt_image(
    receipt_id: int,
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
    store: ImageStore = Depends(get_image_store),
):
    row = await _load_receipt(db, ctx, receipt_id)
    try:
        path = store.path_for(row["image_path"])
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Image file not found")
    return FileResponse(path, media_type="image/jpeg", headers={
        "Cache-Control": "private, max-age=3600",
    })


# ── Delete ────────────────────────────────────────────────────────────────────

@router.delete("/{receipt_id}")
async def delete_receipt(
    receipt_id: int,
    ctx: HouseholdContext = Depends(get_household_context),
    db: aiosqlite.Connection = Depends(get_db),
    store: ImageStore = Depends(get_image_store),
):
    row = await _load_receipt(db, ctx, receipt_id)

    try:
        store.delete(row["image_path"])
    except OSError as e:
        logger.warning("Could not remove image %s: %s", row["image_path"], e)

    await db.execute("DELETE FROM receipt_items WHERE receipt_id = ?", (receipt_id,))
    await db.execute("DELETE FROM receipts WHERE id = ?", (receipt_id,))
    await db.commit()
    return {"status": "deleted"}
