"""
OCR Worker — one extraction attempt for one receipt.

    pending ─► processing ─► done
                         └─► error   (image missing, API failure, unparseable output)

Every handled failure ends in a persisted terminal status plus a log line;
nothing is raised back to the uploader, who sees the outcome by polling the
receipt.  The only exception that escapes is NotFoundError for a receipt id
that does not exist (there is no row to mark).  There are no automatic
retries; reprocessing is an explicit user action.
"""
import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

import aiosqlite

from db.database import open_db
from services.category_service import get_categories
from services.errors import NotFoundError, OcrError, ParseError, TransportError
from services.json_repair import parse_model_json
from services.ocr_service import (
    build_prompt, detect_media_type, encode_image_b64, extract_receipt, make_client,
)
from services.storage_service import ImageStore, get_image_store

logger = logging.getLogger("hearthbook.worker")

UNKNOWN_ITEM_NAME = "unknown"


@dataclass
class OcrOutcome:
    receipt_id: int
    ocr_status: str
    truncated: bool = False
    item_count: int = 0
    error: Optional[OcrError] = None


# ── Field coercion ────────────────────────────────────────────────────────────

def _number(value) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").strip())
        except ValueError:
            return None
    return None


def _text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _iso_date(value, fallback: date) -> str:
    """YYYY-MM-DD, or the fallback when the model's date isn't ISO."""
    text = _text(value)
    if text:
        try:
            return date.fromisoformat(text[:10]).isoformat()
        except ValueError:
            pass
    return fallback.isoformat()


def receipt_fields(data: dict, today: Optional[date] = None) -> dict:
    """
    Top-level receipt columns; empty or missing values become NULL, except
    purchased_at, which falls back to today like the prompt asks the model to.
    """
    return {
        "store_name": _text(data.get("store_name")),
        "total_amount": _number(data.get("total_amount")) or None,
        "purchased_at": _iso_date(data.get("purchased_at"), today or date.today()),
    }


def _category_id(value, valid_ids: set[int]) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        cid = int(str(value).strip())
    except ValueError:
        return None
    return cid if cid in valid_ids else None


def item_rows(receipt_id: int, items, valid_category_ids: set[int]) -> list[tuple]:
    """
    Turn parsed items into insert rows, filling gaps with defaults:
    name → "unknown", quantity → 1, unit_price → 0, category → NULL.
    Category ids the household doesn't have are dropped to NULL.
    """
    if not isinstance(items, list):
        return []
    rows = []
    for item in items:
        if not isinstance(item, dict):
            continue
        quantity = _number(item.get("quantity"))
        if not quantity or quantity <= 0:
            quantity = 1.0
        unit_price = _number(item.get("unit_price"))
        if unit_price is None or unit_price < 0:
            unit_price = 0.0
        rows.append((
            receipt_id,
            _text(item.get("name")) or UNKNOWN_ITEM_NAME,
            quantity,
            unit_price,
            _category_id(item.get("category_id"), valid_category_ids),
        ))
    return rows


# ── Status writes ─────────────────────────────────────────────────────────────

async def _set_status(db: aiosqlite.Connection, receipt_id: int, status: str, ocr_raw: Optional[dict] = None):
    if ocr_raw is None:
        await db.execute(
            "UPDATE receipts SET ocr_status = ? WHERE id = ?", (status, receipt_id)
        )
    else:
        await db.execute(
            "UPDATE receipts SET ocr_status = ?, ocr_raw = ? WHERE id = ?",
            (status, json.dumps(ocr_raw, ensure_ascii=False), receipt_id),
        )
    await db.commit()


async def _fail(db, receipt_id: int, error: OcrError, ocr_raw: Optional[dict] = None) -> OcrOutcome:
    await _set_status(db, receipt_id, "error", ocr_raw)
    logger.warning("Receipt %s → error (%s): %s", receipt_id, type(error).__name__, error)
    return OcrOutcome(receipt_id=receipt_id, ocr_status="error", error=error)


async def _persist_extraction(db, receipt_id: int, data: dict, rows: list[tuple], today: Optional[date]):
    """Write fields and replace the item list in one transaction."""
    fields = receipt_fields(data, today)
    await db.execute(
        """UPDATE receipts
           SET store_name = ?, total_amount = ?, purchased_at = ?,
               ocr_raw = ?, ocr_status = 'done'
           WHERE id = ?""",
        (fields["store_name"], fields["total_amount"], fields["purchased_at"],
         json.dumps(data, ensure_ascii=False), receipt_id),
    )
    await db.execute("DELETE FROM receipt_items WHERE receipt_id = ?", (receipt_id,))
    if rows:
        await db.executemany(
            """INSERT INTO receipt_items (receipt_id, name, quantity, unit_price, category_id)
               VALUES (?, ?, ?, ?, ?)""",
            rows,
        )
    await db.commit()


# ── Entry points ──────────────────────────────────────────────────────────────

async def process_receipt(
    db: aiosqlite.Connection,
    receipt_id: int,
    store: ImageStore,
    client=None,
    today: Optional[date] = None,
) -> OcrOutcome:
    """
    Run one extraction attempt.  ``client`` is an AsyncAnthropic-compatible
    object; one is built from ANTHROPIC_API_KEY when omitted.
    Raises NotFoundError only when the receipt row itself is missing.
    """
    async with db.execute(
        "SELECT id, household_id, image_path FROM receipts WHERE id = ?", (receipt_id,)
    ) as cur:
        receipt = await cur.fetchone()
    if not receipt:
        raise NotFoundError(f"Receipt {receipt_id} not found")

    await _set_status(db, receipt_id, "processing")
    logger.info("Receipt %s → processing", receipt_id)

    try:
        return await _extract(db, receipt, store, client, today)
    except OcrError as e:
        return await _fail(db, receipt_id, e)
    except Exception as e:
        # Unexpected bug: still leave a terminal status for pollers
        logger.exception("Unexpected failure while processing receipt %s", receipt_id)
        await db.rollback()
        await _set_status(db, receipt_id, "error")
        return OcrOutcome(receipt_id=receipt_id, ocr_status="error", error=OcrError(str(e)))


async def _extract(db, receipt, store: ImageStore, client, today) -> OcrOutcome:
    receipt_id = receipt["id"]

    image_bytes = store.load(receipt["image_path"])
    image_b64 = encode_image_b64(image_bytes)
    media_type = detect_media_type(image_bytes)

    categories = await get_categories(db, receipt["household_id"])
    prompt = build_prompt(categories, today)

    if client is None:
        client = make_client()
    response = await extract_receipt(client, image_b64, media_type, prompt)

    try:
        data, repaired = parse_model_json(response.text)
    except ParseError as e:
        return await _fail(db, receipt_id, e, ocr_raw={"_unparsed": response.text})

    truncated = response.truncated or repaired
    if truncated:
        data["_truncated"] = True

    rows = item_rows(receipt_id, data.get("items"), {c["id"] for c in categories})
    await _persist_extraction(db, receipt_id, data, rows, today)

    logger.info("Receipt %s → done (%d items%s)", receipt_id, len(rows),
                ", truncated" if truncated else "")
    return OcrOutcome(receipt_id=receipt_id, ocr_status="done",
                      truncated=truncated, item_count=len(rows))


async def run_ocr_job(receipt_id: int, db_path: Optional[str] = None):
    """
    Background-task entry point: owns its connection and never raises.
    Scheduled fire-and-forget after upload or reprocess.
    """
    try:
        async with open_db(db_path) as db:
            await process_receipt(db, receipt_id, get_image_store())
    except NotFoundError as e:
        logger.warning("OCR job skipped: %s", e)
    except (TransportError, aiosqlite.Error) as e:
        logger.error("OCR job for receipt %s could not run: %s", receipt_id, e)
