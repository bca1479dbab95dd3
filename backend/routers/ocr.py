"""
OCR Router

POST /api/ocr/process-receipt  — run one extraction attempt now for {receipt_id}

Uploads already schedule the worker in the background; this endpoint is the
synchronous trigger used for manual retries and by operators.  Whatever the
HTTP result, the receipt itself always ends in 'done' or 'error'.
"""
import logging

import aiosqlite
from fastapi import APIRouter, Depends, HTTPException

from db.database import get_db
from models.schemas import ProcessReceiptRequest, ProcessReceiptResult
from services.errors import NotFoundError, ParseError, TransportError
from services.ocr_worker import process_receipt
from services.storage_service import ImageStore, get_image_store

logger = logging.getLogger("hearthbook.ocr")
router = APIRouter()


def get_vision_client():
    """Dependency: None lets the worker build an AsyncAnthropic client from the env."""
    return None


ERROR_STATUS = {
    NotFoundError: 404,
    TransportError: 502,
    ParseError: 422,
}


@router.post("/process-receipt", response_model=ProcessReceiptResult)
async def process_receipt_endpoint(
    body: ProcessReceiptRequest,
    db: aiosqlite.Connection = Depends(get_db),
    store: ImageStore = Depends(get_image_store),
    client=Depends(get_vision_client),
):
    try:
        outcome = await process_receipt(db, body.receipt_id, store, client=client)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Receipt not found")

    if outcome.error is not None:
        status = ERROR_STATUS.get(type(outcome.error), 500)
        raise HTTPException(
            status_code=status,
            detail=f"OCR failed ({type(outcome.error).__name__}): {outcome.error}",
        )

    return ProcessReceiptResult(
        receipt_id=outcome.receipt_id,
        ocr_status=outcome.ocr_status,
        truncated=outcome.truncated,
        item_count=outcome.item_count,
    )
