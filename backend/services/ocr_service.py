"""
OCR Service — asks a vision-capable Claude model to read a receipt photo and
return structured JSON (store, date, total, line items with category ids).

This module only talks to the model: building the instruction, encoding the
image, and turning the response into text plus a truncation flag.  Parsing
and persistence live in ocr_worker.
"""
import base64
import logging
import os
from dataclasses import dataclass
from datetime import date
from typing import Optional

import anthropic

from services.errors import TransportError

logger = logging.getLogger("hearthbook.ocr")

OCR_MODEL = os.environ.get("OCR_MODEL", "claude-haiku-4-5")
OCR_MAX_TOKENS = int(os.environ.get("OCR_MAX_TOKENS", "2048"))

# Must be a multiple of 3 so per-chunk base64 output concatenates cleanly.
BASE64_CHUNK_BYTES = 3 * 32 * 1024


@dataclass
class VisionResponse:
    text: str
    truncated: bool
    stop_reason: Optional[str] = None


def detect_media_type(image_bytes: bytes) -> str:
    """Sniff the MIME type from magic bytes; unknown formats are sent as JPEG."""
    if image_bytes[:8] == b'\x89PNG\r\n\x1a\n':
        return "image/png"
    if image_bytes[:3] == b'\xff\xd8\xff':
        return "image/jpeg"
    if image_bytes[:6] in (b'GIF87a', b'GIF89a'):
        return "image/gif"
    if image_bytes[:4] == b'RIFF' and image_bytes[8:12] == b'WEBP':
        return "image/webp"
    return "image/jpeg"


def encode_image_b64(image_bytes: bytes, chunk_size: int = BASE64_CHUNK_BYTES) -> str:
    """
    Base64-encode in fixed-size chunks instead of one huge conversion.
    chunk_size must be a multiple of 3 so no chunk carries padding.
    """
    if chunk_size <= 0 or chunk_size % 3:
        raise ValueError("chunk_size must be a positive multiple of 3")
    parts = []
    for start in range(0, len(image_bytes), chunk_size):
        parts.append(base64.standard_b64encode(image_bytes[start:start + chunk_size]).decode("ascii"))
    return "".join(parts)


def build_prompt(categories: list[dict], today: Optional[date] = None) -> str:
    """Instruction text: output schema, amount/date rules, and the closed category list."""
    today = today or date.today()
    category_list = "\n".join(f"{c['id']}: {c['name']}" for c in categories) or "(none)"
    return f"""Read this receipt image and return its contents as JSON in exactly this format.

Available categories (id: name):
{category_list}

JSON format:
{{
  "store_name": "store name",
  "purchased_at": "YYYY-MM-DD",
  "total_amount": number,
  "items": [
    {{
      "name": "item name",
      "quantity": number,
      "unit_price": number,
      "category_id": category id from the list above
    }}
  ]
}}

Rules:
- All amounts are tax-inclusive numbers.
- If the date cannot be read, use today's date ({today.isoformat()}).
- category_id must be one of the ids listed above; choose the most appropriate one.
- Return JSON only. No explanation, no markdown."""


def make_client(api_key: Optional[str] = None) -> anthropic.AsyncAnthropic:
    key = api_key if api_key is not None else os.environ.get("ANTHROPIC_API_KEY", "")
    if not key:
        raise TransportError("ANTHROPIC_API_KEY not set")
    return anthropic.AsyncAnthropic(api_key=key)


def response_text(message) -> str:
    """Concatenate the text blocks of a Messages API response."""
    parts = [
        block.text for block in (message.content or [])
        if getattr(block, "type", "text") == "text" and getattr(block, "text", None)
    ]
    return "".join(parts).strip()


async def extract_receipt(
    client,
    image_b64: str,
    media_type: str,
    prompt: str,
    model: str = OCR_MODEL,
    max_tokens: int = OCR_MAX_TOKENS,
) -> VisionResponse:
    """
    Send one image + instruction to the model.
    Raises TransportError for any API/network failure.
    """
    logger.info("Sending %d KB b64 (%s) to %s", len(image_b64) // 1024, media_type, model)
    try:
        message = await client.messages.create(
            model=model,
            max_tokens=max_tokens,
            messages=[{
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": media_type,
                            "data": image_b64,
                        },
                    },
                    {"type": "text", "text": prompt},
                ],
            }],
        )
    except anthropic.APIError as e:
        logger.error("Vision API error: %s", e)
        raise TransportError(str(e)) from e

    stop_reason = getattr(message, "stop_reason", None)
    return VisionResponse(
        text=response_text(message),
        truncated=stop_reason == "max_tokens",
        stop_reason=stop_reason,
    )
