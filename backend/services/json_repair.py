"""
JSON Repair — recovers receipt extractions cut off mid-``items`` array.

Vision output sometimes stops at the token limit halfway through an item.
Rather than discard the whole extraction we drop the partial item and close
the array and root object.  This is one best-effort pass: truncation before
the first fully-closed item (or inside ``store_name``) stays a hard failure.
"""
import json
import logging
import re

from services.errors import ParseError

logger = logging.getLogger("hearthbook.repair")

# Last fully-closed object followed by the start of another one.
ITEM_BOUNDARY = "},"
CLOSING = "]}"

_FENCE_OPEN_RE = re.compile(r'^```[a-zA-Z]*\s*\n?')
_FENCE_CLOSE_RE = re.compile(r'\n?\s*```$')


def strip_code_fence(text: str) -> str:
    """Remove a leading ```json / trailing ``` wrapper if present."""
    text = text.strip()
    text = _FENCE_OPEN_RE.sub('', text)
    text = _FENCE_CLOSE_RE.sub('', text)
    return text.strip()


def _load_object(text: str) -> dict:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}", text)
    return data


def parse_model_json(text: str) -> tuple[dict, bool]:
    """
    Parse model output into a dict.

    Returns (data, repaired).  ``repaired`` is True when the truncation repair
    had to be applied, which the caller surfaces as ``_truncated``.
    Raises ParseError when neither the direct parse nor the repair succeeds.
    """
    cleaned = strip_code_fence(text or "")

    try:
        return _load_object(cleaned), False
    except json.JSONDecodeError as e:
        first_error = e

    cut = cleaned.rfind(ITEM_BOUNDARY)
    if cut == -1:
        raise ParseError(
            f"Unparseable model output and no closed item to recover from: {first_error}",
            text,
        )

    candidate = cleaned[:cut + 1] + CLOSING
    try:
        data = _load_object(candidate)
    except json.JSONDecodeError as e:
        raise ParseError(f"Repair failed: {e}", text) from e

    logger.info("Repaired truncated model output (%d → %d chars)", len(cleaned), len(candidate))
    return data, True
