"""
Image store — receipt photos on the local filesystem.

Keys look like ``<household_id>/<epoch_millis>_<filename>`` so uploads from the
same household never collide and a household's images stay together.
"""
import logging
import os
import re
import time
from pathlib import Path

from services.errors import NotFoundError, TransportError

logger = logging.getLogger("hearthbook.storage")

_UNSAFE_CHARS_RE = re.compile(r'[^A-Za-z0-9._-]+')


def safe_filename(name: str | None, default: str = "receipt.jpg") -> str:
    """Reduce a client-supplied filename to a single safe path segment."""
    base = os.path.basename(name or "").strip()
    base = _UNSAFE_CHARS_RE.sub('_', base).strip('._')
    return base or default


def build_image_key(household_id: int, filename: str, now_ms: int | None = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{household_id}/{now_ms}_{safe_filename(filename)}"


class ImageStore:
    def __init__(self, root: str):
        self.root = Path(root)

    def _resolve(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise NotFoundError(f"Image key outside store: {key!r}")
        return path

    def save(self, household_id: int, filename: str, data: bytes) -> str:
        """Write image bytes and return the storage key."""
        key = build_image_key(household_id, filename)
        path = self._resolve(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise TransportError(f"Could not write image {key}: {e}") from e
        logger.debug("Stored %s (%d KB)", key, len(data) // 1024)
        return key

    def load(self, key: str) -> bytes:
        path = self._resolve(key)
        if not path.is_file():
            raise NotFoundError(f"Image not found: {key}")
        try:
            return path.read_bytes()
        except OSError as e:
            raise TransportError(f"Could not read image {key}: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            path = self._resolve(key)
        except NotFoundError:
            return False
        if path.is_file():
            path.unlink()
            return True
        return False

    def path_for(self, key: str) -> Path:
        path = self._resolve(key)
        if not path.is_file():
            raise NotFoundError(f"Image not found: {key}")
        return path


def get_image_store() -> ImageStore:
    """Dependency: the store rooted at IMAGE_DIR (read per call so tests can redirect it)."""
    return ImageStore(os.environ.get("IMAGE_DIR", "/data/images"))
