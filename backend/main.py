import logging
import os
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from db.database import DB_PATH, init_db
from routers import categories, expenses, households, ocr, receipts, reports
from services.ocr_service import OCR_MAX_TOKENS, OCR_MODEL

VERSION = "0.1.0"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "anthropic")


def configure_logging(level: str = LOG_LEVEL):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if level != "DEBUG":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger("hearthbook")
http_logger = logging.getLogger("hearthbook.http")

app = FastAPI(
    title="Hearthbook",
    description="Household spending from photographed receipts and manual expenses",
    version=VERSION,
)

# Explicit origins get credentials; the wildcard fallback never does
_origins = [o.strip() for o in os.environ.get("CORS_ORIGINS", "").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins or ["*"],
    allow_credentials=bool(_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

for module, prefix in (
    (households, "households"),
    (receipts, "receipts"),
    (ocr, "ocr"),
    (categories, "categories"),
    (expenses, "expenses"),
    (reports, "reports"),
):
    app.include_router(module.router, prefix=f"/api/{prefix}", tags=[prefix])


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    if response.status_code >= 400:
        http_logger.warning("%s %s → %s (%.0fms)",
                            request.method, request.url.path, response.status_code, elapsed_ms)
    else:
        http_logger.debug("%s %s → %s (%.0fms)",
                          request.method, request.url.path, response.status_code, elapsed_ms)
    return response


@app.on_event("startup")
async def on_startup():
    logger.info("Hearthbook v%s starting (log=%s, db=%s, model=%s)",
                VERSION, LOG_LEVEL, DB_PATH, OCR_MODEL)
    await init_db()


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": VERSION}


def _writable_dir(path: str) -> dict:
    return {"ok": os.path.isdir(path) and os.access(path, os.W_OK), "path": path}


@app.get("/api/diagnose")
async def diagnose():
    """Report whether image decoding, storage and the vision model are usable."""
    checks = {}

    try:
        import PIL
        checks["pillow"] = {"ok": True, "version": PIL.__version__}
    except ImportError as e:
        checks["pillow"] = {"ok": False, "error": str(e)}

    try:
        import pillow_heif
        checks["heic_support"] = {"ok": True, "version": pillow_heif.__version__}
    except ImportError as e:
        checks["heic_support"] = {"ok": False, "error": f"HEIC uploads will be rejected: {e}"}

    checks["image_dir"] = _writable_dir(os.environ.get("IMAGE_DIR", "/data/images"))
    checks["db_dir"] = _writable_dir(os.path.dirname(DB_PATH) or ".")

    # Never echo key material
    key = os.environ.get("ANTHROPIC_API_KEY", "")
    checks["anthropic_key"] = {"ok": key.startswith("sk-"), "set": bool(key)}
    checks["ocr_model"] = {"ok": bool(OCR_MODEL), "model": OCR_MODEL, "max_tokens": OCR_MAX_TOKENS}

    return {"all_ok": all(c["ok"] for c in checks.values()), "checks": checks}
