# --- imports (top of bloodwork/app.py) ---
import os
import json
import logging
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Resolve paths early so env vars are available before importing the app modules
BASE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR / ".env"

load_dotenv(ENV_PATH)

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from bloodwork import __version__
from bloodwork.middleware.tracing import TracingMiddleware
from bloodwork.models import init_db
from bloodwork.routes import report_routes
from bloodwork.schemas.extraction import ExtractionResponse, TextExtractionRequest
from bloodwork.services.ai_lab_extract import extract_report_text
from bloodwork.services.ocr import UnsupportedFileType, extract_text_from_bytes
from bloodwork.utils.exceptions import (
    error_body,
    handle_http_exception,
    handle_unhandled_exception,
    handle_validation_exception,
)

MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "12"))
CORS_ORIGINS = [o.strip() for o in (os.getenv("CORS_ORIGINS") or "*").split(",") if o.strip()]
EXTRACT_REPORT_LIMIT = "10/minute"
EXTRACT_TEXT_LIMIT = "30/minute"

app = FastAPI(title="Bloodwork Extraction API", version=__version__)


# --- logging setup ---
class JsonFormatter(logging.Formatter):
    def format(self, record):  # type: ignore[override]
        payload = {
            "timestamp": datetime.utcnow().isoformat(timespec="seconds") + "Z",
            "level": record.levelname,
            "function": record.funcName,
            "message": record.getMessage(),
        }
        return json.dumps(payload, ensure_ascii=False)


def configure_logging() -> logging.Logger:
    logger = logging.getLogger("bloodwork")
    logger.setLevel(logging.INFO)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    return logger


logger = configure_logging()

# ---- Rate limiting (slowapi) ----
limiter = Limiter(key_func=get_remote_address, default_limits=[])
app.state.limiter = limiter

app.add_middleware(SlowAPIMiddleware)
app.add_middleware(TracingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    limit = getattr(exc, "limit", None)
    retry_after = limit.limit.get_expiry() if limit is not None else 60
    logger.info({
        "function": "rate_limit",
        "path": str(request.url.path),
        "client": get_remote_address(request),
    })
    return JSONResponse(
        status_code=429,
        headers={"Retry-After": str(retry_after)},
        content=error_body(429, "Too many requests. Please wait a bit and try again."),
    )


app.add_exception_handler(StarletteHTTPException, handle_http_exception)
app.add_exception_handler(RequestValidationError, handle_validation_exception)
app.add_exception_handler(Exception, handle_unhandled_exception)


@app.on_event("startup")
def _init_db():
    init_db()


app.include_router(report_routes.router)


@app.get("/health")
def health():
    return {"status": "ok", "version": __version__}


@app.post("/api/extract-report", response_model=ExtractionResponse, response_model_exclude_none=True)
@limiter.limit(EXTRACT_REPORT_LIMIT)
async def extract_report(request: Request, file: UploadFile = File(...)):
    # Read into memory; never write to disk
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    size_mb = len(data) / (1024 * 1024)
    if size_mb > MAX_UPLOAD_MB:
        raise HTTPException(status_code=413, detail=f"File size exceeds the {MAX_UPLOAD_MB}MB limit")

    name = os.path.basename(file.filename or "file")
    try:
        text, file_type = extract_text_from_bytes(data, name, file.content_type or "")
    except UnsupportedFileType as e:
        raise HTTPException(status_code=415, detail=str(e)) from e
    except Exception as e:
        logger.warning({"function": "extract_report", "stage": "to_text", "error": str(e)[:200]})
        raise HTTPException(status_code=400, detail=f"Could not read text from file: {e}") from e

    result, source = await extract_report_text(text)
    logger.info({
        "function": "extract_report",
        "file_type": file_type,
        "source": source,
        "rows": len(result.all_biomarkers),
    })
    return ExtractionResponse(
        all_biomarkers=result.all_biomarkers,
        warnings=result.warnings,
        source=source,
        file_name=name,
        file_type=file_type,
    )


@app.post("/api/extract-text", response_model=ExtractionResponse, response_model_exclude_none=True)
@limiter.limit(EXTRACT_TEXT_LIMIT)
async def extract_text(request: Request, payload: TextExtractionRequest):
    result, source = await extract_report_text(payload.text, use_ai=payload.use_ai)
    return ExtractionResponse(all_biomarkers=result.all_biomarkers, warnings=result.warnings, source=source)
