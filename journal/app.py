from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from time import perf_counter
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from journal.app_settings import AppSettings, load_settings, save_settings
from journal.db import get_database
from journal.errors import NotFoundError, StoreError, ValidationError
from journal.observability import METRICS, render_prometheus_metrics
from journal.retention import run_retention_sweep
from journal.runtime_config import max_audio_upload_bytes, validate_runtime_environment
from journal.storage import (
    blob_exists,
    blob_path,
    delete_blob,
    ensure_uploads_dir,
    save_audio,
)


LOGGER = logging.getLogger("journal.api")

UPLOADS_URL_PREFIX = "/uploads"


def _startup_sweep(db) -> None:
    try:
        summary = run_retention_sweep(db)
    except StoreError:
        LOGGER.exception("retention.failed")
        return
    METRICS.record_sweep(summary)
    LOGGER.info(
        "retention.complete",
        extra={"cutoff_ms": summary["cutoffMs"], "deleted_rows": summary["audiosDeleted"]},
    )


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    validate_runtime_environment("api")
    ensure_uploads_dir()
    db = get_database()
    applied = db.migrate()
    LOGGER.info("database.ready", extra={"migrations": applied})
    _startup_sweep(db)
    yield


app = FastAPI(title="Family Audio Journal API", lifespan=app_lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid4())
    request.state.request_id = request_id

    started_at = perf_counter()
    response = await call_next(request)
    duration_ms = (perf_counter() - started_at) * 1000

    response.headers["x-request-id"] = request_id
    LOGGER.info(
        "request.complete",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
        },
    )
    return response


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "Audio not found."})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    LOGGER.error(
        "store.error",
        exc_info=exc,
        extra={
            "request_id": _request_id(request),
            "method": request.method,
            "path": request.url.path,
            "error": str(exc),
        },
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error."})


class SettingsRequest(BaseModel):
    globalBookTitle: Optional[str] = None
    members: list[str] = Field(default_factory=list)
    lastLoginMode: Optional[str] = None


class DailyReadingRequest(BaseModel):
    date: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")
    bookTitle: Optional[str] = None
    startDate: Optional[str] = None
    endDate: Optional[str] = None


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _public_path(blob_name: str) -> str:
    return f"{UPLOADS_URL_PREFIX}/{blob_name}"


def _audio_payload(row: dict) -> dict:
    return {
        "id": row["id"],
        "member": row["member"],
        "day": row["day"],
        "month": row["month"],
        "year": row["year"],
        "filePath": _public_path(row["file_path"]),
        "timestamp": row["timestamp_ms"],
        "duration": row.get("duration"),
        "count": row.get("count", 1),
    }


def _date_key(year: int, month: int, day: int) -> str:
    return f"{year}-{month:02d}-{day:02d}"


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "time": _iso_now()}


@app.get("/health/ready")
def readiness() -> JSONResponse:
    checks: dict[str, dict[str, str]] = {}
    overall_status = "ok"

    try:
        get_database().healthcheck()
        checks["database"] = {"status": "ok"}
    except (RuntimeError, StoreError) as exc:
        overall_status = "degraded"
        checks["database"] = {"status": "error", "reason": str(exc)}

    try:
        uploads_dir = ensure_uploads_dir()
        probe = uploads_dir / ".ready"
        probe.write_text(_iso_now(), encoding="utf-8")
        probe.unlink(missing_ok=True)
        checks["storage"] = {"status": "ok"}
    except (OSError, RuntimeError) as exc:
        overall_status = "degraded"
        checks["storage"] = {"status": "error", "reason": str(exc)}

    status_code = 200 if overall_status == "ok" else 503
    return JSONResponse(
        status_code=status_code,
        content={
            "status": overall_status,
            "time": _iso_now(),
            "checks": checks,
        },
    )


@app.get("/ops/metrics")
def ops_metrics() -> dict:
    return METRICS.snapshot()


@app.get("/ops/metrics/prometheus")
def ops_metrics_prometheus() -> PlainTextResponse:
    return PlainTextResponse(
        render_prometheus_metrics(METRICS.snapshot()),
        media_type="text/plain; version=0.0.4",
    )


@app.post("/upload-audio")
def upload_audio(
    member: Optional[str] = Form(None),
    day: Optional[int] = Form(None),
    month: Optional[int] = Form(None),
    year: Optional[int] = Form(None),
    duration: Optional[float] = Form(None),
    audio: Optional[UploadFile] = File(None),
) -> dict:
    if audio is None or not audio.filename:
        raise ValidationError("No audio file was uploaded.")
    fields = {"member": member, "day": day, "month": month, "year": year}
    missing = [name for name, value in fields.items() if value is None or value == ""]
    if missing:
        raise ValidationError(f"Missing form fields: {', '.join(missing)}.")

    try:
        blob_name = save_audio(audio.file, audio.filename, max_bytes=max_audio_upload_bytes())
    except ValueError as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc

    db = get_database()
    try:
        audio_id = db.insert_audio(
            {
                "member": member,
                "day": day,
                "month": month,
                "year": year,
                "file_path": blob_name,
                "duration": duration,
            }
        )
    except StoreError:
        # Keep every blob owned by exactly one row.
        delete_blob(blob_name)
        raise

    METRICS.increment_audio_event("uploaded")
    LOGGER.info("audio.uploaded", extra={"audio_id": audio_id, "blob_name": blob_name})
    return {
        "message": "Audio uploaded and saved.",
        "audioId": audio_id,
        "filePath": _public_path(blob_name),
    }


@app.get("/api/audios/{year}/{month}/{day}")
def list_audios(year: int, month: int, day: int) -> list[dict]:
    rows = get_database().fetch_audios_by_date(year, month, day)
    return [_audio_payload(row) for row in rows]


@app.delete("/api/audios/{audio_id}")
def delete_audio(audio_id: str) -> dict:
    blob_name = get_database().delete_audio(audio_id)
    outcome = delete_blob(blob_name)
    METRICS.increment_blob_cleanup("api", outcome.value)
    METRICS.increment_audio_event("deleted")
    LOGGER.info(
        "audio.deleted",
        extra={"audio_id": audio_id, "blob_name": blob_name, "outcome": outcome.value},
    )
    return {"message": "Audio deleted."}


@app.post("/api/audios/increment-count/{audio_id}")
def increment_audio_count(audio_id: str) -> dict:
    get_database().increment_audio_count(audio_id)
    METRICS.increment_audio_event("played")
    return {"message": "Audio play count updated."}


@app.get("/api/settings")
def get_settings() -> dict:
    return load_settings(get_database()).to_payload()


@app.post("/api/settings")
def post_settings(payload: SettingsRequest) -> dict:
    save_settings(
        get_database(),
        AppSettings(
            global_book_title=payload.globalBookTitle,
            members=list(payload.members),
            last_login_mode=payload.lastLoginMode,
        ),
    )
    return {"message": "Settings saved."}


@app.post("/api/daily-reading")
def post_daily_reading(payload: DailyReadingRequest) -> dict:
    get_database().upsert_daily_reading(
        payload.date,
        {
            "book_title": payload.bookTitle,
            "start_date": payload.startDate,
            "end_date": payload.endDate,
        },
    )
    return {"message": "Daily reading saved."}


@app.get("/api/daily-reading/{year}/{month}/{day}")
def get_daily_reading(year: int, month: int, day: int) -> dict:
    row = get_database().fetch_daily_reading(_date_key(year, month, day))
    if not row:
        return {"bookTitle": "", "startDate": "", "endDate": ""}
    return {
        "bookTitle": row.get("book_title"),
        "startDate": row.get("start_date"),
        "endDate": row.get("end_date"),
    }


@app.get(UPLOADS_URL_PREFIX + "/{blob_name}")
def serve_upload(blob_name: str) -> FileResponse:
    if not blob_exists(blob_name):
        raise HTTPException(status_code=404, detail="File not found.")
    return FileResponse(str(blob_path(blob_name)))
