"""Web API: book intake, library, job status and SSE progress."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import re
from typing import Any, AsyncIterator, Dict, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi import File, Form, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from core import Job, Stage, TERMINAL_STAGES
from orchestrator import IntakeAction, IntakeDecision
from utils.exceptions import (
    BooktureError,
    ConfigurationError,
    InputError,
    JobNotFoundError,
)
from webapp.runtime import PipelineRuntime, close_runtime, get_runtime


logger = logging.getLogger(__name__)

ALLOWED_SUFFIXES = {".pdf", ".txt", ".md"}
HEARTBEAT_S = 15.0


def _sse(event: str, data: Dict[str, Any]) -> str:
    payload = json.dumps(data, ensure_ascii=False, default=str)
    return f"event: {event}\ndata: {payload}\n\n"


def _job_payload(job: Job) -> Dict[str, Any]:
    payload = job.model_dump(mode="json")
    payload["has_generated_cover"] = job.has_generated_cover
    return payload


def _decision_payload(decision: IntakeDecision) -> Dict[str, Any]:
    return {
        "action": decision.action.value,
        "job_id": decision.job_id,
        "stage": decision.stage.value,
        "progress": decision.progress,
    }


def caller_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    value = str(x_user_id or "").strip()
    if not value:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return value


def _owned_job(runtime: PipelineRuntime, job_id: str, owner_id: str) -> Job:
    job = runtime.store.get_job(job_id)
    if job is None or job.owner_id != owner_id:
        raise HTTPException(status_code=404, detail="job not found")
    return job


async def _save_upload(book_file: UploadFile, upload_dir: Path) -> Path:
    filename = str(book_file.filename or "").strip()
    suffix = Path(filename).suffix.lower()
    if suffix not in ALLOWED_SUFFIXES:
        raise InputError(f"Unsupported file type: {suffix or 'none'}", {"allowed": sorted(ALLOWED_SUFFIXES)})

    upload_dir.mkdir(parents=True, exist_ok=True)
    run_stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    safe_name = re.sub(r"[^a-zA-Z0-9._-]+", "_", filename).strip("_") or f"book{suffix}"
    upload_path = upload_dir / f"{run_stamp}_{uuid4().hex[:8]}_{safe_name}"

    try:
        content = await book_file.read()
        if not content:
            raise InputError("Uploaded book is empty")
        await asyncio.to_thread(upload_path.write_bytes, content)
    finally:
        await book_file.close()
    return upload_path


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await close_runtime()


app = FastAPI(title="Bookture", version="1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BooktureError)
async def _domain_error(request: Request, exc: BooktureError) -> JSONResponse:
    if isinstance(exc, InputError):
        status = 400
    elif isinstance(exc, JobNotFoundError):
        status = 404
    elif isinstance(exc, ConfigurationError):
        status = 503
    else:
        logger.error("request_failed path=%s error=%s", request.url.path, exc)
        status = 500
    return JSONResponse(status_code=status, content={"detail": exc.message, "error": exc.__class__.__name__})


@app.get("/api/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/api/books/start-pipeline")
async def start_pipeline(
    title: str = Form(default=""),
    book_file: Optional[UploadFile] = File(default=None),
    owner_id: str = Depends(caller_id),
    runtime: PipelineRuntime = Depends(get_runtime),
) -> JSONResponse:
    upload_path: Optional[Path] = None
    if book_file is not None and book_file.filename:
        upload_path = await _save_upload(book_file, Path(runtime.settings.storage.upload_dir))

    try:
        decision = await runtime.start(owner_id, title, source_path=str(upload_path) if upload_path else None)
    except Exception:
        if upload_path is not None:
            upload_path.unlink(missing_ok=True)
        raise

    if upload_path is not None and decision.action != IntakeAction.CREATE:
        # the existing job keeps its original document
        upload_path.unlink(missing_ok=True)

    status = 202 if decision.needs_launch else 200
    return JSONResponse(status_code=status, content=_decision_payload(decision))


@app.post("/api/books/{job_id}/resume")
async def resume_pipeline(
    job_id: str,
    owner_id: str = Depends(caller_id),
    runtime: PipelineRuntime = Depends(get_runtime),
) -> JSONResponse:
    _owned_job(runtime, job_id, owner_id)
    decision = await runtime.resume(job_id, owner_id=owner_id)
    status = 202 if decision.needs_launch else 200
    return JSONResponse(status_code=status, content=_decision_payload(decision))


@app.get("/api/books/library")
async def my_library(
    owner_id: str = Depends(caller_id),
    runtime: PipelineRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    books = [
        {
            "id": job.id,
            "title": job.title,
            "author": job.author,
            "stage": job.stage.value,
            "progress": job.progress,
            "cover_artifact": job.cover_artifact,
            "total_units": job.total_units,
            "created_at": job.timestamps.created_at.isoformat(timespec="seconds"),
        }
        for job in runtime.store.list_jobs(owner_id)
    ]
    return {"books": books, "count": len(books)}


@app.get("/api/books/active-session")
async def active_session(
    owner_id: str = Depends(caller_id),
    runtime: PipelineRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    job = runtime.active_job(owner_id)
    if job is None:
        return {"active": False}
    return {"active": True, "job": _job_payload(job)}


@app.get("/api/books/{job_id}")
async def get_book(
    job_id: str,
    owner_id: str = Depends(caller_id),
    runtime: PipelineRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    job = _owned_job(runtime, job_id, owner_id)
    payload = _job_payload(job)
    payload["running"] = runtime.orchestrator.is_running(job_id)
    return payload


@app.get("/api/books/{job_id}/pages")
async def get_pages(
    job_id: str,
    owner_id: str = Depends(caller_id),
    runtime: PipelineRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    _owned_job(runtime, job_id, owner_id)
    pages = [unit.model_dump(mode="json") for unit in runtime.store.list_units(job_id)]
    return {"job_id": job_id, "pages": pages, "count": len(pages)}


@app.get("/api/books/{job_id}/events")
async def stream_book_events(
    job_id: str,
    owner_id: str = Depends(caller_id),
    runtime: PipelineRuntime = Depends(get_runtime),
) -> StreamingResponse:
    _owned_job(runtime, job_id, owner_id)

    async def _event_stream():
        async with runtime.broadcaster.subscribe(job_id) as queue:
            yield "retry: 3000\n\n"
            snapshot = runtime.store.require_job(job_id)
            yield _sse("connected", _job_payload(snapshot))

            stage = snapshot.stage
            while stage not in TERMINAL_STAGES:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_S)
                except asyncio.TimeoutError:
                    current = runtime.store.get_job(job_id)
                    if current is None:
                        break
                    stage = current.stage
                    yield _sse(
                        "heartbeat",
                        {
                            "job_id": job_id,
                            "stage": current.stage.value,
                            "progress": current.progress,
                            "running": runtime.orchestrator.is_running(job_id),
                        },
                    )
                    continue

                yield _sse(event.kind, event.to_payload())
                if event.kind != "log_update":
                    stage = Stage.ERROR if event.kind == "pipeline_error" else event.stage

        final = runtime.store.get_job(job_id)
        yield _sse(
            "stream_end",
            {
                "job_id": job_id,
                "stage": final.stage.value if final else None,
                "progress": final.progress if final else None,
                "error": final.error if final else None,
            },
        )

    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(_event_stream(), media_type="text/event-stream", headers=headers)
