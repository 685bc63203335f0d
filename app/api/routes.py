from __future__ import annotations

import logging
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, File, HTTPException, UploadFile
from fastapi.responses import FileResponse, JSONResponse
from pydantic import FiniteFloat
from sqlmodel import SQLModel

from app.config import (
    ACCEPTED_MIME_TYPES,
    DEFAULT_COMPRESSION_LEVEL,
    LEVEL_SNAP_POINTS,
    LEVEL_SNAP_THRESHOLD,
    LEVEL_STEP,
    MAX_FILE_SIZE,
    PROCESSING_DELAY_SECONDS,
    PROCESSING_TIMEOUT_SECONDS,
)
from app.core.metrics import metrics
from app.core.quantized import QuantizedControl
from app.models import FileRecord, quality_label
from app.services.backends import SimulatedBackend
from app.services.registry import Session, SessionRegistry
from app.services.session_store import NewEntry
from app.services.stats import human_bytes
from app.storage import release_preview, resolve_preview, save_preview

router = APIRouter()

logger = logging.getLogger("compression_studio")

MAX_FILE_SIZE_MB = MAX_FILE_SIZE / (1024 * 1024)


def _level_control() -> QuantizedControl:
    return QuantizedControl(
        step=LEVEL_STEP,
        snap_points=tuple(LEVEL_SNAP_POINTS),
        snap_threshold=LEVEL_SNAP_THRESHOLD,
    )


registry = SessionRegistry(
    lambda: SimulatedBackend(PROCESSING_DELAY_SECONDS),
    release_preview=release_preview,
    default_level=DEFAULT_COMPRESSION_LEVEL,
    timeout_seconds=PROCESSING_TIMEOUT_SECONDS,
    control_factory=_level_control,
    metrics=metrics,
)


class SelectionIn(SQLModel):
    file_id: str


class ToggleIn(SQLModel):
    enabled: bool


class LevelIn(SQLModel):
    value: Optional[FiniteFloat] = None
    key: Optional[str] = None


class ComparisonIn(SQLModel):
    position: Optional[FiniteFloat] = None
    offset_x: Optional[FiniteFloat] = None
    width: Optional[FiniteFloat] = None


def _is_accepted(content_type: str) -> bool:
    for accepted in ACCEPTED_MIME_TYPES:
        if accepted.endswith("/*"):
            if content_type.startswith(accepted[:-1]):
                return True
        elif content_type == accepted:
            return True
    return False


def _record_payload(record: FileRecord) -> dict:
    payload = record.model_dump(mode="json")
    payload["quality"] = quality_label(record.compression_level)
    payload["preview_url"] = f"/previews/{quote(record.preview_handle)}" if record.preview_handle else None
    return payload


def _aggregates_payload(session: Session) -> dict:
    aggregates = session.store.derive_aggregates()
    payload = aggregates.model_dump()
    payload["total_original_human"] = human_bytes(aggregates.total_original)
    payload["total_compressed_human"] = human_bytes(aggregates.total_compressed)
    return payload


def _comparison_payload(session: Session) -> dict:
    view = session.current_comparison()
    return {"file_id": view.inspected_id, "position": view.position}


def _session_payload(session: Session) -> dict:
    store = session.store
    return {
        "id": session.id,
        "records": [_record_payload(r) for r in store.records],
        "selected_id": store.selected_id,
        "batch_mode": store.batch_mode,
        "lossless": store.lossless,
        "aggregates": _aggregates_payload(session),
    }


@router.post("/sessions", status_code=201)
async def create_session():
    session = registry.create()
    return _session_payload(session)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    return _session_payload(registry.get(session_id))


@router.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    destroyed = registry.teardown(session_id)
    metrics.record_removals(destroyed)
    return {"status": "deleted", "session_id": session_id, "records": destroyed}


@router.post("/sessions/{session_id}/files", status_code=201)
async def upload_files(session_id: str, files: List[UploadFile] = File(...)):
    session = registry.get(session_id)

    accepted: list[tuple[UploadFile, bytes]] = []
    for upload in files:
        if not upload.filename:
            raise HTTPException(status_code=400, detail="Missing filename")
        content_type = upload.content_type or "application/octet-stream"
        if not _is_accepted(content_type):
            logger.warning(
                "event=upload_rejected reason=mime_type filename=%s content_type=%s",
                upload.filename,
                content_type,
            )
            raise HTTPException(status_code=415, detail=f"Unsupported file type: {content_type}")
        data = await upload.read()
        if not data:
            raise HTTPException(status_code=400, detail=f"File {upload.filename} is empty")
        if len(data) > MAX_FILE_SIZE:
            logger.warning(
                "event=upload_rejected reason=max_size filename=%s size_bytes=%s limit_bytes=%s",
                upload.filename,
                len(data),
                MAX_FILE_SIZE,
            )
            raise HTTPException(
                status_code=413,
                detail=f"File too large. Maximum allowed size is {MAX_FILE_SIZE_MB:.1f} MB.",
            )
        accepted.append((upload, data))

    entries = []
    for upload, data in accepted:
        content_type = upload.content_type or "application/octet-stream"
        preview = save_preview(data, upload.filename) if content_type.startswith("image/") else None
        entries.append(NewEntry(upload.filename, content_type, len(data), preview))
        metrics.record_upload(len(data))

    added = session.store.add_files(entries)
    return {
        "records": [_record_payload(r) for r in added],
        "selected_id": session.store.selected_id,
    }


@router.delete("/sessions/{session_id}/files/{file_id}")
async def remove_file(session_id: str, file_id: str):
    session = registry.get(session_id)
    removed = session.remove_file(file_id)
    if removed:
        metrics.record_removals(1)
    return {"removed": removed, "selected_id": session.store.selected_id}


@router.put("/sessions/{session_id}/selection")
async def select_file(session_id: str, body: SelectionIn):
    session = registry.get(session_id)
    record = session.store.select_file(body.file_id)
    return _record_payload(record)


@router.put("/sessions/{session_id}/batch-mode")
async def set_batch_mode(session_id: str, body: ToggleIn):
    session = registry.get(session_id)
    session.store.set_batch_mode(body.enabled)
    return {"batch_mode": session.store.batch_mode}


@router.put("/sessions/{session_id}/lossless")
async def set_lossless(session_id: str, body: ToggleIn):
    session = registry.get(session_id)
    session.store.set_lossless(body.enabled)
    return {"lossless": session.store.lossless}


@router.put("/sessions/{session_id}/files/{file_id}/level")
async def set_level(session_id: str, file_id: str, body: LevelIn):
    session = registry.get(session_id)
    if body.value is None and body.key is None:
        raise HTTPException(status_code=422, detail="Provide either value or key")
    committed = session.change_level(file_id, value=body.value, key=body.key)
    return {
        "committed": committed,
        "records": [_record_payload(r) for r in session.store.records],
    }


@router.post("/sessions/{session_id}/files/{file_id}/level/reset")
async def reset_level(session_id: str, file_id: str):
    session = registry.get(session_id)
    committed = session.reset_level(file_id)
    return {
        "committed": committed,
        "records": [_record_payload(r) for r in session.store.records],
    }


@router.post("/sessions/{session_id}/files/{file_id}/process", status_code=202)
async def process_file(session_id: str, file_id: str):
    session = registry.get(session_id)
    started = session.pipeline.process(file_id)
    return {"file_id": file_id, "started": started}


@router.post("/sessions/{session_id}/process-all", status_code=202)
async def process_all(session_id: str):
    session = registry.get(session_id)
    started = session.pipeline.process_all()
    return {"started": started}


@router.get("/sessions/{session_id}/aggregates")
async def aggregates(session_id: str):
    return _aggregates_payload(registry.get(session_id))


@router.get("/sessions/{session_id}/comparison")
async def get_comparison(session_id: str):
    return _comparison_payload(registry.get(session_id))


@router.put("/sessions/{session_id}/comparison")
async def move_comparison(session_id: str, body: ComparisonIn):
    session = registry.get(session_id)
    view = session.current_comparison()
    if body.position is not None:
        view.set_position(body.position)
    elif body.offset_x is not None and body.width is not None:
        view.drag(body.offset_x, body.width)
    else:
        raise HTTPException(status_code=422, detail="Provide position or offset_x and width")
    return _comparison_payload(session)


@router.get("/sessions/{session_id}/exports")
async def exports(session_id: str):
    session = registry.get(session_id)
    return {
        "files": [
            {
                "id": r.id,
                "name": r.name,
                "compressed_size_bytes": r.compressed_size_bytes,
                "compressed_human": human_bytes(r.compressed_size_bytes or 0),
            }
            for r in session.store.completed_records()
        ]
    }


@router.get("/metrics")
def metrics_snapshot():
    response = JSONResponse(metrics.snapshot())
    response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
    return response


@router.get("/previews/{handle}")
def serve_preview(handle: str):
    path = resolve_preview(handle)
    if path is None or not path.is_file():
        raise HTTPException(status_code=404, detail="Not found")
    logger.info("event=preview_served handle=%s", handle)
    return FileResponse(path)

