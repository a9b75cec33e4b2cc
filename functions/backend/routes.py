"""
HTTP routes for the Love Journal API.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse

from backend.config import get_settings
from backend.db import DocumentStore
from backend.dependencies import (
    get_current_user_id,
    get_document_store,
    get_image_storage,
    get_optional_document_store,
    require_sysadmin,
)
from backend.memories import fetch_memories, parse_memory_date
from backend.schemas import (
    AccountStatusResponse,
    CronHistoryResponse,
    CronStatusResponse,
    DeleteImagesRequest,
    HealthResponse,
    MemoriesResponse,
    MemoryUploadResponse,
    StorageStatsResponse,
    UploadResponse,
)
from backend.storage import DESTROY_OK_RESULTS, ImageStorageClient
from shared.cloudinary_utils import build_context
from shared.constants import (
    CLOUDINARY_ROOT_FOLDER,
    LEGACY_MEMORIES_FOLDER,
    MAX_MEMORY_TEXT_CONTEXT_LENGTH,
    MAX_UPLOAD_SIZE_BYTES,
)
from shared.types import MemoryRecord, UserStatus

logger = logging.getLogger(__name__)

router = APIRouter()

_TRANSFORMATION_KEYS = ("width", "height", "crop", "quality")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _with_folder_prefix(folder: str) -> str:
    prefix = get_settings().cloudinary_folder_prefix
    return f"{prefix}/{folder}" if prefix else folder


def _require_storage(storage: Optional[ImageStorageClient]) -> ImageStorageClient:
    if storage is None:
        raise HTTPException(status_code=403, detail="Cloudinary not configured")
    return storage


def _upload_response(result: dict) -> UploadResponse:
    return UploadResponse(
        public_id=result["public_id"],
        secure_url=result.get("secure_url", ""),
        width=result.get("width"),
        height=result.get("height"),
        format=result.get("format"),
        created_at=result.get("created_at"),
        tags=result.get("tags") or [],
        folder=result.get("folder"),
        timestamp=_now_iso(),
    )


def _check_size(file: UploadFile) -> None:
    if file.size is not None and file.size > MAX_UPLOAD_SIZE_BYTES:
        raise HTTPException(status_code=413, detail="File exceeds 50MB limit")


def _discard_uploads(storage: ImageStorageClient, public_ids: list[str]) -> None:
    """Destroys images uploaded for a memory that could not be completed."""
    for public_id in public_ids:
        try:
            storage.destroy(public_id)
        except Exception as e:
            logger.error("Failed to remove orphaned image %s: %s", public_id, e)


def _parse_json_field(raw: Optional[str], name: str) -> Optional[dict]:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Ignoring unparseable %s: %s", name, raw)
        return None
    return value if isinstance(value, dict) else None


@router.get("/cloudinary/health", response_model=HealthResponse)
def health():
    settings = get_settings()
    return HealthResponse(
        status="ok",
        cloudinary_configured=settings.cloudinary_configured
        or settings.use_in_memory_backends,
        env_prefix=settings.resolved_env_prefix(),
        timestamp=_now_iso(),
    )


@router.get("/cloudinary/memories", response_model=MemoriesResponse)
def list_memories(
    user_id: Optional[str] = Query(None, alias="userId"),
    storage: Optional[ImageStorageClient] = Depends(get_image_storage),
    store: Optional[DocumentStore] = Depends(get_optional_document_store),
):
    """
    Returns the memories found in Cloudinary, grouped by memory id and
    merged with Firestore, newest first.
    """
    if storage is None:
        return MemoriesResponse(memories=[])

    try:
        memories = fetch_memories(
            storage,
            store,
            user_id=user_id,
            folder_prefix=get_settings().cloudinary_folder_prefix,
        )
    except Exception as e:
        logger.error("Failed to fetch memories: %s", e)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Failed to fetch memories",
                "message": str(e),
                "memories": [],
            },
        )
    return MemoriesResponse(
        memories=[asdict(memory) for memory in memories], timestamp=_now_iso()
    )


@router.post("/cloudinary/memory", response_model=MemoryUploadResponse)
def create_memory(
    title: Optional[str] = Form(None),
    text: Optional[str] = Form(None),
    date: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    user_id: Optional[str] = Form(None, alias="userId"),
    images: Optional[list[UploadFile]] = File(None),
    storage: Optional[ImageStorageClient] = Depends(get_image_storage),
    store: DocumentStore = Depends(get_document_store),
):
    """
    Uploads a memory's photos with grouping context and, for a known user,
    writes the memory document.
    """
    storage = _require_storage(storage)
    if not title or not text or not date or not images:
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: title, text, date, or images",
        )

    memory_date = parse_memory_date(date)
    if memory_date.year == 1:
        raise HTTPException(status_code=400, detail=f"Invalid date: {date}")

    if user_id:
        folder = (
            f"{CLOUDINARY_ROOT_FOLDER}/users/{user_id}/"
            f"{memory_date.year}/{memory_date.month:02d}/memories"
        )
    else:
        folder = f"{LEGACY_MEMORIES_FOLDER}{memory_date.year}"
    folder = _with_folder_prefix(folder)
    memory_id = f"memory-{int(time.time() * 1000)}"
    context = build_context(
        {
            "title": title,
            "location": location,
            "memory_date": date,
            "memory_text": text[:MAX_MEMORY_TEXT_CONTEXT_LENGTH],
            "memory_id": memory_id,
            "userId": user_id,
        }
    )

    for image in images:
        _check_size(image)

    uploaded = []
    try:
        for image in images:
            result = storage.upload(
                image.file,
                resource_type="auto",
                quality="auto",
                fetch_format="auto",
                folder=folder,
                tags=["memory", "love-journal"],
                context=context,
            )
            uploaded.append(_upload_response(result))
    except Exception as e:
        logger.error("Upload error for %s: %s", memory_id, e)
        _discard_uploads(storage, [image.public_id for image in uploaded])
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to upload images", "message": str(e)},
        )
    logger.info("Uploaded %d images for %s", len(uploaded), memory_id)

    if user_id:
        store.create_memory(
            MemoryRecord(
                id=memory_id,
                user_id=user_id,
                title=title,
                text=text,
                date=date,
                location=location or None,
                photos=[image.secure_url for image in uploaded],
                cloudinary_public_ids=[image.public_id for image in uploaded],
            ),
            created_at=datetime.now(timezone.utc),
        )

    return MemoryUploadResponse(
        memory_id=memory_id, folder=folder, images=uploaded, timestamp=_now_iso()
    )


@router.post("/cloudinary/upload", response_model=UploadResponse)
def upload_image(
    file: Optional[UploadFile] = File(None),
    folder: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    public_id: Optional[str] = Form(None),
    transformation: Optional[str] = Form(None),
    context: Optional[str] = Form(None),
    storage: Optional[ImageStorageClient] = Depends(get_image_storage),
):
    storage = _require_storage(storage)
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")
    _check_size(file)

    options = {
        "resource_type": "auto",
        "quality": "auto",
        "fetch_format": "auto",
        "folder": _with_folder_prefix(folder or CLOUDINARY_ROOT_FOLDER),
        "tags": [tag.strip() for tag in (tags or "memory").split(",")],
    }
    if public_id:
        options["public_id"] = public_id
    transform = _parse_json_field(transformation, "transformation") or {}
    for key in _TRANSFORMATION_KEYS:
        if transform.get(key):
            options[key] = transform[key]
    parsed_context = _parse_json_field(context, "context")
    if parsed_context:
        options["context"] = parsed_context

    try:
        result = storage.upload(file.file, **options)
    except Exception as e:
        logger.error("Upload error: %s", e)
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to upload image", "message": str(e)},
        )
    logger.info("Upload successful: %s", result.get("public_id"))
    return _upload_response(result)


@router.post("/cloudinary/delete")
def delete_images(
    payload: DeleteImagesRequest,
    user_id: str = Depends(get_current_user_id),
    storage: Optional[ImageStorageClient] = Depends(get_image_storage),
):
    """
    Destroys one image (`public_id`) or several (`publicIds`), one at a time.
    A failed id is reported in `results` instead of failing the request.
    """
    storage = _require_storage(storage)
    ids_to_delete = payload.publicIds or ([payload.public_id] if payload.public_id else [])
    if not ids_to_delete:
        raise HTTPException(
            status_code=400, detail="public_id or publicIds array is required"
        )

    logger.info("Deleting %d images for user %s", len(ids_to_delete), user_id)
    results = []
    for public_id in ids_to_delete:
        try:
            results.append({"public_id": public_id, "result": storage.destroy(public_id)})
        except Exception as e:
            logger.error("Failed to delete %s: %s", public_id, e)
            results.append({"public_id": public_id, "result": "error", "error": str(e)})

    if payload.public_id and not payload.publicIds:
        return {"result": results[0]["result"], "timestamp": _now_iso()}

    deleted = sum(1 for r in results if r["result"] in DESTROY_OK_RESULTS)
    return {
        "success": True,
        "deleted": deleted,
        "failed": len(results) - deleted,
        "results": results,
        "timestamp": _now_iso(),
    }


@router.post("/account/delete", response_model=AccountStatusResponse)
def mark_account_for_deletion(
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_document_store),
):
    """Marks the caller's account Removed; the nightly job deletes it after 7 days."""
    if store.get_user(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    store.mark_user_removed(
        user_id, removed_at=datetime.now(timezone.utc), updated_by=user_id
    )
    logger.info("Account marked for deletion: %s", user_id)
    return AccountStatusResponse(user_id=user_id, status=UserStatus.REMOVED.value)


@router.post("/account/{user_id}/restore", response_model=AccountStatusResponse)
def restore_account(
    user_id: str,
    admin_id: str = Depends(require_sysadmin),
    store: DocumentStore = Depends(get_document_store),
):
    user = store.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    if user.status != UserStatus.REMOVED:
        raise HTTPException(status_code=409, detail="Account is not Removed")
    store.restore_user(
        user_id, restored_at=datetime.now(timezone.utc), restored_by=admin_id
    )
    logger.info("Account %s restored by %s", user_id, admin_id)
    return AccountStatusResponse(user_id=user_id, status=UserStatus.ACTIVE.value)


@router.get("/cron/status", response_model=CronStatusResponse)
def cron_status(
    _: str = Depends(require_sysadmin),
    store: DocumentStore = Depends(get_document_store),
):
    return CronStatusResponse(jobs=store.get_cron_jobs())


@router.get("/cron/history", response_model=CronHistoryResponse)
def cron_history(
    job_name: Optional[str] = Query(None, alias="jobName"),
    limit: int = Query(50, ge=1, le=200),
    _: str = Depends(require_sysadmin),
    store: DocumentStore = Depends(get_document_store),
):
    return CronHistoryResponse(history=store.list_cron_history(job_name, limit=limit))


@router.get("/stats/storage", response_model=StorageStatsResponse)
def storage_stats(
    _: str = Depends(require_sysadmin),
    store: DocumentStore = Depends(get_document_store),
):
    return StorageStatsResponse(stats=store.get_storage_stats())
