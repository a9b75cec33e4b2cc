"""
Memory aggregation: groups Cloudinary images into memories and merges the
richer text fields stored in Firestore.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from backend.db import DocumentStore
from backend.storage import ImageStorageClient
from shared.cloudinary_utils import parse_context
from shared.constants import (
    CLOUDINARY_PAGE_SIZE,
    CLOUDINARY_ROOT_FOLDER,
    LEGACY_MEMORIES_FOLDER,
)
from shared.types import Memory, MemoryImage

logger = logging.getLogger(__name__)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def memories_prefix(user_id: Optional[str], folder_prefix: str = "") -> str:
    if user_id:
        base = f"{CLOUDINARY_ROOT_FOLDER}/users/{user_id}"
    else:
        base = LEGACY_MEMORIES_FOLDER
    return f"{folder_prefix}/{base}" if folder_prefix else base


def list_all_resources(
    storage: ImageStorageClient, prefix: str, page_size: int = CLOUDINARY_PAGE_SIZE
) -> list[dict]:
    """Follows `next_cursor` until every resource under `prefix` is listed."""
    resources: list[dict] = []
    next_cursor = None
    while True:
        page, next_cursor = storage.list_resources(
            prefix, next_cursor=next_cursor, max_results=page_size
        )
        resources.extend(page)
        if not next_cursor:
            return resources


def parse_memory_date(value: Optional[str]) -> datetime:
    """Parses an ISO date or datetime. Unparseable values sort as oldest."""
    if not value:
        return _OLDEST
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return _OLDEST
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def group_resources(resources: list[dict], user_id: Optional[str] = None) -> list[Memory]:
    """
    Groups image resources by their `memory_id` context value.

    Resources without a memory id are skipped, as are resources owned by a
    different user when `user_id` is given. The first image of each group
    supplies the memory's title, text, date and location.
    """
    grouped: dict[str, Memory] = {}
    skipped_without_id = 0
    skipped_other_user = 0

    for resource in resources:
        context = parse_context(resource.get("context"))
        memory_id = context.get("memory_id")
        if not memory_id:
            skipped_without_id += 1
            continue
        if user_id and context.get("userId") != user_id:
            skipped_other_user += 1
            continue

        memory = grouped.get(memory_id)
        if memory is None:
            memory = Memory(
                id=memory_id,
                title=context.get("title") or "Untitled Memory",
                location=context.get("location") or None,
                text=context.get("memory_text") or "",
                date=context.get("memory_date") or resource.get("created_at"),
                created_at=resource.get("created_at"),
                tags=list(resource.get("tags") or []),
                folder=resource.get("folder") or "memories",
            )
            grouped[memory_id] = memory

        memory.images.append(
            MemoryImage(
                public_id=resource["public_id"],
                secure_url=resource.get("secure_url", ""),
                width=resource.get("width"),
                height=resource.get("height"),
                format=resource.get("format"),
                created_at=resource.get("created_at"),
                tags=list(resource.get("tags") or []),
                folder=resource.get("folder"),
                context=context,
            )
        )

    if skipped_without_id or skipped_other_user:
        logger.debug(
            "Skipped %d images without memory_id and %d from other users",
            skipped_without_id,
            skipped_other_user,
        )
    return list(grouped.values())


def merge_firestore_fields(
    memories: list[Memory], store: DocumentStore, user_id: str
) -> None:
    """Overrides title, location, text and date with truthy Firestore values."""
    records = {record.id: record for record in store.list_memories(user_id)}
    for memory in memories:
        record = records.get(memory.id)
        if record is None:
            continue
        memory.title = record.title or memory.title
        memory.location = record.location or memory.location
        memory.text = record.text or memory.text
        memory.date = record.date or memory.date
    logger.info("Merged %d memories from Firestore", len(records))


def fetch_memories(
    storage: ImageStorageClient,
    store: Optional[DocumentStore],
    *,
    user_id: Optional[str] = None,
    folder_prefix: str = "",
) -> list[Memory]:
    """
    Lists a user's (or the legacy folder's) images, groups them into memories
    and returns them newest first.

    Firestore is optional: when it is unavailable or fails, the Cloudinary
    context metadata alone is returned.
    """
    resources = list_all_resources(storage, memories_prefix(user_id, folder_prefix))
    memories = group_resources(resources, user_id=user_id)

    if user_id and store is not None:
        try:
            merge_firestore_fields(memories, store, user_id)
        except Exception as e:
            logger.error("Firestore fetch error, using Cloudinary data only: %s", e)

    memories.sort(key=lambda m: parse_memory_date(m.date), reverse=True)
    return memories
