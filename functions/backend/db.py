"""
Document store abstraction for Firestore and an in-memory test implementation.

Every store is bound to one environment prefix ("dev_" or ""), which is
prepended to every collection name it touches.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Dict, Iterable, Optional, Protocol

from google.cloud.firestore_v1 import DELETE_FIELD
from google.cloud.firestore_v1.base_query import FieldFilter

from shared.firebase_constants import (
    ANNIVERSARY_COLLECTION,
    CRON_HISTORY_COLLECTION,
    CRON_JOBS_DOC,
    CRON_STATS_DAILY_COLLECTION,
    MEMORIES_COLLECTION,
    STORAGE_STATS_DOC,
    SYSTEM_STATS_COLLECTION,
    USER_EFFECTS_COLLECTION,
    USERS_COLLECTION,
    collection_name,
)
from shared.types import MemoryRecord, UserRecord, UserRole, UserStatus

# Firestore rejects write batches with more than 500 operations.
MAX_BATCH_WRITES = 500


class DocumentStore(Protocol):
    """Operations the jobs and API need from the document database."""

    env_prefix: str

    # Users
    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def list_removed_users(
        self, removed_before: datetime, limit: int
    ) -> list[UserRecord]:
        ...

    def mark_user_removed(
        self, user_id: str, removed_at: datetime, updated_by: str
    ) -> None:
        ...

    def restore_user(
        self, user_id: str, restored_at: datetime, restored_by: str
    ) -> None:
        ...

    def set_user_role(self, user_id: str, role: str, changed_at: datetime) -> None:
        ...

    def delete_user(self, user_id: str) -> None:
        ...

    def count_users(self) -> int:
        ...

    # Memories and subordinate records
    def list_memories(self, user_id: str) -> list[MemoryRecord]:
        ...

    def create_memory(self, memory: MemoryRecord, created_at: datetime) -> None:
        ...

    def delete_memories(self, memory_ids: Iterable[str]) -> int:
        ...

    def count_memories(self) -> int:
        ...

    def delete_anniversaries(self, user_id: str) -> int:
        ...

    def count_anniversaries(self) -> int:
        ...

    def delete_user_effects(self, user_id: str) -> bool:
        ...

    # Audit and stats
    def get_cron_jobs(self) -> dict:
        ...

    def merge_cron_job_status(self, job_name: str, fields: dict) -> None:
        ...

    def add_cron_history(self, entry: dict) -> str:
        ...

    def list_cron_history(
        self, job_name: Optional[str] = None, limit: int = 50
    ) -> list[dict]:
        ...

    def delete_cron_history_before(self, cutoff: datetime, limit: int) -> int:
        ...

    def get_daily_stats(self, doc_id: str) -> Optional[dict]:
        ...

    def set_daily_stats(self, doc_id: str, data: dict) -> None:
        ...

    def delete_daily_stats_before(self, date_str: str, limit: int) -> int:
        ...

    def save_storage_stats(self, stats: dict) -> None:
        ...

    def get_storage_stats(self) -> Optional[dict]:
        ...


def _coerce(enum_cls, value, default):
    try:
        return enum_cls(value or default)
    except ValueError:
        return default


def user_from_doc(doc_id: str, data: dict) -> UserRecord:
    return UserRecord(
        id=doc_id,
        email=data.get("email"),
        status=_coerce(UserStatus, data.get("status"), UserStatus.ACTIVE),
        removed_at=data.get("removedAt"),
        role=_coerce(UserRole, data.get("role"), UserRole.USER),
    )


def memory_from_doc(doc_id: str, data: dict) -> MemoryRecord:
    return MemoryRecord(
        id=doc_id,
        user_id=data.get("userId", ""),
        title=data.get("title") or "",
        text=data.get("text") or "",
        date=data.get("date"),
        location=data.get("location"),
        photos=list(data.get("photos") or []),
        cloudinary_public_ids=list(data.get("cloudinaryPublicIds") or []),
    )


def memory_to_doc(memory: MemoryRecord, created_at: datetime) -> dict:
    return {
        "userId": memory.user_id,
        "title": memory.title,
        "text": memory.text,
        "date": memory.date,
        "location": memory.location,
        "photos": list(memory.photos),
        "cloudinaryPublicIds": list(memory.cloudinary_public_ids),
        "createdAt": created_at,
    }


class InMemoryDocumentStore:
    """Simple in-memory document store for development and tests."""

    def __init__(self, env_prefix: str = ""):
        self.env_prefix = env_prefix
        self.collections: Dict[str, Dict[str, dict]] = {}

    def _col(self, name: str) -> Dict[str, dict]:
        return self.collections.setdefault(collection_name(name, self.env_prefix), {})

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.collections.clear()

    def put(self, name: str, doc_id: str, data: dict) -> None:
        """Seed a raw document into a (prefixed) collection."""
        self._col(name)[doc_id] = dict(data)

    def get(self, name: str, doc_id: str) -> Optional[dict]:
        return self._col(name).get(doc_id)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        data = self._col(USERS_COLLECTION).get(user_id)
        return user_from_doc(user_id, data) if data is not None else None

    def list_removed_users(
        self, removed_before: datetime, limit: int
    ) -> list[UserRecord]:
        users = []
        for doc_id, data in self._col(USERS_COLLECTION).items():
            if len(users) >= limit:
                break
            removed_at = data.get("removedAt")
            if data.get("status") != UserStatus.REMOVED or removed_at is None:
                continue
            if removed_at <= removed_before:
                users.append(user_from_doc(doc_id, data))
        return users

    def mark_user_removed(
        self, user_id: str, removed_at: datetime, updated_by: str
    ) -> None:
        doc = self._col(USERS_COLLECTION).get(user_id)
        if doc is None:
            raise KeyError(user_id)
        doc.update(
            {
                "status": UserStatus.REMOVED.value,
                "removedAt": removed_at,
                "statusUpdatedAt": removed_at,
                "statusUpdatedBy": updated_by,
            }
        )

    def restore_user(
        self, user_id: str, restored_at: datetime, restored_by: str
    ) -> None:
        doc = self._col(USERS_COLLECTION).get(user_id)
        if doc is None:
            raise KeyError(user_id)
        doc.pop("removedAt", None)
        doc.update(
            {
                "status": UserStatus.ACTIVE.value,
                "statusUpdatedAt": restored_at,
                "statusUpdatedBy": restored_by,
                "restoredAt": restored_at,
                "restoredBy": restored_by,
            }
        )

    def set_user_role(self, user_id: str, role: str, changed_at: datetime) -> None:
        doc = self._col(USERS_COLLECTION).get(user_id)
        if doc is None:
            raise KeyError(user_id)
        doc.update({"role": role, "updatedAt": changed_at, "roleChangedAt": changed_at})

    def delete_user(self, user_id: str) -> None:
        self._col(USERS_COLLECTION).pop(user_id, None)

    def count_users(self) -> int:
        return len(self._col(USERS_COLLECTION))

    def list_memories(self, user_id: str) -> list[MemoryRecord]:
        return [
            memory_from_doc(doc_id, data)
            for doc_id, data in self._col(MEMORIES_COLLECTION).items()
            if data.get("userId") == user_id
        ]

    def create_memory(self, memory: MemoryRecord, created_at: datetime) -> None:
        self._col(MEMORIES_COLLECTION)[memory.id] = memory_to_doc(memory, created_at)

    def delete_memories(self, memory_ids: Iterable[str]) -> int:
        memories = self._col(MEMORIES_COLLECTION)
        deleted = 0
        for memory_id in memory_ids:
            if memories.pop(memory_id, None) is not None:
                deleted += 1
        return deleted

    def count_memories(self) -> int:
        return len(self._col(MEMORIES_COLLECTION))

    def delete_anniversaries(self, user_id: str) -> int:
        events = self._col(ANNIVERSARY_COLLECTION)
        doomed = [k for k, v in events.items() if v.get("userId") == user_id]
        for key in doomed:
            del events[key]
        return len(doomed)

    def count_anniversaries(self) -> int:
        return len(self._col(ANNIVERSARY_COLLECTION))

    def delete_user_effects(self, user_id: str) -> bool:
        return self._col(USER_EFFECTS_COLLECTION).pop(user_id, None) is not None

    def get_cron_jobs(self) -> dict:
        return dict(self._col(SYSTEM_STATS_COLLECTION).get(CRON_JOBS_DOC) or {})

    def merge_cron_job_status(self, job_name: str, fields: dict) -> None:
        doc = self._col(SYSTEM_STATS_COLLECTION).setdefault(CRON_JOBS_DOC, {})
        current = doc.setdefault(job_name, {})
        current.update(fields)

    def add_cron_history(self, entry: dict) -> str:
        entry_id = uuid.uuid4().hex
        self._col(CRON_HISTORY_COLLECTION)[entry_id] = dict(entry)
        return entry_id

    def list_cron_history(
        self, job_name: Optional[str] = None, limit: int = 50
    ) -> list[dict]:
        items = [
            {"id": k, **v}
            for k, v in self._col(CRON_HISTORY_COLLECTION).items()
            if job_name is None or v.get("jobName") == job_name
        ]
        items.sort(key=lambda item: item["createdAt"], reverse=True)
        return items[:limit]

    def delete_cron_history_before(self, cutoff: datetime, limit: int) -> int:
        history = self._col(CRON_HISTORY_COLLECTION)
        doomed = [k for k, v in history.items() if v["createdAt"] < cutoff][:limit]
        for key in doomed:
            del history[key]
        return len(doomed)

    def get_daily_stats(self, doc_id: str) -> Optional[dict]:
        return self._col(CRON_STATS_DAILY_COLLECTION).get(doc_id)

    def set_daily_stats(self, doc_id: str, data: dict) -> None:
        self._col(CRON_STATS_DAILY_COLLECTION)[doc_id] = dict(data)

    def delete_daily_stats_before(self, date_str: str, limit: int) -> int:
        stats = self._col(CRON_STATS_DAILY_COLLECTION)
        doomed = [k for k, v in stats.items() if v["date"] < date_str][:limit]
        for key in doomed:
            del stats[key]
        return len(doomed)

    def save_storage_stats(self, stats: dict) -> None:
        self._col(SYSTEM_STATS_COLLECTION)[STORAGE_STATS_DOC] = dict(stats)

    def get_storage_stats(self) -> Optional[dict]:
        return self._col(SYSTEM_STATS_COLLECTION).get(STORAGE_STATS_DOC)


class FirestoreDocumentStore:
    """
    Firestore-backed implementation. Accepts a `google.cloud.firestore.Client`,
    e.g. the one returned by `firebase_admin.firestore.client()`.
    """

    def __init__(self, client, env_prefix: str = ""):
        self.client = client
        self.env_prefix = env_prefix

    def _col(self, name: str):
        return self.client.collection(collection_name(name, self.env_prefix))

    def _delete_refs(self, refs: list) -> int:
        for start in range(0, len(refs), MAX_BATCH_WRITES):
            batch = self.client.batch()
            for ref in refs[start : start + MAX_BATCH_WRITES]:
                batch.delete(ref)
            batch.commit()
        return len(refs)

    @staticmethod
    def _count(query) -> int:
        results = query.count().get()
        return int(results[0][0].value)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        snapshot = self._col(USERS_COLLECTION).document(user_id).get()
        if not snapshot.exists:
            return None
        return user_from_doc(snapshot.id, snapshot.to_dict())

    def list_removed_users(
        self, removed_before: datetime, limit: int
    ) -> list[UserRecord]:
        query = (
            self._col(USERS_COLLECTION)
            .where(filter=FieldFilter("status", "==", UserStatus.REMOVED.value))
            .where(filter=FieldFilter("removedAt", "<=", removed_before))
            .limit(limit)
        )
        return [user_from_doc(doc.id, doc.to_dict()) for doc in query.stream()]

    def mark_user_removed(
        self, user_id: str, removed_at: datetime, updated_by: str
    ) -> None:
        self._col(USERS_COLLECTION).document(user_id).update(
            {
                "status": UserStatus.REMOVED.value,
                "removedAt": removed_at,
                "statusUpdatedAt": removed_at,
                "statusUpdatedBy": updated_by,
            }
        )

    def restore_user(
        self, user_id: str, restored_at: datetime, restored_by: str
    ) -> None:
        self._col(USERS_COLLECTION).document(user_id).update(
            {
                "status": UserStatus.ACTIVE.value,
                "removedAt": DELETE_FIELD,
                "statusUpdatedAt": restored_at,
                "statusUpdatedBy": restored_by,
                "restoredAt": restored_at,
                "restoredBy": restored_by,
            }
        )

    def set_user_role(self, user_id: str, role: str, changed_at: datetime) -> None:
        self._col(USERS_COLLECTION).document(user_id).update(
            {"role": role, "updatedAt": changed_at, "roleChangedAt": changed_at}
        )

    def delete_user(self, user_id: str) -> None:
        self._col(USERS_COLLECTION).document(user_id).delete()

    def count_users(self) -> int:
        return self._count(self._col(USERS_COLLECTION))

    def list_memories(self, user_id: str) -> list[MemoryRecord]:
        query = self._col(MEMORIES_COLLECTION).where(
            filter=FieldFilter("userId", "==", user_id)
        )
        return [memory_from_doc(doc.id, doc.to_dict()) for doc in query.stream()]

    def create_memory(self, memory: MemoryRecord, created_at: datetime) -> None:
        self._col(MEMORIES_COLLECTION).document(memory.id).set(
            memory_to_doc(memory, created_at)
        )

    def delete_memories(self, memory_ids: Iterable[str]) -> int:
        memories = self._col(MEMORIES_COLLECTION)
        return self._delete_refs([memories.document(i) for i in memory_ids])

    def count_memories(self) -> int:
        return self._count(self._col(MEMORIES_COLLECTION))

    def delete_anniversaries(self, user_id: str) -> int:
        query = self._col(ANNIVERSARY_COLLECTION).where(
            filter=FieldFilter("userId", "==", user_id)
        )
        return self._delete_refs([doc.reference for doc in query.stream()])

    def count_anniversaries(self) -> int:
        return self._count(self._col(ANNIVERSARY_COLLECTION))

    def delete_user_effects(self, user_id: str) -> bool:
        ref = self._col(USER_EFFECTS_COLLECTION).document(user_id)
        if not ref.get().exists:
            return False
        ref.delete()
        return True

    def get_cron_jobs(self) -> dict:
        snapshot = self._col(SYSTEM_STATS_COLLECTION).document(CRON_JOBS_DOC).get()
        return snapshot.to_dict() if snapshot.exists else {}

    def merge_cron_job_status(self, job_name: str, fields: dict) -> None:
        self._col(SYSTEM_STATS_COLLECTION).document(CRON_JOBS_DOC).set(
            {job_name: fields}, merge=True
        )

    def add_cron_history(self, entry: dict) -> str:
        _, ref = self._col(CRON_HISTORY_COLLECTION).add(entry)
        return ref.id

    def list_cron_history(
        self, job_name: Optional[str] = None, limit: int = 50
    ) -> list[dict]:
        query = self._col(CRON_HISTORY_COLLECTION)
        if job_name:
            query = query.where(filter=FieldFilter("jobName", "==", job_name))
        query = query.order_by("createdAt", direction="DESCENDING").limit(limit)
        return [{"id": doc.id, **doc.to_dict()} for doc in query.stream()]

    def delete_cron_history_before(self, cutoff: datetime, limit: int) -> int:
        query = (
            self._col(CRON_HISTORY_COLLECTION)
            .where(filter=FieldFilter("createdAt", "<", cutoff))
            .limit(limit)
        )
        return self._delete_refs([doc.reference for doc in query.stream()])

    def get_daily_stats(self, doc_id: str) -> Optional[dict]:
        snapshot = self._col(CRON_STATS_DAILY_COLLECTION).document(doc_id).get()
        return snapshot.to_dict() if snapshot.exists else None

    def set_daily_stats(self, doc_id: str, data: dict) -> None:
        self._col(CRON_STATS_DAILY_COLLECTION).document(doc_id).set(data)

    def delete_daily_stats_before(self, date_str: str, limit: int) -> int:
        query = (
            self._col(CRON_STATS_DAILY_COLLECTION)
            .where(filter=FieldFilter("date", "<", date_str))
            .limit(limit)
        )
        return self._delete_refs([doc.reference for doc in query.stream()])

    def save_storage_stats(self, stats: dict) -> None:
        self._col(SYSTEM_STATS_COLLECTION).document(STORAGE_STATS_DOC).set(stats)

    def get_storage_stats(self) -> Optional[dict]:
        snapshot = self._col(SYSTEM_STATS_COLLECTION).document(STORAGE_STATS_DOC).get()
        return snapshot.to_dict() if snapshot.exists else None
