# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================


import logging
import time
from datetime import datetime, timezone
from typing import Optional

from backend.db import DocumentStore
from backend.identity import IdentityClient
from backend.storage import ImageStorageClient
from housekeeping.cron_audit import CronAuditor, finish_time
from shared.constants import (
    CALCULATE_STORAGE_STATS_JOB,
    CALCULATE_STORAGE_STATS_SCHEDULE,
    ESTIMATED_MEMORY_DOC_KB,
    ESTIMATED_USER_DOC_KB,
)
from shared.types import CronRunStatus

logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024


def _to_mb(num_bytes: float) -> float:
    return round(num_bytes / _BYTES_PER_MB, 2)


def collect_storage_stats(
    store: DocumentStore,
    images: ImageStorageClient,
    identity: IdentityClient,
    *,
    now: datetime,
) -> dict:
    users_count = store.count_users()
    memories_count = store.count_memories()
    anniversaries_count = store.count_anniversaries()
    estimated_kb = (
        users_count * ESTIMATED_USER_DOC_KB + memories_count * ESTIMATED_MEMORY_DOC_KB
    )

    usage = images.usage()
    storage = usage.get("storage") or {}

    return {
        "firebase": {
            "documentsCount": users_count + memories_count + anniversaries_count,
            "estimatedStorageMB": round(estimated_kb / 1024, 2),
            "usersCount": users_count,
            "memoriesCount": memories_count,
            "anniversariesCount": anniversaries_count,
        },
        "authentication": {"totalUsers": identity.count_users()},
        "cloudinary": {
            "usedStorageMB": _to_mb(storage.get("usage", 0)),
            "totalImages": usage.get("resources", 0),
        },
        "lastUpdated": now,
        "calculatedAt": now.isoformat(),
    }


def calculate_storage_stats(
    store: DocumentStore,
    images: ImageStorageClient,
    identity: IdentityClient,
    *,
    triggered_by: str = "auto",
    now: Optional[datetime] = None,
) -> dict:
    """Recomputes usage counts, saves them to `system_stats/storage` and returns them."""
    now = now or datetime.now(timezone.utc)
    clock_start = time.monotonic()
    auditor = CronAuditor(
        store=store,
        job_name=CALCULATE_STORAGE_STATS_JOB,
        schedule=CALCULATE_STORAGE_STATS_SCHEDULE,
        triggered_by=triggered_by,
    )

    try:
        stats = collect_storage_stats(store, images, identity, now=now)
        store.save_storage_stats(stats)
    except Exception as e:
        logger.exception("Error calculating storage stats")
        auditor.record_failure(
            started_at=now, finished_at=finish_time(now, clock_start), error=str(e)
        )
        raise

    auditor.record_run(
        started_at=now,
        finished_at=finish_time(now, clock_start),
        status=CronRunStatus.SUCCESS,
    )
    logger.info(
        "Storage stats updated: %d users, %d memories",
        stats["firebase"]["usersCount"],
        stats["firebase"]["memoriesCount"],
    )
    return stats
