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
from housekeeping.cron_audit import CronAuditor, finish_time
from shared.constants import (
    CLEANUP_BATCH_SIZE,
    CLEANUP_CRON_HISTORY_JOB,
    CLEANUP_CRON_HISTORY_SCHEDULE,
    CRON_DAILY_STATS_RETENTION,
    CRON_HISTORY_RETENTION,
)
from shared.types import CleanupResult, CronRunStatus

logger = logging.getLogger(__name__)


def cleanup_cron_history(
    store: DocumentStore,
    *,
    now: Optional[datetime] = None,
    batch_size: int = CLEANUP_BATCH_SIZE,
) -> CleanupResult:
    """
    Deletes expired cron history entries (older than 24h) and daily stats
    (older than 7 days), at most `batch_size` of each per run, then records
    the run under `cleanupCronHistory`.
    """
    started_at = now or datetime.now(timezone.utc)
    clock_start = time.monotonic()
    auditor = CronAuditor(
        store=store,
        job_name=CLEANUP_CRON_HISTORY_JOB,
        schedule=CLEANUP_CRON_HISTORY_SCHEDULE,
    )

    try:
        history_deleted = store.delete_cron_history_before(
            started_at - CRON_HISTORY_RETENTION, limit=batch_size
        )
        if history_deleted:
            logger.info("Deleted %d old history records (>24h)", history_deleted)

        stats_cutoff = (started_at - CRON_DAILY_STATS_RETENTION).date().isoformat()
        stats_deleted = store.delete_daily_stats_before(stats_cutoff, limit=batch_size)
        if stats_deleted:
            logger.info("Deleted %d old daily stats (>7 days)", stats_deleted)
    except Exception as e:
        logger.exception("Error cleaning up cron history")
        auditor.record_failure(
            started_at=started_at,
            finished_at=finish_time(started_at, clock_start),
            error=str(e),
        )
        raise

    result = CleanupResult(
        history_deleted=history_deleted,
        stats_deleted=stats_deleted,
        execution_time_ms=int((time.monotonic() - clock_start) * 1000),
    )
    logger.info(
        "Total cleanup: %d records in %dms",
        result.records_deleted,
        result.execution_time_ms,
    )
    auditor.record_run(
        started_at=started_at,
        finished_at=finish_time(started_at, clock_start),
        status=CronRunStatus.SUCCESS,
        recordsDeleted=result.records_deleted,
        historyDeleted=result.history_deleted,
        statsDeleted=result.stats_deleted,
    )
    return result
