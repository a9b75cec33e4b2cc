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


"""
Run auditing for scheduled jobs.

Each run is written three ways:
- the job's status map in `system_stats/cron_jobs` (merged)
- an append-only `cron_history` entry
- the per-day aggregate in `cron_stats_daily/{date}_{jobName}`
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from backend.db import DocumentStore
from shared.types import CronRunStatus

logger = logging.getLogger(__name__)


def _elapsed_ms(started_at: datetime, finished_at: datetime) -> int:
    return int((finished_at - started_at).total_seconds() * 1000)


def finish_time(started_at: datetime, clock_start: float) -> datetime:
    """`started_at` advanced by the monotonic time elapsed since `clock_start`."""
    return started_at + timedelta(seconds=time.monotonic() - clock_start)


def summarize_daily(
    existing: Optional[dict],
    *,
    date: str,
    job_name: str,
    status: str,
    error: Optional[str],
    execution_time_ms: int,
    triggered_by: str,
    run_time: datetime,
) -> dict:
    """Folds one run into the daily aggregate document for its job."""
    summary = dict(existing or {})
    previous_runs = summary.get("totalRuns", 0)
    total_runs = previous_runs + 1
    previous_avg = summary.get("avgExecutionTimeMs", 0)

    summary["date"] = date
    summary["jobName"] = job_name
    summary["totalRuns"] = total_runs
    summary["successes"] = summary.get("successes", 0) + (
        0 if status == CronRunStatus.FAILED else 1
    )
    summary["failures"] = summary.get("failures", 0) + (
        1 if status == CronRunStatus.FAILED else 0
    )
    summary["avgExecutionTimeMs"] = round(
        (previous_avg * previous_runs + execution_time_ms) / total_runs
    )
    summary["minExecutionTimeMs"] = min(
        summary.get("minExecutionTimeMs", execution_time_ms), execution_time_ms
    )
    summary["maxExecutionTimeMs"] = max(
        summary.get("maxExecutionTimeMs", execution_time_ms), execution_time_ms
    )
    failure_details = list(summary.get("failureDetails", []))
    if error:
        failure_details.append(
            {
                "time": run_time.isoformat(),
                "error": error,
                "executionTimeMs": execution_time_ms,
                "triggeredBy": triggered_by,
            }
        )
    summary["failureDetails"] = failure_details
    summary["lastRunTime"] = run_time
    return summary


@dataclass
class CronAuditor:
    """Records the outcome of a scheduled job run in the audit collections."""

    store: DocumentStore
    job_name: str
    schedule: str
    triggered_by: str = "auto"

    def record_run(
        self,
        *,
        started_at: datetime,
        finished_at: datetime,
        status: CronRunStatus,
        error: Optional[str] = None,
        **counters,
    ) -> None:
        execution_time_ms = _elapsed_ms(started_at, finished_at)
        status_value = CronRunStatus(status).value

        self.store.merge_cron_job_status(
            self.job_name,
            {
                "lastRun": finished_at,
                "status": status_value,
                "executionTimeMs": execution_time_ms,
                "schedule": self.schedule,
                "lastError": error,
                **counters,
            },
        )
        self.store.add_cron_history(
            {
                "jobName": self.job_name,
                "status": status_value,
                "error": error,
                "startTime": started_at,
                "endTime": finished_at,
                "executionTimeMs": execution_time_ms,
                "triggeredBy": self.triggered_by,
                "createdAt": finished_at,
                **counters,
            }
        )

        date = finished_at.date().isoformat()
        doc_id = f"{date}_{self.job_name}"
        self.store.set_daily_stats(
            doc_id,
            summarize_daily(
                self.store.get_daily_stats(doc_id),
                date=date,
                job_name=self.job_name,
                status=status_value,
                error=error,
                execution_time_ms=execution_time_ms,
                triggered_by=self.triggered_by,
                run_time=finished_at,
            ),
        )
        logger.info(
            "Recorded %s run of %s in %sms", status_value, self.job_name, execution_time_ms
        )

    def record_failure(
        self, *, started_at: datetime, finished_at: datetime, error: str
    ) -> None:
        self.record_run(
            started_at=started_at,
            finished_at=finished_at,
            status=CronRunStatus.FAILED,
            error=error,
        )
