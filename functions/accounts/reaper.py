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
Permanent deletion of accounts whose status has been "Removed" for longer
than the grace period.

For each eligible user the cascade runs in a fixed order:
1. destroy every Cloudinary image referenced by the user's memories
2. delete the memory documents
3. delete anniversary events
4. delete the user effects document
5. delete the user document
6. delete the Firebase Authentication identity

If any image cannot be destroyed, the remaining steps are skipped so no
Firestore record loses its storage counterpart. The user stays "Removed" and
is picked up again by the next run.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from backend.db import DocumentStore
from backend.identity import IdentityClient
from backend.storage import DESTROY_OK_RESULTS, ImageStorageClient
from housekeeping.cron_audit import CronAuditor, finish_time
from shared.cloudinary_utils import extract_public_id
from shared.constants import (
    ACCOUNT_GRACE_PERIOD,
    ACCOUNT_REAP_BATCH_SIZE,
    DELETE_REMOVED_ACCOUNTS_JOB,
    DELETE_REMOVED_ACCOUNTS_SCHEDULE,
)
from shared.types import MemoryRecord, ReapResult, UserRecord

logger = logging.getLogger(__name__)


class ImageDeletionError(Exception):
    """One or more of a user's images could not be destroyed."""

    def __init__(self, user_id: str, failed_ids: list[str], total: int):
        self.user_id = user_id
        self.failed_ids = failed_ids
        self.total = total
        super().__init__(
            f"Failed to delete {len(failed_ids)}/{total} Cloudinary images for "
            f"user {user_id}. Failed images: {', '.join(failed_ids)}"
        )


def collect_public_ids(memories: Iterable[MemoryRecord]) -> list[str]:
    return [
        extract_public_id(ref) for memory in memories for ref in memory.image_refs()
    ]


def select_eligible_accounts(
    store: DocumentStore,
    *,
    now: datetime,
    grace_period: timedelta = ACCOUNT_GRACE_PERIOD,
    batch_size: int = ACCOUNT_REAP_BATCH_SIZE,
) -> list[UserRecord]:
    """Removed users whose removal is at least `grace_period` old."""
    cutoff = now - grace_period
    logger.info("Selecting accounts removed before %s", cutoff.isoformat())
    return store.list_removed_users(cutoff, limit=batch_size)


def destroy_user_images(
    images: ImageStorageClient, user_id: str, public_ids: list[str]
) -> int:
    """
    Destroys each image in turn. Every image is attempted; if any failed,
    raises ImageDeletionError naming all of them.
    """
    failed: list[str] = []
    deleted = 0
    for public_id in public_ids:
        try:
            result = images.destroy(public_id)
        except Exception as e:
            logger.error("Error deleting %s: %s", public_id, e)
            failed.append(public_id)
            continue
        if result in DESTROY_OK_RESULTS:
            deleted += 1
        else:
            logger.error("Failed to delete %s: %s", public_id, result)
            failed.append(public_id)

    if failed:
        raise ImageDeletionError(user_id, failed, len(public_ids))
    return deleted


def delete_account(
    store: DocumentStore,
    images: ImageStorageClient,
    identity: IdentityClient,
    user: UserRecord,
) -> None:
    """Runs the full deletion cascade for one user. Raises on the first failure."""
    user_id = user.id
    logger.info("Deleting user %s (%s)", user_id, user.email)

    memories = store.list_memories(user_id)
    public_ids = collect_public_ids(memories)
    logger.info(
        "Step 1/5: deleting %d Cloudinary images from %d memories",
        len(public_ids),
        len(memories),
    )
    destroy_user_images(images, user_id, public_ids)

    logger.info("Step 2/5: deleting %d memories", len(memories))
    store.delete_memories([memory.id for memory in memories])

    deleted_events = store.delete_anniversaries(user_id)
    logger.info("Step 3/5: deleted %d anniversary events", deleted_events)

    if store.delete_user_effects(user_id):
        logger.info("Step 4/5: deleted user effects")

    store.delete_user(user_id)
    logger.info("Step 5/5: deleted user document")

    if not identity.delete_user(user_id):
        logger.info("Auth user %s was already deleted", user_id)


def reap_removed_accounts(
    store: DocumentStore,
    images: ImageStorageClient,
    identity: IdentityClient,
    *,
    now: Optional[datetime] = None,
    grace_period: timedelta = ACCOUNT_GRACE_PERIOD,
    batch_size: int = ACCOUNT_REAP_BATCH_SIZE,
) -> ReapResult:
    """
    Deletes one batch of eligible accounts.

    Per-user failures are counted in the result and never stop the batch.
    Errors from the selector query propagate to the caller.
    """
    started = time.monotonic()
    now = now or datetime.now(timezone.utc)
    result = ReapResult()

    users = select_eligible_accounts(
        store, now=now, grace_period=grace_period, batch_size=batch_size
    )
    if not users:
        logger.info("No accounts to delete (grace period not expired)")
    else:
        logger.info("Found %d accounts to delete", len(users))

    for user in users:
        try:
            delete_account(store, images, identity, user)
        except Exception as e:
            logger.error("Error deleting user %s: %s", user.id, e)
            result.accounts_failed += 1
            result.errors.append(f"{user.id}: {e}")
        else:
            logger.info("Successfully deleted user %s", user.id)
            result.accounts_deleted += 1

    result.execution_time_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Deletion complete for %s: %d deleted, %d failed",
        store.env_prefix or "production",
        result.accounts_deleted,
        result.accounts_failed,
    )
    return result


def run_account_reaper(
    store: DocumentStore,
    images: ImageStorageClient,
    identity: IdentityClient,
    *,
    triggered_by: str = "auto",
    now: Optional[datetime] = None,
) -> ReapResult:
    """
    Runs one batch and records it in the audit collections of `store`.

    A run that fails before users are processed is recorded as failed and
    the error is re-raised.
    """
    started_at = now or datetime.now(timezone.utc)
    clock_start = time.monotonic()
    auditor = CronAuditor(
        store=store,
        job_name=DELETE_REMOVED_ACCOUNTS_JOB,
        schedule=DELETE_REMOVED_ACCOUNTS_SCHEDULE,
        triggered_by=triggered_by,
    )

    try:
        result = reap_removed_accounts(store, images, identity, now=started_at)
    except Exception as e:
        logger.exception("Fatal error in %s", DELETE_REMOVED_ACCOUNTS_JOB)
        auditor.record_failure(
            started_at=started_at,
            finished_at=finish_time(started_at, clock_start),
            error=str(e),
        )
        raise

    auditor.record_run(
        started_at=started_at,
        finished_at=finish_time(started_at, clock_start),
        status=result.status,
        error=result.last_error,
        accountsDeleted=result.accounts_deleted,
        accountsFailed=result.accounts_failed,
    )
    return result
