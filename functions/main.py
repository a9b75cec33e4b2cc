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


# Cloud functions for the Love Journal backend: scheduled housekeeping jobs
# (account deletion, cron history cleanup, storage statistics) and callables
# for image deletion and manual statistics refresh.
#
# This file containing Python cloud functions must be named main.py.
# See https://cloud.google.com/run/docs/write-functions#python for more info.

# Standard library imports
from typing import Callable, Iterable

# Third-party library imports
from firebase_admin import initialize_app, firestore
from firebase_functions import https_fn, logger, options, scheduler_fn
from firebase_functions.params import SecretParam

# Local application imports
from accounts.reaper import run_account_reaper
from backend.config import get_settings
from backend.db import DocumentStore, FirestoreDocumentStore
from backend.identity import FirebaseIdentityClient, IdentityClient
from backend.storage import (
    DESTROY_OK_RESULTS,
    CloudinaryStorageClient,
    ImageStorageClient,
)
from housekeeping.cleanup import cleanup_cron_history as run_cron_history_cleanup
from housekeeping.storage_stats import calculate_storage_stats
from shared.constants import (
    CALCULATE_STORAGE_STATS_SCHEDULE,
    CLEANUP_CRON_HISTORY_SCHEDULE,
    DELETE_REMOVED_ACCOUNTS_SCHEDULE,
    SCHEDULE_TIME_ZONE,
)
from shared.types import UserRole

DELETE_REMOVED_ACCOUNTS_TIMEOUT = 540
CLEANUP_CRON_HISTORY_TIMEOUT = 60

CLOUDINARY_CLOUD_NAME = SecretParam("CLOUDINARY_CLOUD_NAME")
CLOUDINARY_API_KEY = SecretParam("CLOUDINARY_API_KEY")
CLOUDINARY_API_SECRET = SecretParam("CLOUDINARY_API_SECRET")
CLOUDINARY_SECRETS = [CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET]

initialize_app()


def _document_store(env_prefix: str) -> DocumentStore:
    return FirestoreDocumentStore(firestore.client(), env_prefix=env_prefix)


def _image_storage() -> ImageStorageClient:
    return CloudinaryStorageClient(
        cloud_name=CLOUDINARY_CLOUD_NAME.value,
        api_key=CLOUDINARY_API_KEY.value,
        api_secret=CLOUDINARY_API_SECRET.value,
    )


def _identity_client() -> IdentityClient:
    return FirebaseIdentityClient()


def reap_environments(
    env_prefixes: Iterable[str],
    store_factory: Callable[[str], DocumentStore],
    images: ImageStorageClient,
    identity: IdentityClient,
) -> dict:
    """
    Runs one reaper batch per environment prefix.

    A fatal error in one environment does not stop the others; the first
    such error is re-raised once every environment has been attempted.

    Returns:
        dict: Per-environment summary keyed by "dev" or "production".
    """
    summary = {}
    first_error = None
    for env_prefix in env_prefixes:
        env_name = env_prefix.rstrip("_") or "production"
        logger.info(f"Processing {env_name} environment")
        try:
            result = run_account_reaper(store_factory(env_prefix), images, identity)
        except Exception as e:
            logger.error(f"Account deletion failed for {env_name}: {e}")
            summary[env_name] = {"status": "failed", "error": str(e)}
            first_error = first_error or e
            continue
        summary[env_name] = {
            "status": result.status.value,
            "accountsDeleted": result.accounts_deleted,
            "accountsFailed": result.accounts_failed,
        }

    if first_error is not None:
        raise first_error
    return summary


@scheduler_fn.on_schedule(
    schedule=DELETE_REMOVED_ACCOUNTS_SCHEDULE,
    timezone=scheduler_fn.Timezone(SCHEDULE_TIME_ZONE),
    timeout_sec=DELETE_REMOVED_ACCOUNTS_TIMEOUT,
    memory=options.MemoryOption.MB_512,
    secrets=CLOUDINARY_SECRETS,
)
def delete_removed_accounts(event: scheduler_fn.ScheduledEvent) -> None:
    """Permanently deletes accounts Removed for longer than the grace period."""
    summary = reap_environments(
        get_settings().reaper_env_prefixes(),
        _document_store,
        _image_storage(),
        _identity_client(),
    )
    logger.info(f"Account deletion summary: {summary}")


@scheduler_fn.on_schedule(
    schedule=CLEANUP_CRON_HISTORY_SCHEDULE,
    timezone=scheduler_fn.Timezone(SCHEDULE_TIME_ZONE),
    timeout_sec=CLEANUP_CRON_HISTORY_TIMEOUT,
    memory=options.MemoryOption.MB_256,
)
def cleanup_cron_history(event: scheduler_fn.ScheduledEvent) -> None:
    """Deletes expired cron history entries and daily stats."""
    result = run_cron_history_cleanup(
        _document_store(get_settings().resolved_env_prefix())
    )
    logger.info(f"Cron history cleanup removed {result.records_deleted} records")


@scheduler_fn.on_schedule(
    schedule=CALCULATE_STORAGE_STATS_SCHEDULE,
    timezone=scheduler_fn.Timezone(SCHEDULE_TIME_ZONE),
    memory=options.MemoryOption.MB_256,
    secrets=CLOUDINARY_SECRETS,
)
def calculate_storage_stats_daily(event: scheduler_fn.ScheduledEvent) -> None:
    calculate_storage_stats(
        _document_store(get_settings().resolved_env_prefix()),
        _image_storage(),
        _identity_client(),
    )


def _require_auth(req: https_fn.CallableRequest) -> str:
    if req.auth is None:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.UNAUTHENTICATED,
            "User must be authenticated",
        )
    return req.auth.uid


def delete_image(images: ImageStorageClient, uid: str, public_id) -> dict:
    """
    Destroys one image on behalf of `uid`.

    Raises:
        https_fn.HttpsError: INVALID_ARGUMENT for a bad id, INTERNAL when
            the image could not be destroyed.
    """
    if not public_id or not isinstance(public_id, str):
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INVALID_ARGUMENT,
            "publicId is required and must be a string",
        )

    logger.info(f"Deleting image {public_id} for user {uid}")
    try:
        result = images.destroy(public_id)
    except Exception as e:
        logger.error(f"Error deleting image {public_id}: {e}")
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INTERNAL, f"Failed to delete image: {e}"
        )

    if result not in DESTROY_OK_RESULTS:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.INTERNAL,
            f"Failed to delete image: {result}",
        )
    return {
        "success": True,
        "result": result,
        "message": "Image deleted successfully"
        if result == "ok"
        else "Image not found (may have been already deleted)",
    }


@https_fn.on_call(memory=options.MemoryOption.MB_256, secrets=CLOUDINARY_SECRETS)
def delete_cloudinary_image(req: https_fn.CallableRequest) -> dict:
    """
    Deletes a Cloudinary image for an authenticated user.

    Args:
        req (https_fn.CallableRequest): The request, containing the publicId.

    Returns:
        dict: {success, result, message}
    """
    uid = _require_auth(req)
    data = req.data if isinstance(req.data, dict) else {}
    return delete_image(_image_storage(), uid, data.get("publicId"))


def recalculate_stats_for(
    store: DocumentStore,
    images: ImageStorageClient,
    identity: IdentityClient,
    uid: str,
) -> dict:
    user = store.get_user(uid)
    if user is None or user.role != UserRole.SYSADMIN:
        raise https_fn.HttpsError(
            https_fn.FunctionsErrorCode.PERMISSION_DENIED,
            "Only SysAdmin can recalculate storage stats",
        )
    stats = calculate_storage_stats(store, images, identity, triggered_by="manual")
    stats["lastUpdated"] = stats["calculatedAt"]
    return stats


@https_fn.on_call(memory=options.MemoryOption.MB_256, secrets=CLOUDINARY_SECRETS)
def recalculate_storage_stats(req: https_fn.CallableRequest) -> dict:
    """Recomputes the storage statistics on demand (SysAdmin only)."""
    uid = _require_auth(req)
    return recalculate_stats_for(
        _document_store(get_settings().resolved_env_prefix()),
        _image_storage(),
        _identity_client(),
        uid,
    )
