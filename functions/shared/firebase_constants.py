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


import os

USERS_COLLECTION = "users"
MEMORIES_COLLECTION = "memories"
ANNIVERSARY_COLLECTION = "AnniversaryEvent"
USER_EFFECTS_COLLECTION = "userEffects"
SYSTEM_STATS_COLLECTION = "system_stats"
CRON_HISTORY_COLLECTION = "cron_history"
CRON_STATS_DAILY_COLLECTION = "cron_stats_daily"

CRON_JOBS_DOC = "cron_jobs"
STORAGE_STATS_DOC = "storage"

DEV_PREFIX = "dev_"
_NON_PROD_MARKERS = ("dev", "preview", "test")


def detect_env_prefix() -> str:
    """
    Returns the collection prefix for the running project.

    An explicit ENV_PREFIX wins. Otherwise production projects get no prefix
    and development, preview and test projects get "dev_".
    """
    explicit = os.environ.get("ENV_PREFIX")
    if explicit is not None:
        return explicit

    project = os.environ.get("GCLOUD_PROJECT", "")
    firebase_config = os.environ.get("FIREBASE_CONFIG", "")

    if project and not any(marker in project for marker in _NON_PROD_MARKERS):
        return ""
    if "prod" in firebase_config:
        return ""
    return DEV_PREFIX


def collection_name(name: str, env_prefix: str = "") -> str:
    return f"{env_prefix}{name}"
