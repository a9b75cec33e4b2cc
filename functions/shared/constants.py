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


from datetime import timedelta

# Account deletion
ACCOUNT_GRACE_PERIOD = timedelta(days=7)
ACCOUNT_REAP_BATCH_SIZE = 50

# Cron housekeeping
CRON_HISTORY_RETENTION = timedelta(hours=24)
CRON_DAILY_STATS_RETENTION = timedelta(days=7)
CLEANUP_BATCH_SIZE = 500

# Scheduled jobs
SCHEDULE_TIME_ZONE = "Asia/Ho_Chi_Minh"
DELETE_REMOVED_ACCOUNTS_SCHEDULE = "every day 02:00"
CLEANUP_CRON_HISTORY_SCHEDULE = "every 6 hours"
CALCULATE_STORAGE_STATS_SCHEDULE = "every 24 hours"

DELETE_REMOVED_ACCOUNTS_JOB = "deleteRemovedAccounts"
CLEANUP_CRON_HISTORY_JOB = "cleanupCronHistory"
CALCULATE_STORAGE_STATS_JOB = "calculateStorageStats"

# Cloudinary
CLOUDINARY_PAGE_SIZE = 100
CLOUDINARY_ROOT_FOLDER = "love-journal"
LEGACY_MEMORIES_FOLDER = "love-journal/memories/"
MAX_MEMORY_TEXT_CONTEXT_LENGTH = 255
MAX_UPLOAD_SIZE_BYTES = 50 * 1024 * 1024

# Rough per-document sizes used when estimating Firestore usage (KB).
ESTIMATED_USER_DOC_KB = 5
ESTIMATED_MEMORY_DOC_KB = 10
