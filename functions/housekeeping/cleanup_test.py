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

# Standard library imports
import unittest
from datetime import datetime, timedelta, timezone

# Local application imports
from backend.db import InMemoryDocumentStore
from housekeeping.cleanup import cleanup_cron_history
from shared.firebase_constants import (
    CRON_HISTORY_COLLECTION,
    CRON_STATS_DAILY_COLLECTION,
)

NOW = datetime(2026, 2, 10, 12, 0, 0, tzinfo=timezone.utc)


class TestCleanupCronHistory(unittest.TestCase):

    def setUp(self):
        self.store = InMemoryDocumentStore()
        for i, hours in enumerate((1, 23, 25, 48)):
            self.store.put(
                CRON_HISTORY_COLLECTION,
                f"h{i}",
                {"jobName": "deleteRemovedAccounts", "createdAt": NOW - timedelta(hours=hours)},
            )
        for date in ("2026-02-01", "2026-02-02", "2026-02-03", "2026-02-10"):
            self.store.put(
                CRON_STATS_DAILY_COLLECTION,
                f"{date}_deleteRemovedAccounts",
                {"date": date, "jobName": "deleteRemovedAccounts"},
            )

    def test_deletes_only_expired_records(self):
        result = cleanup_cron_history(self.store, now=NOW)

        self.assertEqual(result.history_deleted, 2)
        self.assertEqual(result.stats_deleted, 2)
        self.assertEqual(result.records_deleted, 4)
        self.assertIsNotNone(self.store.get(CRON_HISTORY_COLLECTION, "h0"))
        self.assertIsNotNone(self.store.get(CRON_HISTORY_COLLECTION, "h1"))
        self.assertIsNone(self.store.get(CRON_HISTORY_COLLECTION, "h2"))
        # The cutoff date itself is kept.
        self.assertIsNotNone(
            self.store.get_daily_stats("2026-02-03_deleteRemovedAccounts")
        )
        self.assertIsNone(self.store.get_daily_stats("2026-02-02_deleteRemovedAccounts"))

    def test_batch_size_caps_each_collection(self):
        result = cleanup_cron_history(self.store, now=NOW, batch_size=1)

        self.assertEqual(result.history_deleted, 1)
        self.assertEqual(result.stats_deleted, 1)

    def test_run_is_audited(self):
        cleanup_cron_history(self.store, now=NOW)

        status = self.store.get_cron_jobs()["cleanupCronHistory"]
        self.assertEqual(status["status"], "success")
        self.assertEqual(status["recordsDeleted"], 4)
        self.assertEqual(status["historyDeleted"], 2)
        self.assertEqual(status["statsDeleted"], 2)

    def test_query_failure_is_audited_and_raised(self):
        def broken_delete(cutoff, limit):
            raise RuntimeError("deadline exceeded")

        self.store.delete_cron_history_before = broken_delete

        with self.assertRaisesRegex(RuntimeError, "deadline exceeded"):
            cleanup_cron_history(self.store, now=NOW)

        status = self.store.get_cron_jobs()["cleanupCronHistory"]
        self.assertEqual(status["status"], "failed")
        self.assertEqual(status["lastError"], "deadline exceeded")


if __name__ == "__main__":
    unittest.main()
