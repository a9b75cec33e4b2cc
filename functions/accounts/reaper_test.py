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
from accounts.reaper import (
    ImageDeletionError,
    collect_public_ids,
    destroy_user_images,
    reap_removed_accounts,
    run_account_reaper,
)
from backend.db import InMemoryDocumentStore
from backend.identity import InMemoryIdentityClient
from backend.storage import InMemoryImageStorage
from shared.firebase_constants import (
    ANNIVERSARY_COLLECTION,
    CRON_JOBS_DOC,
    MEMORIES_COLLECTION,
    SYSTEM_STATS_COLLECTION,
    USER_EFFECTS_COLLECTION,
    USERS_COLLECTION,
)
from shared.types import CronRunStatus, MemoryRecord, UserStatus

NOW = datetime(2026, 3, 10, 19, 0, 0, tzinfo=timezone.utc)


class ReaperTestCase(unittest.TestCase):

    def setUp(self):
        self.store = InMemoryDocumentStore(env_prefix="dev_")
        self.images = InMemoryImageStorage()
        self.identity = InMemoryIdentityClient()

    def add_user(self, uid, *, removed_days_ago=8, status=UserStatus.REMOVED, images=2):
        data = {"email": f"{uid}@example.com", "status": status.value}
        if removed_days_ago is not None:
            data["removedAt"] = NOW - timedelta(days=removed_days_ago)
        self.store.put(USERS_COLLECTION, uid, data)
        self.identity.uids.add(uid)

        public_ids = []
        for i in range(images):
            public_id = f"love-journal/users/{uid}/2026/01/memories/img{i}"
            self.images.add_resource(public_id)
            public_ids.append(public_id)
        self.store.put(
            MEMORIES_COLLECTION,
            f"memory-{uid}",
            {"userId": uid, "title": "Trip", "cloudinaryPublicIds": public_ids},
        )
        self.store.put(ANNIVERSARY_COLLECTION, f"event-{uid}", {"userId": uid})
        self.store.put(USER_EFFECTS_COLLECTION, uid, {"effect": "hearts"})
        return public_ids

    def assert_user_gone(self, uid):
        self.assertIsNone(self.store.get_user(uid))
        self.assertEqual(self.store.list_memories(uid), [])
        self.assertIsNone(self.store.get(ANNIVERSARY_COLLECTION, f"event-{uid}"))
        self.assertIsNone(self.store.get(USER_EFFECTS_COLLECTION, uid))
        self.assertNotIn(uid, self.identity.uids)

    def assert_user_untouched(self, uid):
        self.assertEqual(self.store.get_user(uid).status, UserStatus.REMOVED)
        self.assertEqual(len(self.store.list_memories(uid)), 1)
        self.assertIsNotNone(self.store.get(ANNIVERSARY_COLLECTION, f"event-{uid}"))
        self.assertIsNotNone(self.store.get(USER_EFFECTS_COLLECTION, uid))
        self.assertIn(uid, self.identity.uids)


class TestReapRemovedAccounts(ReaperTestCase):

    def test_all_images_deleted_removes_everything(self):
        public_ids = self.add_user("u1")

        result = run_account_reaper(self.store, self.images, self.identity, now=NOW)

        self.assertEqual(result.accounts_deleted, 1)
        self.assertEqual(result.accounts_failed, 0)
        self.assertEqual(result.status, CronRunStatus.SUCCESS)
        self.assert_user_gone("u1")
        self.assertEqual(self.images.destroyed, public_ids)
        jobs = self.store.get(SYSTEM_STATS_COLLECTION, CRON_JOBS_DOC)
        self.assertEqual(jobs["deleteRemovedAccounts"]["accountsDeleted"], 1)
        self.assertEqual(jobs["deleteRemovedAccounts"]["status"], "success")

    def test_failed_image_keeps_all_records(self):
        public_ids = self.add_user("u1")
        self.images.destroy_results[public_ids[1]] = "error"

        result = run_account_reaper(self.store, self.images, self.identity, now=NOW)

        self.assertEqual(result.accounts_deleted, 0)
        self.assertEqual(result.accounts_failed, 1)
        self.assertEqual(result.status, CronRunStatus.PARTIAL_SUCCESS)
        self.assert_user_untouched("u1")
        jobs = self.store.get(SYSTEM_STATS_COLLECTION, CRON_JOBS_DOC)
        self.assertEqual(jobs["deleteRemovedAccounts"]["accountsFailed"], 1)
        self.assertIn(public_ids[1], jobs["deleteRemovedAccounts"]["lastError"])

    def test_every_image_attempted_before_abort(self):
        public_ids = self.add_user("u1", images=3)
        self.images.destroy_results[public_ids[0]] = RuntimeError("timeout")

        reap_removed_accounts(self.store, self.images, self.identity, now=NOW)

        self.assertEqual(self.images.destroyed, public_ids)
        self.assert_user_untouched("u1")

    def test_users_inside_grace_period_are_not_selected(self):
        self.add_user("recent", removed_days_ago=6)
        self.add_user("active", removed_days_ago=None, status=UserStatus.ACTIVE)
        self.add_user("no-date", removed_days_ago=None)

        result = reap_removed_accounts(self.store, self.images, self.identity, now=NOW)

        self.assertEqual(result.accounts_deleted, 0)
        self.assertEqual(self.images.destroyed, [])
        for uid in ("recent", "active", "no-date"):
            self.assertIsNotNone(self.store.get_user(uid))

    def test_exactly_grace_period_is_selected(self):
        self.add_user("u1", removed_days_ago=7)

        result = reap_removed_accounts(self.store, self.images, self.identity, now=NOW)

        self.assertEqual(result.accounts_deleted, 1)

    def test_batch_size_limits_processed_users(self):
        for i in range(5):
            self.add_user(f"u{i}", images=0)

        result = reap_removed_accounts(
            self.store, self.images, self.identity, now=NOW, batch_size=3
        )

        self.assertEqual(result.accounts_deleted + result.accounts_failed, 3)
        self.assertEqual(self.store.count_users(), 2)

    def test_failure_does_not_stop_the_batch(self):
        bad_ids = self.add_user("bad")
        self.add_user("good")
        self.images.destroy_results[bad_ids[0]] = "error"

        result = reap_removed_accounts(self.store, self.images, self.identity, now=NOW)

        self.assertEqual(result.accounts_deleted, 1)
        self.assertEqual(result.accounts_failed, 1)
        self.assertTrue(result.errors[0].startswith("bad: "))
        self.assert_user_gone("good")
        self.assert_user_untouched("bad")

    def test_rerun_retries_only_failed_users(self):
        bad_ids = self.add_user("bad")
        self.add_user("good")
        self.images.destroy_results[bad_ids[0]] = "error"
        reap_removed_accounts(self.store, self.images, self.identity, now=NOW)

        del self.images.destroy_results[bad_ids[0]]
        self.images.destroyed.clear()
        result = reap_removed_accounts(self.store, self.images, self.identity, now=NOW)

        self.assertEqual(result.accounts_deleted, 1)
        self.assertEqual(result.accounts_failed, 0)
        # The image that succeeded the first time reports "not found" now.
        self.assertEqual(self.images.destroyed, bad_ids)
        self.assert_user_gone("bad")

    def test_missing_auth_identity_is_not_a_failure(self):
        self.add_user("u1")
        self.identity.uids.discard("u1")

        result = reap_removed_accounts(self.store, self.images, self.identity, now=NOW)

        self.assertEqual(result.accounts_deleted, 1)
        self.assertEqual(result.accounts_failed, 0)

    def test_no_eligible_users_still_records_run(self):
        result = run_account_reaper(self.store, self.images, self.identity, now=NOW)

        self.assertEqual(result.accounts_deleted, 0)
        history = self.store.list_cron_history("deleteRemovedAccounts")
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]["status"], "success")
        self.assertEqual(history[0]["triggeredBy"], "auto")

    def test_selector_failure_is_recorded_and_raised(self):
        def broken_selector(removed_before, limit):
            raise RuntimeError("missing index")

        self.store.list_removed_users = broken_selector

        with self.assertRaisesRegex(RuntimeError, "missing index"):
            run_account_reaper(self.store, self.images, self.identity, now=NOW)

        jobs = self.store.get(SYSTEM_STATS_COLLECTION, CRON_JOBS_DOC)
        self.assertEqual(jobs["deleteRemovedAccounts"]["status"], "failed")
        self.assertEqual(jobs["deleteRemovedAccounts"]["lastError"], "missing index")
        # Only the processed environment's audit collections are written.
        unprefixed = InMemoryDocumentStore(env_prefix="")
        unprefixed.collections = self.store.collections
        self.assertEqual(unprefixed.get_cron_jobs(), {})


class TestImageHelpers(unittest.TestCase):

    def test_collect_public_ids_prefers_public_ids(self):
        memories = [
            MemoryRecord(
                id="m1",
                user_id="u1",
                photos=["https://res.cloudinary.com/demo/image/upload/v1/a/b.jpg"],
                cloudinary_public_ids=["a/b"],
            ),
            MemoryRecord(
                id="m2",
                user_id="u1",
                photos=["https://res.cloudinary.com/demo/image/upload/v1700/c/d.png"],
            ),
        ]

        self.assertEqual(collect_public_ids(memories), ["a/b", "c/d"])

    def test_destroy_user_images_error_names_failed_ids(self):
        images = InMemoryImageStorage()
        images.destroy_results = {"a": "ok", "b": "error", "c": RuntimeError("boom")}

        with self.assertRaises(ImageDeletionError) as ctx:
            destroy_user_images(images, "u1", ["a", "b", "c"])

        self.assertEqual(ctx.exception.failed_ids, ["b", "c"])
        self.assertEqual(
            str(ctx.exception),
            "Failed to delete 2/3 Cloudinary images for user u1. "
            "Failed images: b, c",
        )

    def test_destroy_user_images_counts_not_found_as_deleted(self):
        images = InMemoryImageStorage()

        self.assertEqual(destroy_user_images(images, "u1", ["gone"]), 1)


if __name__ == "__main__":
    unittest.main()
