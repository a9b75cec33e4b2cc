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
from unittest.mock import patch

# Third-party library imports
import flask
from firebase_functions import https_fn

# Local application imports
# This patch must be applied before importing 'main'
with patch("firebase_admin.initialize_app"):
    from main import (
        delete_cloudinary_image,
        delete_image,
        reap_environments,
        recalculate_stats_for,
        recalculate_storage_stats,
    )
from backend.db import InMemoryDocumentStore
from backend.identity import InMemoryIdentityClient
from backend.storage import InMemoryImageStorage
from shared.firebase_constants import (
    CRON_JOBS_DOC,
    SYSTEM_STATS_COLLECTION,
    USERS_COLLECTION,
)
from shared.types import UserRole, UserStatus

# main.py declares its secrets at import time, so the callables are invoked
# in a request context instead of loading main.py again through a new app.
_REQUEST_APP = flask.Flask(__name__)


def call_function(function, data):
    """Posts `data` to a callable the way the client SDK does."""
    with _REQUEST_APP.test_request_context("/", method="POST", json={"data": data}):
        return function(flask.request)


class TestMainDeleteCloudinaryImage(unittest.TestCase):

    def setUp(self):
        self.images = InMemoryImageStorage()

    def test_delete_cloudinary_image_requires_auth(self):
        response = call_function(delete_cloudinary_image, {"publicId": "a/b"})

        self.assertEqual(response.status_code, 401)
        response_data = response.get_json()
        self.assertIn("error", response_data)
        self.assertEqual(response_data["error"]["status"], "UNAUTHENTICATED")

    def test_delete_image_ok(self):
        self.images.add_resource("love-journal/users/u1/photo")

        result = delete_image(self.images, "u1", "love-journal/users/u1/photo")

        self.assertEqual(
            result,
            {
                "success": True,
                "result": "ok",
                "message": "Image deleted successfully",
            },
        )
        self.assertNotIn("love-journal/users/u1/photo", self.images.resources)

    def test_delete_image_not_found_is_success(self):
        result = delete_image(self.images, "u1", "missing")

        self.assertTrue(result["success"])
        self.assertEqual(result["result"], "not found")

    def test_delete_image_missing_public_id(self):
        for bad_id in (None, "", 42):
            with self.assertRaises(https_fn.HttpsError) as ctx:
                delete_image(self.images, "u1", bad_id)
            self.assertEqual(
                ctx.exception.code, https_fn.FunctionsErrorCode.INVALID_ARGUMENT
            )
        self.assertEqual(self.images.destroyed, [])

    def test_delete_image_unexpected_result_is_internal(self):
        self.images.destroy_results["x"] = "error"

        with self.assertRaises(https_fn.HttpsError) as ctx:
            delete_image(self.images, "u1", "x")

        self.assertEqual(ctx.exception.code, https_fn.FunctionsErrorCode.INTERNAL)

    def test_delete_image_exception_is_internal(self):
        self.images.destroy_results["x"] = RuntimeError("rate limited")

        with self.assertRaises(https_fn.HttpsError) as ctx:
            delete_image(self.images, "u1", "x")

        self.assertEqual(ctx.exception.code, https_fn.FunctionsErrorCode.INTERNAL)
        self.assertIn("rate limited", ctx.exception.message)


class TestMainRecalculateStorageStats(unittest.TestCase):

    def setUp(self):
        self.store = InMemoryDocumentStore(env_prefix="dev_")
        self.images = InMemoryImageStorage()
        self.identity = InMemoryIdentityClient(uids={"admin", "u1"})
        self.store.put(USERS_COLLECTION, "admin", {"role": UserRole.SYSADMIN.value})
        self.store.put(USERS_COLLECTION, "u1", {"role": UserRole.USER.value})

    def test_recalculate_storage_stats_requires_auth(self):
        response = call_function(recalculate_storage_stats, {})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json()["error"]["status"], "UNAUTHENTICATED")

    def test_non_admin_is_denied(self):
        with self.assertRaises(https_fn.HttpsError) as ctx:
            recalculate_stats_for(self.store, self.images, self.identity, "u1")

        self.assertEqual(
            ctx.exception.code, https_fn.FunctionsErrorCode.PERMISSION_DENIED
        )
        self.assertIsNone(self.store.get_storage_stats())

    def test_admin_recalculates_and_run_is_manual(self):
        stats = recalculate_stats_for(self.store, self.images, self.identity, "admin")

        self.assertEqual(stats["firebase"]["usersCount"], 2)
        self.assertEqual(stats["authentication"]["totalUsers"], 2)
        self.assertIsInstance(stats["lastUpdated"], str)
        self.assertIsNotNone(self.store.get_storage_stats())
        history = self.store.list_cron_history("calculateStorageStats")
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]["triggeredBy"], "manual")


class TestMainReapEnvironments(unittest.TestCase):

    def setUp(self):
        self.stores = {
            "dev_": InMemoryDocumentStore(env_prefix="dev_"),
            "": InMemoryDocumentStore(env_prefix=""),
        }
        self.images = InMemoryImageStorage()
        self.identity = InMemoryIdentityClient(uids={"dev-user", "prod-user"})
        removed_at = datetime.now(timezone.utc) - timedelta(days=30)
        self.stores["dev_"].put(
            USERS_COLLECTION,
            "dev-user",
            {"status": UserStatus.REMOVED.value, "removedAt": removed_at},
        )
        self.stores[""].put(
            USERS_COLLECTION,
            "prod-user",
            {"status": UserStatus.REMOVED.value, "removedAt": removed_at},
        )

    def test_each_environment_is_processed(self):
        summary = reap_environments(
            ["dev_", ""], self.stores.__getitem__, self.images, self.identity
        )

        self.assertEqual(summary["dev"]["accountsDeleted"], 1)
        self.assertEqual(summary["production"]["accountsDeleted"], 1)
        self.assertIsNone(self.stores["dev_"].get_user("dev-user"))
        self.assertIsNone(self.stores[""].get_user("prod-user"))
        self.assertEqual(self.identity.uids, set())

    def test_failing_environment_does_not_stop_others(self):
        def broken_selector(removed_before, limit):
            raise RuntimeError("index missing")

        self.stores["dev_"].list_removed_users = broken_selector

        with self.assertRaisesRegex(RuntimeError, "index missing"):
            reap_environments(
                ["dev_", ""], self.stores.__getitem__, self.images, self.identity
            )

        self.assertIsNone(self.stores[""].get_user("prod-user"))
        dev_jobs = self.stores["dev_"].get(SYSTEM_STATS_COLLECTION, CRON_JOBS_DOC)
        self.assertEqual(dev_jobs["deleteRemovedAccounts"]["status"], "failed")
        prod_jobs = self.stores[""].get(SYSTEM_STATS_COLLECTION, CRON_JOBS_DOC)
        self.assertEqual(prod_jobs["deleteRemovedAccounts"]["status"], "success")


if __name__ == "__main__":
    unittest.main()
