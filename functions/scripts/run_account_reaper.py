"""
Run the removed-account deletion job by hand.

With --dry-run the eligible accounts are listed and nothing is deleted.
Real runs are recorded in the audit collections as manually triggered.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from accounts.reaper import run_account_reaper, select_eligible_accounts
from backend.config import get_settings
from backend.dependencies import (
    build_document_store,
    get_identity_client,
    get_image_storage,
)


logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Delete accounts removed more than 7 days ago")
    parser.add_argument(
        "--env-prefix",
        default=None,
        help='Collection prefix to process ("dev_" or ""). Defaults to the detected environment.',
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List eligible accounts without deleting anything",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")

    env_prefix = args.env_prefix
    if env_prefix is None:
        env_prefix = get_settings().resolved_env_prefix()
    store = build_document_store(env_prefix)

    if args.dry_run:
        users = select_eligible_accounts(store, now=datetime.now(timezone.utc))
        for user in users:
            logger.info("Would delete %s (%s), removed at %s", user.id, user.email, user.removed_at)
        logger.info("%d accounts eligible for deletion", len(users))
        return 0

    images = get_image_storage()
    if images is None:
        logger.error("Cloudinary is not configured; refusing to delete accounts")
        return 1

    result = run_account_reaper(store, images, get_identity_client(), triggered_by="manual")
    logger.info(
        "Deleted %d accounts, %d failed", result.accounts_deleted, result.accounts_failed
    )
    for error in result.errors:
        logger.error(error)
    return 0 if result.accounts_failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
