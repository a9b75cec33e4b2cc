"""
Change a user's role (User or SysAdmin).

The user is looked up in the development collection first, then in
production, and the role is written to whichever holds the document.
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

from backend.dependencies import build_document_store
from shared.firebase_constants import DEV_PREFIX
from shared.types import UserRole


logger = logging.getLogger(__name__)

SEARCH_PREFIXES = (DEV_PREFIX, "")


def update_user_role(user_id: str, role: UserRole) -> bool:
    for env_prefix in SEARCH_PREFIXES:
        store = build_document_store(env_prefix)
        user = store.get_user(user_id)
        if user is None:
            continue

        logger.info(
            "Found user %s (%s) in %susers, current role: %s",
            user_id,
            user.email or "no email",
            env_prefix,
            user.role,
        )
        store.set_user_role(user_id, role.value, datetime.now(timezone.utc))
        logger.info("Updated role for %s to %s", user_id, role.value)
        return True

    logger.error("User %s not found in any users collection", user_id)
    return False


def main() -> int:
    parser = argparse.ArgumentParser(description="Update a user's role")
    parser.add_argument("user_id", help="Firebase Authentication uid")
    parser.add_argument(
        "role",
        choices=[role.value for role in UserRole],
        help="New role for the user",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")

    if not update_user_role(args.user_id, UserRole(args.role)):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
