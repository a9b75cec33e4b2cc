"""
Identity (Firebase Authentication) abstraction and an in-memory test double.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

from firebase_admin import auth


class InvalidTokenError(Exception):
    """Raised when a bearer token cannot be verified."""


class IdentityUnavailableError(Exception):
    """Raised when the token verification keys cannot be fetched."""


class IdentityClient(Protocol):
    def verify_token(self, id_token: str) -> str:
        """Return the uid for a valid ID token, else raise InvalidTokenError."""
        ...

    def delete_user(self, uid: str) -> bool:
        """Delete an identity. Returns False if it was already gone."""
        ...

    def count_users(self) -> int:
        ...


@dataclass
class InMemoryIdentityClient:
    """Test double. `tokens` maps bearer tokens to uids."""

    uids: set = field(default_factory=set)
    tokens: dict = field(default_factory=dict)
    delete_errors: dict = field(default_factory=dict)

    def verify_token(self, id_token: str) -> str:
        uid: Optional[str] = self.tokens.get(id_token)
        if uid is None:
            raise InvalidTokenError("Invalid ID token")
        return uid

    def delete_user(self, uid: str) -> bool:
        if uid in self.delete_errors:
            raise self.delete_errors[uid]
        if uid not in self.uids:
            return False
        self.uids.remove(uid)
        return True

    def count_users(self) -> int:
        return len(self.uids)


class FirebaseIdentityClient:
    """Wraps `firebase_admin.auth` for the default (or a given) app."""

    def __init__(self, app=None):
        self.app = app

    def verify_token(self, id_token: str) -> str:
        try:
            decoded = auth.verify_id_token(id_token, app=self.app, check_revoked=True)
        except auth.CertificateFetchError as e:
            raise IdentityUnavailableError(str(e)) from e
        except (
            ValueError,
            auth.InvalidIdTokenError,
            auth.ExpiredIdTokenError,
            auth.RevokedIdTokenError,
            auth.UserDisabledError,
        ) as e:
            raise InvalidTokenError(str(e)) from e
        return decoded["uid"]

    def delete_user(self, uid: str) -> bool:
        try:
            auth.delete_user(uid, app=self.app)
        except auth.UserNotFoundError:
            return False
        return True

    def count_users(self) -> int:
        total = 0
        page = auth.list_users(app=self.app)
        while page:
            total += len(page.users)
            page = page.get_next_page()
        return total
