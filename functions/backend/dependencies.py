"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
from typing import Optional

import firebase_admin
from fastapi import Depends, Header, HTTPException
from firebase_admin import credentials, firestore

from backend.config import get_settings
from backend.db import DocumentStore, FirestoreDocumentStore, InMemoryDocumentStore
from backend.identity import (
    FirebaseIdentityClient,
    IdentityClient,
    IdentityUnavailableError,
    InMemoryIdentityClient,
    InvalidTokenError,
)
from backend.storage import (
    CloudinaryStorageClient,
    ImageStorageClient,
    InMemoryImageStorage,
)
from shared.types import UserRole

logger = logging.getLogger(__name__)

_document_store: DocumentStore | None = None
_image_storage: ImageStorageClient | None = None
_identity_client: IdentityClient | None = None


def _firebase_app() -> firebase_admin.App:
    """Initialize the default Firebase app once, from env credentials if set."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    settings = get_settings()
    if settings.firebase_credentials_configured:
        cred = credentials.Certificate(
            {
                "type": "service_account",
                "project_id": settings.firebase_project_id,
                "client_email": settings.firebase_client_email,
                "private_key": settings.firebase_private_key.replace("\\n", "\n"),
                "token_uri": "https://oauth2.googleapis.com/token",
            }
        )
        return firebase_admin.initialize_app(cred)
    return firebase_admin.initialize_app()


def build_document_store(env_prefix: str) -> DocumentStore:
    """Create a document store for one environment prefix."""
    if get_settings().use_in_memory_backends:
        return InMemoryDocumentStore(env_prefix=env_prefix)
    return FirestoreDocumentStore(firestore.client(_firebase_app()), env_prefix=env_prefix)


def get_document_store() -> DocumentStore:
    """
    Return a singleton document store so state persists across requests.
    """
    global _document_store
    if _document_store:
        return _document_store

    _document_store = build_document_store(get_settings().resolved_env_prefix())
    return _document_store


def get_optional_document_store() -> Optional[DocumentStore]:
    """Return the document store, or None when Firestore cannot be reached."""
    try:
        return get_document_store()
    except Exception as e:
        logger.error("Firestore unavailable, continuing without it: %s", e)
        return None


def get_image_storage() -> Optional[ImageStorageClient]:
    """Return the image storage client, or None when Cloudinary is not configured."""
    global _image_storage
    if _image_storage:
        return _image_storage

    settings = get_settings()
    if settings.use_in_memory_backends:
        _image_storage = InMemoryImageStorage()
    elif settings.cloudinary_configured:
        _image_storage = CloudinaryStorageClient(
            cloud_name=settings.cloudinary_cloud_name,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
        )
    else:
        logger.warning("Cloudinary credentials not found")
        return None
    return _image_storage


def get_identity_client() -> IdentityClient:
    global _identity_client
    if _identity_client:
        return _identity_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _identity_client = InMemoryIdentityClient()
    else:
        _identity_client = FirebaseIdentityClient(_firebase_app())
    return _identity_client


def reset_dependencies() -> None:
    """Drop the cached clients (useful in tests)."""
    global _document_store, _image_storage, _identity_client
    _document_store = None
    _image_storage = None
    _identity_client = None


def get_current_user_id(
    authorization: str | None = Header(default=None),
    identity: IdentityClient = Depends(get_identity_client),
) -> str:
    """Validates the `Authorization: Bearer <ID token>` header."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    try:
        return identity.verify_token(authorization.removeprefix("Bearer ").strip())
    except InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    except IdentityUnavailableError as e:
        logger.error("Token verification unavailable: %s", e)
        raise HTTPException(status_code=503, detail="Authentication unavailable") from e


def require_sysadmin(
    user_id: str = Depends(get_current_user_id),
    store: DocumentStore = Depends(get_document_store),
) -> str:
    user = store.get_user(user_id)
    if user is None or user.role != UserRole.SYSADMIN:
        raise HTTPException(status_code=403, detail="SysAdmin role required")
    return user_id
