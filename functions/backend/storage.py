"""
Image storage abstraction for Cloudinary and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import cloudinary
import cloudinary.api
import cloudinary.uploader

from shared.constants import CLOUDINARY_PAGE_SIZE

# Destroy results that mean the image is gone.
DESTROY_OK_RESULTS = ("ok", "not found")


class ImageStorageClient(Protocol):
    """Defines the operations the jobs and API need from image hosting."""

    def destroy(self, public_id: str) -> str:
        ...

    def list_resources(
        self,
        prefix: str,
        next_cursor: Optional[str] = None,
        max_results: int = CLOUDINARY_PAGE_SIZE,
    ) -> tuple[list[dict], Optional[str]]:
        ...

    def upload(self, file: Any, **options) -> dict:
        ...

    def usage(self) -> dict:
        ...


@dataclass
class InMemoryImageStorage:
    """
    Test double for image hosting.

    `destroy_results` maps a public id to the result string (or exception)
    its destroy call should produce.
    """

    base_url: str = "https://res.example.test/image/upload"
    resources: dict = field(default_factory=dict)
    destroy_results: dict = field(default_factory=dict)
    destroyed: list = field(default_factory=list)

    def add_resource(self, public_id: str, **fields) -> dict:
        resource = {
            "public_id": public_id,
            "secure_url": f"{self.base_url}/{public_id}.jpg",
            "created_at": datetime.now(timezone.utc).isoformat(),
            "folder": public_id.rsplit("/", 1)[0] if "/" in public_id else "",
            "tags": [],
            "bytes": 0,
        }
        resource.update(fields)
        self.resources[public_id] = resource
        return resource

    def destroy(self, public_id: str) -> str:
        self.destroyed.append(public_id)
        outcome = self.destroy_results.get(public_id)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is not None:
            return outcome
        if self.resources.pop(public_id, None) is None:
            return "not found"
        return "ok"

    def list_resources(
        self,
        prefix: str,
        next_cursor: Optional[str] = None,
        max_results: int = CLOUDINARY_PAGE_SIZE,
    ) -> tuple[list[dict], Optional[str]]:
        matching = [
            r for key, r in sorted(self.resources.items()) if key.startswith(prefix)
        ]
        start = int(next_cursor) if next_cursor else 0
        page = matching[start : start + max_results]
        end = start + len(page)
        return page, (str(end) if end < len(matching) else None)

    def upload(self, file: Any, **options) -> dict:
        folder = options.get("folder") or ""
        name = options.get("public_id") or f"img{len(self.resources) + 1}"
        public_id = f"{folder}/{name}" if folder else name
        return self.add_resource(
            public_id,
            folder=folder,
            tags=list(options.get("tags") or []),
            context=dict(options.get("context") or {}),
            width=options.get("width"),
            height=options.get("height"),
            format="jpg",
        )

    def usage(self) -> dict:
        return {
            "storage": {"usage": sum(r.get("bytes", 0) for r in self.resources.values())},
            "resources": len(self.resources),
        }


@dataclass
class CloudinaryStorageClient:
    """
    Cloudinary-backed image storage. Credentials are passed on every call so
    several clients can coexist in one process.
    """

    cloud_name: str
    api_key: str
    api_secret: str

    def __post_init__(self):
        self._credentials = {
            "cloud_name": self.cloud_name.strip(),
            "api_key": self.api_key.strip(),
            "api_secret": self.api_secret.strip(),
        }

    def destroy(self, public_id: str) -> str:
        # invalidate=True also purges the CDN cache.
        response = cloudinary.uploader.destroy(
            public_id, invalidate=True, **self._credentials
        )
        return response.get("result", "")

    def list_resources(
        self,
        prefix: str,
        next_cursor: Optional[str] = None,
        max_results: int = CLOUDINARY_PAGE_SIZE,
    ) -> tuple[list[dict], Optional[str]]:
        params = {
            "type": "upload",
            "resource_type": "image",
            "prefix": prefix,
            "context": True,
            "tags": True,
            "max_results": max_results,
        }
        if next_cursor:
            params["next_cursor"] = next_cursor
        response = cloudinary.api.resources(**params, **self._credentials)
        return list(response.get("resources", [])), response.get("next_cursor")

    def upload(self, file: Any, **options) -> dict:
        return dict(cloudinary.uploader.upload(file, **options, **self._credentials))

    def usage(self) -> dict:
        return dict(cloudinary.api.usage(**self._credentials))
