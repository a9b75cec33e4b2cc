"""
Pydantic schemas for the Love Journal API.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str
    cloudinary_configured: bool
    env_prefix: str
    timestamp: str


class MemoriesResponse(BaseModel):
    memories: list[dict]
    timestamp: Optional[str] = None


class UploadResponse(BaseModel):
    public_id: str
    secure_url: str
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    created_at: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    folder: Optional[str] = None
    timestamp: str


class MemoryUploadResponse(BaseModel):
    memory_id: str
    folder: str
    images: list[UploadResponse]
    timestamp: str


class DeleteImagesRequest(BaseModel):
    public_id: Optional[str] = None
    publicIds: Optional[list[str]] = None


class AccountStatusResponse(BaseModel):
    user_id: str
    status: str


class CronStatusResponse(BaseModel):
    jobs: dict


class CronHistoryResponse(BaseModel):
    history: list[dict]


class StorageStatsResponse(BaseModel):
    stats: Optional[dict] = None
