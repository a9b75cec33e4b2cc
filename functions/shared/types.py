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


from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import List, Optional


class UserStatus(StrEnum):
    ACTIVE = "Active"
    SUSPENDED = "Suspended"
    REMOVED = "Removed"


class UserRole(StrEnum):
    USER = "User"
    SYSADMIN = "SysAdmin"


class CronRunStatus(StrEnum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


@dataclass
class UserRecord:
    """A user document from the `users` collection."""

    id: str
    email: Optional[str] = None
    status: UserStatus = UserStatus.ACTIVE
    removed_at: Optional[datetime] = None
    role: UserRole = UserRole.USER


@dataclass
class MemoryRecord:
    """A memory document from the `memories` collection."""

    id: str
    user_id: str
    title: str = ""
    text: str = ""
    date: Optional[str] = None
    location: Optional[str] = None
    photos: List[str] = field(default_factory=list)
    cloudinary_public_ids: List[str] = field(default_factory=list)

    def image_refs(self) -> List[str]:
        """Image references, preferring public ids over delivery URLs."""
        return list(self.cloudinary_public_ids or self.photos or [])


@dataclass
class MemoryImage:
    public_id: str
    secure_url: str
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    created_at: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    folder: Optional[str] = None
    context: dict = field(default_factory=dict)


@dataclass
class Memory:
    """A memory assembled from Cloudinary images grouped by memory id."""

    id: str
    title: str
    text: str
    date: Optional[str]
    location: Optional[str] = None
    images: List[MemoryImage] = field(default_factory=list)
    created_at: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    folder: Optional[str] = None


@dataclass
class ReapResult:
    """Outcome of one account deletion batch."""

    accounts_deleted: int = 0
    accounts_failed: int = 0
    errors: List[str] = field(default_factory=list)
    execution_time_ms: int = 0

    @property
    def status(self) -> CronRunStatus:
        if self.accounts_failed == 0:
            return CronRunStatus.SUCCESS
        return CronRunStatus.PARTIAL_SUCCESS

    @property
    def last_error(self) -> Optional[str]:
        return ", ".join(self.errors) if self.errors else None


@dataclass
class CleanupResult:
    history_deleted: int = 0
    stats_deleted: int = 0
    execution_time_ms: int = 0

    @property
    def records_deleted(self) -> int:
        return self.history_deleted + self.stats_deleted
