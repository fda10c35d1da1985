"""
Models for production uploader.

Immutable dataclasses for values that cross collaborator boundaries,
enums for the closed vocabularies (categories, folder groups, task status).
"""
import mimetypes
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional


class FolderGroup(Enum):
    """Remote sub-folder family a category is stored in."""
    RAW_FOOTAGE = "raw-footage"
    EDITED_VIDEO = "edited-video"
    FINAL_VIDEO = "final-video"

    @property
    def folder_name(self) -> str:
        return _FOLDER_NAMES[self]


_FOLDER_NAMES = {
    FolderGroup.RAW_FOOTAGE: "Raw Footage",
    FolderGroup.EDITED_VIDEO: "Edited Videos",
    FolderGroup.FINAL_VIDEO: "Final Videos",
}


class FileCategory(Enum):
    """Kind of production file being uploaded."""
    PRIMARY_FOOTAGE = "primary-footage"
    SUPPLEMENTARY_FOOTAGE = "supplementary-footage"
    HOOK = "hook"
    BODY = "body"
    CALL_TO_ACTION = "call-to-action"
    AUDIO_CLIP = "audio-clip"
    EDITED_VIDEO = "edited-video"
    FINAL_VIDEO = "final-video"
    OTHER = "other"

    @property
    def group(self) -> FolderGroup:
        if self is FileCategory.EDITED_VIDEO:
            return FolderGroup.EDITED_VIDEO
        if self is FileCategory.FINAL_VIDEO:
            return FolderGroup.FINAL_VIDEO
        return FolderGroup.RAW_FOOTAGE

    @property
    def sequence_tag(self) -> Optional[str]:
        """Tag used in sequence-numbered names, None if the file keeps its name."""
        if self.group is FolderGroup.RAW_FOOTAGE:
            return "raw"
        return None

    @classmethod
    def parse(cls, value: str) -> "FileCategory":
        """Parse a category from its value or member name (case-insensitive)."""
        normalized = value.strip().lower().replace("_", "-")
        for member in cls:
            if member.value == normalized or member.name.lower().replace("_", "-") == normalized:
                return member
        raise ValueError(f"Unknown file category: {value}")


class TaskStatus(Enum):
    """Lifecycle status of an upload task."""
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class SourceFile:
    """Immutable handle to local bytes."""
    path: Path
    name: str
    size: int
    mime_type: str = "application/octet-stream"

    @classmethod
    def from_path(cls, path, mime_type: Optional[str] = None) -> "SourceFile":
        file_path = Path(path)
        guessed, _ = mimetypes.guess_type(file_path.name)
        return cls(
            path=file_path,
            name=file_path.name,
            size=file_path.stat().st_size,
            mime_type=mime_type or guessed or "application/octet-stream",
        )

    @property
    def extension(self) -> Optional[str]:
        suffix = os.path.splitext(self.name)[1]
        return suffix[1:] if len(suffix) > 1 else None


@dataclass(frozen=True)
class Project:
    """Project the batch belongs to."""
    id: str
    content_id: Optional[str] = None

    @property
    def folder_key(self) -> str:
        return self.content_id or self.id


@dataclass(frozen=True)
class RemoteResult:
    """Outcome of a successful remote transfer."""
    remote_id: str
    remote_link: str
    size_bytes: int = 0


@dataclass(frozen=True)
class FileRecordRequest:
    """Payload for creating a file record in the record store."""
    project_id: str
    category: FileCategory
    display_name: str
    remote_link: str
    remote_id: str
    size_bytes: int
    mime_type: str

    def to_payload(self) -> dict:
        return {
            "project_id": self.project_id,
            "file_type": self.category.value,
            "file_name": self.display_name,
            "file_url": self.remote_link,
            "file_id": self.remote_id,
            "file_size": self.size_bytes,
            "mime_type": self.mime_type,
        }


@dataclass(frozen=True)
class PersistedFileRecord:
    """File record as stored in the system of record."""
    id: str
    project_id: str
    category: FileCategory
    display_name: str
    remote_link: str
    remote_id: str
    size_bytes: int = 0
    mime_type: Optional[str] = None
    is_deleted: bool = False
    created_at: Optional[datetime] = None

    @classmethod
    def from_payload(cls, data: dict) -> "PersistedFileRecord":
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
        return cls(
            id=str(data["id"]),
            project_id=str(data.get("project_id", "")),
            category=FileCategory.parse(data.get("file_type", "other")),
            display_name=data.get("file_name", ""),
            remote_link=data.get("file_url", ""),
            remote_id=data.get("file_id", ""),
            size_bytes=int(data.get("file_size") or 0),
            mime_type=data.get("mime_type"),
            is_deleted=bool(data.get("is_deleted", False)),
            created_at=created_at,
        )


@dataclass(frozen=True)
class TaskProgress:
    """Snapshot of byte progress for one task."""
    bytes_sent: int = 0
    bytes_total: int = 0
    percent: int = 0


@dataclass(frozen=True)
class QueueCounts:
    """Aggregate task counts, always derived from task statuses."""
    pending: int = 0
    uploading: int = 0
    complete: int = 0
    error: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.uploading + self.complete + self.error


@dataclass(frozen=True)
class OrphanWarning:
    """Remote object that exists without a record and needs an operator."""
    task_id: str
    file_name: str
    remote_id: str
    message: str


@dataclass(frozen=True)
class BatchSummary:
    """Result of a queue run."""
    completed_count: int
    failed_count: int
    orphan_warnings: List[OrphanWarning] = field(default_factory=list)
    paused_count: int = 0
    cancelled_count: int = 0
    auth_required: bool = False

    @property
    def has_orphans(self) -> bool:
        return bool(self.orphan_warnings)

    @property
    def all_success(self) -> bool:
        return self.failed_count == 0 and self.paused_count == 0


@dataclass(frozen=True)
class UploadConfig:
    """Immutable configuration for upload operations."""
    root_folder: str = "Production Files"
    max_parallel: int = 1
    default_extension: str = "mov"
    chunk_size: int = 16 * 1024 * 1024  # must be a multiple of 256 KiB
    max_retries: int = 3
    progress_interval: float = 0.5  # seconds between progress events
    request_timeout: int = 60

    @classmethod
    def from_env(cls) -> "UploadConfig":
        defaults = cls()
        chunk_mb = os.getenv("PRODUCTION_UPLOAD_CHUNK_MB")
        return cls(
            root_folder=os.getenv("PRODUCTION_UPLOAD_ROOT_FOLDER", defaults.root_folder),
            max_parallel=max(1, int(os.getenv("PRODUCTION_UPLOAD_MAX_PARALLEL", defaults.max_parallel))),
            chunk_size=int(chunk_mb) * 1024 * 1024 if chunk_mb else defaults.chunk_size,
        )
