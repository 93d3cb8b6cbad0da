"""
Pydantic models for BOS Storage.

These models describe the multipart upload state, the JSON documents exchanged
with the service, and the configuration accepted by the client and the upload
engine.
"""

import mimetypes
import os
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError

KiB = 1024
MiB = 1024 * KiB
TiB = 1024**4

MIN_PART_NUMBER = 1
MAX_PART_NUMBER = 10000
MAX_UPLOAD_FILE_SIZE = int(48.8 * TiB)
DEFAULT_CHUNK_SIZE = 5 * MiB
DEFAULT_MIN_PART_SIZE = 100 * KiB
DEFAULT_PART_CONCURRENCY = 5
MAX_RETRY_COUNT = 3

DEFAULT_ENDPOINT = "https://bj.bcebos.com"


class UploadState(str, Enum):
    """Lifecycle state of an upload session."""

    CREATED = "Created"
    INITIATED = "Initiated"
    RUNNING = "Running"
    PAUSED = "Paused"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    FAILED = "Failed"


TERMINAL_STATES = frozenset(
    {UploadState.COMPLETED, UploadState.CANCELLED, UploadState.FAILED}
)


class PartStatus(str, Enum):
    """Upload status of a single part."""

    PENDING = "Pending"
    UPLOADING = "Uploading"
    DONE = "Done"
    FAILED = "Failed"


class StorageClass(str, Enum):
    """Storage classes accepted when initiating an upload."""

    STANDARD = "STANDARD"
    STANDARD_IA = "STANDARD_IA"
    COLD = "COLD"
    ARCHIVE = "ARCHIVE"


# Upload state
class Part(BaseModel):
    """One contiguous byte range of the source object."""

    part_number: int = Field(..., ge=MIN_PART_NUMBER, le=MAX_PART_NUMBER)
    offset: int = Field(..., ge=0, description="Byte offset within the source")
    size: int = Field(..., gt=0, description="Byte length of the part")
    status: PartStatus = Field(PartStatus.PENDING)
    etag: Optional[str] = Field(None, description="ETag returned by the service")
    retry_count: int = Field(0, ge=0, description="Retries made for this part")

    @property
    def end(self) -> int:
        return self.offset + self.size


# Wire documents
class PartETag(BaseModel):
    """Entry of the completion request body."""

    part_number: int = Field(..., alias="partNumber")
    etag: str = Field(..., alias="eTag")

    model_config = ConfigDict(populate_by_name=True)


class CompleteMultipartUploadRequest(BaseModel):
    """Body of the completion call, parts ascending by part number."""

    parts: List[PartETag]

    @field_validator("parts")
    @classmethod
    def validate_order(cls, v: List[PartETag]) -> List[PartETag]:
        numbers = [part.part_number for part in v]
        if numbers != sorted(set(numbers)):
            raise ValueError("parts must be unique and ascending by partNumber")
        return v

    def to_body(self) -> str:
        return self.model_dump_json(by_alias=True)


class InitiateMultipartUploadResult(BaseModel):
    bucket: Optional[str] = None
    key: Optional[str] = None
    upload_id: str = Field(..., alias="uploadId")

    model_config = ConfigDict(populate_by_name=True)


class CompleteMultipartUploadResult(BaseModel):
    location: Optional[str] = None
    bucket: Optional[str] = None
    key: Optional[str] = None
    etag: Optional[str] = Field(None, alias="eTag")

    model_config = ConfigDict(populate_by_name=True)


class ListedPart(BaseModel):
    """A part already stored by the service."""

    part_number: int = Field(..., alias="partNumber")
    etag: str = Field(..., alias="eTag")
    size: int = 0
    last_modified: Optional[datetime] = Field(None, alias="lastModified")

    model_config = ConfigDict(populate_by_name=True)


class ListPartsResult(BaseModel):
    bucket: Optional[str] = None
    key: Optional[str] = None
    upload_id: Optional[str] = Field(None, alias="uploadId")
    part_number_marker: int = Field(0, alias="partNumberMarker")
    next_part_number_marker: int = Field(0, alias="nextPartNumberMarker")
    max_parts: Optional[int] = Field(None, alias="maxParts")
    is_truncated: bool = Field(False, alias="isTruncated")
    parts: List[ListedPart] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class MultipartUploadInfo(BaseModel):
    key: str
    upload_id: str = Field(..., alias="uploadId")
    initiated: Optional[datetime] = None
    storage_class: Optional[str] = Field(None, alias="storageClass")

    model_config = ConfigDict(populate_by_name=True)


class ListMultipartUploadsResult(BaseModel):
    bucket: Optional[str] = None
    prefix: Optional[str] = None
    key_marker: Optional[str] = Field(None, alias="keyMarker")
    next_key_marker: Optional[str] = Field(None, alias="nextKeyMarker")
    is_truncated: bool = Field(False, alias="isTruncated")
    uploads: List[MultipartUploadInfo] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


# Notifications
class ProgressEvent(BaseModel):
    """Bytes uploaded so far across all parts."""

    uploaded_bytes: int
    total_bytes: int
    percent: float
    speed_mbps: float = 0.0
    part_number: Optional[int] = None


class StateChangeEvent(BaseModel):
    """Lifecycle transition or per-part notice emitted by a session."""

    state: UploadState
    message: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)


# Configuration Models
class BosConfig(BaseModel):
    """Client configuration model."""

    access_key_id: str = Field(..., min_length=1, description="BOS access key ID")
    secret_access_key: str = Field(..., min_length=1, description="BOS secret access key")
    endpoint: str = Field(DEFAULT_ENDPOINT, description="Service endpoint URL")
    session_token: Optional[str] = Field(None, description="STS session token")
    timeout: int = Field(30, ge=1, le=300, description="Request timeout in seconds")
    path_style: bool = Field(False, description="Address buckets in the path")

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        if "://" not in v:
            v = f"https://{v}"
        return v.rstrip("/")

    @classmethod
    def from_env(cls, **overrides: Any) -> "BosConfig":
        """Build a config from ``BOS_*`` environment variables."""
        values = {
            "access_key_id": os.getenv("BOS_ACCESS_KEY_ID"),
            "secret_access_key": os.getenv("BOS_SECRET_ACCESS_KEY"),
            "endpoint": os.getenv("BOS_ENDPOINT"),
            "session_token": os.getenv("BOS_SESSION_TOKEN"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**{k: v for k, v in values.items() if v is not None})


class UploadConfig(BaseModel):
    """Tuning knobs for one multipart upload."""

    chunk_size: int = Field(DEFAULT_CHUNK_SIZE, gt=0, description="Part size in bytes")
    part_concurrency: int = Field(
        DEFAULT_PART_CONCURRENCY, ge=1, le=100, description="Parts uploaded at once"
    )
    max_retry_count: int = Field(MAX_RETRY_COUNT, ge=0, description="Retries per part")
    min_part_size: int = Field(
        DEFAULT_MIN_PART_SIZE, ge=1, description="Smallest size for a non-last part"
    )
    retry_backoff: float = Field(
        0.0, ge=0, description="Base delay in seconds between retries (0 = immediate)"
    )
    storage_class: StorageClass = Field(StorageClass.STANDARD)
    content_type: Optional[str] = Field(None, description="MIME type of the object")

    @classmethod
    def build(cls, **options: Any) -> "UploadConfig":
        """Validate options, raising :class:`ValidationError` on bad input."""
        try:
            return cls(**{k: v for k, v in options.items() if v is not None})
        except PydanticValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(loc) for loc in error["loc"])
            raise ValidationError(field, options.get(field), error["msg"]) from e

    def resolve_content_type(self, object_name: str) -> str:
        if self.content_type:
            return self.content_type
        guessed, _ = mimetypes.guess_type(object_name)
        return guessed or "application/octet-stream"
