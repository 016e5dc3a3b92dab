"""Data model shared by the gateway, stores, and conversion worker."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredObject(BaseModel):
    """An object held by a store. Never mutated; a re-upload replaces it."""

    model_config = ConfigDict(frozen=True)

    bucket: str
    key: str = Field(min_length=1)
    body: bytes
    content_type: str = "application/octet-stream"
    last_modified: datetime = Field(default_factory=utcnow)

    @property
    def size(self) -> int:
        return len(self.body)


class ObjectInfo(BaseModel):
    """Object metadata without the payload."""

    bucket: str
    key: str
    size: int
    content_type: str = "application/octet-stream"
    last_modified: datetime


class UploadGrant(BaseModel):
    """
    Time-limited permission to write a single key in a single bucket.

    The issuer keeps no record of a grant; everything needed to check it
    travels with it.
    """

    model_config = ConfigDict(frozen=True)

    bucket: str
    key: str = Field(min_length=1)
    expires_at: datetime
    url: str
    operation: str = "put"

    def is_expired(self, now: datetime) -> bool:
        """A grant is still valid at exactly its expiry instant."""
        return now > self.expires_at

    def permits(self, key: str, now: datetime, bucket: Optional[str] = None) -> bool:
        """
        Check whether this grant allows writing ``key`` at time ``now``.

        Args:
            key: Object key the caller wants to write.
            now: Time of the write attempt.
            bucket: Target bucket, if it should be checked as well.

        Returns:
            True only for the exact granted key (and bucket) before expiry.
        """
        if bucket is not None and bucket != self.bucket:
            return False
        return key == self.key and not self.is_expired(now)


class ConversionStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ConversionTier(str, Enum):
    INLINE = "inline"
    BATCH = "batch"


class ConversionRecord(BaseModel):
    """Outcome of converting one raw object into at most one processed object."""

    raw_bucket: str
    raw_key: str
    processed_bucket: Optional[str] = None
    processed_key: Optional[str] = None
    status: ConversionStatus = ConversionStatus.PENDING
    tier: ConversionTier = ConversionTier.INLINE
    row_count: Optional[int] = None
    column_count: Optional[int] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    batch_run_id: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def processed_location(self) -> Optional[str]:
        if not self.processed_key:
            return None
        return f"s3://{self.processed_bucket}/{self.processed_key}"

    def summary(self) -> Dict[str, Any]:
        """JSON-safe view used in handler responses and notifications."""
        return self.model_dump(mode="json")
