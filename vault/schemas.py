"""Pydantic models for storage service responses."""

from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field

from common.types import ByteRange

STRATEGY_BYTES_PER_HOUR = "BytesPerHour"
STRATEGY_FREE_TIER = "FreeTier"
STRATEGY_NONE = "None"

STATUS_IN_PROGRESS = "InProgress"
STATUS_SUCCEEDED = "Succeeded"
STATUS_FAILED = "Failed"


class ServiceModel(BaseModel):
    """Base for response models; accepts the service's field names or ours."""
    model_config = ConfigDict(populate_by_name=True, extra='ignore', frozen=True)


class RetrievalPolicy(ServiceModel):
    """Account-wide data retrieval policy (first rule only)."""
    strategy: str = Field(alias='Strategy')
    bytes_per_hour: Optional[int] = Field(default=None, alias='BytesPerHour')

    def is_byte_rate(self) -> bool:
        return self.strategy == STRATEGY_BYTES_PER_HOUR and self.bytes_per_hour is not None


class JobSummary(ServiceModel):
    """One entry of the service's job list, or a describe-job result."""
    job_id: str = Field(alias='JobId')
    completed: bool = Field(alias='Completed')
    status_code: str = Field(alias='StatusCode')
    archive_id: Optional[str] = Field(default=None, alias='ArchiveId')
    retrieval_byte_range: Optional[str] = Field(default=None, alias='RetrievalByteRange')
    archive_size: Optional[int] = Field(default=None, alias='ArchiveSizeInBytes')
    action: Optional[str] = Field(default=None, alias='Action')

    @property
    def byte_range(self) -> Optional[ByteRange]:
        if not self.retrieval_byte_range:
            return None
        try:
            return ByteRange.parse(self.retrieval_byte_range)
        except ValueError:
            return None

    def matches(self, archive_id: str, byte_range: ByteRange) -> bool:
        return self.archive_id == archive_id and self.byte_range == byte_range

    @property
    def succeeded(self) -> bool:
        return self.completed and self.status_code == STATUS_SUCCEEDED

    @property
    def in_progress(self) -> bool:
        return not self.completed and self.status_code == STATUS_IN_PROGRESS


class ArchiveLocation(ServiceModel):
    """Result of a finished upload."""
    archive_id: str = Field(alias='archiveId')
    location: Optional[str] = None
    checksum: Optional[str] = None


@dataclass
class JobOutput:
    """Streamed output of a completed retrieval job."""
    body: Iterator[bytes]
    checksum: Optional[str] = None
    close: Optional[Callable[[], None]] = None
