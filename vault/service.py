"""Operations consumed from the cold-storage service.

StorageService is the seam between the transfer engine and the remote vault.
GlacierClient implements it on top of boto3; tests substitute an in-memory
vault. Every method may raise TransientRemoteError.
"""

from typing import BinaryIO, List, Optional

from common.types import ByteRange
from vault.schemas import ArchiveLocation, JobOutput, JobSummary, RetrievalPolicy


class StorageService:
    """Interface of the remote vault used by the upload and retrieval pipelines."""

    def get_retrieval_policy(self) -> RetrievalPolicy:
        raise NotImplementedError

    def set_retrieval_policy(self, bytes_per_hour: int) -> None:
        raise NotImplementedError

    def initiate_retrieval_job(
        self,
        archive_id: str,
        byte_range: ByteRange,
        description: Optional[str] = None
    ) -> str:
        """Start staging one byte range of an archive; returns the job id."""
        raise NotImplementedError

    def list_jobs(self) -> List[JobSummary]:
        raise NotImplementedError

    def describe_job(self, job_id: str) -> JobSummary:
        raise NotImplementedError

    def fetch_job_output(self, job_id: str) -> JobOutput:
        raise NotImplementedError

    def upload_archive(self, description: str, body: BinaryIO, checksum: str) -> ArchiveLocation:
        raise NotImplementedError

    def initiate_multipart_upload(self, description: str, part_size: int) -> str:
        """Open a multipart session; returns the upload id."""
        raise NotImplementedError

    def upload_part(
        self,
        upload_id: str,
        byte_range: ByteRange,
        body: BinaryIO,
        checksum: str
    ) -> None:
        raise NotImplementedError

    def complete_multipart_upload(
        self,
        upload_id: str,
        archive_size: int,
        checksum: str
    ) -> ArchiveLocation:
        """
        Finish a multipart session.

        Raises:
            IntegrityError: If the service rejects the size or tree hash
        """
        raise NotImplementedError

    def abort_multipart_upload(self, upload_id: str) -> None:
        raise NotImplementedError
