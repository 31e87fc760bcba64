"""boto3 client for the Glacier vault with retry logic and typed responses."""

import time
from typing import BinaryIO, Iterator, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError as PydanticValidationError

from common.config import Config
from common.constants import RETRIEVAL_JOB_DESCRIPTION, STREAM_PIECE_SIZE_BYTES
from common.exceptions import IntegrityError, JobFailedError, TransientRemoteError
from common.logging_config import get_logger
from common.types import ByteRange
from vault.schemas import (
    STRATEGY_BYTES_PER_HOUR,
    ArchiveLocation,
    JobOutput,
    JobSummary,
    RetrievalPolicy,
)
from vault.service import StorageService

logger = get_logger(__name__)

RETRYABLE_ERROR_CODES = {
    'ThrottlingException',
    'RequestTimeoutException',
    'ServiceUnavailableException',
    'SlowDownException',
}


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


def _status_code(error: ClientError) -> int:
    return error.response.get('ResponseMetadata', {}).get('HTTPStatusCode', 0)


class GlacierClient(StorageService):
    """Glacier vault access with retry on throttling, 5xx and network failures."""

    def __init__(self, config: Config, client=None):
        """
        Initialize Glacier client.

        Args:
            config: Configuration instance
            client: Optional pre-built boto3 glacier client (testing)
        """
        self.config = config
        self.vault_name = config.get('vault_name')
        self.account_id = config.get('account_id', '-')
        if client is None:
            timeout = config.get_int('timeout')
            client = boto3.client(
                'glacier',
                region_name=config.get('region'),
                config=BotoConfig(
                    connect_timeout=timeout,
                    read_timeout=timeout,
                    retries={'max_attempts': 0},
                ),
            )
        self.client = client
        logger.info(f"Initialized GlacierClient [vault={self.vault_name}]")

    def _call_with_retry(self, operation: str, max_retries: Optional[int] = None, **kwargs) -> dict:
        """
        Call a glacier operation, retrying transient failures with backoff.

        Args:
            operation: boto3 client method name
            max_retries: Max retry attempts (uses config default if None)
            **kwargs: Arguments for the operation

        Returns:
            Raw response dictionary

        Raises:
            TransientRemoteError: If retries are exhausted or the request is rejected
        """
        retry_config = self.config.get_retry_config()
        max_retries = max_retries if max_retries is not None else retry_config['max_retries']
        backoff = retry_config['retry_backoff_multiplier']
        method = getattr(self.client, operation)

        last_error: Optional[Exception] = None
        for attempt in range(max_retries + 1):
            body = kwargs.get('body')
            if body is not None and hasattr(body, 'seek'):
                body.seek(0)

            try:
                response = method(**kwargs)
                logger.debug(f"{operation} succeeded (attempt {attempt + 1})")
                return response
            except ClientError as e:
                code = _error_code(e)
                if code not in RETRYABLE_ERROR_CODES and _status_code(e) < 500:
                    raise
                last_error = e
            except BotoCoreError as e:
                last_error = e

            if attempt < max_retries:
                delay = backoff ** attempt
                logger.warning(
                    f"Transient error (attempt {attempt + 1}/{max_retries + 1}): "
                    f"{operation} error={last_error}, retrying in {delay}s"
                )
                time.sleep(delay)

        logger.error(f"{operation} failed after {max_retries + 1} attempts: {last_error}")
        raise TransientRemoteError(f"{operation} failed: {last_error}")

    def _call(self, operation: str, **kwargs) -> dict:
        """Call an operation, reporting rejected requests as TransientRemoteError."""
        try:
            return self._call_with_retry(operation, **kwargs)
        except ClientError as e:
            raise TransientRemoteError(f"{operation} rejected ({_error_code(e)}): {e}") from e

    def get_retrieval_policy(self) -> RetrievalPolicy:
        response = self._call('get_data_retrieval_policy', accountId=self.account_id)
        try:
            rule = response['Policy']['Rules'][0]
            return RetrievalPolicy.model_validate(rule)
        except (KeyError, IndexError, TypeError, PydanticValidationError) as e:
            raise TransientRemoteError(f"Unreadable retrieval policy: {response!r}") from e

    def set_retrieval_policy(self, bytes_per_hour: int) -> None:
        logger.info(f"Setting retrieval policy to {bytes_per_hour} bytes/hour")
        self._call(
            'set_data_retrieval_policy',
            accountId=self.account_id,
            Policy={'Rules': [{'Strategy': STRATEGY_BYTES_PER_HOUR, 'BytesPerHour': bytes_per_hour}]},
        )

    def initiate_retrieval_job(
        self,
        archive_id: str,
        byte_range: ByteRange,
        description: Optional[str] = None
    ) -> str:
        response = self._call(
            'initiate_job',
            accountId=self.account_id,
            vaultName=self.vault_name,
            jobParameters={
                'Type': 'archive-retrieval',
                'ArchiveId': archive_id,
                'RetrievalByteRange': str(byte_range),
                'Description': description or RETRIEVAL_JOB_DESCRIPTION,
            },
        )
        job_id = response.get('jobId')
        if not job_id:
            raise TransientRemoteError(f"initiate_job returned no job id: {response!r}")
        return job_id

    def list_jobs(self) -> List[JobSummary]:
        jobs: List[JobSummary] = []
        marker = None
        while True:
            kwargs = {'accountId': self.account_id, 'vaultName': self.vault_name}
            if marker:
                kwargs['marker'] = marker
            response = self._call('list_jobs', **kwargs)
            try:
                jobs.extend(JobSummary.model_validate(entry) for entry in response['JobList'])
            except (KeyError, TypeError, PydanticValidationError) as e:
                raise TransientRemoteError(f"Unreadable job list: {e}") from e
            marker = response.get('Marker')
            if not marker:
                return jobs

    def describe_job(self, job_id: str) -> JobSummary:
        try:
            response = self._call_with_retry(
                'describe_job', accountId=self.account_id, vaultName=self.vault_name, jobId=job_id
            )
        except ClientError as e:
            if _error_code(e) == 'ResourceNotFoundException':
                raise JobFailedError(f"Job {job_id} no longer exists") from e
            raise TransientRemoteError(f"describe_job rejected ({_error_code(e)}): {e}") from e
        try:
            return JobSummary.model_validate(response)
        except PydanticValidationError as e:
            raise TransientRemoteError(f"Unreadable job status for {job_id}: {e}") from e

    def fetch_job_output(self, job_id: str) -> JobOutput:
        try:
            response = self._call_with_retry(
                'get_job_output', accountId=self.account_id, vaultName=self.vault_name, jobId=job_id
            )
        except ClientError as e:
            if _error_code(e) == 'ResourceNotFoundException':
                raise JobFailedError(f"Output of job {job_id} no longer exists") from e
            raise TransientRemoteError(f"get_job_output rejected ({_error_code(e)}): {e}") from e

        stream = response.get('body')
        if stream is None:
            raise TransientRemoteError(f"get_job_output for {job_id} returned no body")
        return JobOutput(
            body=self._iter_stream(stream),
            checksum=response.get('checksum'),
            close=stream.close,
        )

    def _iter_stream(self, stream) -> Iterator[bytes]:
        try:
            for piece in stream.iter_chunks(STREAM_PIECE_SIZE_BYTES):
                yield piece
        except BotoCoreError as e:
            raise TransientRemoteError(f"Job output stream interrupted: {e}") from e

    def upload_archive(self, description: str, body: BinaryIO, checksum: str) -> ArchiveLocation:
        response = self._call(
            'upload_archive',
            accountId=self.account_id,
            vaultName=self.vault_name,
            archiveDescription=description,
            checksum=checksum,
            body=body,
        )
        return self._archive_location(response)

    def initiate_multipart_upload(self, description: str, part_size: int) -> str:
        response = self._call(
            'initiate_multipart_upload',
            accountId=self.account_id,
            vaultName=self.vault_name,
            archiveDescription=description,
            partSize=str(part_size),
        )
        upload_id = response.get('uploadId')
        if not upload_id:
            raise TransientRemoteError(f"initiate_multipart_upload returned no upload id: {response!r}")
        return upload_id

    def upload_part(
        self,
        upload_id: str,
        byte_range: ByteRange,
        body: BinaryIO,
        checksum: str
    ) -> None:
        self._call(
            'upload_multipart_part',
            accountId=self.account_id,
            vaultName=self.vault_name,
            uploadId=upload_id,
            checksum=checksum,
            range=f"bytes {byte_range.start}-{byte_range.end}/*",
            body=body,
        )

    def complete_multipart_upload(
        self,
        upload_id: str,
        archive_size: int,
        checksum: str
    ) -> ArchiveLocation:
        try:
            response = self._call_with_retry(
                'complete_multipart_upload',
                accountId=self.account_id,
                vaultName=self.vault_name,
                uploadId=upload_id,
                archiveSize=str(archive_size),
                checksum=checksum,
            )
        except ClientError as e:
            if _error_code(e) == 'InvalidParameterValueException':
                raise IntegrityError(f"Completion of upload {upload_id} rejected: {e}") from e
            raise TransientRemoteError(f"complete_multipart_upload rejected ({_error_code(e)}): {e}") from e
        return self._archive_location(response)

    def abort_multipart_upload(self, upload_id: str) -> None:
        logger.info(f"Aborting multipart upload {upload_id}")
        self._call(
            'abort_multipart_upload',
            accountId=self.account_id,
            vaultName=self.vault_name,
            uploadId=upload_id,
        )

    def _archive_location(self, response: dict) -> ArchiveLocation:
        archive_id = response.get('archiveId')
        if not archive_id and response.get('location'):
            archive_id = response['location'].rstrip('/').rsplit('/', 1)[-1]
        try:
            return ArchiveLocation(
                archive_id=archive_id,
                location=response.get('location'),
                checksum=response.get('checksum'),
            )
        except PydanticValidationError as e:
            raise TransientRemoteError(f"Upload response without archive id: {response!r}") from e
