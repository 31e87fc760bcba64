"""Chunked, job-based retrieval of one archive with offset reassembly.

Each block of the archive moves through

    needed -> requested -> ready -> fetched      (terminal: failed)

needed -> requested   find a job for (archive id, exact byte range) in the
                      service's job list, or initiate one. Reusing listed
                      jobs is what makes a restarted retrieval resume without
                      paying for the same range twice.
requested -> ready    poll the job until it completes.
ready -> fetched      stream the job output into the output file at the
                      block's offset.

While block i is being fetched, block i+1 has already been requested, since
staging a job takes hours and downloading a block takes minutes.
"""

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Literal, Optional, Union

from archiver.encryptor import Encryptor
from common.constants import (
    ARCHIVE_MAX_ATTEMPTS,
    ARCHIVE_RETRY_DELAY_SECONDS,
    FETCH_MAX_ATTEMPTS,
    FETCH_RETRY_DELAY_SECONDS,
    FREE_SPACE_MARGIN_BYTES,
    JOB_POLL_INTERVAL_SECONDS,
    JOB_STATUS_MAX_FAILURES,
    RETRIEVAL_BLOCK_SIZE_BYTES,
    RETRIEVAL_JOB_DESCRIPTION,
)
from common.exceptions import (
    CapacityError,
    EncryptionError,
    IntegrityError,
    JobFailedError,
    RetrievalError,
    TransientRemoteError,
)
from common.file_window import free_bytes
from common.logging_config import get_logger
from common.types import ByteRange, FileMetadata, split_ranges
from retriever.block_writer import ensure_output_file, verify_block, write_block
from retriever.request_queue import TransferRequest
from vault.schemas import STATUS_FAILED, JobSummary
from vault.service import StorageService

logger = get_logger(__name__)

BlockState = Literal["needed", "requested", "ready", "fetched", "failed"]

NEEDED: BlockState = "needed"
REQUESTED: BlockState = "requested"
READY: BlockState = "ready"
FETCHED: BlockState = "fetched"
FAILED: BlockState = "failed"


@dataclass
class BlockTask:
    """One block of an archive being retrieved."""
    index: int
    byte_range: ByteRange
    state: BlockState = NEEDED
    job_id: Optional[str] = None


def plan_blocks(size: int, block_size: int) -> List[BlockTask]:
    return [BlockTask(index, byte_range) for index, byte_range in enumerate(split_ranges(size, block_size))]


def artifact_name(name: str, tag: str) -> str:
    """
    Name of a status artifact for an archive, e.g. "photos-failed.tar".

    Args:
        name: Archive name
        tag: Status tag inserted before the extension
    """
    stem, dot, ext = name.rpartition('.')
    if not dot or not stem:
        return f"{name}-{tag}"
    return f"{stem}-{tag}.{ext}"


def restore_metadata(path: Path, metadata: FileMetadata) -> None:
    """
    Restore permission bits, ownership and modification time.

    Ownership can only be changed with sufficient privileges; a refused
    chown is logged and the file keeps the current user's ownership.
    """
    os.chmod(path, int(metadata.mode, 8))
    try:
        os.chown(path, metadata.uid, metadata.gid)
    except PermissionError as e:
        logger.warning(f"Could not restore ownership {metadata.uid}:{metadata.gid} on {path}: {e}")
    os.utime(path, (metadata.mtime, metadata.mtime))


class RetrievalPipeline:
    """Retrieves, reassembles and decrypts one archive at a time."""

    def __init__(
        self,
        service: StorageService,
        decryptor: Encryptor,
        request_dir: Union[str, Path],
        work_dir: Union[str, Path],
        block_size: int = RETRIEVAL_BLOCK_SIZE_BYTES,
        poll_interval: float = JOB_POLL_INTERVAL_SECONDS,
        status_max_failures: int = JOB_STATUS_MAX_FAILURES,
        fetch_max_attempts: int = FETCH_MAX_ATTEMPTS,
        fetch_retry_delay: float = FETCH_RETRY_DELAY_SECONDS,
        archive_max_attempts: int = ARCHIVE_MAX_ATTEMPTS,
        archive_retry_delay: float = ARCHIVE_RETRY_DELAY_SECONDS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        free_space: Callable[[Path], int] = free_bytes,
    ):
        self.service = service
        self.decryptor = decryptor
        self.request_dir = Path(request_dir)
        self.work_dir = Path(work_dir)
        self.block_size = block_size
        self.poll_interval = poll_interval
        self.status_max_failures = status_max_failures
        self.fetch_max_attempts = fetch_max_attempts
        self.fetch_retry_delay = fetch_retry_delay
        self.archive_max_attempts = archive_max_attempts
        self.archive_retry_delay = archive_retry_delay
        self.clock = clock
        self.sleep = sleep
        self.free_space = free_space

    # Block transitions

    def find_job(self, archive_id: str, byte_range: ByteRange) -> Optional[JobSummary]:
        """
        Look up a usable job for exactly this archive range.

        Failed jobs are ignored; a succeeded job is preferred over one still
        in progress.
        """
        matches = [
            job for job in self.service.list_jobs()
            if job.matches(archive_id, byte_range) and job.status_code != STATUS_FAILED
        ]
        if not matches:
            return None
        for job in matches:
            if job.succeeded:
                return job
        return matches[0]

    def request_block(self, archive_id: str, block: BlockTask) -> None:
        """
        needed -> requested (or straight to ready when a listed job already completed).

        Raises:
            TransientRemoteError: If the job list or job initiation failed
        """
        existing = self.find_job(archive_id, block.byte_range)
        if existing is not None:
            block.job_id = existing.job_id
            block.state = READY if existing.succeeded else REQUESTED
            logger.info(
                f"Block {block.index} ({block.byte_range}) already has job {existing.job_id} "
                f"({existing.status_code})"
            )
            return

        block.job_id = self.service.initiate_retrieval_job(
            archive_id, block.byte_range, RETRIEVAL_JOB_DESCRIPTION
        )
        block.state = REQUESTED
        logger.info(f"Block {block.index} ({block.byte_range}): initiated job {block.job_id}")

    def await_ready(self, block: BlockTask) -> None:
        """
        requested -> ready, polling the job on a fixed interval.

        Raises:
            JobFailedError: If the job failed or reports an unknown status
            RetrievalError: If the status stayed unreadable too many times
        """
        failures = 0
        while block.state == REQUESTED:
            try:
                status = self.service.describe_job(block.job_id)
            except TransientRemoteError as e:
                failures += 1
                if failures >= self.status_max_failures:
                    block.state = FAILED
                    raise RetrievalError(
                        f"Unable to get status of job {block.job_id} after {failures} tries: {e}"
                    ) from e
                logger.warning(
                    f"Unable to get job completion status ({failures}/{self.status_max_failures}); "
                    f"waiting {self.poll_interval}s and trying again"
                )
                self.sleep(self.poll_interval)
                continue

            if status.succeeded:
                block.state = READY
            elif status.in_progress:
                logger.debug(f"Job {block.job_id} for block {block.index} still in progress")
                self.sleep(self.poll_interval)
            else:
                block.state = FAILED
                raise JobFailedError(
                    f"Job {block.job_id} for block {block.index} failed: "
                    f"status {status.status_code}, completed={status.completed}"
                )

    def fetch_block(self, block: BlockTask, output_path: Path) -> None:
        """
        ready -> fetched, writing the job output at the block's offset.

        Raises:
            RetrievalError: If every fetch attempt failed
            OSError: If the output file cannot be written; not retried
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.fetch_max_attempts + 1):
            try:
                job_output = self.service.fetch_job_output(block.job_id)
                try:
                    written = write_block(output_path, block.byte_range.start, job_output.body)
                finally:
                    if job_output.close is not None:
                        job_output.close()
                verify_block(output_path, block.byte_range, written, job_output.checksum)
                block.state = FETCHED
                logger.info(f"Successfully grabbed block {block.index} on try {attempt}")
                return
            except (TransientRemoteError, IntegrityError) as e:
                last_error = e
                logger.warning(
                    f"Error grabbing block {block.index} (try {attempt}/{self.fetch_max_attempts}): {e}"
                )
                if attempt < self.fetch_max_attempts:
                    self.sleep(self.fetch_retry_delay * attempt)

        block.state = FAILED
        raise RetrievalError(
            f"Failed grabbing block {block.index} after {self.fetch_max_attempts} tries: {last_error}"
        )

    # Whole archive

    def retrieve(self, request: TransferRequest) -> Path:
        """
        Retrieve, reassemble, decrypt and publish one archive.

        Args:
            request: Claimed request; its file becomes the in-flight marker

        Returns:
            Path of the published plaintext

        Raises:
            CapacityError: If there is no room; the request file is untouched
            RetrievalError: On any terminal failure, after the marker has been
                moved to the failed name
        """
        self.check_capacity(request.size)

        marker = self.request_dir / artifact_name(request.name, 'AwaitingData')
        if request.path.exists():
            os.replace(request.path, marker)
        else:
            marker.touch()

        started = self.clock()
        self._note(marker, f"Getting {request.name} ({request.archive_id}, {request.size} bytes)")
        output = self.work_dir / f"{request.name}.retrieving"

        try:
            blocks = plan_blocks(request.size, self.block_size)
            self._transfer(request.archive_id, blocks, output, marker)
        except (JobFailedError, RetrievalError) as e:
            self._fail(marker, request.name, str(e))
            raise RetrievalError(f"Retrieval of {request.name} failed: {e}") from e
        except OSError as e:
            self._fail(marker, request.name, f"Could not write {output}: {e}")
            raise RetrievalError(f"Retrieval of {request.name} failed: {e}") from e

        target = self._publish(request, output, marker)
        self._note(marker, f"Retrieval of {target} complete. Time required: {self.clock() - started:.0f}s")
        marker.unlink()
        return target

    def _transfer(self, archive_id: str, blocks: List[BlockTask], output: Path, marker: Path) -> None:
        ensure_output_file(output)
        attempts = 0
        index = 0
        while index < len(blocks):
            block = blocks[index]
            try:
                if block.state == NEEDED:
                    self.request_block(archive_id, block)
                    self._note(marker, f"Block {block.index} ({block.byte_range}): job {block.job_id}")
                self.await_ready(block)
            except TransientRemoteError as e:
                attempts += 1
                if attempts >= self.archive_max_attempts:
                    raise RetrievalError(
                        f"Could not set up a job for block {block.index} after {attempts} tries: {e}"
                    ) from e
                logger.warning(f"Job setup for block {block.index} failed (try {attempts}): {e}")
                block.state = NEEDED
                self.sleep(self.archive_retry_delay)
                continue

            if index + 1 < len(blocks):
                self._prefetch(archive_id, blocks[index + 1])

            self.fetch_block(block, output)
            self._note(marker, f"Block {block.index} fetched")
            attempts = 0
            index += 1

    def _prefetch(self, archive_id: str, block: BlockTask) -> None:
        if block.state != NEEDED:
            return
        try:
            self.request_block(archive_id, block)
        except TransientRemoteError as e:
            logger.warning(f"Could not request block {block.index} ahead of time: {e}")

    def _publish(self, request: TransferRequest, ciphertext: Path, marker: Path) -> Path:
        target = self.request_dir / request.name
        staging = self.request_dir / f".{request.name}.decrypting"
        try:
            self.decryptor.decrypt(ciphertext, staging)
        except EncryptionError as e:
            self._abandon(request, ciphertext, staging, marker, f"File retrieve failed: {e}")
            raise RetrievalError(f"Decryption of {request.name} failed: {e}") from e

        try:
            restore_metadata(staging, request.record.metadata)
            os.replace(staging, target)
        except OSError as e:
            self._abandon(request, ciphertext, staging, marker, f"Could not publish {target}: {e}")
            raise RetrievalError(f"Publishing {request.name} failed: {e}") from e
        ciphertext.unlink()
        return target

    def _abandon(self, request: TransferRequest, ciphertext: Path, staging: Path, marker: Path, reason: str) -> None:
        """Keep the ciphertext and any partial plaintext under failure names for inspection."""
        if staging.exists():
            os.replace(staging, self.request_dir / f"{request.name}-ERROR")
        failed = self.request_dir / artifact_name(request.name, 'failed')
        os.replace(ciphertext, failed)
        self._fail(marker, request.name, reason, failed.with_name(f"{failed.name}.log"))

    def check_capacity(self, size: int) -> None:
        """
        Raise CapacityError unless the work and request directories can hold
        the ciphertext and the plaintext of an archive of this size.
        """
        needed: Dict[int, int] = {}
        locations: Dict[int, Path] = {}
        for directory in (self.work_dir, self.request_dir):
            directory.mkdir(parents=True, exist_ok=True)
            device = directory.stat().st_dev
            needed[device] = needed.get(device, 0) + size + FREE_SPACE_MARGIN_BYTES
            locations[device] = directory

        for device, need in needed.items():
            available = self.free_space(locations[device])
            if available < need:
                raise CapacityError(f"Need {need} bytes free in {locations[device]}, have {available}")

    def _note(self, marker: Path, message: str) -> None:
        logger.info(message)
        stamp = time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(self.clock()))
        with open(marker, 'a') as f:
            f.write(f"{stamp} {message}\n")

    def _fail(self, marker: Path, name: str, reason: str, failed: Optional[Path] = None) -> None:
        try:
            self._note(marker, reason)
        except OSError as e:
            logger.error(f"Could not record failure of {name} in {marker}: {e}")
        if failed is None:
            failed = self.request_dir / artifact_name(name, 'failed')
        os.replace(marker, failed)
        logger.error(f"Retrieval of {name} failed; details in {failed}")
