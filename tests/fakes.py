"""In-memory stand-ins for the storage service and the encryptor."""

import itertools
from pathlib import Path
from typing import Dict, List, Optional

from archiver.encryptor import Encryptor
from common.exceptions import EncryptionError, IntegrityError, JobFailedError, TransientRemoteError
from common.treehash import compute_tree_hash
from common.types import ByteRange
from vault.schemas import (
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    STATUS_SUCCEEDED,
    STRATEGY_BYTES_PER_HOUR,
    STRATEGY_NONE,
    ArchiveLocation,
    JobOutput,
    JobSummary,
    RetrievalPolicy,
)
from vault.service import StorageService


class FakeVault(StorageService):
    """
    Vault kept in memory.

    Jobs complete after `polls_until_ready` describe calls. Transient
    failures are injected per operation name through `failures`, e.g.
    ``vault.failures['upload_part'] = 2`` fails the next two part uploads.
    """

    def __init__(self, polls_until_ready: int = 0, piece_size: int = 64 * 1024):
        self.archives: Dict[str, bytes] = {}
        self.uploads: Dict[str, dict] = {}
        self.jobs: Dict[str, dict] = {}
        self.policy = RetrievalPolicy(strategy=STRATEGY_NONE)
        self.policy_sets: List[int] = []
        self.policy_reads = 0
        self.initiated_jobs: List[tuple] = []
        self.aborted_uploads: List[str] = []
        self.fetches: List[str] = []
        self.failures: Dict[str, int] = {}
        self.corrupt_fetches = 0
        self.polls_until_ready = polls_until_ready
        self.piece_size = piece_size
        self._ids = itertools.count(1)

    def _maybe_fail(self, operation: str) -> None:
        remaining = self.failures.get(operation, 0)
        if remaining > 0:
            self.failures[operation] = remaining - 1
            raise TransientRemoteError(f"{operation}: injected failure")

    # Retrieval policy

    def get_retrieval_policy(self) -> RetrievalPolicy:
        self._maybe_fail('get_retrieval_policy')
        self.policy_reads += 1
        return self.policy

    def set_retrieval_policy(self, bytes_per_hour: int) -> None:
        self._maybe_fail('set_retrieval_policy')
        self.policy_sets.append(bytes_per_hour)
        self.policy = RetrievalPolicy(strategy=STRATEGY_BYTES_PER_HOUR, bytes_per_hour=bytes_per_hour)

    # Jobs

    def add_job(self, archive_id: str, byte_range: ByteRange, status: str = STATUS_SUCCEEDED) -> str:
        """Register a job as if it had been initiated by an earlier run."""
        job_id = f"job-{next(self._ids)}"
        self.jobs[job_id] = {
            'archive_id': archive_id,
            'range': byte_range,
            'status': status,
            'polls': 0,
        }
        return job_id

    def initiate_retrieval_job(
        self,
        archive_id: str,
        byte_range: ByteRange,
        description: Optional[str] = None
    ) -> str:
        self._maybe_fail('initiate_retrieval_job')
        if archive_id not in self.archives:
            raise JobFailedError(f"No such archive {archive_id}")
        self.initiated_jobs.append((archive_id, byte_range))
        status = STATUS_SUCCEEDED if self.polls_until_ready == 0 else STATUS_IN_PROGRESS
        return self.add_job(archive_id, byte_range, status)

    def _summary(self, job_id: str) -> JobSummary:
        job = self.jobs[job_id]
        return JobSummary(
            job_id=job_id,
            completed=job['status'] != STATUS_IN_PROGRESS,
            status_code=job['status'],
            archive_id=job['archive_id'],
            retrieval_byte_range=str(job['range']),
            action='ArchiveRetrieval',
        )

    def list_jobs(self) -> List[JobSummary]:
        self._maybe_fail('list_jobs')
        return [self._summary(job_id) for job_id in self.jobs]

    def describe_job(self, job_id: str) -> JobSummary:
        self._maybe_fail('describe_job')
        if job_id not in self.jobs:
            raise JobFailedError(f"No such job {job_id}")
        job = self.jobs[job_id]
        if job['status'] == STATUS_IN_PROGRESS:
            job['polls'] += 1
            if job['polls'] >= self.polls_until_ready:
                job['status'] = STATUS_SUCCEEDED
        return self._summary(job_id)

    def fail_job(self, job_id: str) -> None:
        self.jobs[job_id]['status'] = STATUS_FAILED

    def fetch_job_output(self, job_id: str) -> JobOutput:
        self._maybe_fail('fetch_job_output')
        job = self.jobs[job_id]
        if job['status'] != STATUS_SUCCEEDED:
            raise JobFailedError(f"Job {job_id} is not ready")
        self.fetches.append(job_id)
        byte_range = job['range']
        data = self.archives[job['archive_id']][byte_range.start:byte_range.end + 1]
        checksum = compute_tree_hash(data)
        if self.corrupt_fetches > 0:
            self.corrupt_fetches -= 1
            data = data[:-1]
        pieces = [data[i:i + self.piece_size] for i in range(0, len(data), self.piece_size)]
        return JobOutput(body=iter(pieces), checksum=checksum)

    # Uploads

    def put_archive(self, data: bytes) -> ArchiveLocation:
        archive_id = f"archive-{next(self._ids)}"
        self.archives[archive_id] = data
        return ArchiveLocation(
            archive_id=archive_id,
            location=f"/-/vaults/test/archives/{archive_id}",
            checksum=compute_tree_hash(data),
        )

    def upload_archive(self, description, body, checksum: str) -> ArchiveLocation:
        self._maybe_fail('upload_archive')
        data = body.read()
        if compute_tree_hash(data) != checksum:
            raise IntegrityError("Tree hash of the archive does not match")
        return self.put_archive(data)

    def initiate_multipart_upload(self, description: str, part_size: int) -> str:
        self._maybe_fail('initiate_multipart_upload')
        upload_id = f"upload-{next(self._ids)}"
        self.uploads[upload_id] = {'description': description, 'part_size': part_size, 'parts': {}}
        return upload_id

    def upload_part(self, upload_id: str, byte_range: ByteRange, body, checksum: str) -> None:
        self._maybe_fail('upload_part')
        data = body.read()
        if len(data) != byte_range.length or compute_tree_hash(data) != checksum:
            raise IntegrityError(f"Part {byte_range} does not match its checksum")
        self.uploads[upload_id]['parts'][byte_range.start] = data

    def complete_multipart_upload(self, upload_id: str, archive_size: int, checksum: str) -> ArchiveLocation:
        self._maybe_fail('complete_multipart_upload')
        parts = self.uploads[upload_id]['parts']
        data = b''.join(parts[start] for start in sorted(parts))
        if len(data) != archive_size or compute_tree_hash(data) != checksum:
            raise IntegrityError(f"Upload {upload_id}: size or tree hash mismatch")
        del self.uploads[upload_id]
        return self.put_archive(data)

    def abort_multipart_upload(self, upload_id: str) -> None:
        self._maybe_fail('abort_multipart_upload')
        self.aborted_uploads.append(upload_id)
        self.uploads.pop(upload_id, None)


_KEY = 0x5A
_TABLE = bytes(b ^ _KEY for b in range(256))


class FakeEncryptor(Encryptor):
    """Size-preserving XOR "encryption"; decryption can be made to fail."""

    def __init__(self):
        self.fail_decrypt = False

    def encrypt(self, source, destination) -> None:
        Path(destination).write_bytes(Path(source).read_bytes().translate(_TABLE))

    def decrypt(self, source, destination) -> None:
        data = Path(source).read_bytes().translate(_TABLE)
        if self.fail_decrypt:
            Path(destination).write_bytes(data[:len(data) // 2])
            raise EncryptionError(f"Unable to decrypt {source}: bad passphrase")
        Path(destination).write_bytes(data)
