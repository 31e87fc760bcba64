"""Upload pipeline: encrypt, upload single-part or multipart, record in the ledger."""

import time
from pathlib import Path
from typing import Callable, Optional, Union

from archiver.encryptor import Encryptor
from archiver.ledger import IndexLedger
from common.constants import (
    FREE_SPACE_MARGIN_BYTES,
    PART_UPLOAD_MAX_ATTEMPTS,
    SINGLE_PART_THRESHOLD_BYTES,
    UPLOAD_PART_SIZE_BYTES,
)
from common.exceptions import (
    CapacityError,
    EncryptionError,
    TransientRemoteError,
    UploadError,
)
from common.file_window import FileWindow, file_md5, free_bytes
from common.logging_config import get_logger
from common.treehash import tree_hash_file
from common.types import ArchiveRecord, ByteRange, FileMetadata, split_ranges
from vault.schemas import ArchiveLocation
from vault.service import StorageService

logger = get_logger(__name__)


def read_metadata(path: Path) -> FileMetadata:
    """
    Capture the metadata restored on the file after retrieval.

    Args:
        path: Plaintext file

    Returns:
        FileMetadata with mtime, owner and permission bits
    """
    stat = path.stat()
    return FileMetadata(
        mtime=int(stat.st_mtime),
        uid=stat.st_uid,
        gid=stat.st_gid,
        mode=format(stat.st_mode & 0o7777, 'o'),
    )


class UploadPipeline:
    """
    Uploads one plaintext file at a time.

    The ledger is appended only after the service confirmed the archive, and
    the encrypted temporary is removed whatever the outcome.
    """

    def __init__(
        self,
        service: StorageService,
        encryptor: Encryptor,
        ledger: IndexLedger,
        crypt_dir: Union[str, Path],
        single_part_threshold: int = SINGLE_PART_THRESHOLD_BYTES,
        part_size: int = UPLOAD_PART_SIZE_BYTES,
        part_max_attempts: int = PART_UPLOAD_MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        free_space: Callable[[Path], int] = free_bytes,
    ):
        self.service = service
        self.encryptor = encryptor
        self.ledger = ledger
        self.crypt_dir = Path(crypt_dir)
        self.single_part_threshold = single_part_threshold
        self.part_size = part_size
        self.part_max_attempts = part_max_attempts
        self.sleep = sleep
        self.clock = clock
        self.free_space = free_space

    def upload(self, plaintext_path: Union[str, Path]) -> ArchiveRecord:
        """
        Encrypt and upload a file, then record it in the ledger.

        Args:
            plaintext_path: File to archive

        Returns:
            The ArchiveRecord appended to the ledger

        Raises:
            CapacityError: If there is no room for the encrypted copy
            IntegrityError: If the service rejected the completed archive
            UploadError: On any other failure
        """
        path = Path(plaintext_path)
        metadata = read_metadata(path)
        plaintext_size = path.stat().st_size

        self.crypt_dir.mkdir(parents=True, exist_ok=True)
        available = self.free_space(self.crypt_dir)
        if available < plaintext_size + FREE_SPACE_MARGIN_BYTES:
            raise CapacityError(
                f"{path.name}: need {plaintext_size + FREE_SPACE_MARGIN_BYTES} bytes free in "
                f"{self.crypt_dir}, have {available}"
            )

        plaintext_md5 = file_md5(path)
        encrypted = self.crypt_dir / f"{path.name}.gpg"

        logger.info(f"Uploading: {path}")
        started = self.clock()
        try:
            try:
                self.encryptor.encrypt(path, encrypted)
            except EncryptionError as e:
                raise UploadError(str(e)) from e

            encrypted_size = encrypted.stat().st_size
            if encrypted_size <= self.single_part_threshold:
                location = self._upload_single(path.name, encrypted)
            else:
                location = self._upload_multipart(path.name, encrypted, encrypted_size)

            record = ArchiveRecord(
                name=path.name,
                plaintext_size=plaintext_size,
                encrypted_size=encrypted_size,
                archive_id=location.archive_id,
                metadata=metadata,
                uploaded_at=int(self.clock()),
                plaintext_md5=plaintext_md5,
                encrypted_md5=file_md5(encrypted),
            )
            self.ledger.append(record)
            logger.info(
                f"Uploaded {path.name} ({encrypted_size} bytes) as {record.archive_id} "
                f"in {self.clock() - started:.0f}s"
            )
            return record
        finally:
            if encrypted.exists():
                encrypted.unlink()

    def _upload_single(self, name: str, encrypted: Path) -> ArchiveLocation:
        checksum = tree_hash_file(encrypted)
        try:
            with open(encrypted, 'rb') as body:
                return self.service.upload_archive(name, body, checksum)
        except TransientRemoteError as e:
            raise UploadError(f"{name}: single-part upload failed: {e}") from e

    def _upload_multipart(self, name: str, encrypted: Path, size: int) -> ArchiveLocation:
        try:
            upload_id = self.service.initiate_multipart_upload(name, self.part_size)
        except TransientRemoteError as e:
            raise UploadError(f"{name}: multipart initialization failed: {e}") from e

        ranges = split_ranges(size, self.part_size)
        logger.info(f"{name}: multipart upload {upload_id} with {len(ranges)} parts of {self.part_size} bytes")
        try:
            for part_number, byte_range in enumerate(ranges):
                self._upload_part(name, upload_id, encrypted, part_number, byte_range)

            checksum = tree_hash_file(encrypted)
            try:
                return self.service.complete_multipart_upload(upload_id, size, checksum)
            except TransientRemoteError as e:
                raise UploadError(f"{name}: completion of upload {upload_id} failed: {e}") from e
        except BaseException:
            self._abort(upload_id)
            raise

    def _upload_part(
        self,
        name: str,
        upload_id: str,
        encrypted: Path,
        part_number: int,
        byte_range: ByteRange
    ) -> None:
        checksum = tree_hash_file(encrypted, byte_range.start, byte_range.length)
        last_error: Optional[Exception] = None

        for attempt in range(1, self.part_max_attempts + 1):
            try:
                with FileWindow(encrypted, byte_range) as body:
                    self.service.upload_part(upload_id, byte_range, body, checksum)
                logger.debug(f"{name}: part {part_number} ({byte_range}) uploaded")
                return
            except TransientRemoteError as e:
                last_error = e
                logger.warning(
                    f"{name}: part {part_number} ({byte_range}) failed "
                    f"(attempt {attempt}/{self.part_max_attempts}): {e}"
                )
                if attempt < self.part_max_attempts:
                    self.sleep(2 ** attempt)

        raise UploadError(
            f"{name}: part {part_number} ({byte_range}) failed {self.part_max_attempts} times: {last_error}"
        )

    def _abort(self, upload_id: str) -> None:
        try:
            self.service.abort_multipart_upload(upload_id)
        except TransientRemoteError as e:
            # The service discards unfinished sessions on its own after a day.
            logger.error(f"Could not abort multipart upload {upload_id}: {e}")
