"""One upload pass over the archive directory.

New files are handed to the UploadPipeline. Files already in the ledger
(same name and modification time) are deleted once they age out, but only
after their content hash is re-verified against the ledger.
"""

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

from archiver.encryptor import GpgEncryptor
from archiver.ledger import IndexLedger
from archiver.upload import UploadPipeline
from common.config import Config
from common.constants import (
    MAX_AGE_DAYS,
    SKIPPED_PREFIXES,
    SKIPPED_SUFFIXES,
    STALE_AGE_GRACE_DAYS,
)
from common.exceptions import CapacityError, ColdVaultError, IntegrityError
from common.file_window import file_md5
from common.logging_config import get_logger
from common.types import ArchiveRecord
from vault.glacier_client import GlacierClient
from vault.service import StorageService

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400


@dataclass
class PassSummary:
    """Counters for one upload pass."""
    uploaded: int = 0
    aged_out: int = 0
    waiting: int = 0
    deferred: int = 0
    failed: int = 0
    inconsistent: int = 0


class UploadPass:
    """Walks the archive directory once, uploading and aging out files."""

    def __init__(
        self,
        archive_dir: Union[str, Path],
        ledger: IndexLedger,
        pipeline: UploadPipeline,
        max_age_days: int = MAX_AGE_DAYS,
        excluded: Iterable[Union[str, Path]] = (),
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            archive_dir: Directory holding files to archive
            ledger: Loaded ledger
            pipeline: Upload pipeline for new files
            max_age_days: Days after upload before the local copy is deleted
            excluded: Paths never uploaded (ledger, logs)
            clock: Epoch time source
        """
        self.archive_dir = Path(archive_dir)
        self.ledger = ledger
        self.pipeline = pipeline
        self.max_age_days = max_age_days
        self.excluded = {Path(p).resolve() for p in excluded}
        self.clock = clock

    def candidates(self) -> List[Path]:
        """
        List the files eligible for this pass, in name order.

        Returns:
            Regular, readable, non-empty files that are not logs, scripts,
            temporaries, the ledger or other excluded paths
        """
        result = []
        for path in sorted(self.archive_dir.iterdir()):
            name = path.name
            if name.endswith(SKIPPED_SUFFIXES) or name.startswith(SKIPPED_PREFIXES):
                continue
            if not path.is_file() or path.resolve() in self.excluded:
                continue
            if not os.access(path, os.R_OK):
                continue
            if path.stat().st_size == 0:
                continue
            result.append(path)
        return result

    def run(self) -> PassSummary:
        """
        Run one pass.

        Returns:
            PassSummary of what happened to each candidate
        """
        summary = PassSummary()
        for path in self.candidates():
            record = self._uploaded_record(path)
            if record is not None:
                self._check_age(path, record, summary)
                continue

            try:
                self.pipeline.upload(path)
                summary.uploaded += 1
            except CapacityError as e:
                logger.warning(f"Skipping {path.name} for now: {e}")
                summary.deferred += 1
            except ColdVaultError as e:
                logger.error(f"Upload of {path.name} failed: {e}")
                summary.failed += 1

        logger.info(
            f"Upload pass complete: {summary.uploaded} uploaded, {summary.aged_out} aged out, "
            f"{summary.deferred} deferred, {summary.failed} failed, {summary.inconsistent} inconsistent"
        )
        return summary

    def _uploaded_record(self, path: Path) -> Optional[ArchiveRecord]:
        """Ledger record for this exact file (same name and mtime), if any."""
        record = self.ledger.lookup(path.name)
        if record is None or record.metadata.mtime != int(path.stat().st_mtime):
            return None
        return record

    def _check_age(self, path: Path, record: ArchiveRecord, summary: PassSummary) -> None:
        today = int(self.clock()) // SECONDS_PER_DAY
        age = today - record.uploaded_at // SECONDS_PER_DAY

        if age > self.max_age_days + STALE_AGE_GRACE_DAYS:
            logger.error(
                f"{path}: age is {age} days, well past the maximum of {self.max_age_days}; "
                f"earlier deletions have not happened"
            )

        if age <= self.max_age_days:
            summary.waiting += 1
            return

        try:
            self.verify_unchanged(path, record)
        except IntegrityError as e:
            logger.error(str(e))
            summary.inconsistent += 1
            return

        logger.info(f"File {path} has aged out.")
        path.unlink()
        summary.aged_out += 1

    @staticmethod
    def verify_unchanged(path: Path, record: ArchiveRecord) -> None:
        """
        Raises:
            IntegrityError: If the file's MD5 differs from the ledger's
        """
        actual = file_md5(path)
        if actual != record.plaintext_md5:
            raise IntegrityError(
                f"{path}: aged out but hash does not match the ledger "
                f"(ledger {record.plaintext_md5}, file {actual}); not deleting"
            )


def build_upload_pass(config: Config, service: Optional[StorageService] = None) -> UploadPass:
    """
    Wire an UploadPass from configuration.

    Args:
        config: Loaded configuration
        service: Storage service (defaults to a GlacierClient for the configured vault)
    """
    if service is None:
        service = GlacierClient(config)

    ledger = IndexLedger(config.get_path('ledger_path'), config.get_path('ledger_mirror_path'))
    loaded = ledger.load()
    logger.info(f"Loaded {loaded} ledger records")

    archive_dir = config.get_path('archive_dir')
    encryptor = GpgEncryptor(config.get_path('passphrase_file'), config.get('gpg_binary', 'gpg'))
    pipeline = UploadPipeline(
        service,
        encryptor,
        ledger,
        crypt_dir=archive_dir / '.crypt',
        single_part_threshold=config.get_int('single_part_threshold'),
        part_size=config.get_int('part_size'),
        part_max_attempts=config.get_int('part_max_attempts'),
    )
    excluded = [
        path for path in (
            config.get_path('ledger_path'),
            config.get_path('ledger_mirror_path'),
            config.get_path('upload_log'),
            config.get_path('retrieve_log'),
        )
        if path is not None
    ]
    return UploadPass(archive_dir, ledger, pipeline, config.get_max_age_days(), excluded)
