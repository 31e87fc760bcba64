"""Append-only ledger of uploaded archives with an in-memory index.

One tab-separated line per successful upload:

    name  plain_size  enc_size  archive_id  mtime-uid-gid-perm  uploaded_at  plainmd5-encmd5

Rows written by the older shell tooling have six fields
(name, encrypted size, archive location URI, metadata, upload time, md5[-md5])
and are read as well. The latest record for a name wins on lookup.
"""

import os
import shutil
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from common.logging_config import get_logger
from common.types import ArchiveRecord, FileMetadata

logger = get_logger(__name__)

FIELD_SEPARATOR = '\t'


def format_record(record: ArchiveRecord) -> str:
    """
    Serialize a record to one ledger line (without newline).

    Raises:
        ValueError: If the name contains a tab or newline
    """
    if any(c in record.name for c in '\t\n\r'):
        raise ValueError(f"Archive name cannot be stored in the ledger: {record.name!r}")
    fields = [
        record.name,
        str(record.plaintext_size if record.plaintext_size is not None else '-'),
        str(record.encrypted_size),
        record.archive_id,
        record.metadata.to_field(),
        str(record.uploaded_at),
        f"{record.plaintext_md5}-{record.encrypted_md5}",
    ]
    return FIELD_SEPARATOR.join(fields)


def parse_record(line: str) -> ArchiveRecord:
    """
    Parse one ledger line, current or legacy layout.

    Raises:
        ValueError: If the line is not a valid record
    """
    fields = line.rstrip('\r\n').split(FIELD_SEPARATOR)
    if len(fields) == 7:
        name, plain_size, enc_size, archive_id, meta, uploaded_at, hashes = fields
        plaintext_size = None if plain_size == '-' else int(plain_size)
    elif len(fields) == 6:
        name, enc_size, location, meta, uploaded_at, hashes = fields
        plaintext_size = None
        archive_id = location.rstrip('/').rsplit('/', 1)[-1]
    else:
        raise ValueError(f"expected 6 or 7 fields, got {len(fields)}")

    plaintext_md5, _, encrypted_md5 = hashes.partition('-')
    if not name or not archive_id or not plaintext_md5:
        raise ValueError("missing name, archive id or content hash")

    return ArchiveRecord(
        name=name,
        plaintext_size=plaintext_size,
        encrypted_size=int(enc_size),
        archive_id=archive_id,
        metadata=FileMetadata.from_field(meta),
        uploaded_at=int(uploaded_at),
        plaintext_md5=plaintext_md5,
        encrypted_md5=encrypted_md5,
    )


class IndexLedger:
    """
    Ledger file plus an in-memory index by name and by archive id.
    The index is built by load() and kept current by append(); refresh()
    picks up records appended by another process.
    """

    def __init__(self, path: Union[str, Path], mirror_path: Optional[Union[str, Path]] = None):
        """
        Initialize ledger.

        Args:
            path: Ledger file
            mirror_path: Optional second location refreshed after every append
        """
        self.path = Path(path)
        self.mirror_path = Path(mirror_path) if mirror_path else None
        self._records: List[ArchiveRecord] = []
        self._by_name: Dict[str, ArchiveRecord] = {}
        self._by_id: Dict[str, ArchiveRecord] = {}
        self._signature: Optional[Tuple[int, int]] = None

    def load(self) -> int:
        """
        (Re)build the in-memory index from the ledger file.

        Returns:
            Number of records loaded (malformed lines are skipped)
        """
        self._records.clear()
        self._by_name.clear()
        self._by_id.clear()
        self._signature = self._file_signature()

        if not self.path.exists():
            logger.warning(f"Ledger file not found at {self.path}")
            return 0

        with open(self.path, 'r', encoding='utf-8') as f:
            for line_number, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    record = parse_record(line)
                except ValueError as e:
                    logger.warning(f"{self.path}:{line_number}: skipping malformed ledger line ({e})")
                    continue
                self._index(record)

        logger.info(f"Loaded {len(self._records)} records from ledger {self.path}")
        return len(self._records)

    def _file_signature(self) -> Optional[Tuple[int, int]]:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return None
        return stat.st_mtime_ns, stat.st_size

    def refresh(self) -> bool:
        """
        Reload the index if the ledger file changed since it was last read.

        Returns:
            True if the index was rebuilt
        """
        if self._file_signature() == self._signature:
            return False
        self.load()
        return True

    def _index(self, record: ArchiveRecord) -> None:
        self._records.append(record)
        self._by_name[record.name] = record
        self._by_id[record.archive_id] = record

    def append(self, record: ArchiveRecord) -> None:
        """
        Durably append a record and index it.

        Args:
            record: Record of an upload that has been confirmed by the service
        """
        self.refresh()
        line = format_record(record)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'a', encoding='utf-8') as f:
            f.write(line + '\n')
            f.flush()
            os.fsync(f.fileno())
        self._index(record)
        self._signature = self._file_signature()
        logger.info(f"Ledger: recorded {record.name} as {record.archive_id}")

        if self.mirror_path is not None:
            try:
                shutil.copyfile(self.path, self.mirror_path)
            except OSError as e:
                logger.warning(f"Could not refresh ledger mirror {self.mirror_path}: {e}")

    def lookup(self, name: str) -> Optional[ArchiveRecord]:
        return self._by_name.get(name)

    def lookup_by_id(self, archive_id: str) -> Optional[ArchiveRecord]:
        return self._by_id.get(archive_id)

    def records(self) -> Iterator[ArchiveRecord]:
        return iter(self._records)

    def count(self) -> int:
        return len(self._records)
