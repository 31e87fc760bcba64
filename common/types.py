"""Shared data type definitions (ByteRange, FileMetadata, ArchiveRecord)."""

from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class ByteRange:
    """
    Inclusive byte range [start, end] within an archive.
    """
    start: int
    end: int

    def __post_init__(self):
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"Invalid byte range: {self.start}-{self.end}")

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"

    @classmethod
    def parse(cls, text: str) -> 'ByteRange':
        """
        Parse the service's "start-end" form.

        Raises:
            ValueError: If the text is not two non-negative integers joined by '-'
        """
        start, sep, end = text.strip().partition('-')
        if not sep or not start.isdigit() or not end.isdigit():
            raise ValueError(f"Invalid byte range: {text!r}")
        return cls(int(start), int(end))


def split_ranges(total_size: int, block_size: int) -> List[ByteRange]:
    """
    Split [0, total_size) into consecutive ranges of block_size bytes.

    Args:
        total_size: Size of the whole object in bytes
        block_size: Size of each range; the last range may be short

    Returns:
        List of ByteRange in ascending order (empty for a zero-size object)
    """
    if block_size <= 0:
        raise ValueError("block_size must be positive")
    return [
        ByteRange(start, min(start + block_size, total_size) - 1)
        for start in range(0, total_size, block_size)
    ]


@dataclass(frozen=True)
class FileMetadata:
    """
    Original filesystem metadata of an archived file.
    """
    mtime: int
    uid: int
    gid: int
    mode: str  # octal permission bits, e.g. "644"

    def to_field(self) -> str:
        return f"{self.mtime}-{self.uid}-{self.gid}-{self.mode}"

    @classmethod
    def from_field(cls, text: str) -> 'FileMetadata':
        mtime, uid, gid, mode = text.split('-')
        int(mode, 8)
        return cls(mtime=int(mtime), uid=int(uid), gid=int(gid), mode=mode)


@dataclass(frozen=True)
class ArchiveRecord:
    """
    One successfully uploaded archive, as stored in the ledger.
    """
    name: str
    plaintext_size: Optional[int]
    encrypted_size: int
    archive_id: str
    metadata: FileMetadata
    uploaded_at: int
    plaintext_md5: str
    encrypted_md5: str
