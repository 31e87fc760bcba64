"""Bounded, seekable read-only view over a byte range of a file, plus file helpers."""

import hashlib
import io
import os
import shutil
from pathlib import Path
from typing import Union

from common.types import ByteRange


class FileWindow(io.RawIOBase):
    """File-like object exposing only the bytes of one range of a file.

    Used as the request body for a single multipart part, so a part is
    streamed from disk instead of being copied into memory or a temp file.
    """

    def __init__(self, file_path: Union[str, Path], byte_range: ByteRange):
        """
        Initialize the window.

        Args:
            file_path: File to read from
            byte_range: Inclusive range of the file exposed by this window
        """
        super().__init__()
        self.file_path = str(file_path)
        self.byte_range = byte_range
        self._file = open(file_path, 'rb')
        self._position = 0

    def __len__(self) -> int:
        return self.byte_range.length

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._position

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        if whence == os.SEEK_SET:
            position = offset
        elif whence == os.SEEK_CUR:
            position = self._position + offset
        elif whence == os.SEEK_END:
            position = self.byte_range.length + offset
        else:
            raise ValueError(f"Invalid whence: {whence}")
        if position < 0:
            raise ValueError("Negative seek position")
        self._position = position
        return position

    def read(self, size: int = -1) -> bytes:
        """
        Read up to size bytes from the window.

        Args:
            size: Number of bytes to read (-1 for the rest of the window)

        Returns:
            Bytes read; empty once the end of the window is reached
        """
        remaining = self.byte_range.length - self._position
        if remaining <= 0:
            return b''
        if size is None or size < 0 or size > remaining:
            size = remaining
        self._file.seek(self.byte_range.start + self._position)
        data = self._file.read(size)
        self._position += len(data)
        return data

    def readinto(self, buffer) -> int:
        data = self.read(len(buffer))
        buffer[:len(data)] = data
        return len(data)

    def close(self) -> None:
        """Close the underlying file."""
        if not self.closed:
            self._file.close()
        super().close()


def file_md5(file_path: Union[str, Path], piece_size: int = 1 << 20) -> str:
    """
    Compute the MD5 content hash of a whole file.

    Args:
        file_path: File to hash
        piece_size: Read size in bytes

    Returns:
        Hexadecimal MD5 digest
    """
    hasher = hashlib.md5()
    with open(file_path, 'rb') as f:
        while True:
            piece = f.read(piece_size)
            if not piece:
                break
            hasher.update(piece)
    return hasher.hexdigest()


def free_bytes(path: Union[str, Path]) -> int:
    return shutil.disk_usage(path).free
