"""Offset-addressed writes of retrieved blocks into the output file."""

from pathlib import Path
from typing import Iterable, Optional

from common.exceptions import IntegrityError
from common.treehash import tree_hash_file
from common.types import ByteRange


def ensure_output_file(output_path: Path) -> None:
    """Create the output file if missing, without truncating an existing one."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.touch(exist_ok=True)


def write_block(output_path: Path, offset: int, pieces: Iterable[bytes]) -> int:
    """
    Write streamed data at a fixed offset of the output file.

    Existing bytes outside the written region are left untouched, so blocks
    may arrive in any order and a block may be rewritten after a failed fetch.

    Args:
        output_path: File being assembled
        offset: Byte offset of the block in the archive
        pieces: Block data in order

    Returns:
        Number of bytes written

    Raises:
        OSError: If the write fails
    """
    ensure_output_file(output_path)
    written = 0
    with open(output_path, 'r+b') as f:
        f.seek(offset)
        for piece in pieces:
            f.write(piece)
            written += len(piece)
    return written


def verify_block(
    output_path: Path,
    byte_range: ByteRange,
    written: int,
    expected_tree_hash: Optional[str] = None
) -> None:
    """
    Check a written block against its expected length and tree hash.

    Raises:
        IntegrityError: If the length or the tree hash differs
    """
    if written != byte_range.length:
        raise IntegrityError(f"Block {byte_range}: wrote {written} bytes, expected {byte_range.length}")
    if expected_tree_hash is None:
        return
    actual = tree_hash_file(output_path, byte_range.start, byte_range.length)
    if actual != expected_tree_hash:
        raise IntegrityError(f"Block {byte_range}: tree hash {actual} does not match {expected_tree_hash}")
