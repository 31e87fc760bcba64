"""SHA-256 tree hash calculation, as required by the storage service.

The input is split into 1 MiB blocks. Each block is hashed, and neighbouring
hashes are combined pairwise (sha256 of the two raw 32-byte digests) level by
level until a single root remains. The calculator keeps a stack of pending
subtree roots, so memory stays O(log N) for a stream of N blocks.
"""

import hashlib
import os
from pathlib import Path
from typing import List, Optional, Union

from common.constants import TREE_HASH_BLOCK_SIZE

READ_SIZE = 8 * TREE_HASH_BLOCK_SIZE


def combine_hashes(left: bytes, right: bytes) -> bytes:
    """
    Combine two sibling digests into their parent digest.

    Args:
        left: Raw 32-byte digest of the left subtree
        right: Raw 32-byte digest of the right subtree

    Returns:
        Raw 32-byte digest of sha256(left || right)
    """
    return hashlib.sha256(left + right).digest()


class TreeHashCalculator:
    """
    Calculate a tree hash incrementally for streaming data.

    Usage:
        calculator = TreeHashCalculator()
        calculator.update(piece1)
        calculator.update(piece2)
        root = calculator.hexdigest()
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        """Reset calculator to initial state."""
        self._stack: List[bytes] = []
        self._buffer = bytearray()
        self._block_count = 0

    def update(self, data: bytes) -> None:
        """
        Feed more bytes into the calculation.

        Args:
            data: Bytes of any length
        """
        view = memoryview(data)
        while view:
            take = TREE_HASH_BLOCK_SIZE - len(self._buffer)
            self._buffer.extend(view[:take])
            view = view[take:]
            if len(self._buffer) == TREE_HASH_BLOCK_SIZE:
                self._push_block(bytes(self._buffer))
                self._buffer.clear()

    def _push_block(self, block: bytes) -> None:
        self._stack.append(hashlib.sha256(block).digest())
        self._block_count += 1

        # Each trailing zero bit of the block count closes one complete subtree.
        count = self._block_count
        while count % 2 == 0:
            right = self._stack.pop()
            left = self._stack.pop()
            self._stack.append(combine_hashes(left, right))
            count >>= 1

    def digest(self) -> bytes:
        """
        Return the raw root digest of everything fed so far.

        The calculator is not modified, so more data may still be added.
        """
        stack = list(self._stack)
        if self._buffer or not stack:
            stack.append(hashlib.sha256(bytes(self._buffer)).digest())
        while len(stack) > 1:
            right = stack.pop()
            left = stack.pop()
            stack.append(combine_hashes(left, right))
        return stack[0]

    def hexdigest(self) -> str:
        return self.digest().hex()


def compute_tree_hash(data: bytes) -> str:
    """
    Compute the tree hash of an in-memory buffer.

    Args:
        data: Bytes to hash

    Returns:
        Hexadecimal tree hash
    """
    calculator = TreeHashCalculator()
    calculator.update(data)
    return calculator.hexdigest()


def tree_hash_file(
    path: Union[str, Path],
    start: int = 0,
    length: Optional[int] = None
) -> str:
    """
    Compute the tree hash of a file, or of a window of it.

    Args:
        path: File to read
        start: Offset of the first byte to include
        length: Number of bytes to include (default: through end of file)

    Returns:
        Hexadecimal tree hash

    Raises:
        ValueError: If the window extends past the end of the file
    """
    if length is None:
        length = os.path.getsize(path) - start

    calculator = TreeHashCalculator()
    remaining = length
    with open(path, 'rb') as f:
        f.seek(start)
        while remaining > 0:
            piece = f.read(min(READ_SIZE, remaining))
            if not piece:
                raise ValueError(f"{path}: window {start}+{length} extends past end of file")
            calculator.update(piece)
            remaining -= len(piece)
    return calculator.hexdigest()
