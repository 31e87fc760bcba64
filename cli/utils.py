"""Utility functions for CLI output."""

import time

from common.types import ArchiveRecord


def format_file_size(size_bytes: int | None) -> str:
    """
    Format file size in bytes to human-readable format with appropriate unit.

    Uses binary units (1024-based) and automatically selects the most
    appropriate unit (B, KiB, MiB, GiB, TiB).

    Args:
        size_bytes: File size in bytes, None when unknown

    Returns:
        Formatted string with size and unit (e.g., "1.50 MiB", "512 B", "-")
    """
    if size_bytes is None:
        return "-"
    if size_bytes < 1024:
        return f"{size_bytes} B"

    units = ['KiB', 'MiB', 'GiB', 'TiB']
    size = size_bytes / 1024.0

    for unit in units:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0

    return f"{size:.2f} PiB"


def format_timestamp(epoch: int) -> str:
    return time.strftime('%Y-%m-%d %H:%M', time.localtime(epoch))


def format_record_row(record: ArchiveRecord) -> str:
    """One line of 'list' output: upload time, encrypted size, name."""
    return f"{format_timestamp(record.uploaded_at)}  {format_file_size(record.encrypted_size):>11}  {record.name}"


def format_record_details(record: ArchiveRecord) -> str:
    """Multi-line description of a ledger record for 'show'."""
    metadata = record.metadata
    return "\n".join([
        f"Name:            {record.name}",
        f"Archive id:      {record.archive_id}",
        f"Size:            {format_file_size(record.plaintext_size)} (encrypted {format_file_size(record.encrypted_size)})",
        f"Uploaded:        {format_timestamp(record.uploaded_at)}",
        f"Modified:        {format_timestamp(metadata.mtime)}",
        f"Owner:           {metadata.uid}:{metadata.gid}",
        f"Mode:            {metadata.mode}",
        f"MD5:             {record.plaintext_md5}",
        f"Encrypted MD5:   {record.encrypted_md5 or '-'}",
    ])
