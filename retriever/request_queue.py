"""Inbound retrieval requests: claim, validate, resolve against the ledger.

A request is a small text file ``<archive name>.request`` dropped into the
request directory. Optional lines name an archive id, a rate in GiB/hour or
a deadline in epoch seconds; the last non-blank line must be ``done``:

    archive-id: <id>
    retrieverate: 4
    retrieveby: 1718000000
    done
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Collection, List, Optional, Union

from archiver.ledger import IndexLedger
from common.constants import (
    MIN_DEADLINE_EPOCH,
    REQUEST_ERROR_DIRNAME,
    REQUEST_SUFFIX,
    REQUEST_TERMINATOR,
)
from common.exceptions import ValidationError
from common.logging_config import get_logger
from common.types import ArchiveRecord

logger = get_logger(__name__)

_VALUE_SEPARATORS = re.compile(r'[/ :=\t]')


@dataclass(frozen=True)
class TransferRequest:
    """A claimed, validated request to retrieve one archive."""
    name: str
    archive_id: str
    size: int
    record: ArchiveRecord
    path: Path
    rate_gib: Optional[int] = None
    deadline: Optional[int] = None


def has_terminator(lines: List[str]) -> bool:
    return any(line.strip().lower() == REQUEST_TERMINATOR for line in lines)


def terminator_is_last(lines: List[str]) -> bool:
    content = [line.strip() for line in lines if line.strip()]
    return bool(content) and content[-1].lower() == REQUEST_TERMINATOR


def field_value(lines: List[str], key: str) -> Optional[str]:
    """
    Value of the last line mentioning key (case-insensitive).

    The value is the text after the last '/', ':', '=' or whitespace, so
    "archive-id: abc", "archive-id=abc" and a full archive location URI all
    yield the id.
    """
    matches = [line.strip() for line in lines if key in line.lower()]
    if not matches:
        return None
    value = _VALUE_SEPARATORS.split(matches[-1])[-1].strip()
    return value or None


class RequestQueue:
    """Claims one well-formed retrieval request at a time."""

    def __init__(
        self,
        request_dir: Union[str, Path],
        ledger: IndexLedger,
        pid: Optional[int] = None,
    ):
        self.request_dir = Path(request_dir)
        self.error_dir = self.request_dir / REQUEST_ERROR_DIRNAME
        self.ledger = ledger
        self.pid = pid if pid is not None else os.getpid()

    def pending(self) -> List[Path]:
        """
        Request files not yet claimed, oldest first.
        """
        if not self.request_dir.exists():
            return []
        paths = []
        for path in self.request_dir.glob(f"*{REQUEST_SUFFIX}"):
            try:
                paths.append((path.stat().st_mtime, path.name, path))
            except FileNotFoundError:
                continue
        return [path for _, _, path in sorted(paths)]

    def claim_next(self, skip: Collection[str] = ()) -> Optional[TransferRequest]:
        """
        Claim and validate the oldest complete request.

        Files without any terminator line are still being written and are
        left alone. Invalid requests are moved to the error directory with a
        diagnostic appended, and the next one is tried.

        Args:
            skip: Archive names to pass over (requests deferred earlier in this pass)

        Returns:
            TransferRequest, or None when nothing is ready
        """
        for path in self.pending():
            if path.name[:-len(REQUEST_SUFFIX)] in skip:
                continue
            try:
                lines = path.read_text(errors='replace').splitlines()
            except FileNotFoundError:
                continue

            if not has_terminator(lines):
                logger.debug(f"Request {path.name} has no '{REQUEST_TERMINATOR}' line yet")
                continue

            claimed = path.with_name(f"{path.name}.{self.pid}")
            try:
                os.rename(path, claimed)
            except FileNotFoundError:
                logger.debug(f"Request {path.name} was claimed by another process")
                continue

            try:
                request = self._validate(claimed, path.name[:-len(REQUEST_SUFFIX)])
            except ValidationError as e:
                logger.warning(f"Rejecting request {path.name}: {e}")
                self._reject(claimed, path.name, str(e))
                continue

            logger.info(f"Found new request: {request.name} ({request.archive_id}, {request.size} bytes)")
            return request
        return None

    def _validate(self, claimed: Path, name: str) -> TransferRequest:
        lines = claimed.read_text(errors='replace').splitlines()
        if not terminator_is_last(lines):
            raise ValidationError(
                f"Request {name} has invalid format: the word {REQUEST_TERMINATOR} must be the last line in the file."
            )

        rate_gib = None
        rate_text = field_value(lines, 'retrieverate')
        if rate_text is not None:
            if not rate_text.isdigit() or int(rate_text) == 0:
                raise ValidationError(f"Invalid retrieval rate ({rate_text}) for: {name}")
            rate_gib = int(rate_text)

        deadline = None
        deadline_text = field_value(lines, 'retrieveby')
        if deadline_text is not None:
            if not deadline_text.isdigit() or int(deadline_text) <= MIN_DEADLINE_EPOCH:
                raise ValidationError(f"Invalid retrieveby epoch ({deadline_text}) for: {name}")
            deadline = int(deadline_text)

        self.ledger.refresh()
        archive_id = field_value(lines, 'archive-id')
        if archive_id is not None:
            record = self.ledger.lookup_by_id(archive_id)
        else:
            record = self.ledger.lookup(name)
        if record is None:
            raise ValidationError(f"Archive id not found for: {name}")

        return TransferRequest(
            name=name,
            archive_id=record.archive_id,
            size=record.encrypted_size,
            record=record,
            path=claimed,
            rate_gib=rate_gib,
            deadline=deadline,
        )

    def _reject(self, claimed: Path, original_name: str, reason: str) -> None:
        with open(claimed, 'a') as f:
            f.write(f"\n{reason}\n")
        self.error_dir.mkdir(parents=True, exist_ok=True)
        os.replace(claimed, self.error_dir / original_name)

    def release(self, request: TransferRequest) -> None:
        """
        Return a claimed request to the queue for a later pass.
        """
        original = self.request_dir / f"{request.name}{REQUEST_SUFFIX}"
        os.rename(request.path, original)
        logger.info(f"Released request {request.name} for a later pass")


def write_request(
    request_dir: Union[str, Path],
    name: str,
    rate_gib: Optional[int] = None,
    deadline: Optional[int] = None,
    archive_id: Optional[str] = None,
) -> Path:
    """
    Drop a request file for an archive into the request directory.

    The file is written under a temporary name and renamed into place, so
    the queue never sees it half-written.

    Returns:
        Path of the request file
    """
    request_dir = Path(request_dir)
    request_dir.mkdir(parents=True, exist_ok=True)
    lines = []
    if archive_id is not None:
        lines.append(f"archive-id: {archive_id}")
    if rate_gib is not None:
        lines.append(f"retrieverate: {rate_gib}")
    if deadline is not None:
        lines.append(f"retrieveby: {deadline}")
    lines.append(REQUEST_TERMINATOR)

    path = request_dir / f"{name}{REQUEST_SUFFIX}"
    staging = request_dir / f".{name}{REQUEST_SUFFIX}.tmp"
    staging.write_text("\n".join(lines) + "\n")
    os.replace(staging, path)
    logger.info(f"Queued retrieval request {path}")
    return path
