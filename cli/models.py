"""Command request data types for CLI."""

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class ListCommand:
    """List ledger records, optionally filtered by a name pattern."""

    pattern: str | None = None
    command: Literal["list"] = "list"


@dataclass(frozen=True)
class ShowCommand:
    """Show the ledger record of one archive."""

    name: str
    command: Literal["show"] = "show"


@dataclass(frozen=True)
class RequestCommand:
    """Queue a retrieval request for an archive."""

    name: str
    rate_gib: int | None = None
    deadline: int | None = None
    archive_id: str | None = None
    command: Literal["request"] = "request"


@dataclass(frozen=True)
class PendingCommand:
    """List queued, in-flight and failed retrievals."""

    command: Literal["pending"] = "pending"


@dataclass(frozen=True)
class TreeHashCommand:
    """Compute the tree hash of a local file."""

    path: str
    command: Literal["treehash"] = "treehash"


@dataclass(frozen=True)
class ArchiveCommand:
    """Run one upload pass over the archive directory."""

    command: Literal["archive"] = "archive"


@dataclass(frozen=True)
class ServeCommand:
    """Run the retrieval service."""

    once: bool = False
    command: Literal["serve"] = "serve"


CommandRequest = (
    ListCommand
    | ShowCommand
    | RequestCommand
    | PendingCommand
    | TreeHashCommand
    | ArchiveCommand
    | ServeCommand
)
