"""Command handler functions for CLI operations."""

import fnmatch
from pathlib import Path
from typing import Optional

from archiver.ledger import IndexLedger
from archiver.scanner import UploadPass, build_upload_pass
from cli.models import (
    ArchiveCommand,
    ListCommand,
    PendingCommand,
    RequestCommand,
    ServeCommand,
    ShowCommand,
    TreeHashCommand,
)
from cli.utils import format_file_size, format_record_details, format_record_row
from common.config import Config
from common.constants import REQUEST_ERROR_DIRNAME
from common.logging_config import get_logger
from common.treehash import tree_hash_file
from retriever.request_queue import RequestQueue, write_request
from retriever.service import RetrievalService, build_retrieval_service

logger = get_logger(__name__)


_config: Optional[Config] = None
_ledger: Optional[IndexLedger] = None


def configure(config_path: Optional[Path] = None) -> Config:
    """
    Load the configuration used by handlers that are not given one.

    Args:
        config_path: JSON config file (defaults to COLDVAULT_CONFIG or /etc/coldvault/config.json)
    """
    global _config, _ledger
    _config = Config(config_path)
    _ledger = None
    return _config


def get_config() -> Config:
    global _config
    if _config is None:
        _config = Config()
    return _config


def get_ledger() -> IndexLedger:
    """
    Get or load the global ledger instance.

    Returns:
        IndexLedger loaded from the configured ledger path
    """
    global _ledger
    if _ledger is None:
        config = get_config()
        _ledger = IndexLedger(config.get_path('ledger_path'), config.get_path('ledger_mirror_path'))
        count = _ledger.load()
        logger.debug(f"Loaded {count} ledger records")
    else:
        _ledger.refresh()
    return _ledger


def handle_list(cmd: ListCommand, ledger: Optional[IndexLedger] = None) -> str:
    """
    Handle 'list' command.

    Args:
        cmd: ListCommand with optional name pattern
        ledger: Optional IndexLedger for dependency injection (testing)

    Returns:
        One line per matching archive, sorted by name
    """
    if ledger is None:
        ledger = get_ledger()
    records = sorted(ledger.records(), key=lambda r: r.name)
    if cmd.pattern is not None:
        records = [r for r in records if fnmatch.fnmatchcase(r.name, cmd.pattern)]
    if not records:
        return "No archives found"
    lines = [format_record_row(r) for r in records]
    lines.append(f"{len(records)} archive(s)")
    return "\n".join(lines)


def handle_show(cmd: ShowCommand, ledger: Optional[IndexLedger] = None) -> str:
    if ledger is None:
        ledger = get_ledger()
    record = ledger.lookup(cmd.name)
    if record is None:
        return f"Error: no archive named '{cmd.name}' in the ledger"
    return format_record_details(record)


def handle_request(
    cmd: RequestCommand,
    config: Optional[Config] = None,
    ledger: Optional[IndexLedger] = None
) -> str:
    """
    Handle 'request' command.

    The archive is resolved against the ledger first so that a typo is
    reported here rather than landing in the request error directory.

    Args:
        cmd: RequestCommand with name and optional rate, deadline, archive id
        config: Optional Config for dependency injection (testing)
        ledger: Optional IndexLedger for dependency injection (testing)

    Returns:
        Success or error message
    """
    if config is None:
        config = get_config()
    if ledger is None:
        ledger = get_ledger()

    if cmd.archive_id is not None:
        record = ledger.lookup_by_id(cmd.archive_id)
    else:
        record = ledger.lookup(cmd.name)
    if record is None:
        return f"Error: archive '{cmd.archive_id or cmd.name}' not found in the ledger"

    path = write_request(
        config.get_path('request_dir'),
        cmd.name,
        rate_gib=cmd.rate_gib,
        deadline=cmd.deadline,
        archive_id=cmd.archive_id,
    )
    return f"Queued retrieval of {record.name} ({format_file_size(record.encrypted_size)}): {path}"


def handle_pending(
    cmd: PendingCommand,
    config: Optional[Config] = None,
    ledger: Optional[IndexLedger] = None
) -> str:
    """
    Handle 'pending' command.

    Returns:
        Queued requests, in-flight retrievals, failed retrievals and rejected requests
    """
    if config is None:
        config = get_config()
    if ledger is None:
        ledger = get_ledger()

    request_dir = config.get_path('request_dir')
    queue = RequestQueue(request_dir, ledger)
    sections = [
        ("Queued", [p.name for p in queue.pending()]),
        ("In flight", _names(request_dir, '*-AwaitingData*')),
        ("Failed", _names(request_dir, '*-failed*')),
        ("Rejected", _names(request_dir / REQUEST_ERROR_DIRNAME, '*')),
    ]

    lines = []
    for title, names in sections:
        lines.append(f"{title}: {len(names)}")
        lines.extend(f"  {name}" for name in names)
    return "\n".join(lines)


def _names(directory: Path, pattern: str) -> list[str]:
    if not directory.is_dir():
        return []
    return sorted(p.name for p in directory.glob(pattern) if p.is_file())


def handle_treehash(cmd: TreeHashCommand) -> str:
    path = Path(cmd.path)
    if not path.is_file():
        return f"Error: {cmd.path} is not a file"
    return f"{tree_hash_file(path)}  {cmd.path}"


def handle_archive(cmd: ArchiveCommand, upload_pass: Optional[UploadPass] = None) -> str:
    """
    Handle 'archive' command.

    Args:
        cmd: ArchiveCommand
        upload_pass: Optional UploadPass for dependency injection (testing)

    Returns:
        Summary of the pass
    """
    logger.info("Executing archive command")
    if upload_pass is None:
        upload_pass = build_upload_pass(get_config())
    summary = upload_pass.run()
    return (
        f"Uploaded {summary.uploaded}, aged out {summary.aged_out}, waiting {summary.waiting}, "
        f"deferred {summary.deferred}, failed {summary.failed}, inconsistent {summary.inconsistent}"
    )


def handle_serve(cmd: ServeCommand, retrieval_service: Optional[RetrievalService] = None) -> str:
    """
    Handle 'serve' command.

    Args:
        cmd: ServeCommand, once=True to serve a single request
        retrieval_service: Optional RetrievalService for dependency injection (testing)

    Returns:
        What was served
    """
    if retrieval_service is None:
        retrieval_service = build_retrieval_service(get_config())

    if cmd.once:
        retrieval_service.start()
        served = retrieval_service.run_once()
        retrieval_service.stop()
        return "Served one request" if served else "No pending requests"

    try:
        retrieval_service.run_forever()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    finally:
        retrieval_service.stop()
    return "Retrieval service stopped"
