"""Tests for CLI command handlers."""

from dataclasses import replace
from unittest.mock import Mock

from archiver.scanner import PassSummary, UploadPass
from cli.commands import (
    handle_archive,
    handle_list,
    handle_pending,
    handle_request,
    handle_serve,
    handle_show,
    handle_treehash,
)
from cli.models import (
    ArchiveCommand,
    ListCommand,
    PendingCommand,
    RequestCommand,
    ServeCommand,
    ShowCommand,
    TreeHashCommand,
)
from cli.utils import format_file_size
from common.treehash import compute_tree_hash
from retriever.service import RetrievalService


def test_handle_list(ledger, sample_record):
    ledger.append(sample_record)
    ledger.append(replace(sample_record, name='music.tar', archive_id='archive-2'))

    result = handle_list(ListCommand(), ledger=ledger)

    lines = result.splitlines()
    assert lines[0].endswith('music.tar')
    assert lines[1].endswith('photos.tar')
    assert lines[-1] == '2 archive(s)'


def test_handle_list_pattern(ledger, sample_record):
    ledger.append(sample_record)
    ledger.append(replace(sample_record, name='music.flac', archive_id='archive-2'))

    result = handle_list(ListCommand(pattern='*.tar'), ledger=ledger)

    assert 'photos.tar' in result
    assert 'music.flac' not in result


def test_handle_list_empty(ledger):
    assert handle_list(ListCommand(), ledger=ledger) == 'No archives found'


def test_handle_show(ledger, sample_record):
    ledger.append(sample_record)

    result = handle_show(ShowCommand(name='photos.tar'), ledger=ledger)

    assert 'archive-abc' in result
    assert '640' in result


def test_handle_show_unknown(ledger):
    assert handle_show(ShowCommand(name='nope'), ledger=ledger).startswith('Error')


def test_handle_request_writes_request_file(temp_config, ledger, sample_record):
    ledger.append(sample_record)

    result = handle_request(RequestCommand(name='photos.tar', rate_gib=4), config=temp_config, ledger=ledger)

    path = temp_config.get_path('request_dir') / 'photos.tar.request'
    assert 'Queued retrieval of photos.tar' in result
    assert path.read_text() == "retrieverate: 4\ndone\n"


def test_handle_request_unknown_archive(temp_config, ledger):
    result = handle_request(RequestCommand(name='nope.tar'), config=temp_config, ledger=ledger)

    assert result.startswith('Error')
    assert not temp_config.get_path('request_dir').exists()


def test_handle_pending(temp_config, ledger):
    request_dir = temp_config.get_path('request_dir')
    (request_dir / 'error').mkdir(parents=True)
    (request_dir / 'a.tar.request').write_text('done\n')
    (request_dir / 'b-AwaitingData.tar').write_text('')
    (request_dir / 'c-failed.tar').write_text('')
    (request_dir / 'error' / 'd.tar.request').write_text('done\nbad\n')

    result = handle_pending(PendingCommand(), config=temp_config, ledger=ledger)

    assert 'Queued: 1\n  a.tar.request' in result
    assert 'In flight: 1\n  b-AwaitingData.tar' in result
    assert 'Failed: 1\n  c-failed.tar' in result
    assert 'Rejected: 1\n  d.tar.request' in result


def test_handle_treehash(tmp_path):
    path = tmp_path / 'data.bin'
    path.write_bytes(b'abc' * 1000)

    result = handle_treehash(TreeHashCommand(path=str(path)))

    assert result.split()[0] == compute_tree_hash(b'abc' * 1000)


def test_handle_treehash_missing(tmp_path):
    assert handle_treehash(TreeHashCommand(path=str(tmp_path / 'nope'))).startswith('Error')


def test_handle_archive():
    upload_pass = Mock(spec=UploadPass)
    upload_pass.run.return_value = PassSummary(uploaded=2, waiting=1)

    result = handle_archive(ArchiveCommand(), upload_pass=upload_pass)

    assert 'Uploaded 2' in result
    assert 'waiting 1' in result
    upload_pass.run.assert_called_once_with()


def test_handle_serve_once():
    service = Mock(spec=RetrievalService)
    service.run_once.return_value = False

    result = handle_serve(ServeCommand(once=True), retrieval_service=service)

    assert result == 'No pending requests'
    service.start.assert_called_once_with()
    service.stop.assert_called_once_with()


def test_handle_serve_until_interrupted():
    service = Mock(spec=RetrievalService)
    service.run_forever.side_effect = KeyboardInterrupt

    result = handle_serve(ServeCommand(), retrieval_service=service)

    assert result == 'Retrieval service stopped'
    service.stop.assert_called_once_with()


def test_format_file_size():
    assert format_file_size(None) == '-'
    assert format_file_size(512) == '512 B'
    assert format_file_size(1536) == '1.50 KiB'
    assert format_file_size(2 * 1024 ** 3) == '2.00 GiB'
