"""Tests for the upload pass over the archive directory."""

import os

import pytest

from archiver.ledger import IndexLedger
from archiver.scanner import SECONDS_PER_DAY, UploadPass
from archiver.upload import UploadPipeline

NOW = 1700000000


class Clock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def archive_dir(tmp_path):
    path = tmp_path / 'archive'
    path.mkdir(exist_ok=True)
    return path


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def archive_ledger(archive_dir):
    ledger = IndexLedger(archive_dir / 'index')
    ledger.load()
    return ledger


@pytest.fixture
def upload_pass(tmp_path, archive_dir, archive_ledger, vault, encryptor, clock):
    pipeline = UploadPipeline(vault, encryptor, archive_ledger, tmp_path / 'crypt', clock=clock)
    return UploadPass(
        archive_dir,
        archive_ledger,
        pipeline,
        max_age_days=10,
        excluded=[archive_dir / 'index'],
        clock=clock,
    )


def _write(directory, name, data=b'payload'):
    path = directory / name
    path.write_bytes(data)
    return path


def test_candidates_skip_rules(archive_dir, upload_pass):
    _write(archive_dir, 'notes.txt')
    _write(archive_dir, 'run.sh')
    _write(archive_dir, 'upload.log')
    _write(archive_dir, 'tmp.partial')
    _write(archive_dir, 'empty.bin', b'')
    _write(archive_dir, 'index')
    (archive_dir / 'subdir').mkdir()
    _write(archive_dir, 'b.tar')
    _write(archive_dir, 'a.tar')

    assert [p.name for p in upload_pass.candidates()] == ['a.tar', 'b.tar']


def test_new_files_are_uploaded_once(archive_dir, archive_ledger, vault, upload_pass):
    _write(archive_dir, 'a.tar')
    _write(archive_dir, 'b.tar')

    summary = upload_pass.run()
    assert summary.uploaded == 2
    assert archive_ledger.count() == 2

    summary = upload_pass.run()
    assert summary.uploaded == 0
    assert summary.waiting == 2
    assert len(vault.archives) == 2


def test_modified_file_is_uploaded_again(archive_dir, archive_ledger, upload_pass):
    path = _write(archive_dir, 'a.tar')
    upload_pass.run()

    path.write_bytes(b'new content')
    os.utime(path, (NOW + 100, NOW + 100))
    summary = upload_pass.run()

    assert summary.uploaded == 1
    assert archive_ledger.count() == 2


def test_aged_out_file_is_deleted(archive_dir, upload_pass, clock):
    path = _write(archive_dir, 'a.tar')
    upload_pass.run()

    clock.now = NOW + 11 * SECONDS_PER_DAY
    summary = upload_pass.run()

    assert summary.aged_out == 1
    assert not path.exists()


def test_changed_content_is_never_deleted(archive_dir, upload_pass, clock):
    path = _write(archive_dir, 'a.tar', b'original')
    upload_pass.run()
    mtime = path.stat().st_mtime

    path.write_bytes(b'tampered')
    os.utime(path, (mtime, mtime))
    clock.now = NOW + 30 * SECONDS_PER_DAY
    summary = upload_pass.run()

    assert summary.inconsistent == 1
    assert summary.aged_out == 0
    assert path.read_bytes() == b'tampered'


def test_failures_do_not_stop_the_pass(archive_dir, archive_ledger, vault, upload_pass):
    _write(archive_dir, 'a.tar')
    _write(archive_dir, 'b.tar')
    vault.failures['upload_archive'] = 1

    summary = upload_pass.run()

    assert summary.failed == 1
    assert summary.uploaded == 1
    assert archive_ledger.lookup('b.tar') is not None
    assert archive_ledger.lookup('a.tar') is None


def test_capacity_shortage_defers_file(tmp_path, archive_dir, archive_ledger, vault, encryptor, clock):
    _write(archive_dir, 'a.tar')
    pipeline = UploadPipeline(vault, encryptor, archive_ledger, tmp_path / 'crypt', free_space=lambda path: 0)
    upload_pass = UploadPass(archive_dir, archive_ledger, pipeline, clock=clock)

    summary = upload_pass.run()

    assert summary.deferred == 1
    assert vault.archives == {}
