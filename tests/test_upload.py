"""Tests for the upload pipeline."""

import os

import pytest

from archiver.upload import UploadPipeline, read_metadata
from common.exceptions import CapacityError, EncryptionError, IntegrityError, UploadError
from common.file_window import file_md5

KIB = 1024


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def pipeline(tmp_path, vault, encryptor, ledger, sleeps):
    return UploadPipeline(
        vault,
        encryptor,
        ledger,
        crypt_dir=tmp_path / 'crypt',
        single_part_threshold=64 * KIB,
        part_size=100 * KIB,
        part_max_attempts=3,
        sleep=sleeps.append,
        clock=lambda: 1700000000,
    )


def _encrypted(path):
    return path.read_bytes().translate(bytes(b ^ 0x5A for b in range(256)))


def test_single_part_upload(tmp_path, vault, ledger, pipeline):
    path = tmp_path / 'small.txt.bin'
    path.write_bytes(b'hello cold storage' * 100)

    record = pipeline.upload(path)

    assert vault.archives[record.archive_id] == _encrypted(path)
    assert vault.uploads == {}
    assert ledger.lookup('small.txt.bin') == record
    assert record.plaintext_size == record.encrypted_size == 1800
    assert record.uploaded_at == 1700000000
    assert record.plaintext_md5 == file_md5(path)
    assert list((tmp_path / 'crypt').iterdir()) == []


def test_multipart_upload(tmp_path, vault, ledger, pipeline, sample_file):
    record = pipeline.upload(sample_file)

    assert vault.archives[record.archive_id] == _encrypted(sample_file)
    assert record.encrypted_size == 300 * KIB
    assert ledger.count() == 1
    assert list((tmp_path / 'crypt').iterdir()) == []


def test_metadata_is_recorded(pipeline, sample_file):
    os.chmod(sample_file, 0o640)
    os.utime(sample_file, (1500000000, 1500000000))

    record = pipeline.upload(sample_file)

    assert record.metadata == read_metadata(sample_file)
    assert record.metadata.mode == '640'
    assert record.metadata.mtime == 1500000000


def test_part_failures_are_retried(vault, ledger, pipeline, sleeps, sample_file):
    vault.failures['upload_part'] = 2

    record = pipeline.upload(sample_file)

    assert sleeps == [2, 4]
    assert vault.archives[record.archive_id] == _encrypted(sample_file)
    assert ledger.count() == 1


def test_exhausted_part_retries_abort_upload(tmp_path, vault, ledger, pipeline, sample_file):
    original = sample_file.read_bytes()
    vault.failures['upload_part'] = 3

    with pytest.raises(UploadError):
        pipeline.upload(sample_file)

    assert len(vault.aborted_uploads) == 1
    assert vault.archives == {}
    assert ledger.count() == 0
    assert sample_file.read_bytes() == original
    assert list((tmp_path / 'crypt').iterdir()) == []


def test_retry_after_failure_records_exactly_once(vault, ledger, pipeline, sample_file):
    vault.failures['upload_part'] = 3
    with pytest.raises(UploadError):
        pipeline.upload(sample_file)

    pipeline.upload(sample_file)

    assert ledger.count() == 1
    assert len(vault.archives) == 1


def test_initiate_failure_is_upload_error(vault, ledger, pipeline, sample_file):
    vault.failures['initiate_multipart_upload'] = 1

    with pytest.raises(UploadError):
        pipeline.upload(sample_file)

    assert vault.aborted_uploads == []
    assert ledger.count() == 0


def test_integrity_rejection_is_not_retried(vault, ledger, pipeline, sample_file, monkeypatch):
    calls = []

    def reject(upload_id, archive_size, checksum):
        calls.append(upload_id)
        raise IntegrityError("tree hash mismatch")

    monkeypatch.setattr(vault, 'complete_multipart_upload', reject)

    with pytest.raises(IntegrityError):
        pipeline.upload(sample_file)

    assert len(calls) == 1
    assert vault.aborted_uploads == calls
    assert ledger.count() == 0


def test_read_error_aborts_multipart_upload(tmp_path, vault, ledger, pipeline, sample_file, monkeypatch):
    def unreadable(upload_id, byte_range, body, checksum):
        raise OSError(5, 'Input/output error')

    monkeypatch.setattr(vault, 'upload_part', unreadable)

    with pytest.raises(OSError):
        pipeline.upload(sample_file)

    assert len(vault.aborted_uploads) == 1
    assert vault.uploads == {}
    assert ledger.count() == 0
    assert list((tmp_path / 'crypt').iterdir()) == []


def test_no_space_for_encrypted_copy(tmp_path, vault, encryptor, ledger, sample_file):
    pipeline = UploadPipeline(vault, encryptor, ledger, tmp_path / 'crypt', free_space=lambda path: 1000)

    with pytest.raises(CapacityError):
        pipeline.upload(sample_file)

    assert vault.archives == {}
    assert ledger.count() == 0


def test_encryption_failure(tmp_path, vault, encryptor, ledger, pipeline, sample_file, monkeypatch):
    def fail(source, destination):
        raise EncryptionError("gpg exited 2")

    monkeypatch.setattr(encryptor, 'encrypt', fail)

    with pytest.raises(UploadError):
        pipeline.upload(sample_file)

    assert ledger.count() == 0
    assert vault.uploads == {}
