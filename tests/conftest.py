"""Shared pytest fixtures for all tests."""

import os

import pytest

from archiver.ledger import IndexLedger
from common.config import Config
from common.types import ArchiveRecord, FileMetadata
from fakes import FakeEncryptor, FakeVault


@pytest.fixture
def temp_config(tmp_path):
    """
    Create a configuration rooted in a temporary directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Config instance whose paths all live under tmp_path
    """
    config = Config(tmp_path / 'config.json')
    config.data.update({
        'archive_dir': str(tmp_path / 'archive'),
        'request_dir': str(tmp_path / 'retrieve'),
        'ledger_path': str(tmp_path / 'archive' / 'index.txt'),
        'ledger_mirror_path': None,
        'upload_log': str(tmp_path / 'archive' / 'uploadlog.txt'),
        'retrieve_log': str(tmp_path / 'archive' / 'retrievelog.txt'),
        'passphrase_file': str(tmp_path / 'passphrase'),
    })
    return config


@pytest.fixture
def vault():
    """In-memory vault whose jobs are ready immediately."""
    return FakeVault()


@pytest.fixture
def encryptor():
    return FakeEncryptor()


@pytest.fixture
def ledger(tmp_path):
    """
    Create an empty ledger.

    Returns:
        Loaded IndexLedger backed by tmp_path/index.txt
    """
    ledger = IndexLedger(tmp_path / 'index.txt')
    ledger.load()
    return ledger


@pytest.fixture
def sample_record():
    """
    Create a representative ledger record.

    Returns:
        ArchiveRecord for photos.tar
    """
    return ArchiveRecord(
        name='photos.tar',
        plaintext_size=1000,
        encrypted_size=1000,
        archive_id='archive-abc',
        metadata=FileMetadata(mtime=1500000000, uid=os.getuid(), gid=os.getgid(), mode='640'),
        uploaded_at=1500000100,
        plaintext_md5='d41d8cd98f00b204e9800998ecf8427e',
        encrypted_md5='9e107d9d372bb6826bd81d3542a419d6',
    )


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a sample file with non-repeating content.

    Returns:
        Path to a 300 KiB file
    """
    file_path = tmp_path / 'archive' / 'sample.bin'
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_bytes(bytes(i % 251 for i in range(300 * 1024)))
    return file_path
