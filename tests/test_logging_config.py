"""Tests for logging setup and masking of secrets."""

import logging

from common.logging_config import SensitiveDataFilter, setup_logging


def _record(msg, args=None):
    return logging.LogRecord('test', logging.INFO, __file__, 1, msg, args, None)


def test_masks_passphrase_in_message():
    record = _record("passphrase=hunter2 for vault")
    SensitiveDataFilter().filter(record)
    assert 'hunter2' not in record.msg
    assert '***MASKED***' in record.msg


def test_masks_credentials_in_args():
    record = _record("config %s", ("aws_secret_access_key: AKIASECRET",))
    SensitiveDataFilter().filter(record)
    assert 'AKIASECRET' not in record.args[0]


def test_plain_messages_untouched():
    record = _record("Uploaded photos.tar as archive-1")
    SensitiveDataFilter().filter(record)
    assert record.msg == "Uploaded photos.tar as archive-1"


def test_setup_logging_writes_log_file(tmp_path):
    root = logging.getLogger()
    saved = list(root.handlers)
    for handler in saved:
        if getattr(handler, '_coldvault', False):
            root.removeHandler(handler)
    log_file = tmp_path / 'logs' / 'uploadlog.txt'
    try:
        logger = setup_logging('archiver', log_level='INFO', log_file=log_file)
        logger.info("pass started")
        for handler in root.handlers:
            handler.flush()
        assert 'pass started' in log_file.read_text()
    finally:
        for handler in list(root.handlers):
            if getattr(handler, '_coldvault', False):
                root.removeHandler(handler)
                handler.close()
        for handler in saved:
            if handler not in root.handlers:
                root.addHandler(handler)
