"""Tests for CLI command parsing."""

import pytest

from cli.models import (
    ArchiveCommand,
    ListCommand,
    PendingCommand,
    RequestCommand,
    ServeCommand,
    ShowCommand,
    TreeHashCommand,
)
from cli.parser import ParseError, parse_command


def test_parse_list():
    assert parse_command("list") == ListCommand()
    assert parse_command("list '*.tar'") == ListCommand(pattern='*.tar')


def test_parse_show_with_quoted_name():
    assert parse_command('show "holiday photos.tar"') == ShowCommand(name='holiday photos.tar')


def test_parse_request_defaults():
    assert parse_command("request photos.tar") == RequestCommand(name='photos.tar')


def test_parse_request_options():
    cmd = parse_command("request photos.tar --rate 4 --by 1800000000 --id abc-123")

    assert cmd == RequestCommand(name='photos.tar', rate_gib=4, deadline=1800000000, archive_id='abc-123')


def test_parse_request_options_before_name():
    assert parse_command("request --rate 3 photos.tar").rate_gib == 3


def test_parse_simple_commands():
    assert parse_command("pending") == PendingCommand()
    assert parse_command("archive") == ArchiveCommand()
    assert parse_command("serve") == ServeCommand()
    assert parse_command("serve --once") == ServeCommand(once=True)
    assert parse_command("treehash /tmp/file") == TreeHashCommand(path='/tmp/file')


@pytest.mark.parametrize("line, message", [
    ("", "Empty command"),
    ("   ", "Empty command"),
    ("frobnicate", "Unknown command"),
    ("show", "exactly 1 argument"),
    ("request", "requires an archive name"),
    ("request a.tar b.tar", "exactly one archive name"),
    ("request a.tar --rate", "requires a value"),
    ("request a.tar --rate fast", "positive integer"),
    ("request a.tar --rate 0", "positive integer"),
    ("request a.tar --by 1000", "epoch time after"),
    ("request a.tar --speed 4", "Unknown option"),
    ("pending now", "takes no arguments"),
    ("serve --forever", "--once"),
    ("list a b", "at most one"),
    ('show "unterminated', "Invalid syntax"),
])
def test_parse_errors(line, message):
    with pytest.raises(ParseError) as excinfo:
        parse_command(line)
    assert message in str(excinfo.value)
