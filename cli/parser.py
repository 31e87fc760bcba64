"""Command parser for CLI input."""

import shlex

from cli.models import (
    ArchiveCommand,
    CommandRequest,
    ListCommand,
    PendingCommand,
    RequestCommand,
    ServeCommand,
    ShowCommand,
    TreeHashCommand,
)
from common.constants import MIN_DEADLINE_EPOCH


class ParseError(Exception):
    """Raised when command parsing fails."""

    pass


def parse_command(input_line: str) -> CommandRequest:
    """Parse user input into a CommandRequest object.

    Args:
        input_line: Raw user input from REPL or command line

    Returns:
        CommandRequest object (one of List/Show/Request/Pending/TreeHash/Archive/Serve)

    Raises:
        ParseError: If command syntax is invalid
    """
    if not input_line.strip():
        raise ParseError("Empty command")

    try:
        tokens = shlex.split(input_line)
    except ValueError as e:
        raise ParseError(f"Invalid syntax: {e}")

    if not tokens:
        raise ParseError("Empty command")

    command_name = tokens[0]

    if command_name == "list":
        return _parse_list(tokens[1:])
    elif command_name == "show":
        return _parse_show(tokens[1:])
    elif command_name == "request":
        return _parse_request(tokens[1:])
    elif command_name == "pending":
        return _parse_no_args(tokens[1:], "pending", PendingCommand)
    elif command_name == "treehash":
        return _parse_treehash(tokens[1:])
    elif command_name == "archive":
        return _parse_no_args(tokens[1:], "archive", ArchiveCommand)
    elif command_name == "serve":
        return _parse_serve(tokens[1:])
    else:
        raise ParseError(f"Unknown command: {command_name}")


def _parse_list(args: list[str]) -> ListCommand:
    """Parse 'list [pattern]' command."""
    if len(args) > 1:
        raise ParseError("list takes at most one name pattern")
    return ListCommand(pattern=args[0] if args else None)


def _parse_show(args: list[str]) -> ShowCommand:
    """Parse 'show <name>' command."""
    if len(args) != 1:
        raise ParseError("show requires exactly 1 argument: <name>")
    return ShowCommand(name=args[0])


def _parse_request(args: list[str]) -> RequestCommand:
    """Parse 'request <name> [--rate GIB] [--by EPOCH] [--id ARCHIVE_ID]' command."""
    if not args:
        raise ParseError("request requires an archive name")

    name = None
    options: dict[str, str] = {}
    index = 0
    while index < len(args):
        arg = args[index]
        if arg in ("--rate", "--by", "--id"):
            if index + 1 >= len(args):
                raise ParseError(f"{arg} requires a value")
            options[arg] = args[index + 1]
            index += 2
            continue
        if arg.startswith("--"):
            raise ParseError(f"Unknown option: {arg}")
        if name is not None:
            raise ParseError("request takes exactly one archive name")
        name = arg
        index += 1

    if name is None:
        raise ParseError("request requires an archive name")

    rate_gib = None
    if "--rate" in options:
        rate_gib = _positive_int(options["--rate"], "--rate")

    deadline = None
    if "--by" in options:
        deadline = _positive_int(options["--by"], "--by")
        if deadline <= MIN_DEADLINE_EPOCH:
            raise ParseError(f"--by must be an epoch time after {MIN_DEADLINE_EPOCH}")

    return RequestCommand(name=name, rate_gib=rate_gib, deadline=deadline, archive_id=options.get("--id"))


def _parse_treehash(args: list[str]) -> TreeHashCommand:
    """Parse 'treehash <path>' command."""
    if len(args) != 1:
        raise ParseError("treehash requires exactly 1 argument: <path>")
    return TreeHashCommand(path=args[0])


def _parse_serve(args: list[str]) -> ServeCommand:
    """Parse 'serve [--once]' command."""
    if not args:
        return ServeCommand()
    if args == ["--once"]:
        return ServeCommand(once=True)
    raise ParseError("serve takes only the --once option")


def _parse_no_args(args: list[str], name: str, command_type):
    if args:
        raise ParseError(f"{name} takes no arguments")
    return command_type()


def _positive_int(value: str, option: str) -> int:
    if not value.isdigit() or int(value) == 0:
        raise ParseError(f"{option} must be a positive integer, got '{value}'")
    return int(value)
