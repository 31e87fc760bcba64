"""CLI entry point.

    coldvault                      interactive console
    coldvault <command> [args]     run one command, e.g. 'coldvault archive'

Options: --debug, --config <path>
"""

import os
import shlex
import sys

from cli.commands import configure, get_config
from cli.parser import ParseError, parse_command
from cli.repl import dispatch_command, repl_loop
from common.exceptions import ColdVaultError
from common.logging_config import setup_logging


def _pop_option(args: list[str], name: str) -> str | None:
    if name not in args:
        return None
    index = args.index(name)
    if index + 1 >= len(args):
        print(f"Error: {name} requires a value", file=sys.stderr)
        sys.exit(2)
    value = args[index + 1]
    del args[index:index + 2]
    return value


def _log_file_for(command: str) -> str | None:
    config = get_config()
    if command == "archive":
        return config.get('upload_log')
    if command == "serve":
        return config.get('retrieve_log')
    return None


def main() -> None:
    """Entry point for CLI."""
    args = sys.argv[1:]
    debug = '--debug' in args
    if debug:
        args.remove('--debug')
    config_path = _pop_option(args, '--config')
    configure(config_path)

    log_level = 'DEBUG' if debug else os.getenv('LOG_LEVEL', 'INFO')
    command_name = args[0] if args else 'console'
    logger = setup_logging('cli', log_level=log_level, log_file=_log_file_for(command_name))
    if debug:
        logger.info("Debug logging enabled")

    if not args:
        logger.info("Console starting...")
        try:
            repl_loop()
        except Exception as e:
            logger.error(f"Console error: {e}", exc_info=True)
            raise
        finally:
            logger.info("Console exiting")
        return

    try:
        cmd_obj = parse_command(shlex.join(args))
        print(dispatch_command(cmd_obj))
    except ParseError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except ColdVaultError as e:
        logger.error(f"{command_name} failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
