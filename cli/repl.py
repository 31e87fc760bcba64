"""REPL with prompt_toolkit for operator interaction."""

import os
import sys
from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory

from cli.commands import (
    get_ledger,
    handle_archive,
    handle_list,
    handle_pending,
    handle_request,
    handle_serve,
    handle_show,
    handle_treehash,
)
from cli.completer import ColdVaultCompleter
from cli.constants import (
    HELP_TEXT,
    LOGO,
    PROMPT_TEXT,
    STYLE,
    WELCOME_HELP,
    WELCOME_TITLE,
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
from cli.parser import ParseError, parse_command
from common.exceptions import ColdVaultError


def clear_screen() -> None:
    """Clear the terminal screen (cross-platform)."""
    if sys.platform == "win32":
        os.system("cls")
    else:
        os.system("clear")


def show_logo() -> None:
    print(LOGO)


def dispatch_command(cmd_obj) -> str:
    """Dispatch parsed command to appropriate handler."""
    if isinstance(cmd_obj, ListCommand):
        return handle_list(cmd_obj)
    elif isinstance(cmd_obj, ShowCommand):
        return handle_show(cmd_obj)
    elif isinstance(cmd_obj, RequestCommand):
        return handle_request(cmd_obj)
    elif isinstance(cmd_obj, PendingCommand):
        return handle_pending(cmd_obj)
    elif isinstance(cmd_obj, TreeHashCommand):
        return handle_treehash(cmd_obj)
    elif isinstance(cmd_obj, ArchiveCommand):
        return handle_archive(cmd_obj)
    elif isinstance(cmd_obj, ServeCommand):
        return handle_serve(cmd_obj)
    else:
        return f"Unknown command type: {type(cmd_obj)}"


def _archive_names():
    return [record.name for record in get_ledger().records()]


def repl_loop() -> None:
    """Start interactive REPL with prompt_toolkit."""
    completer = ColdVaultCompleter(_archive_names)
    history = InMemoryHistory()
    session: PromptSession = PromptSession(
        completer=completer, history=history, style=STYLE
    )

    clear_screen()
    show_logo()
    print(WELCOME_TITLE)
    print(WELCOME_HELP)

    while True:
        try:
            user_input = session.prompt([("class:prompt", PROMPT_TEXT)])

            if not user_input.strip():
                continue

            if user_input.strip() == "exit":
                print("Goodbye!")
                break

            if user_input.strip() == "help":
                print(HELP_TEXT)
                continue

            if user_input.strip() == "clear":
                clear_screen()
                show_logo()
                print(WELCOME_TITLE)
                print(WELCOME_HELP)
                continue

            cmd_obj = parse_command(user_input)
            result = dispatch_command(cmd_obj)
            print(result)

        except ParseError as e:
            print(f"Error: {e}")
        except ColdVaultError as e:
            print(f"Error: {e}")
        except KeyboardInterrupt:
            continue
        except EOFError:
            print("\nGoodbye!")
            break
