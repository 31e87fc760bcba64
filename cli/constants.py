"""CLI constants and configuration."""

from prompt_toolkit.styles import Style

COMMANDS = ["list", "show", "request", "pending", "treehash", "archive", "serve", "clear", "exit", "help"]

# Commands whose first argument is an archive name from the ledger
NAME_COMMANDS = ("show", "request")

STYLE = Style.from_dict(
    {
        "prompt": "#4FA3D9 bold",
        "command": "#0088ff bold",
    }
)

ICE_BLUE = "\033[38;2;79;163;217m"
GREEN = "\033[32m"
RESET = "\033[0m"

LOGO = f"""{ICE_BLUE}
  ___  ___  _    ___   __   ___  _   _ _  _____
 / __|/ _ \\| |  |   \\  \\ \\ / /_\\| | | | ||_   _|
| (__| (_) | |__| |) |  \\ V / _ \\ |_| | |__| |
 \\___|\\___/|____|___/    \\_/_/ \\_\\___/|____|_|
{RESET}"""

WELCOME_TITLE = "ColdVault console - encrypted cold-storage archive"
WELCOME_HELP = "Type 'help' for commands or 'exit' to quit.\n"

PROMPT_TEXT = "coldvault> "

HELP_TEXT = """Available commands:
  list [pattern]                           List archived files (shell-style name pattern)
  show <name>                              Show the ledger record of an archive
  request <name> [--rate GIB] [--by EPOCH] [--id ARCHIVE_ID]
                                           Queue a retrieval request
  pending                                  Show queued, in-flight and failed retrievals
  treehash <path>                          Compute the tree hash of a local file
  archive                                  Run one upload pass over the archive directory
  serve [--once]                           Run the retrieval service (--once: one request)
  clear                                    Clear screen and redisplay welcome message
  help                                     Show this help
  exit                                     Exit console

--rate is in GiB/hour and is clamped to the configured limits.
--by is the epoch time the retrieval should be finished by; the rate is derived from it.
Examples:
  list '*.tar'
  show photos-2014.tar
  request photos-2014.tar --rate 4
  request photos-2014.tar --by 1735689600
  treehash /mnt/cold_archive/photos-2014.tar"""
