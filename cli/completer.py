"""Custom completer for the ColdVault console with archive name completion."""

from typing import Callable, Iterable

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from cli.constants import COMMANDS, NAME_COMMANDS


class ColdVaultCompleter(Completer):
    """
    Custom completer that provides:
    - Command name completion for the first token
    - Archive name completion for 'show' and 'request' from the ledger
    """

    def __init__(self, archive_names: Callable[[], Iterable[str]]):
        """
        Args:
            archive_names: Returns the archive names currently in the ledger
        """
        self.archive_names = archive_names

    def get_completions(
        self, document: Document, complete_event
    ) -> Iterable[Completion]:
        text = document.text_before_cursor
        tokens = text.split()

        is_typing_new_token = text.endswith(" ") or not tokens

        if not tokens or (len(tokens) == 1 and not is_typing_new_token):
            yield from self._complete_commands(tokens[0] if tokens else "")
            return

        command = tokens[0].lower()
        if command not in NAME_COMMANDS:
            return

        # Only the first argument is an archive name
        argument_count = len(tokens) - 1 if not is_typing_new_token else len(tokens)
        if argument_count > 1:
            return

        current_word = "" if is_typing_new_token else tokens[-1]
        yield from self._complete_archive_names(current_word)

    def _complete_commands(self, partial: str) -> Iterable[Completion]:
        """Complete command names matching the partial input."""
        partial_lower = partial.lower()
        for cmd in COMMANDS:
            if cmd.startswith(partial_lower):
                yield Completion(cmd, start_position=-len(partial))

    def _complete_archive_names(self, partial: str) -> Iterable[Completion]:
        for name in sorted(self.archive_names()):
            if name.startswith(partial):
                yield Completion(name, start_position=-len(partial))
