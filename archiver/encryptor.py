"""Symmetric encryption of archive files through an external gpg binary."""

import subprocess
from pathlib import Path
from typing import List, Union

from common.exceptions import EncryptionError
from common.logging_config import get_logger

logger = get_logger(__name__)

PathLike = Union[str, Path]


class Encryptor:
    """Encrypts plaintext files before upload and decrypts retrieved ones."""

    def encrypt(self, source: PathLike, destination: PathLike) -> None:
        raise NotImplementedError

    def decrypt(self, source: PathLike, destination: PathLike) -> None:
        raise NotImplementedError


class GpgEncryptor(Encryptor):
    """
    gpg --symmetric with a passphrase file.

    Raises EncryptionError with gpg's combined output on a non-zero exit.
    """

    def __init__(self, passphrase_file: PathLike, gpg_binary: str = "gpg"):
        self.passphrase_file = str(passphrase_file)
        self.gpg_binary = gpg_binary

    def _base_command(self) -> List[str]:
        return [
            self.gpg_binary,
            '--batch',
            '--yes',
            '--no-tty',
            '--pinentry-mode', 'loopback',
            '--passphrase-file', self.passphrase_file,
        ]

    def _run(self, args: List[str], action: str, source: PathLike) -> None:
        logger.debug(f"Running gpg to {action} {source}")
        try:
            result = subprocess.run(
                self._base_command() + args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                check=False,
            )
        except OSError as e:
            raise EncryptionError(f"Unable to {action} {source}: {e}") from e

        if result.returncode != 0:
            raise EncryptionError(
                f"Unable to {action} {source} (gpg exit {result.returncode}):\n{result.stdout}"
            )

    def encrypt(self, source: PathLike, destination: PathLike) -> None:
        self._run(['--output', str(destination), '--symmetric', str(source)], 'encrypt', source)

    def decrypt(self, source: PathLike, destination: PathLike) -> None:
        self._run(['--output', str(destination), '--decrypt', str(source)], 'decrypt', source)
