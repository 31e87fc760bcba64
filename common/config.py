"""Configuration management for coldvault."""

import json
import os
import shutil
from pathlib import Path
from typing import Optional

from common import constants
from common.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path(os.environ.get("COLDVAULT_CONFIG", "/etc/coldvault/config.json"))


class Config:
    """Manages coldvault configuration stored in a JSON file."""

    DEFAULT_CONFIG = {
        "vault_name": os.environ.get("COLDVAULT_VAULT_NAME", "ColdArchive"),
        "account_id": os.environ.get("COLDVAULT_ACCOUNT_ID", "-"),
        "region": os.environ.get("COLDVAULT_REGION"),
        "archive_dir": os.environ.get("COLDVAULT_ARCHIVE_DIR", "/mnt/cold_archive"),
        "request_dir": os.environ.get("COLDVAULT_REQUEST_DIR", "/mnt/cold_archive/retrieve"),
        "ledger_path": os.environ.get("COLDVAULT_LEDGER_PATH", "/mnt/cold_archive/index.txt"),
        "ledger_mirror_path": os.environ.get("COLDVAULT_LEDGER_MIRROR_PATH"),
        "upload_log": os.environ.get("COLDVAULT_UPLOAD_LOG", "/mnt/cold_archive/uploadlog.txt"),
        "retrieve_log": os.environ.get("COLDVAULT_RETRIEVE_LOG", "/mnt/cold_archive/retrievelog.txt"),
        "passphrase_file": os.environ.get("COLDVAULT_PASSPHRASE_FILE", "/etc/archive-passphrase"),
        "gpg_binary": "gpg",
        "max_age_days": constants.MAX_AGE_DAYS,
        "single_part_threshold": constants.SINGLE_PART_THRESHOLD_BYTES,
        "part_size": constants.UPLOAD_PART_SIZE_BYTES,
        "part_max_attempts": constants.PART_UPLOAD_MAX_ATTEMPTS,
        "block_size": constants.RETRIEVAL_BLOCK_SIZE_BYTES,
        "poll_interval": constants.JOB_POLL_INTERVAL_SECONDS,
        "min_rate_gib": constants.MIN_RETRIEVAL_RATE_GIB,
        "max_rate_gib": constants.MAX_RETRIEVAL_RATE_GIB,
        "overhead_hours": constants.RETRIEVAL_OVERHEAD_HOURS,
        "propagation_delay": constants.POLICY_PROPAGATION_SECONDS,
        "timeout": 60,
        "max_retries": 3,
        "retry_backoff_multiplier": 2,
    }

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Path to config JSON file (defaults to COLDVAULT_CONFIG or /etc/coldvault/config.json)
        """
        self.config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
        self.data = self._load()

    def _load(self) -> dict:
        """
        Load configuration from file, falling back to defaults.

        Returns:
            Configuration dictionary
        """
        config = self.DEFAULT_CONFIG.copy()
        if not self.config_path.exists():
            logger.debug(f"No config file at {self.config_path}, using defaults")
            return config

        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            backup_path = self.config_path.with_suffix('.json.bak')
            logger.warning(f"Unreadable config {self.config_path} ({e}); using defaults, copy kept at {backup_path}")
            try:
                shutil.copy(self.config_path, backup_path)
            except IOError as copy_error:
                logger.warning(f"Could not back up config file: {copy_error}")
            return config

        if not isinstance(data, dict):
            logger.warning(f"Config {self.config_path} is not a JSON object; using defaults")
            return config

        config.update(data)
        return config

    def save(self) -> None:
        """Save current configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            json.dump(self.data, f, indent=2)

    def get(self, key: str, default=None):
        return self.data.get(key, default)

    def get_path(self, key: str) -> Optional[Path]:
        """
        Get a path-valued setting.

        Returns:
            Path, or None when the setting is unset
        """
        value = self.data.get(key)
        return Path(value) if value else None

    def get_int(self, key: str) -> int:
        return int(self.data.get(key, self.DEFAULT_CONFIG.get(key)))

    def get_float(self, key: str) -> float:
        return float(self.data.get(key, self.DEFAULT_CONFIG.get(key)))

    def get_max_age_days(self) -> int:
        """
        Get the retention age for local plaintext copies.

        Returns:
            Days since upload, never less than MIN_MAX_AGE_DAYS
        """
        return max(self.get_int('max_age_days'), constants.MIN_MAX_AGE_DAYS)

    def get_retry_config(self) -> dict:
        """
        Get retry configuration for remote calls.

        Returns:
            Dictionary with 'max_retries' and 'retry_backoff_multiplier'
        """
        return {
            'max_retries': self.data.get('max_retries', 3),
            'retry_backoff_multiplier': self.data.get('retry_backoff_multiplier', 2),
        }
