"""
Account list persistence.

Accounts are stored as a JSON array of camelCase account records, the same
layout the desktop app writes, so an existing accounts.json loads unchanged.
"""

import json
import logging
from pathlib import Path
from typing import List, Union

from pydantic import ValidationError

from ..models.account import Account

logger = logging.getLogger(__name__)


class AccountRepository:
    """Loads and saves the configured account list."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()
        self._unreadable = False

    def load(self) -> List[Account]:
        """
        Load accounts from disk.

        A missing file is an empty account list. A file that can't be parsed
        is logged and also treated as empty, and is moved aside before the
        next save; records that fail validation are skipped individually.
        """
        if not self.path.exists():
            logger.debug(f"No accounts file at {self.path}")
            return []

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read accounts from {self.path}: {e}")
            self._unreadable = True
            return []

        if not isinstance(data, list):
            logger.error(f"Accounts file {self.path} does not contain a JSON array")
            self._unreadable = True
            return []

        accounts = []
        for index, record in enumerate(data):
            try:
                accounts.append(Account.model_validate(record))
            except ValidationError as e:
                logger.warning(f"Skipping invalid account record #{index} in {self.path}: {e.error_count()} error(s)")

        self._unreadable = False
        logger.info(f"Loaded {len(accounts)} accounts from {self.path}")
        return accounts

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".bak")

    def save(self, accounts: List[Account]) -> None:
        """
        Write accounts to disk, creating the parent directory if needed.

        If the last load found the file unreadable, it is first renamed to
        backup_path.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self._unreadable and self.path.exists():
            self.path.replace(self.backup_path)
            logger.warning(f"Moved unreadable accounts file to {self.backup_path}")
        self._unreadable = False
        payload = [account.to_dict() for account in accounts]
        self.path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        logger.debug(f"Saved {len(accounts)} accounts to {self.path}")
