"""
Transaction log recording every resource a migration creates.

Each line is a JSON object (see TransactionEntry.to_dict). The log is what
``unimport`` replays to delete a migration again.
"""

import json
import logging
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from models import TransactionEntry

logger = logging.getLogger('kibela_migrator.migration.transaction_log')


def new_transaction_id() -> str:
    """Return a time-ordered unique transaction id."""
    return f"{datetime.now().strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:12]}"


class TransactionLog:
    """Append-only JSON Lines writer for created resources."""

    def __init__(
        self,
        directory: Union[str, Path] = '.',
        transaction_id: Optional[str] = None,
        keep: bool = True
    ):
        """
        Open a new transaction log exclusively.

        Args:
            directory: Directory to create the log in
            transaction_id: Id used in the file name (generated if omitted)
            keep: Whether to keep a non-empty log on close; dry runs pass False

        Raises:
            FileExistsError: If a log with the same id already exists
        """
        self.transaction_id = transaction_id or new_transaction_id()
        self.path = Path(directory) / f"transaction-{self.transaction_id}.log"
        self.keep = keep
        self.entries_written = 0
        self._fh = open(self.path, 'x', encoding='utf-8')

        logger.debug(f"Opened transaction log {self.path}")

    def append(self, entry: TransactionEntry) -> None:
        """Write one entry and flush it to disk."""
        self._fh.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
        self._fh.flush()
        self.entries_written += 1

    @property
    def closed(self) -> bool:
        return self._fh.closed

    def close(self) -> None:
        """Close the log; remove it when empty or not meant to be kept."""
        if self._fh.closed:
            return

        self._fh.close()

        if self.entries_written == 0 or not self.keep:
            os.unlink(self.path)
            logger.debug(f"Removed transaction log {self.path}")
        else:
            logger.info(f"Transaction log written: {self.path} ({self.entries_written} entries)")

    def __enter__(self) -> 'TransactionLog':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def read_transaction_log(path: Union[str, Path]) -> Iterator[TransactionEntry]:
    """
    Yield entries from a transaction log, skipping blank lines.

    Raises:
        ValueError: On malformed JSON or an unknown entry type
    """
    with open(path, 'r', encoding='utf-8') as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path}:{line_number}: invalid JSON: {e}")
            yield TransactionEntry.from_dict(data)


def read_transaction_logs(paths: Iterable[Union[str, Path]]) -> Iterator[TransactionEntry]:
    """Yield entries from several logs in order."""
    for path in paths:
        logger.info(f"Loading {path}")
        yield from read_transaction_log(path)


__all__ = [
    'TransactionLog',
    'new_transaction_id',
    'read_transaction_log',
    'read_transaction_logs',
]
