"""Reverts a migration by deleting every resource listed in transaction logs."""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from tqdm import tqdm

from kibela import GraphqlError, KibelaClient, NetworkError, is_not_found_error
from kibela.operations import DELETE_ATTACHMENT, DELETE_COMMENT, DELETE_NOTE, Operation
from models import EntryType, TransactionEntry
from .transaction_log import read_transaction_logs

DELETE_OPERATIONS: Dict[EntryType, Operation] = {
    EntryType.NOTE: DELETE_NOTE,
    EntryType.COMMENT: DELETE_COMMENT,
    EntryType.ATTACHMENT: DELETE_ATTACHMENT,
}


class Unimporter:
    """Deletes migrated resources; missing ones count as already deleted."""

    def __init__(
        self,
        client: KibelaClient,
        apply: bool = False,
        show_progress: bool = False,
        logger: Optional[logging.Logger] = None
    ):
        self.client = client
        self.apply = apply
        self.show_progress = show_progress
        self.logger = logger or logging.getLogger('kibela_migrator.migration.unimporter')
        self.stats = self._new_stats()

    @staticmethod
    def _new_stats() -> Dict[str, Any]:
        return {
            'total': 0,
            'deleted': 0,
            'not_found': 0,
            'failed': 0,
            'errors': []
        }

    def unimport_logs(self, log_files: Iterable[Union[str, Path]]) -> Dict[str, Any]:
        """
        Delete everything recorded in the given transaction logs.

        Args:
            log_files: Transaction log paths, processed in order

        Returns:
            Statistics dictionary (total, deleted, not_found, failed, errors)
        """
        return self.unimport_entries(read_transaction_logs(log_files))

    def unimport_entries(self, entries: Iterable[TransactionEntry]) -> Dict[str, Any]:
        """Delete each entry's resource, continuing past failures."""
        self.stats = self._new_stats()

        iterable = entries
        if self.show_progress:
            iterable = tqdm(entries, desc="Deleting resources", unit="entry")

        for entry in iterable:
            self.stats['total'] += 1
            self.unimport_entry(entry)

        self.logger.info(
            f"Unimport finished: total={self.stats['total']} deleted={self.stats['deleted']} "
            f"not_found={self.stats['not_found']} failed={self.stats['failed']}"
        )
        return self.stats

    def unimport_entry(self, entry: TransactionEntry) -> bool:
        """
        Delete one resource.

        Returns:
            True when the resource is gone (deleted or already missing)
        """
        operation = DELETE_OPERATIONS[entry.type]
        self.logger.info(f"{operation.name} id={entry.dest_relay_id}, path={entry.dest_path}")

        if not self.apply:
            return True

        try:
            self.client.request(operation, {'input': {'id': entry.dest_relay_id}})
        except GraphqlError as e:
            if is_not_found_error(e):
                self.logger.info(" ... resource not found")
                self.stats['not_found'] += 1
                return True
            self.logger.warning(f"  ... failed with {e} {e.errors}")
            self._record_failure(entry, e)
            return False
        except NetworkError as e:
            self.logger.error(f" ... failed with {e} {e.errors}")
            self._record_failure(entry, e)
            return False

        self.stats['deleted'] += 1
        return True

    def _record_failure(self, entry: TransactionEntry, error: Exception) -> None:
        self.stats['failed'] += 1
        self.stats['errors'].append({
            'type': entry.type.value,
            'id': entry.dest_relay_id,
            'path': entry.dest_path,
            'error': str(error)
        })


__all__ = ['Unimporter', 'DELETE_OPERATIONS']
