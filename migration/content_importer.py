"""
Content importer replaying exported notes, comments and attachments.

Items come from an archive reader outside this package. Every resource that
gets created is recorded in a TransactionLog so the import can be reverted
with the Unimporter. The expected caller is an import script that unpacks an
export archive, builds ExportedNote and ExportedAttachment objects from it and
passes them to ContentImporter.import_items; this CLI ships no such command.
"""

import logging
import os
import re
import uuid
from typing import Any, Dict, Iterable, Optional, Union

from kibela import KibelaClient, KibelaClientError
from kibela.operations import CREATE_COMMENT, CREATE_NOTE, GET_AUTHOR, UPLOAD_ATTACHMENT
from logger import ProgressTracker
from models import (
    CreatedResource,
    EntryType,
    ExportedAttachment,
    ExportedComment,
    ExportedNote,
    TransactionEntry
)
from .ping import ping
from .transaction_log import TransactionLog

FOLDER_PATTERN = re.compile(r'[^/]+/(?:notes|blogs|wikis)/(?:(.+)/)?[^/]+$', re.IGNORECASE)
SOURCE_ID_PATTERN = re.compile(r'^([^-.]+)')

ImportItem = Union[ExportedAttachment, ExportedNote]


def source_id_from_filename(filename: str) -> str:
    """Return the exported resource id a file name starts with (``123-title.md`` -> ``123``)."""
    basename = os.path.basename(filename)
    matched = SOURCE_ID_PATTERN.match(basename)
    return matched.group(1) if matched else basename


def folder_name_from_path(path: str) -> Optional[str]:
    """
    Extract the folder of an exported note.

    Args:
        path: ``kibela-<team>-<seq>/(notes|blogs|wikis)/<folder>/<id>-<title>.md``

    Returns:
        Folder name, or None for notes outside any folder
    """
    matched = FOLDER_PATTERN.search(path)
    return matched.group(1) if matched else None


class ContentImporter:
    """
    Creates exported content on the destination team.

    In dry-run mode (``apply=False``) no request is sent; ids and paths are
    synthesized so the rest of the pipeline behaves the same.
    """

    def __init__(
        self,
        client: KibelaClient,
        transaction_log: TransactionLog,
        apply: bool = False,
        resolve_authors: bool = False,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the importer.

        Args:
            client: Client for the destination team
            transaction_log: Log receiving one entry per created resource
            apply: Send requests; otherwise run dry
            resolve_authors: Look up authors by account and pass their ids
            logger: Logger instance
        """
        self.client = client
        self.transaction_log = transaction_log
        self.apply = apply
        self.resolve_authors = resolve_authors
        self.logger = logger or logging.getLogger('kibela_migrator.migration.content_importer')

        self._author_cache: Dict[str, Dict[str, Any]] = {}
        self.stats = self._new_stats()

    @staticmethod
    def _new_stats() -> Dict[str, Any]:
        return {
            'success': 0,
            'failure': 0,
            'skipped': 0,
            'bytes': 0,
            'errors': []
        }

    def import_items(self, items: Iterable[ImportItem]) -> Dict[str, Any]:
        """
        Import every item, continuing past per-item failures.

        Args:
            items: Attachments and notes in archive order

        Returns:
            Statistics dictionary (success, failure, skipped, bytes, errors)
        """
        self.stats = self._new_stats()

        if self.apply:
            ping(self.client)

        label = "Processing" if self.apply else "Processing (dry-run)"

        with ProgressTracker(item_type="archive entries") as progress:
            for index, item in enumerate(items, start=1):
                id_tag = f"{index:05d}"
                size = item.size
                self.logger.info(f"{label} [{id_tag}] {item.path} ({round(size / 1024)} KiB)")
                self.stats['bytes'] += size

                try:
                    if isinstance(item, ExportedAttachment):
                        self.import_attachment(item)
                    elif self.import_note(item) is None:
                        self.stats['skipped'] += 1
                        continue

                    self.stats['success'] += 1
                    progress.increment(success=True)
                except KibelaClientError as e:
                    self.logger.error(f"Failed to request [{id_tag}] {item.path}: {e}")
                    self.stats['failure'] += 1
                    self.stats['errors'].append({'file': item.path, 'error': str(e)})
                    progress.increment(success=False)

        size_mib = round(self.stats['bytes'] / 1024 ** 2)
        self.logger.info(
            f"Uploaded data size={size_mib}MiB, "
            f"success/failure={self.stats['success']}/{self.stats['failure']}"
        )
        return self.stats

    def import_attachment(self, attachment: ExportedAttachment) -> CreatedResource:
        """Upload one attachment and log it."""
        if self.apply:
            result = self.client.request(UPLOAD_ATTACHMENT, {
                'input': {
                    'name': os.path.basename(attachment.path),
                    'data': attachment.data,
                    'kind': 'GENERAL',
                }
            })
            created = result.data['uploadAttachment']['attachment']
            resource = CreatedResource(id=created['id'], path=created['path'])
        else:
            dummy = uuid.uuid4().hex
            resource = CreatedResource(id=dummy, path=f"/attachments/{dummy}")

        self.transaction_log.append(TransactionEntry(
            type=EntryType.ATTACHMENT,
            file=attachment.path,
            source_id=source_id_from_filename(attachment.path),
            dest_path=resource.path,
            dest_relay_id=resource.id
        ))
        return resource

    def import_note(self, note: ExportedNote) -> Optional[CreatedResource]:
        """
        Create one note and its comments, logging each.

        Returns:
            The created note, or None for drafts (which are skipped)
        """
        if note.is_draft:
            self.logger.debug(f"Skipping draft note {note.path}")
            return None

        folder_name = note.folder_name if note.folder_name is not None else folder_name_from_path(note.path)

        if self.apply:
            result = self.client.request(CREATE_NOTE, {
                'input': {
                    'title': note.title,
                    'content': note.content,
                    'coediting': True,
                    'groupIds': [],
                    'folderName': folder_name,
                    'authorId': self._author_id(note.author),
                    'publishedAt': note.published_at,
                }
            })
            created = result.data['createNote']['note']
            resource = CreatedResource(id=created['id'], path=created['path'], content=note.content)
        else:
            dummy = uuid.uuid4().hex
            resource = CreatedResource(id=dummy, path=f"/notes/{dummy}", content=note.content)

        source_id = source_id_from_filename(note.path)
        self.transaction_log.append(TransactionEntry(
            type=EntryType.NOTE,
            file=note.path,
            source_id=source_id,
            dest_path=resource.path,
            dest_relay_id=resource.id,
            content=resource.content
        ))

        for comment in note.comments:
            created_comment = self.import_comment(resource, comment)
            self.transaction_log.append(TransactionEntry(
                type=EntryType.COMMENT,
                file=note.path,
                # exported comments carry no id of their own
                source_id=source_id,
                dest_path=created_comment.path,
                dest_relay_id=created_comment.id,
                content=created_comment.content
            ))

        return resource

    def import_comment(self, note: CreatedResource, comment: ExportedComment) -> CreatedResource:
        """Create one comment on an already created note."""
        if not self.apply:
            dummy = uuid.uuid4().hex
            return CreatedResource(id=dummy, path=f"{note.path}#comment_{dummy}", content=comment.content)

        result = self.client.request(CREATE_COMMENT, {
            'input': {
                'commentableId': note.id,
                'content': comment.content,
                'publishedAt': comment.published_at,
                'authorId': self._author_id(comment.author),
            }
        })
        created = result.data['createComment']['comment']
        return CreatedResource(id=created['id'], path=created['path'], content=comment.content)

    def get_author(self, account: str) -> Dict[str, Any]:
        """Look up a user by account name, caching the answer."""
        account = account.lstrip('@')
        if account not in self._author_cache:
            result = self.client.request(GET_AUTHOR, {'account': account})
            self._author_cache[account] = result.data['user']
        return self._author_cache[account]

    def _author_id(self, account: Optional[str]) -> Any:
        if not self.resolve_authors or not account:
            return None
        return self.get_author(account)['id']


__all__ = [
    'ContentImporter',
    'source_id_from_filename',
    'folder_name_from_path',
]
