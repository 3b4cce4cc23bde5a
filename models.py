"""Data models for the Kibela content migration pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from dateutil.parser import isoparse


class EntryType(Enum):
    """Kinds of resources recorded in a transaction log."""
    NOTE = "note"
    COMMENT = "comment"
    ATTACHMENT = "attachment"


def parse_published_at(value: Any) -> Optional[datetime]:
    """Parse an exported ``published_at`` value; empty values mean a draft."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    return isoparse(str(value))


@dataclass
class ExportedAttachment:
    """An attachment file taken from an export archive."""

    path: str  # path inside the archive
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ExportedComment:
    """A comment attached to an exported note."""

    author: str
    content: str
    published_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExportedComment':
        return cls(
            author=str(data.get('author', '')).lstrip('@'),
            content=data.get('content', ''),
            published_at=parse_published_at(data.get('published_at'))
        )


@dataclass
class ExportedNote:
    """
    A note read from an export archive.

    ``published_at`` is None for drafts, which are not migrated.
    """

    path: str  # path inside the archive
    title: str
    content: str
    author: str
    published_at: Optional[datetime] = None
    folder_name: Optional[str] = None
    comments: List[ExportedComment] = field(default_factory=list)
    size: int = 0

    @property
    def is_draft(self) -> bool:
        return self.published_at is None


@dataclass
class CreatedResource:
    """A resource created on the destination team."""

    id: Any  # Relay global id
    path: str
    content: Optional[str] = None


@dataclass
class TransactionEntry:
    """One line of a transaction log."""

    type: EntryType
    file: str
    source_id: str
    dest_path: str
    dest_relay_id: Any
    content: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize entry using the log's wire field names."""
        data = {
            'type': self.type.value,
            'file': self.file,
            'sourceId': self.source_id,
            'destPath': self.dest_path,
            'destRelayId': self.dest_relay_id,
        }
        if self.content is not None:
            data['content'] = self.content
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransactionEntry':
        """
        Deserialize entry from a decoded log line.

        Raises:
            ValueError: If the entry type is unknown
        """
        try:
            entry_type = EntryType(data.get('type'))
        except ValueError:
            raise ValueError(f"Unknown type: {data.get('type')}")

        return cls(
            type=entry_type,
            file=data.get('file', ''),
            source_id=data.get('sourceId', ''),
            dest_path=data.get('destPath', ''),
            dest_relay_id=data.get('destRelayId'),
            content=data.get('content')
        )


__all__ = [
    'EntryType',
    'ExportedAttachment',
    'ExportedComment',
    'ExportedNote',
    'CreatedResource',
    'TransactionEntry',
    'parse_published_at',
]
