"""Migration flows built on the Kibela client.

Package Structure:
- transaction_log: JSON Lines record of every created resource
- content_importer: Replays exported notes, comments and attachments
- unimporter: Deletes everything a transaction log recorded
- ping: Connectivity check

Every flow catches client errors per item, logs them and keeps going.
"""

from .transaction_log import (
    TransactionLog,
    new_transaction_id,
    read_transaction_log,
    read_transaction_logs
)
from .ping import ping
from .content_importer import ContentImporter, folder_name_from_path, source_id_from_filename
from .unimporter import Unimporter

__all__ = [
    'TransactionLog',
    'new_transaction_id',
    'read_transaction_log',
    'read_transaction_logs',
    'ping',
    'ContentImporter',
    'folder_name_from_path',
    'source_id_from_filename',
    'Unimporter',
]
