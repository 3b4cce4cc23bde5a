"""Tests for transaction log writing and reading."""

import json
import re
import tempfile
import unittest
from pathlib import Path

from migration import TransactionLog, new_transaction_id, read_transaction_log, read_transaction_logs
from models import EntryType, TransactionEntry


def note_entry(relay_id='Tm90ZS8x', content=None):
    return TransactionEntry(
        type=EntryType.NOTE,
        file='kibela-team-1/notes/123-hello.md',
        source_id='123',
        dest_path='/notes/42',
        dest_relay_id=relay_id,
        content=content
    )


class TestTransactionEntry(unittest.TestCase):
    def test_wire_field_names(self):
        """Test entries serialize with camelCase keys."""
        data = note_entry(content='# Hello').to_dict()

        self.assertEqual(data, {
            'type': 'note',
            'file': 'kibela-team-1/notes/123-hello.md',
            'sourceId': '123',
            'destPath': '/notes/42',
            'destRelayId': 'Tm90ZS8x',
            'content': '# Hello',
        })

    def test_content_omitted_when_absent(self):
        self.assertNotIn('content', note_entry().to_dict())

    def test_from_dict(self):
        entry = TransactionEntry.from_dict({
            'type': 'attachment',
            'file': 'kibela-team-1/attachments/7.png',
            'sourceId': '7',
            'destPath': '/attachments/99',
            'destRelayId': 'QXR0YWNobWVudC85OQ',
        })

        self.assertEqual(entry.type, EntryType.ATTACHMENT)
        self.assertEqual(entry.dest_relay_id, 'QXR0YWNobWVudC85OQ')
        self.assertIsNone(entry.content)

    def test_unknown_type_rejected(self):
        with self.assertRaises(ValueError) as ctx:
            TransactionEntry.from_dict({'type': 'blog'})

        self.assertIn('Unknown type: blog', str(ctx.exception))


class TestTransactionLog(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.directory = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_transaction_id_format(self):
        """Test ids start with a sortable timestamp."""
        self.assertRegex(new_transaction_id(), r'^\d{14}-[0-9a-f]{12}$')

    def test_writes_one_json_line_per_entry(self):
        with TransactionLog(self.directory, transaction_id='t1') as log:
            log.append(note_entry('a'))
            log.append(note_entry('b', content='body'))

        lines = (self.directory / 'transaction-t1.log').read_text(encoding='utf-8').splitlines()
        self.assertEqual(len(lines), 2)
        self.assertEqual(json.loads(lines[0])['destRelayId'], 'a')
        self.assertEqual(json.loads(lines[1])['content'], 'body')

    def test_entries_flushed_before_close(self):
        log = TransactionLog(self.directory, transaction_id='t2')
        log.append(note_entry())

        self.assertTrue(log.path.read_text(encoding='utf-8').endswith("\n"))
        log.close()
        self.assertTrue(log.closed)

    def test_empty_log_removed(self):
        with TransactionLog(self.directory, transaction_id='t3') as log:
            path = log.path

        self.assertFalse(path.exists())

    def test_dry_run_log_removed(self):
        with TransactionLog(self.directory, transaction_id='t4', keep=False) as log:
            log.append(note_entry())

        self.assertFalse(log.path.exists())

    def test_existing_log_not_overwritten(self):
        (self.directory / 'transaction-t5.log').write_text('keep me', encoding='utf-8')

        with self.assertRaises(FileExistsError):
            TransactionLog(self.directory, transaction_id='t5')

    def test_generated_file_name(self):
        with TransactionLog(self.directory) as log:
            log.append(note_entry())

        self.assertTrue(re.match(r'^transaction-\d{14}-[0-9a-f]{12}\.log$', log.path.name))

    def test_close_is_idempotent(self):
        log = TransactionLog(self.directory, transaction_id='t6')
        log.append(note_entry())
        log.close()
        log.close()

        self.assertTrue(log.path.exists())


class TestReadTransactionLog(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.directory = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def _write(self, name, text):
        path = self.directory / name
        path.write_text(text, encoding='utf-8')
        return path

    def test_round_trip_through_writer(self):
        with TransactionLog(self.directory, transaction_id='rt') as log:
            log.append(note_entry('a', content='日本語'))

        entries = list(read_transaction_log(log.path))

        self.assertEqual(entries, [note_entry('a', content='日本語')])

    def test_blank_lines_skipped(self):
        path = self._write('a.log', '\n{"type": "comment", "destRelayId": "c1"}\n\n')

        entries = list(read_transaction_log(path))

        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].type, EntryType.COMMENT)

    def test_malformed_line(self):
        path = self._write('bad.log', '{"type": "note"}\nnot json\n')

        with self.assertRaises(ValueError) as ctx:
            list(read_transaction_log(path))

        self.assertIn(':2:', str(ctx.exception))

    def test_several_logs_in_order(self):
        first = self._write('1.log', '{"type": "note", "destRelayId": "n1"}\n')
        second = self._write('2.log', '{"type": "attachment", "destRelayId": "a1"}\n')

        ids = [entry.dest_relay_id for entry in read_transaction_logs([first, second])]

        self.assertEqual(ids, ['n1', 'a1'])


if __name__ == '__main__':
    unittest.main()
