"""
Unit tests for RecordStore (JSON-file record persistence)
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json
import unittest
import tempfile
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path

from unidialog.persistence import RecordStore, StorageError


def _author_field(tag, *names, field_name="Autor"):
    occurrences = [{'a': name} for name in names]
    return {
        'tag': tag,
        'fieldType': 'DATA',
        'value': None,
        'subfields': occurrences[0] if len(occurrences) == 1 else occurrences,
        'fieldName': field_name,
    }


def _record(name="Livro", fields=None):
    return {
        'templateId': 'tpl-livro',
        'templateName': name,
        'templateDesc': 'Registro catalogado automaticamente',
        'filledFields': {'001': '12345', '200': {'a': 'Memorial do Convento'}},
        'textUnimarc': '001 12345\n200  $aMemorial do Convento',
        'fields': fields or [],
    }


class TestRecordStore(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = RecordStore(base_dir=os.path.join(self.temp_dir, "records"))

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_save_creates_one_file_per_record(self):
        record_id = self.store.save_record(_record())

        path = Path(self.temp_dir) / "records" / f"RECORD-{record_id}.json"
        self.assertTrue(path.exists())

    def test_get_round_trip_adds_metadata(self):
        record_id = self.store.save_record(_record())

        loaded = self.store.get_record(record_id)

        self.assertEqual(loaded['id'], record_id)
        self.assertIn('createdAt', loaded)
        self.assertEqual(loaded['filledFields']['200'], {'a': 'Memorial do Convento'})
        self.assertEqual(loaded['textUnimarc'], '001 12345\n200  $aMemorial do Convento')

    def test_get_missing_returns_none(self):
        self.assertIsNone(self.store.get_record("nope"))

    def test_list_paginates(self):
        for i in range(5):
            self.store.save_record(_record(f"Livro {i}"))

        first = self.store.list_records(page=1, limit=2)
        last = self.store.list_records(page=3, limit=2)

        self.assertEqual(first['total'], 5)
        self.assertEqual(first['pages'], 3)
        self.assertEqual(first['currentPage'], 1)
        self.assertEqual(len(first['records']), 2)
        self.assertEqual(len(last['records']), 1)

    def test_list_empty(self):
        listing = self.store.list_records()
        self.assertEqual(listing, {'records': [], 'total': 0, 'pages': 0, 'currentPage': 1})

    def test_list_rejects_bad_paging(self):
        with self.assertRaises(ValueError):
            self.store.list_records(page=0)

    def test_list_skips_corrupt_files(self):
        self.store.save_record(_record())
        (Path(self.temp_dir) / "records" / "RECORD-broken.json").write_text("{", encoding='utf-8')

        self.assertEqual(self.store.list_records()['total'], 1)

    def test_delete(self):
        record_id = self.store.save_record(_record())

        self.assertTrue(self.store.delete_record(record_id))
        self.assertIsNone(self.store.get_record(record_id))
        self.assertFalse(self.store.delete_record(record_id))

    def test_unserializable_record_raises_storage_error(self):
        with self.assertRaises(StorageError):
            self.store.save_record({'bad': object()})

    def test_save_indexes_persons(self):
        record_id = self.store.save_record(_record(fields=[
            _author_field('700', 'José Saramago'),
            _author_field('702', 'Giovanni Pontiero', field_name='Tradutor'),
        ]))

        persons = self.store.get_record(record_id)['persons']

        self.assertEqual([(p['name'], p['role']) for p in persons],
                         [('José Saramago', 'AUTHOR'), ('Giovanni Pontiero', 'TRANSLATOR')])

    def test_list_authors_counts_records(self):
        self.store.save_record(_record(fields=[_author_field('700', 'José Saramago')]))
        self.store.save_record(_record(fields=[
            _author_field('700', 'José Saramago'),
            _author_field('701', 'Fernando Pessoa', 'José Saramago'),
        ]))
        self.store.save_record(_record(fields=[_author_field('702', 'Ana Silva', field_name='Ilustradora')]))

        authors = self.store.list_authors()

        self.assertEqual([(a['name'], a['recordCount']) for a in authors],
                         [('José Saramago', 2), ('Ana Silva', 1), ('Fernando Pessoa', 1)])
        self.assertEqual(authors[1]['roles'], ['ILLUSTRATOR'])

    def test_deleted_record_leaves_author_list(self):
        record_id = self.store.save_record(_record(fields=[_author_field('700', 'José Saramago')]))

        self.store.delete_record(record_id)

        self.assertEqual(self.store.list_authors(), [])

    def test_update_replaces_content_and_reindexes(self):
        record_id = self.store.save_record(_record(fields=[_author_field('700', 'José Saramago')]))

        updated = self.store.update_record(record_id, {
            'filledFields': {'001': '999'},
            'textUnimarc': '001 999\n700  $aFernando Pessoa',
            'fields': [_author_field('700', 'Fernando Pessoa')],
            'templateId': 'tpl-outro',
        })

        loaded = self.store.get_record(record_id)
        self.assertEqual(updated, loaded)
        self.assertEqual(loaded['filledFields'], {'001': '999'})
        self.assertEqual(loaded['templateId'], 'tpl-livro')
        self.assertIn('updatedAt', loaded)
        self.assertEqual([p['name'] for p in loaded['persons']], ['Fernando Pessoa'])
        self.assertEqual(self.store.list_records()['total'], 1)

    def test_update_missing_returns_none(self):
        self.assertIsNone(self.store.update_record("nope", {'filledFields': {}}))

    def test_stats(self):
        self.store.save_record(_record("Livro"))
        self.store.save_record(_record("Livro"))
        old_id = self.store.save_record(_record("Publicação Periódica"))

        # Backdate one record outside the 24h window
        old_path = Path(self.temp_dir) / "records" / f"RECORD-{old_id}.json"
        old = self.store.get_record(old_id)
        old['createdAt'] = (datetime.now(timezone.utc) - timedelta(days=3)).isoformat()
        old_path.write_text(json.dumps(old), encoding='utf-8')

        stats = self.store.get_stats()

        self.assertEqual(stats['totalRecords'], 3)
        self.assertEqual(stats['recordsByTemplate'], [
            {'templateName': 'Livro', 'count': 2},
            {'templateName': 'Publicação Periódica', 'count': 1},
        ])
        self.assertEqual(stats['recentRecords'], 2)
