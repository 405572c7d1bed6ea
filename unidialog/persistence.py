"""
Catalogued record persistence.

One JSON file per saved record, listed newest first. The people named in a
record are indexed inside the record itself, so the author list always
follows saves, updates and deletes.
"""

import json
import logging
import math
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from unidialog.core.person_index import extract_persons
from unidialog.utils.helpers import generate_record_id, utc_timestamp

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a record cannot be written, read or removed."""


# Keys a record update may replace; id, template and createdAt are fixed
UPDATABLE_KEYS = ('filledFields', 'fields', 'textUnimarc', 'templateDesc')


class RecordStore:
    """
    JSON-file record storage.

    Layout:
        outputs/records/
            RECORD-a3f7e2b9.json
            RECORD-b4c8d1e2.json
            ...

    Design:
    - One file per record, never overwritten
    - Record id is the file stem suffix
    - createdAt drives list ordering
    """

    def __init__(self, base_dir: str = "outputs/records"):
        """
        Initialize persistence layer.

        Args:
            base_dir: Directory holding record files
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"RecordStore initialized: {self.base_dir}")

    def _path(self, record_id: str) -> Path:
        return self.base_dir / f"RECORD-{record_id}.json"

    def _load_all(self) -> List[dict]:
        """Every readable record, newest first"""
        records = []
        for filepath in self.base_dir.glob("RECORD-*.json"):
            try:
                with open(filepath, 'r', encoding='utf-8') as f:
                    records.append(json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable record file {filepath.name}: {e}")

        records.sort(key=lambda r: (r.get('createdAt', ''), r.get('id', '')), reverse=True)
        return records

    def save_record(self, record: dict) -> str:
        """
        Save a catalogued record.

        Args:
            record: {templateId, templateName, templateDesc, filledFields,
                textUnimarc, fields}

        Returns:
            str: New record id

        Raises:
            StorageError: If the file cannot be written
        """
        record_id = generate_record_id()
        while self._path(record_id).exists():
            record_id = generate_record_id()

        stored = dict(record)
        stored['id'] = record_id
        stored['createdAt'] = utc_timestamp()
        stored['persons'] = extract_persons(stored.get('fields') or [])

        filepath = self._path(record_id)
        try:
            payload = json.dumps(stored, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Record is not JSON-serializable: {e}") from e

        try:
            with open(filepath, 'x', encoding='utf-8') as f:
                f.write(payload)
        except OSError as e:
            raise StorageError(f"Could not write {filepath.name}: {e}") from e

        logger.info(f"Saved record {record_id}: {filepath.name} ({len(stored['persons'])} persons)")
        return record_id

    def get_record(self, record_id: str) -> Optional[dict]:
        """
        Load one record.

        Returns:
            dict if the record exists, None otherwise

        Raises:
            StorageError: If the file exists but cannot be decoded
        """
        filepath = self._path(record_id)
        if not filepath.exists():
            logger.warning(f"Record not found: {record_id}")
            return None

        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Could not read {filepath.name}: {e}") from e

    def list_records(self, page: int = 1, limit: int = 20) -> dict:
        """
        Paginated listing, newest first.

        Args:
            page: 1-based page number
            limit: Records per page

        Returns:
            dict: {records, total, pages, currentPage}

        Raises:
            ValueError: If page or limit is below 1
        """
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be >= 1")

        records = self._load_all()
        total = len(records)
        start = (page - 1) * limit

        return {
            'records': records[start:start + limit],
            'total': total,
            'pages': math.ceil(total / limit) if total else 0,
            'currentPage': page,
        }

    def delete_record(self, record_id: str) -> bool:
        """
        Delete one record.

        Returns:
            bool: True if deleted, False if it did not exist

        Raises:
            StorageError: If the file exists but cannot be removed
        """
        filepath = self._path(record_id)
        if not filepath.exists():
            return False

        try:
            filepath.unlink()
        except OSError as e:
            raise StorageError(f"Could not delete {filepath.name}: {e}") from e

        logger.info(f"Deleted record {record_id}")
        return True

    def update_record(self, record_id: str, changes: dict) -> Optional[dict]:
        """
        Replace the content of an existing record.

        Only UPDATABLE_KEYS are applied. The person index is rebuilt from the
        new field list and updatedAt is stamped.

        Args:
            record_id: Record to update
            changes: Subset of {filledFields, fields, textUnimarc, templateDesc}

        Returns:
            dict: Updated record, or None if it does not exist

        Raises:
            StorageError: If the record cannot be read or rewritten
        """
        record = self.get_record(record_id)
        if record is None:
            return None

        ignored = sorted(set(changes) - set(UPDATABLE_KEYS))
        if ignored:
            logger.warning(f"Record {record_id}: ignoring non-updatable keys {ignored}")

        for key in UPDATABLE_KEYS:
            if key in changes:
                record[key] = changes[key]
        record['persons'] = extract_persons(record.get('fields') or [])
        record['updatedAt'] = utc_timestamp()

        try:
            payload = json.dumps(record, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Record is not JSON-serializable: {e}") from e

        filepath = self._path(record_id)
        staging = filepath.with_suffix('.json.tmp')
        try:
            with open(staging, 'w', encoding='utf-8') as f:
                f.write(payload)
            os.replace(staging, filepath)
        except OSError as e:
            raise StorageError(f"Could not rewrite {filepath.name}: {e}") from e

        logger.info(f"Updated record {record_id}")
        return record

    def list_authors(self) -> List[dict]:
        """
        People named across all records with their record counts.

        Returns:
            list[dict]: [{id, name, roles, recordCount}], most records first,
                then by name
        """
        authors = {}
        for record in self._load_all():
            counted = set()
            for person in record.get('persons') or []:
                entry = authors.setdefault(person['id'], {
                    'id': person['id'],
                    'name': person['name'],
                    'roles': [],
                    'recordCount': 0,
                })
                if person['role'] not in entry['roles']:
                    entry['roles'].append(person['role'])
                if person['id'] not in counted:
                    counted.add(person['id'])
                    entry['recordCount'] += 1

        return sorted(authors.values(), key=lambda a: (-a['recordCount'], a['name'].lower()))

    def get_stats(self, now: Optional[datetime] = None) -> dict:
        """
        Record totals.

        Args:
            now: Reference time for the 24h window (defaults to current UTC)

        Returns:
            dict: {totalRecords, recordsByTemplate: [{templateName, count}],
                recentRecords}
        """
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(hours=24)

        records = self._load_all()
        by_template = {}
        recent = 0

        for record in records:
            name = record.get('templateName') or ''
            by_template[name] = by_template.get(name, 0) + 1
            try:
                if datetime.fromisoformat(record.get('createdAt', '')) >= since:
                    recent += 1
            except (TypeError, ValueError):
                logger.debug(f"Record {record.get('id')} has no usable createdAt")

        return {
            'totalRecords': len(records),
            'recordsByTemplate': [
                {'templateName': name, 'count': count}
                for name, count in sorted(by_template.items(), key=lambda item: (-item[1], item[0]))
            ],
            'recentRecords': recent,
        }
