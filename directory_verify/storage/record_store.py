"""
Record stores for DirectoryVerify.

``InMemoryRecordStore`` backs tests and one-off runs; ``SQLiteRecordStore``
keeps records, batches and the audit log in a local SQLite database with
JSON payload columns. Both are safe to call from batch worker threads.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

from directory_verify.errors import PersistenceFailure, RecordNotFound
from directory_verify.models import AuditEntry, ProviderRecord, ValidationBatch

logger = logging.getLogger(__name__)

T = TypeVar("T")


def sort_records(records: List[ProviderRecord], order_by: Optional[str] = None) -> List[ProviderRecord]:
    """
    Sort records by an attribute name; a leading ``-`` sorts descending.

    Records missing the attribute sort last in either direction.
    """
    if not order_by:
        return records

    descending = order_by.startswith("-")
    attribute = order_by.lstrip("-")
    present = [r for r in records if getattr(r, attribute, None) is not None]
    missing = [r for r in records if getattr(r, attribute, None) is None]
    present.sort(key=lambda r: getattr(r, attribute), reverse=descending)
    return present + missing


class RecordStore(ABC):
    """Storage contract consumed by the orchestrator, reviewer and exporter."""

    @abstractmethod
    def create_record(self, record: ProviderRecord) -> ProviderRecord:
        ...

    @abstractmethod
    def get_record(self, record_id: str) -> ProviderRecord:
        ...

    @abstractmethod
    def update_record(self, record: ProviderRecord) -> ProviderRecord:
        ...

    @abstractmethod
    def list_records(self, limit: Optional[int] = None) -> List[ProviderRecord]:
        """All records in creation order."""

    def filter_records(self, status: Optional[str] = None, source: Optional[str] = None,
                       batch_id: Optional[str] = None, order_by: Optional[str] = None,
                       limit: Optional[int] = None) -> List[ProviderRecord]:
        """
        Filter records by status, source and batch.

        Args:
            status: Record status value
            source: Directory source
            batch_id: Validation batch id
            order_by: Attribute to sort by, ``-`` prefix for descending
            limit: Maximum number of records

        Returns:
            Matching records
        """
        records = [
            record for record in self.list_records()
            if (status is None or record.status.value == status)
            and (source is None or record.source == source)
            and (batch_id is None or record.batch_id == batch_id)
        ]
        records = sort_records(records, order_by)
        return records[:limit] if limit is not None else records

    @abstractmethod
    def create_batch(self, batch: ValidationBatch) -> ValidationBatch:
        ...

    @abstractmethod
    def get_batch(self, batch_id: str) -> ValidationBatch:
        ...

    @abstractmethod
    def update_batch(self, batch: ValidationBatch) -> ValidationBatch:
        ...

    @abstractmethod
    def list_batches(self, limit: Optional[int] = None) -> List[ValidationBatch]:
        ...

    @abstractmethod
    def create_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        ...

    @abstractmethod
    def list_audit_entries(self, action: Optional[str] = None,
                           limit: Optional[int] = None) -> List[AuditEntry]:
        """Audit entries, newest first."""


class InMemoryRecordStore(RecordStore):
    """
    Dictionary-backed store.

    Returns copies so callers never share mutable state with the store.
    """

    def __init__(self):
        self._records: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._batches: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._audit: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def create_record(self, record: ProviderRecord) -> ProviderRecord:
        with self._lock:
            if record.id in self._records:
                raise PersistenceFailure(f"Record {record.id} already exists", record_id=record.id)
            self._records[record.id] = record.to_dict()
        return record.copy()

    def get_record(self, record_id: str) -> ProviderRecord:
        with self._lock:
            data = self._records.get(record_id)
        if data is None:
            raise RecordNotFound(f"Record {record_id} not found", record_id=record_id)
        return ProviderRecord.from_dict(data)

    def update_record(self, record: ProviderRecord) -> ProviderRecord:
        with self._lock:
            if record.id not in self._records:
                raise RecordNotFound(f"Record {record.id} not found", record_id=record.id)
            self._records[record.id] = record.to_dict()
        return record.copy()

    def list_records(self, limit: Optional[int] = None) -> List[ProviderRecord]:
        with self._lock:
            rows = list(self._records.values())
        rows = rows[:limit] if limit is not None else rows
        return [ProviderRecord.from_dict(data) for data in rows]

    def create_batch(self, batch: ValidationBatch) -> ValidationBatch:
        with self._lock:
            self._batches[batch.id] = batch.to_dict()
        return ValidationBatch.from_dict(batch.to_dict())

    def get_batch(self, batch_id: str) -> ValidationBatch:
        with self._lock:
            data = self._batches.get(batch_id)
        if data is None:
            raise RecordNotFound(f"Batch {batch_id} not found", details={"batch_id": batch_id})
        return ValidationBatch.from_dict(data)

    def update_batch(self, batch: ValidationBatch) -> ValidationBatch:
        with self._lock:
            if batch.id not in self._batches:
                raise RecordNotFound(f"Batch {batch.id} not found", details={"batch_id": batch.id})
            self._batches[batch.id] = batch.to_dict()
        return ValidationBatch.from_dict(batch.to_dict())

    def list_batches(self, limit: Optional[int] = None) -> List[ValidationBatch]:
        with self._lock:
            rows = list(reversed(self._batches.values()))
        rows = rows[:limit] if limit is not None else rows
        return [ValidationBatch.from_dict(data) for data in rows]

    def create_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        with self._lock:
            self._audit.append(entry.to_dict())
        return AuditEntry.from_dict(entry.to_dict())

    def list_audit_entries(self, action: Optional[str] = None,
                           limit: Optional[int] = None) -> List[AuditEntry]:
        with self._lock:
            rows = [data for data in reversed(self._audit) if action is None or data["action"] == action]
        rows = rows[:limit] if limit is not None else rows
        return [AuditEntry.from_dict(data) for data in rows]


class SQLiteRecordStore(RecordStore):
    """
    SQLite-backed store.

    Opens one connection per call, so it can be shared by worker threads.
    Storage errors on writes surface as PersistenceFailure.
    """

    def __init__(self, db_path: str = "data/directory_verify.db"):
        """
        Initialize SQLite store.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._init_database()

        logger.info(f"Initialized SQLiteRecordStore at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=30)

    def _init_database(self):
        """Initialize database with required tables."""
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS providers (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                npi TEXT,
                name TEXT,
                source TEXT,
                status TEXT,
                batch_id TEXT,
                confidence_score INTEGER,
                data TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS validation_batches (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                status TEXT,
                data TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS audit_log (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                action TEXT NOT NULL,
                timestamp TEXT,
                data TEXT NOT NULL
            )
        ''')

        conn.commit()
        conn.close()

    def _write(self, sql: str, params: List[Any], record_id: Optional[str] = None) -> int:
        """Execute a write statement, returning the affected row count."""
        conn = self._connect()
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor.rowcount
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Storage write failed: {e}")
            raise PersistenceFailure(f"Storage write failed: {e}", record_id=record_id) from e
        finally:
            conn.close()

    def _read(self, sql: str, params: List[Any], factory: Callable[[Dict[str, Any]], T]) -> List[T]:
        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [factory(json.loads(row[0])) for row in rows]

    @staticmethod
    def _limit_clause(limit: Optional[int], params: List[Any]) -> str:
        if limit is None:
            return ""
        params.append(int(limit))
        return " LIMIT ?"

    def _record_params(self, record: ProviderRecord) -> List[Any]:
        return [record.npi, record.name, record.source, record.status.value, record.batch_id,
                record.confidence_score, json.dumps(record.to_dict())]

    def create_record(self, record: ProviderRecord) -> ProviderRecord:
        self._write('''
            INSERT INTO providers (npi, name, source, status, batch_id, confidence_score, data, id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ''', self._record_params(record) + [record.id], record_id=record.id)
        return record.copy()

    def get_record(self, record_id: str) -> ProviderRecord:
        records = self._read("SELECT data FROM providers WHERE id = ?", [record_id], ProviderRecord.from_dict)
        if not records:
            raise RecordNotFound(f"Record {record_id} not found", record_id=record_id)
        return records[0]

    def update_record(self, record: ProviderRecord) -> ProviderRecord:
        updated = self._write('''
            UPDATE providers
            SET npi = ?, name = ?, source = ?, status = ?, batch_id = ?, confidence_score = ?, data = ?
            WHERE id = ?
        ''', self._record_params(record) + [record.id], record_id=record.id)
        if not updated:
            raise RecordNotFound(f"Record {record.id} not found", record_id=record.id)
        return record.copy()

    def list_records(self, limit: Optional[int] = None) -> List[ProviderRecord]:
        params: List[Any] = []
        sql = "SELECT data FROM providers ORDER BY seq" + self._limit_clause(limit, params)
        return self._read(sql, params, ProviderRecord.from_dict)

    def filter_records(self, status: Optional[str] = None, source: Optional[str] = None,
                       batch_id: Optional[str] = None, order_by: Optional[str] = None,
                       limit: Optional[int] = None) -> List[ProviderRecord]:
        clauses = []
        params: List[Any] = []
        for column, value in (("status", status), ("source", source), ("batch_id", batch_id)):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)

        sql = "SELECT data FROM providers"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY seq"

        records = sort_records(self._read(sql, params, ProviderRecord.from_dict), order_by)
        return records[:limit] if limit is not None else records

    def create_batch(self, batch: ValidationBatch) -> ValidationBatch:
        self._write("INSERT INTO validation_batches (id, status, data) VALUES (?, ?, ?)",
                    [batch.id, batch.status, json.dumps(batch.to_dict())])
        return ValidationBatch.from_dict(batch.to_dict())

    def get_batch(self, batch_id: str) -> ValidationBatch:
        batches = self._read("SELECT data FROM validation_batches WHERE id = ?", [batch_id],
                             ValidationBatch.from_dict)
        if not batches:
            raise RecordNotFound(f"Batch {batch_id} not found", details={"batch_id": batch_id})
        return batches[0]

    def update_batch(self, batch: ValidationBatch) -> ValidationBatch:
        updated = self._write("UPDATE validation_batches SET status = ?, data = ? WHERE id = ?",
                              [batch.status, json.dumps(batch.to_dict()), batch.id])
        if not updated:
            raise RecordNotFound(f"Batch {batch.id} not found", details={"batch_id": batch.id})
        return ValidationBatch.from_dict(batch.to_dict())

    def list_batches(self, limit: Optional[int] = None) -> List[ValidationBatch]:
        params: List[Any] = []
        sql = "SELECT data FROM validation_batches ORDER BY seq DESC" + self._limit_clause(limit, params)
        return self._read(sql, params, ValidationBatch.from_dict)

    def create_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        self._write("INSERT INTO audit_log (id, action, timestamp, data) VALUES (?, ?, ?, ?)",
                    [entry.id, entry.action, entry.timestamp, json.dumps(entry.to_dict())])
        return AuditEntry.from_dict(entry.to_dict())

    def list_audit_entries(self, action: Optional[str] = None,
                           limit: Optional[int] = None) -> List[AuditEntry]:
        params: List[Any] = []
        sql = "SELECT data FROM audit_log"
        if action is not None:
            sql += " WHERE action = ?"
            params.append(action)
        sql += " ORDER BY seq DESC" + self._limit_clause(limit, params)
        return self._read(sql, params, AuditEntry.from_dict)
