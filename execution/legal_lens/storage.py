"""
Key-value record storage.

Records are JSON objects addressed by ``(namespace, key)`` and tagged with an
optional document id and user id so they can be listed per document or per
user. Listing returns records in insertion order; updating a record keeps its
original position. Reads after writes within one document are consistent.
"""

import json
import logging
import threading
from typing import List, Optional

from .db import PostgresDatabase

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Contract for the persistence layer."""

    def put(
        self,
        namespace: str,
        key: str,
        value: dict,
        document_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        raise NotImplementedError

    def get(self, namespace: str, key: str) -> Optional[dict]:
        raise NotImplementedError

    def list(
        self,
        namespace: str,
        document_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[dict]:
        raise NotImplementedError

    def delete(self, namespace: str, key: str) -> bool:
        raise NotImplementedError

    def delete_document(self, document_id: str, namespaces: Optional[List[str]] = None) -> int:
        """Delete every record tagged with ``document_id`` (optionally only in some namespaces)."""
        raise NotImplementedError


class InMemoryKeyValueStore(KeyValueStore):
    """Thread-safe dictionary-backed store."""

    def __init__(self):
        self._records: dict[tuple[str, str], dict] = {}
        self._seq = 0
        self._lock = threading.RLock()

    def put(self, namespace, key, value, document_id=None, user_id=None) -> None:
        # Round-trip through JSON so callers never share mutable state with the store
        data = json.loads(json.dumps(value))
        with self._lock:
            existing = self._records.get((namespace, key))
            if existing is None:
                self._seq += 1
                seq = self._seq
            else:
                seq = existing["seq"]
            self._records[(namespace, key)] = {
                "value": data,
                "document_id": document_id,
                "user_id": user_id,
                "seq": seq,
            }

    def get(self, namespace, key) -> Optional[dict]:
        with self._lock:
            record = self._records.get((namespace, key))
            return json.loads(json.dumps(record["value"])) if record else None

    def list(self, namespace, document_id=None, user_id=None) -> list[dict]:
        with self._lock:
            records = [
                record for (ns, _), record in self._records.items()
                if ns == namespace
                and (document_id is None or record["document_id"] == document_id)
                and (user_id is None or record["user_id"] == user_id)
            ]
            records.sort(key=lambda r: r["seq"])
            return [json.loads(json.dumps(r["value"])) for r in records]

    def delete(self, namespace, key) -> bool:
        with self._lock:
            return self._records.pop((namespace, key), None) is not None

    def delete_document(self, document_id, namespaces=None) -> int:
        with self._lock:
            doomed = [
                k for k, record in self._records.items()
                if record["document_id"] == document_id
                and (namespaces is None or k[0] in namespaces)
            ]
            for k in doomed:
                del self._records[k]
            return len(doomed)


class PostgresKeyValueStore(KeyValueStore):
    """Records in a single JSONB table."""

    def __init__(self, db: Optional[PostgresDatabase] = None, table_name: str = "legal_lens_records"):
        self._db = db or PostgresDatabase()
        self.table_name = table_name

    def initialize_schema(self) -> None:
        self._db.execute_script(f"""
        CREATE TABLE IF NOT EXISTS {self.table_name} (
            namespace TEXT NOT NULL,
            key TEXT NOT NULL,
            document_id TEXT,
            user_id TEXT,
            value JSONB NOT NULL,
            seq BIGSERIAL,
            updated_at TIMESTAMPTZ DEFAULT NOW(),
            PRIMARY KEY (namespace, key)
        );

        CREATE INDEX IF NOT EXISTS idx_{self.table_name}_document
            ON {self.table_name}(namespace, document_id);
        CREATE INDEX IF NOT EXISTS idx_{self.table_name}_user
            ON {self.table_name}(namespace, user_id);
        """, label="record schema")

    def put(self, namespace, key, value, document_id=None, user_id=None) -> None:
        sql = f"""
        INSERT INTO {self.table_name} (namespace, key, document_id, user_id, value)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (namespace, key) DO UPDATE SET
            document_id = EXCLUDED.document_id,
            user_id = EXCLUDED.user_id,
            value = EXCLUDED.value,
            updated_at = NOW()
        """
        params = (namespace, key, document_id, user_id, json.dumps(value))

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
            conn.commit()

        self._db.execute_with_retry(_op, f"put {namespace}")

    def get(self, namespace, key) -> Optional[dict]:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT value FROM {self.table_name} WHERE namespace = %s AND key = %s",
                    (namespace, key),
                )
                row = cur.fetchone()
            return row["value"] if row else None

        return self._db.execute_with_retry(_op, f"get {namespace}")

    def list(self, namespace, document_id=None, user_id=None) -> list[dict]:
        filters = ["namespace = %s"]
        params = [namespace]
        if document_id is not None:
            filters.append("document_id = %s")
            params.append(document_id)
        if user_id is not None:
            filters.append("user_id = %s")
            params.append(user_id)
        sql = f"SELECT value FROM {self.table_name} WHERE {' AND '.join(filters)} ORDER BY seq"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return [row["value"] for row in cur.fetchall()]

        return self._db.execute_with_retry(_op, f"list {namespace}")

    def delete(self, namespace, key) -> bool:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    f"DELETE FROM {self.table_name} WHERE namespace = %s AND key = %s",
                    (namespace, key),
                )
                deleted = cur.rowcount > 0
            conn.commit()
            return deleted

        return self._db.execute_with_retry(_op, f"delete {namespace}")

    def delete_document(self, document_id, namespaces=None) -> int:
        sql = f"DELETE FROM {self.table_name} WHERE document_id = %s"
        params = [document_id]
        if namespaces is not None:
            sql += " AND namespace = ANY(%s)"
            params.append(list(namespaces))

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                deleted = cur.rowcount
            conn.commit()
            return deleted

        return self._db.execute_with_retry(_op, "delete_document_records")
