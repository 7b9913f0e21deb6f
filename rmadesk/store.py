"""
Document store on top of SQLite.

Every collection lives in one ``documents`` table; a document is a JSON object
keyed by ``(collection, id)``. The API mirrors a hosted document database:
``list / get / create / update / delete`` with server-assigned ``createdAt``
and ``updatedAt`` stamps and shallow-merge updates. No schema is enforced
here; callers validate shapes with ``rmadesk.schemas``.
"""

from __future__ import annotations
import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from rmadesk.errors import NotFoundError, StoreError


SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    data TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (collection, id)
)
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_connection(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


class Collection:
    """One named collection inside a DocumentStore."""

    def __init__(self, store: "DocumentStore", name: str):
        self.store = store
        self.name = name

    def list(self) -> List[Dict[str, Any]]:
        rows = self.store._execute(
            "SELECT id, data, created_at, updated_at FROM documents WHERE collection = ? ORDER BY created_at",
            (self.name,),
        ).fetchall()
        return [self._to_document(row) for row in rows]

    def get(self, doc_id: str) -> Dict[str, Any]:
        row = self.store._execute(
            "SELECT id, data, created_at, updated_at FROM documents WHERE collection = ? AND id = ?",
            (self.name, doc_id),
        ).fetchone()
        if not row:
            raise NotFoundError(self.name, doc_id)
        return self._to_document(row)

    def find(self, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.get(doc_id)
        except NotFoundError:
            return None

    def create(self, data: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        """Insert a document and return its id (generated when not given)."""
        return self.insert(data, doc_id)["id"]

    def insert(self, data: Dict[str, Any], doc_id: Optional[str] = None) -> Dict[str, Any]:
        """Insert a document and return it as stored, without reading it back."""
        doc_id = doc_id or uuid.uuid4().hex[:20]
        now = utc_now()
        self.store._execute(
            "INSERT INTO documents (collection, id, data, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (self.name, doc_id, self._dump(data), now, now),
            commit=True,
        )
        return {**data, "id": doc_id, "createdAt": data.get("createdAt", now), "updatedAt": now}

    def insert_many(self, docs: List[Dict[str, Any]]) -> List[str]:
        """Insert ``docs`` in one transaction; either all are stored or none."""
        now = utc_now()
        rows = [(self.name, uuid.uuid4().hex[:20], self._dump(doc), now, now) for doc in docs]
        self.store._execute_many(
            "INSERT INTO documents (collection, id, data, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            rows,
        )
        return [row[1] for row in rows]

    def update(self, doc_id: str, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Shallow-merge ``partial`` into the stored document and return the result."""
        current = self.get(doc_id)
        merged = {k: v for k, v in current.items() if k not in ("id", "updatedAt")}
        merged.update(partial)
        now = utc_now()
        self.store._execute(
            "UPDATE documents SET data = ?, updated_at = ? WHERE collection = ? AND id = ?",
            (self._dump(merged), now, self.name, doc_id),
            commit=True,
        )
        return {**merged, "id": doc_id, "updatedAt": now}

    def delete(self, doc_id: str) -> bool:
        cursor = self.store._execute(
            "DELETE FROM documents WHERE collection = ? AND id = ?",
            (self.name, doc_id),
            commit=True,
        )
        return cursor.rowcount > 0

    def count(self) -> int:
        return self.store._execute(
            "SELECT COUNT(*) FROM documents WHERE collection = ?", (self.name,)
        ).fetchone()[0]

    def _dump(self, data: Dict[str, Any]) -> str:
        try:
            return json.dumps(data, default=str)
        except (TypeError, ValueError) as e:
            raise StoreError(f"document for {self.name} is not serialisable", e)

    @staticmethod
    def _to_document(row: sqlite3.Row) -> Dict[str, Any]:
        doc = json.loads(row["data"])
        doc["id"] = row["id"]
        # Documents may carry their own timestamps (imports, legacy data)
        doc.setdefault("createdAt", row["created_at"])
        doc["updatedAt"] = row["updated_at"]
        return doc


class DocumentStore:
    """Generic collection/document-key API over a single SQLite connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.row_factory = sqlite3.Row
        self._execute(SCHEMA, commit=True)

    @classmethod
    def open(cls, db_path: str) -> "DocumentStore":
        try:
            return cls(get_connection(db_path))
        except sqlite3.Error as e:
            raise StoreError("store unavailable", e)

    def collection(self, name: str) -> Collection:
        return Collection(self, name)

    def close(self):
        self.conn.close()

    def _execute(self, sql: str, params: tuple = (), commit: bool = False) -> sqlite3.Cursor:
        try:
            cursor = self.conn.execute(sql, params)
            if commit:
                self.conn.commit()
            return cursor
        except sqlite3.Error as e:
            raise StoreError("store unavailable", e)

    def _execute_many(self, sql: str, rows: List[tuple]):
        try:
            with self.conn:
                self.conn.executemany(sql, rows)
        except sqlite3.Error as e:
            raise StoreError("store unavailable", e)
