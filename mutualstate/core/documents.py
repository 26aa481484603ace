"""
Versioned document store with read-then-write transactions.

Each transaction records the version of every document it reads, buffers its
writes, and at commit re-checks those versions under SQLite's write lock.
A changed version aborts the commit with ConflictError so the caller can
retry from the read phase. Only documents that were read are protected,
which is why writes to unread documents are refused.
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .config import TRANSACTION_MAX_ATTEMPTS
from .db import connect, init_db
from .errors import ConflictError, TransactionOrderError, UnavailableError
from ..util.logging import logger


@dataclass(frozen=True)
class DocumentRef:
    collection: str
    doc_id: str

    def __str__(self) -> str:
        return f"{self.collection}/{self.doc_id}"


@dataclass
class Document:
    ref: DocumentRef
    data: Dict[str, Any]
    version: int
    owner: Optional[str] = None


# (ref, version, document); document is None for a delete
Change = Tuple[DocumentRef, int, Optional[Document]]


@dataclass
class _PendingWrite:
    data: Optional[Dict[str, Any]]  # None means delete
    owner: Optional[str] = None


@dataclass
class Transaction:
    """A single read-then-write unit against the store."""

    conn: sqlite3.Connection
    _reads: Dict[DocumentRef, int] = field(default_factory=dict)
    _writes: Dict[DocumentRef, _PendingWrite] = field(default_factory=dict)

    def get(self, ref: DocumentRef) -> Optional[Document]:
        """Read a document, remembering the version observed."""
        if self._writes:
            raise TransactionOrderError(f"read of {ref} after writes in the same transaction")

        row = _fetch_row(self.conn, ref)
        version = row[2] if row else 0
        self._reads.setdefault(ref, version)

        if row is None or row[3]:
            return None
        return Document(ref=ref, data=json.loads(row[1]), version=version, owner=row[0])

    def set(self, ref: DocumentRef, data: Dict[str, Any], owner: Optional[str] = None):
        self._require_read(ref)
        self._writes[ref] = _PendingWrite(data=dict(data), owner=owner)

    def delete(self, ref: DocumentRef):
        self._require_read(ref)
        self._writes[ref] = _PendingWrite(data=None)

    def _require_read(self, ref: DocumentRef):
        if ref not in self._reads:
            raise TransactionOrderError(f"write to {ref} without reading it first")

    @property
    def has_writes(self) -> bool:
        return bool(self._writes)

    def commit(self) -> List[Change]:
        """Validate read versions and apply buffered writes atomically.

        Returns one (ref, version, document) change per write that took effect;
        deletes carry the tombstone's version and a None document.
        """
        if not self._writes:
            return []

        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            # Writer lock not obtained within the timeout: another transaction holds it
            if "locked" in str(e).lower() or "busy" in str(e).lower():
                raise ConflictError(f"Store busy: {e}")
            raise UnavailableError(f"Store unavailable: {e}")

        try:
            for ref, seen_version in self._reads.items():
                row = _fetch_row(self.conn, ref)
                current_version = row[2] if row else 0
                if current_version != seen_version:
                    raise ConflictError(f"{ref} changed during transaction "
                                        f"(read v{seen_version}, now v{current_version})")

            changes = []
            for ref, write in self._writes.items():
                new_version = self._reads[ref] + 1
                if write.data is None:
                    cursor = self.conn.execute(
                        "UPDATE documents SET deleted = 1, version = ?, updated_at = CURRENT_TIMESTAMP "
                        "WHERE collection = ? AND doc_id = ? AND deleted = 0",
                        (new_version, ref.collection, ref.doc_id)
                    )
                    if cursor.rowcount:
                        changes.append((ref, new_version, None))
                else:
                    self.conn.execute(
                        "INSERT INTO documents (collection, doc_id, owner, data, version, deleted) "
                        "VALUES (?, ?, ?, ?, ?, 0) "
                        "ON CONFLICT(collection, doc_id) DO UPDATE SET owner = excluded.owner, "
                        "data = excluded.data, version = excluded.version, deleted = 0, "
                        "updated_at = CURRENT_TIMESTAMP",
                        (ref.collection, ref.doc_id, write.owner, json.dumps(write.data, sort_keys=True), new_version)
                    )
                    changes.append((ref, new_version,
                                    Document(ref=ref, data=write.data, version=new_version, owner=write.owner)))

            self.conn.execute("COMMIT")
            return changes
        except sqlite3.Error as e:
            self._rollback()
            raise UnavailableError(f"Store unavailable: {e}")
        except Exception:
            self._rollback()
            raise

    def _rollback(self):
        if not self.conn.in_transaction:
            return
        try:
            self.conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"Rollback failed: {e}")


def _fetch_row(conn: sqlite3.Connection, ref: DocumentRef):
    try:
        cursor = conn.execute(
            "SELECT owner, data, version, deleted FROM documents WHERE collection = ? AND doc_id = ?",
            (ref.collection, ref.doc_id)
        )
        return cursor.fetchone()
    except sqlite3.Error as e:
        raise UnavailableError(f"Store unavailable: {e}")


Watcher = Callable[[DocumentRef, Optional[Document], int], None]


class DocumentStore:
    """SQLite-backed collection of versioned JSON documents with a change feed."""

    def __init__(self, db_path: str = None, max_attempts: int = None):
        self.db_path = db_path
        self.max_attempts = max_attempts or TRANSACTION_MAX_ATTEMPTS
        self._watchers: Dict[DocumentRef, List[Watcher]] = {}
        self._watch_lock = threading.Lock()
        try:
            init_db(db_path)
        except sqlite3.Error as e:
            raise UnavailableError(f"Store unavailable: {e}")

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = connect(self.db_path)
        except sqlite3.Error as e:
            raise UnavailableError(f"Store unavailable: {e}")
        try:
            yield conn
        finally:
            conn.close()

    # Plain reads

    def get(self, ref: DocumentRef) -> Optional[Document]:
        return self.read(ref)[1]

    def read(self, ref: DocumentRef) -> Tuple[int, Optional[Document]]:
        """Current version and document; version 0 means never written."""
        with self._connection() as conn:
            row = _fetch_row(conn, ref)
        if row is None:
            return 0, None
        if row[3]:
            return row[2], None
        return row[2], Document(ref=ref, data=json.loads(row[1]), version=row[2], owner=row[0])

    def query_owner(self, collection: str, owner: str) -> List[Document]:
        """All live documents in a collection belonging to one owner."""
        return self._query(
            "SELECT doc_id, owner, data, version FROM documents "
            "WHERE collection = ? AND owner = ? AND deleted = 0 ORDER BY doc_id",
            (collection, owner), collection
        )

    def query_collection(self, collection: str) -> List[Document]:
        return self._query(
            "SELECT doc_id, owner, data, version FROM documents "
            "WHERE collection = ? AND deleted = 0 ORDER BY doc_id",
            (collection,), collection
        )

    def count(self, collection: str = None) -> int:
        with self._connection() as conn:
            try:
                if collection:
                    cursor = conn.execute("SELECT COUNT(*) FROM documents WHERE collection = ? AND deleted = 0", (collection,))
                else:
                    cursor = conn.execute("SELECT COUNT(*) FROM documents WHERE deleted = 0")
                return cursor.fetchone()[0]
            except sqlite3.Error as e:
                raise UnavailableError(f"Store unavailable: {e}")

    def _query(self, sql: str, params: tuple, collection: str) -> List[Document]:
        with self._connection() as conn:
            try:
                rows = conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise UnavailableError(f"Store unavailable: {e}")
        return [
            Document(ref=DocumentRef(collection, doc_id), data=json.loads(data), version=version, owner=owner)
            for doc_id, owner, data, version in rows
        ]

    # Transactions

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        with self._connection() as conn:
            yield Transaction(conn=conn)

    def run_transaction(self, fn: Callable[[Transaction], Any], max_attempts: int = None) -> Any:
        """Run fn inside a transaction, retrying from the read phase on conflict.

        fn performs all of its reads before any write. Exceptions raised by fn
        abort the attempt without writing anything and propagate unchanged.
        """
        attempts = max_attempts or self.max_attempts
        for attempt in range(1, attempts + 1):
            with self.transaction() as txn:
                result = fn(txn)
                try:
                    changes = txn.commit()
                except ConflictError as e:
                    if attempt == attempts:
                        raise
                    logger.log_transaction_retry(attempt, attempts, str(e))
                    continue
            self._notify(changes)
            return result

    # Change feed

    def watch(self, ref: DocumentRef, callback: Watcher) -> Callable[[], None]:
        """Call callback(ref, document_or_None, version) after every committed write to ref."""
        with self._watch_lock:
            self._watchers.setdefault(ref, []).append(callback)

        def unsubscribe():
            with self._watch_lock:
                callbacks = self._watchers.get(ref, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._watchers.pop(ref, None)

        return unsubscribe

    def _notify(self, changes: List[Change]):
        for ref, version, document in changes:
            with self._watch_lock:
                callbacks = list(self._watchers.get(ref, []))
            for callback in callbacks:
                try:
                    callback(ref, document, version)
                except Exception as e:
                    # Watcher isolation - a failing subscriber never affects the writer
                    logger.error(f"Watcher for {ref} failed: {e}")
