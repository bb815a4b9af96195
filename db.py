# Giglet document store
# SQLite, WAL mode. One table per collection: an id column, a handful of
# indexed query columns, and a JSON payload holding the full record.
#
# Reads go through Store.connection(). Read-modify-write goes through
# Store.transaction(), which takes the write lock up front (BEGIN IMMEDIATE)
# so concurrent writers to the same database are serialized. That is what
# makes gig acceptance and rep/balance mutation safe.

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from enum import Enum

from errors import StoreUnavailableError, ValidationError

log = logging.getLogger("giglet")

BUSY_TIMEOUT_SEC = 30

# collection -> (id column, indexed columns)
COLLECTIONS = {
    "users": ("user_id", ("role", "created_at")),
    "creators": ("creator_id", ("community_id", "rep", "created_at")),
    "brands": ("brand_id", ("created_at",)),
    "gigs": ("gig_id", ("brand_id", "status", "visibility", "created_at", "deadline_at")),
    "submissions": ("submission_id", ("gig_id", "creator_id", "status", "created_at")),
    "payments": ("payment_id", ("submission_id", "creator_id", "brand_id", "status", "created_at")),
    "squads": ("squad_id", ("recruiter_id", "created_at")),
    "squad_invitations": ("invitation_id", ("squad_id", "creator_id", "status", "created_at")),
    "balance_transactions": ("txn_id", ("account_id", "created_at")),
    "withdrawals": ("withdrawal_id", ("creator_id", "status", "created_at")),
    "notifications": ("notification_id", ("user_id", "read", "created_at")),
    "rep_events": ("event_id", ("creator_id", "created_at")),
    "stripe_events": ("stripe_event_id", ("type", "created_at")),
}


def _collection(collection):
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValidationError(f"Unknown collection: {collection}")


def _column_value(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


def ensure_tables(conn):
    """Create every collection table and its indexes."""
    for collection, (id_col, indexed) in COLLECTIONS.items():
        cols = ", ".join(f"{c}" for c in indexed)
        conn.execute(
            f"CREATE TABLE IF NOT EXISTS {collection} ("
            f"{id_col} TEXT PRIMARY KEY, "
            + (f"{cols}, " if cols else "")
            + "payload TEXT NOT NULL)"
        )
        for c in indexed:
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{collection}_{c} ON {collection}({c})"
            )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_submissions_gig_status "
        "ON submissions(gig_id, status)"
    )


class DocumentOps:
    """Collection-level operations on an open connection."""

    @staticmethod
    def decode_payload(payload):
        if payload is None:
            return None
        if isinstance(payload, dict):
            return payload
        try:
            return json.loads(payload)
        except (TypeError, json.JSONDecodeError):
            return None

    @staticmethod
    def encode_payload(data):
        if isinstance(data, str):
            return data
        return json.dumps(data, sort_keys=True)

    @staticmethod
    def get(conn, collection, doc_id):
        id_col, _ = _collection(collection)
        row = conn.execute(
            f"SELECT payload FROM {collection} WHERE {id_col} = ?", (doc_id,)
        ).fetchone()
        if not row:
            return None
        return DocumentOps.decode_payload(row["payload"])

    @staticmethod
    def put(conn, collection, doc):
        """Upsert a document. The id lives in doc['id']."""
        id_col, indexed = _collection(collection)
        doc_id = str(doc.get("id", "")).strip()
        if not doc_id:
            raise ValidationError(f"{collection} document has no id")

        cols = [id_col, *indexed, "payload"]
        values = [doc_id]
        values.extend(_column_value(doc.get(c)) for c in indexed)
        values.append(DocumentOps.encode_payload(doc))
        placeholders = ", ".join("?" for _ in cols)
        updates = ", ".join(f"{c} = excluded.{c}" for c in cols[1:])
        conn.execute(
            f"INSERT INTO {collection}({', '.join(cols)}) VALUES ({placeholders}) "
            f"ON CONFLICT({id_col}) DO UPDATE SET {updates}",
            values,
        )
        return doc

    @staticmethod
    def delete(conn, collection, doc_id):
        id_col, _ = _collection(collection)
        cur = conn.execute(f"DELETE FROM {collection} WHERE {id_col} = ?", (doc_id,))
        return cur.rowcount > 0

    @staticmethod
    def _where(collection, filters):
        _, indexed = _collection(collection)
        clauses, params = [], []
        for col, value in filters.items():
            if col not in indexed:
                raise ValidationError(f"{collection}.{col} is not queryable")
            if isinstance(value, (list, tuple, set, frozenset)):
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                clauses.append(f"{col} IN ({', '.join('?' for _ in values)})")
                params.extend(_column_value(v) for v in values)
            elif value is None:
                clauses.append(f"{col} IS NULL")
            else:
                clauses.append(f"{col} = ?")
                params.append(_column_value(value))
        sql = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        return sql, params

    @staticmethod
    def find(conn, collection, order_by=None, descending=False, limit=None, **filters):
        """Equality / IN filters on indexed columns."""
        id_col, indexed = _collection(collection)
        where, params = DocumentOps._where(collection, filters)
        order = ""
        if order_by:
            if order_by not in indexed and order_by != id_col:
                raise ValidationError(f"{collection}.{order_by} is not sortable")
            order = f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}, {id_col} ASC"
        sql = f"SELECT payload FROM {collection}{where}{order}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        rows = conn.execute(sql, params).fetchall()
        docs = []
        for row in rows:
            item = DocumentOps.decode_payload(row["payload"])
            if isinstance(item, dict):
                docs.append(item)
        return docs

    @staticmethod
    def count(conn, collection, **filters):
        where, params = DocumentOps._where(collection, filters)
        row = conn.execute(f"SELECT COUNT(*) AS n FROM {collection}{where}", params).fetchone()
        return int(row["n"])


class Store:
    """A SQLite-backed document store. Construct one per process."""

    ops = DocumentOps

    def __init__(self, db_path: str):
        self.db_path = db_path
        with self._open() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            ensure_tables(conn)
        log.info("Store ready: %s", db_path)

    @contextmanager
    def _open(self):
        try:
            conn = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT_SEC, isolation_level=None)
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open store: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def connection(self):
        """Read-only use. Each statement sees committed data."""
        try:
            with self._open() as conn:
                yield conn
        except sqlite3.OperationalError as e:
            raise StoreUnavailableError(f"Store unavailable: {e}") from e

    @contextmanager
    def transaction(self):
        """Single write transaction. Commits on success, rolls back on any error."""
        with self._open() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                raise StoreUnavailableError(f"Store busy: {e}") from e
            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.OperationalError as e:
                conn.execute("ROLLBACK")
                raise StoreUnavailableError(f"Transaction aborted: {e}") from e
            except Exception:
                conn.execute("ROLLBACK")
                raise

    # Convenience single-statement wrappers

    def get(self, collection, doc_id):
        with self.connection() as conn:
            return self.ops.get(conn, collection, doc_id)

    def put(self, collection, doc):
        with self.transaction() as conn:
            return self.ops.put(conn, collection, doc)

    def delete(self, collection, doc_id):
        with self.transaction() as conn:
            return self.ops.delete(conn, collection, doc_id)

    def find(self, collection, **kwargs):
        with self.connection() as conn:
            return self.ops.find(conn, collection, **kwargs)

    def count(self, collection, **filters):
        with self.connection() as conn:
            return self.ops.count(conn, collection, **filters)

    def healthcheck(self):
        try:
            with self.transaction() as conn:
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS healthcheck (id INTEGER PRIMARY KEY, checked_at REAL)"
                )
                conn.execute("INSERT INTO healthcheck(checked_at) VALUES (?)", (time.time(),))
            return {"ok": True, "db_path": self.db_path}
        except Exception as exc:
            log.error("STORAGE HEALTHCHECK FAILED db=%s err=%s", self.db_path, exc)
            return {"ok": False, "db_path": self.db_path, "error": str(exc)}
