"""
SQLite Document Store

DESIGN DECISION: Documents are stored as JSON bodies in one sqlite table
per collection, next to the columns replication needs (revision,
tombstone flag, change sequence). Lookups on the fields the application
queries (month, name, date, budget, description) go through expression
indexes on json_extract.

TRADEOFFS:
- Not a general document database (fine for a single user's budgets)
- Deletes leave tombstones so that replication can propagate them
- Range queries compare strings, which is correct for the zero-padded
  YYYY-MM and YYYY-MM-DD formats the validator enforces
"""

import json
import sqlite3
from pathlib import Path
from typing import Any, Iterable, Optional

from budgetcalm.audit import get_logger
from budgetcalm.models.records import REVISION_FIELD, Collection
from budgetcalm.services.storage.interface import (
    ChangeBatch,
    Checkpoint,
    DocumentStoreInterface,
    DuplicateError,
    NotFoundError,
    Query,
    RevisionConflictError,
    StorageError,
    StoreUnavailableError,
)
from budgetcalm.services.storage.revisions import new_revision, parse_revision, revision_wins

logger = get_logger(__name__)

DELETED_FIELD = "_deleted"

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS _checkpoints (
    collection TEXT NOT NULL,
    remote TEXT NOT NULL,
    push_seq INTEGER NOT NULL DEFAULT 0,
    pull_seq INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (collection, remote)
);
"""

COLLECTION_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    id TEXT PRIMARY KEY,
    rev TEXT NOT NULL,
    deleted INTEGER NOT NULL DEFAULT 0,
    seq INTEGER NOT NULL,
    body TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS ix_{table}_seq ON {table} (seq);
"""

INDEXED_FIELDS = {
    Collection.BUDGETS: ("month", "name"),
    Collection.EXPENSES: ("date", "budget", "description"),
}

_OPERATORS = {"eq": "=", "ne": "!=", "gte": ">=", "lte": "<="}


def _field_expression(field: str) -> str:
    # Field names are validated by Query.where
    if field == "id":
        return "id"
    return f"json_extract(body, '$.{field}')"


def _compile(query: Optional[Query]) -> tuple[str, list[Any]]:
    clauses = ["deleted = 0"]
    params: list[Any] = []
    for condition in (query.conditions if query else ()):
        clauses.append(
            f"{_field_expression(condition.field)} {_OPERATORS[condition.operator]} ?"
        )
        params.append(condition.value)
    return " AND ".join(clauses), params


def _body(record: dict[str, Any]) -> str:
    fields = {
        key: value
        for key, value in record.items()
        if key not in ("id", REVISION_FIELD, DELETED_FIELD)
    }
    return json.dumps(fields, sort_keys=True)


def _row_to_document(row: sqlite3.Row) -> dict[str, Any]:
    document = {"id": row["id"]}
    document.update(json.loads(row["body"]))
    document[REVISION_FIELD] = row["rev"]
    return document


def _row_to_wire(row: sqlite3.Row) -> dict[str, Any]:
    document = _row_to_document(row)
    document[DELETED_FIELD] = bool(row["deleted"])
    return document


class SQLiteDocumentStore(DocumentStoreInterface):
    """
    sqlite3 implementation of the document store.

    Replicated writes are not announced on `changed`; only local writes
    need pushing.
    """

    def __init__(self, path: Path):
        super().__init__()
        self._path = Path(path)
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> None:
        """Open the sqlite file and make sure every collection exists."""
        if self._conn is not None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self._path))
            conn.row_factory = sqlite3.Row
            conn.executescript(SCHEMA_SQL)
            self._conn = conn
            for collection in Collection:
                self._create_collection(collection)
        except (sqlite3.Error, OSError) as e:
            self.close()
            raise StoreUnavailableError(f"Failed to open local store {self._path}: {e}") from e
        logger.info("store_opened", path=str(self._path))

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("store_closed", path=str(self._path))

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreUnavailableError("The local store is not open")
        return self._conn

    def _create_collection(self, collection: Collection) -> None:
        table = collection.value
        script = COLLECTION_SQL.format(table=table)
        for field in INDEXED_FIELDS[collection]:
            script += (
                f"CREATE INDEX IF NOT EXISTS ix_{table}_{field} "
                f"ON {table} ({_field_expression(field)});\n"
            )
        self._connection().executescript(script)

    def _fetch_row(
        self,
        conn: sqlite3.Connection,
        collection: Collection,
        record_id: str,
    ) -> Optional[sqlite3.Row]:
        return conn.execute(
            f"SELECT id, rev, deleted, seq, body FROM {collection.value} WHERE id = ?",
            (record_id,),
        ).fetchone()

    def _write_row(
        self,
        conn: sqlite3.Connection,
        collection: Collection,
        record_id: str,
        rev: str,
        deleted: bool,
        body: str,
    ) -> None:
        table = collection.value
        seq = conn.execute(f"SELECT COALESCE(MAX(seq), 0) + 1 FROM {table}").fetchone()[0]
        conn.execute(
            f"""
            INSERT INTO {table} (id, rev, deleted, seq, body)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                rev = excluded.rev,
                deleted = excluded.deleted,
                seq = excluded.seq,
                body = excluded.body
            """,
            (record_id, rev, int(deleted), seq, body),
        )

    def _insert_row(
        self,
        conn: sqlite3.Connection,
        collection: Collection,
        record: dict[str, Any],
    ) -> dict[str, Any]:
        record_id = record.get("id")
        if not record_id:
            raise ValueError("Documents need a non-empty id")
        existing = self._fetch_row(conn, collection, record_id)
        if existing is not None and not existing["deleted"]:
            raise DuplicateError(f"{collection.value} document already exists: {record_id}")
        # A revived tombstone continues its revision history
        rev = new_revision(existing["rev"] if existing is not None else None)
        body = _body(record)
        self._write_row(conn, collection, record_id, rev, False, body)
        document = {"id": record_id}
        document.update(json.loads(body))
        document[REVISION_FIELD] = rev
        return document

    async def ensure_collection(self, collection: Collection) -> None:
        try:
            self._create_collection(collection)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to create {collection.value}: {e}") from e

    async def insert(
        self,
        collection: Collection,
        record: dict[str, Any],
    ) -> dict[str, Any]:
        conn = self._connection()
        try:
            with conn:
                document = self._insert_row(conn, collection, record)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to insert into {collection.value}: {e}") from e
        self.changed.emit(collection)
        return document

    async def update(
        self,
        collection: Collection,
        record_id: str,
        fields: dict[str, Any],
        rev: Optional[str] = None,
    ) -> dict[str, Any]:
        conn = self._connection()
        try:
            with conn:
                row = self._fetch_row(conn, collection, record_id)
                if row is None or row["deleted"]:
                    raise NotFoundError(f"{collection.value} document not found: {record_id}")
                if rev is not None and rev != row["rev"]:
                    raise RevisionConflictError(
                        f"Stale revision {rev} for {record_id} (current {row['rev']})"
                    )
                document = _row_to_document(row)
                document.update(
                    {k: v for k, v in fields.items() if k not in ("id", REVISION_FIELD)}
                )
                document[REVISION_FIELD] = new_revision(row["rev"])
                self._write_row(
                    conn,
                    collection,
                    record_id,
                    document[REVISION_FIELD],
                    False,
                    _body(document),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update {collection.value}: {e}") from e
        self.changed.emit(collection)
        return document

    async def remove(self, collection: Collection, record_id: str) -> None:
        conn = self._connection()
        try:
            with conn:
                row = self._fetch_row(conn, collection, record_id)
                if row is None or row["deleted"]:
                    raise NotFoundError(f"{collection.value} document not found: {record_id}")
                self._write_row(
                    conn, collection, record_id, new_revision(row["rev"]), True, "{}"
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to remove from {collection.value}: {e}") from e
        self.changed.emit(collection)

    async def get(
        self,
        collection: Collection,
        record_id: str,
    ) -> Optional[dict[str, Any]]:
        try:
            row = self._fetch_row(self._connection(), collection, record_id)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read {collection.value}: {e}") from e
        if row is None or row["deleted"]:
            return None
        return _row_to_document(row)

    async def find_one(
        self,
        collection: Collection,
        query: Optional[Query] = None,
    ) -> Optional[dict[str, Any]]:
        where_sql, params = _compile(query)
        try:
            row = self._connection().execute(
                f"SELECT id, rev, deleted, seq, body FROM {collection.value} "
                f"WHERE {where_sql} LIMIT 1",
                params,
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to query {collection.value}: {e}") from e
        return _row_to_document(row) if row is not None else None

    async def find_many(
        self,
        collection: Collection,
        query: Optional[Query] = None,
    ) -> list[dict[str, Any]]:
        where_sql, params = _compile(query)
        try:
            rows = self._connection().execute(
                f"SELECT id, rev, deleted, seq, body FROM {collection.value} WHERE {where_sql}",
                params,
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to query {collection.value}: {e}") from e
        return [_row_to_document(row) for row in rows]

    async def bulk_insert(
        self,
        collection: Collection,
        records: Iterable[dict[str, Any]],
    ) -> int:
        records = list(records)
        if not records:
            return 0
        conn = self._connection()
        try:
            with conn:
                for record in records:
                    self._insert_row(conn, collection, record)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to bulk insert into {collection.value}: {e}") from e
        self.changed.emit(collection)
        return len(records)

    async def drop_collection(self, collection: Collection) -> None:
        conn = self._connection()
        try:
            with conn:
                conn.execute(f"DROP TABLE IF EXISTS {collection.value}")
                conn.execute(
                    "DELETE FROM _checkpoints WHERE collection = ?",
                    (collection.value,),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to drop {collection.value}: {e}") from e
        logger.info("collection_dropped", collection=collection.value)

    async def erase(self) -> None:
        conn = self._connection()
        try:
            with conn:
                for collection in Collection:
                    conn.execute(f"DROP TABLE IF EXISTS {collection.value}")
                conn.execute("DELETE FROM _checkpoints")
            # Dropped tables leave free pages behind until the file is rebuilt
            conn.execute("VACUUM")
            for collection in Collection:
                self._create_collection(collection)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to erase local store: {e}") from e
        logger.info("store_erased", path=str(self._path))

    async def changes_since(
        self,
        collection: Collection,
        since: int,
        limit: int,
    ) -> ChangeBatch:
        try:
            rows = self._connection().execute(
                f"SELECT id, rev, deleted, seq, body FROM {collection.value} "
                f"WHERE seq > ? ORDER BY seq LIMIT ?",
                (since, limit),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read changes of {collection.value}: {e}") from e
        last_seq = rows[-1]["seq"] if rows else since
        return ChangeBatch([_row_to_wire(row) for row in rows], last_seq)

    async def apply_replicated(
        self,
        collection: Collection,
        document: dict[str, Any],
    ) -> bool:
        record_id = document["id"]
        rev = document[REVISION_FIELD]
        parse_revision(rev)
        conn = self._connection()
        try:
            with conn:
                row = self._fetch_row(conn, collection, record_id)
                if row is not None and not revision_wins(rev, row["rev"]):
                    return False
                deleted = bool(document.get(DELETED_FIELD))
                self._write_row(
                    conn,
                    collection,
                    record_id,
                    rev,
                    deleted,
                    "{}" if deleted else _body(document),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to apply replicated {collection.value}: {e}") from e
        return True

    async def get_checkpoint(
        self,
        collection: Collection,
        remote_id: str,
    ) -> Checkpoint:
        try:
            row = self._connection().execute(
                "SELECT push_seq, pull_seq FROM _checkpoints WHERE collection = ? AND remote = ?",
                (collection.value, remote_id),
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read checkpoint: {e}") from e
        if row is None:
            return Checkpoint()
        return Checkpoint(row["push_seq"], row["pull_seq"])

    async def set_checkpoint(
        self,
        collection: Collection,
        remote_id: str,
        checkpoint: Checkpoint,
    ) -> None:
        conn = self._connection()
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO _checkpoints (collection, remote, push_seq, pull_seq)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(collection, remote) DO UPDATE SET
                        push_seq = excluded.push_seq,
                        pull_seq = excluded.pull_seq
                    """,
                    (collection.value, remote_id, checkpoint.push_seq, checkpoint.pull_seq),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write checkpoint: {e}") from e
