import json
import logging
import os
import sqlite3
from datetime import date, datetime
from enum import Enum

from habit_monster.database import UNIQUE_FIELDS, DocumentStore, matches
from habit_monster.exceptions import ConflictError, InternalError

logger = logging.getLogger(__name__)


def _encode(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Cannot store value of type {type(value).__name__}")


class SqliteStore(DocumentStore):
    """
    Document store on a local SQLite file.

    Each collection is a table of JSON documents. Unique fields are copied
    into their own UNIQUE columns so SQLite enforces them.
    """

    def __init__(self, path):
        self.path = str(path)
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._tables = set()

    def get_db_connection(self):
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row  # Return rows as dictionaries
        return conn

    def _ensure_table(self, conn, collection):
        if collection in self._tables:
            return
        unique_cols = "".join(f', "{f}" TEXT UNIQUE' for f in UNIQUE_FIELDS.get(collection, ()))
        conn.execute(
            f'CREATE TABLE IF NOT EXISTS "{collection}" ('
            f"id TEXT PRIMARY KEY, data TEXT NOT NULL{unique_cols})"
        )
        self._tables.add(collection)

    def _row_values(self, collection, doc):
        values = [doc["_id"], json.dumps(doc, default=_encode)]
        for field in UNIQUE_FIELDS.get(collection, ()):
            values.append(doc.get(field))
        return values

    def _write(self, collection, sql, params):
        conn = self.get_db_connection()
        try:
            self._ensure_table(conn, collection)
            conn.execute(sql, params)
            conn.commit()
        except sqlite3.IntegrityError as e:
            # "UNIQUE constraint failed: users.email"
            field = str(e).rsplit(".", 1)[-1]
            logger.warning(f"Unique constraint violated on {collection}.{field}")
            raise ConflictError(f"Duplicate value for {field}", details={"field": field})
        except sqlite3.Error as e:
            logger.error(f"Database Error on {collection}: {e}")
            raise InternalError("Database error", details={"collection": collection}) from e
        finally:
            conn.close()

    # --- READS ---

    def find(self, collection, query=None):
        conn = self.get_db_connection()
        try:
            self._ensure_table(conn, collection)
            if query and isinstance(query.get("_id"), str):
                rows = conn.execute(
                    f'SELECT data FROM "{collection}" WHERE id = ?', (query["_id"],)
                ).fetchall()
            else:
                rows = conn.execute(f'SELECT data FROM "{collection}" ORDER BY rowid').fetchall()
        finally:
            conn.close()

        docs = [json.loads(row["data"]) for row in rows]
        return [doc for doc in docs if matches(doc, query)]

    def find_one(self, collection, query):
        docs = self.find(collection, query)
        return docs[0] if docs else None

    # --- WRITES ---

    def insert(self, collection, doc):
        columns = ["id", "data", *UNIQUE_FIELDS.get(collection, ())]
        quoted = [f'"{c}"' for c in columns]
        sql = (
            f'INSERT INTO "{collection}" ({", ".join(quoted)}) '
            f'VALUES ({", ".join("?" for _ in columns)})'
        )
        self._write(collection, sql, self._row_values(collection, doc))
        return doc["_id"]

    def save(self, collection, doc):
        columns = ["id", "data", *UNIQUE_FIELDS.get(collection, ())]
        quoted = [f'"{c}"' for c in columns]
        updates = ", ".join(f"{c} = excluded.{c}" for c in quoted[1:])
        sql = (
            f'INSERT INTO "{collection}" ({", ".join(quoted)}) '
            f'VALUES ({", ".join("?" for _ in columns)}) '
            f'ON CONFLICT("id") DO UPDATE SET {updates}'
        )
        self._write(collection, sql, self._row_values(collection, doc))
        return doc["_id"]

    def delete_one(self, collection, query):
        doc = self.find_one(collection, query)
        if doc is None:
            return False
        conn = self.get_db_connection()
        try:
            conn.execute(f'DELETE FROM "{collection}" WHERE id = ?', (doc["_id"],))
            conn.commit()
        finally:
            conn.close()
        return True
