import logging

from pymongo import ASCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from habit_monster.database import UNIQUE_FIELDS, DocumentStore
from habit_monster.exceptions import ConflictError, InternalError

logger = logging.getLogger(__name__)


class MongoStore(DocumentStore):
    """Document store backed by MongoDB. Filters are passed through unchanged."""

    def __init__(self, uri, client=None):
        self.client = client or MongoClient(uri, tz_aware=True)
        # Default DB name or from URI
        db_name = uri.split("/")[-1].split("?")[0] or "monster_app"
        self.db = self.client[db_name]
        self.ensure_indexes()

    def ensure_indexes(self):
        for collection, fields in UNIQUE_FIELDS.items():
            for field in fields:
                # Users without a friend code yet hold null, which must not collide
                self.db[collection].create_index(
                    [(field, ASCENDING)],
                    unique=True,
                    partialFilterExpression={field: {"$type": "string"}},
                )

    def _conflict(self, collection, err):
        key = (err.details or {}).get("keyValue") or {}
        field = next(iter(key), "key")
        logger.warning(f"Unique constraint violated on {collection}.{field}")
        return ConflictError(f"Duplicate value for {field}", details={"field": field})

    def _failure(self, collection, err):
        logger.error(f"Database Error on {collection}: {err}")
        return InternalError("Database error", details={"collection": collection})

    def find_one(self, collection, query):
        return self.db[collection].find_one(query)

    def find(self, collection, query=None):
        return list(self.db[collection].find(query or {}))

    def insert(self, collection, doc):
        try:
            self.db[collection].insert_one(doc)
        except DuplicateKeyError as e:
            raise self._conflict(collection, e)
        except PyMongoError as e:
            raise self._failure(collection, e)
        return doc["_id"]

    def save(self, collection, doc):
        try:
            self.db[collection].replace_one({"_id": doc["_id"]}, doc, upsert=True)
        except DuplicateKeyError as e:
            raise self._conflict(collection, e)
        except PyMongoError as e:
            raise self._failure(collection, e)
        return doc["_id"]

    def delete_one(self, collection, query):
        res = self.db[collection].delete_one(query)
        return res.deleted_count > 0
