import logging
import os
from datetime import datetime, timezone

from dotenv import load_dotenv

from habit_monster.exceptions import NotFoundError
from habit_monster.schemas import HABITS, USERS, Habit, User

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_BACKEND = os.getenv("DATABASE_BACKEND", "sqlite")
# Default path if env var not set
DB_PATH = os.getenv("DATABASE_PATH", "data/habits.db")
MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017/monster_app")

# Fields that must be unique across a collection
UNIQUE_FIELDS = {
    USERS: ("email", "friendCode"),
    HABITS: (),
}

LEGACY_GRANT_TIME = datetime(1970, 1, 1, tzinfo=timezone.utc)

STORE = None


class DocumentStore:
    """
    Keyed document storage used by every service.

    Documents are plain dicts keyed by a string `_id`. Filters support equality
    plus the `$ne` and `$in` operators. Writes that break a unique field raise
    `ConflictError`.
    """

    def find_one(self, collection, query):
        raise NotImplementedError

    def find_by_id(self, collection, doc_id):
        return self.find_one(collection, {"_id": doc_id})

    def find(self, collection, query=None):
        raise NotImplementedError

    def insert(self, collection, doc):
        raise NotImplementedError

    def save(self, collection, doc):
        """Insert or replace the document with the same `_id`."""
        raise NotImplementedError

    def delete_one(self, collection, query):
        raise NotImplementedError

    def delete_by_id(self, collection, doc_id):
        return self.delete_one(collection, {"_id": doc_id})


def matches(doc, query):
    """Evaluate a filter against one document (the subset of Mongo syntax the services use)."""
    for field, cond in (query or {}).items():
        value = doc.get(field)
        if isinstance(cond, dict):
            for op, arg in cond.items():
                if op == "$ne":
                    if value == arg:
                        return False
                elif op == "$in":
                    if value not in arg:
                        return False
                else:
                    raise ValueError(f"Unsupported query operator: {op}")
        elif value != cond:
            return False
    return True


def get_store():
    global STORE
    if STORE is None:
        if DATABASE_BACKEND == "mongo":
            from habit_monster.db_mongo import MongoStore
            STORE = MongoStore(MONGO_URI)
        else:
            from habit_monster.db_sqlite import SqliteStore
            STORE = SqliteStore(DB_PATH)
        init_db(STORE)
    return STORE


# --- RECORD HELPERS ---

def load_user(store, user_id, message="User not found"):
    doc = store.find_by_id(USERS, user_id) if user_id else None
    if doc is None:
        raise NotFoundError(message, details={"user_id": user_id})
    return User.from_document(doc)


def find_user(store, query):
    doc = store.find_one(USERS, query)
    return User.from_document(doc) if doc else None


def save_user(store, user):
    store.save(USERS, user.to_document())
    return user


def load_habit(store, habit_id, message="Habit not found"):
    doc = store.find_by_id(HABITS, habit_id) if habit_id else None
    if doc is None:
        raise NotFoundError(message, details={"habit_id": habit_id})
    return Habit.from_document(doc)


def find_habits(store, query):
    return [Habit.from_document(doc) for doc in store.find(HABITS, query)]


def save_habit(store, habit):
    store.save(HABITS, habit.to_document())
    return habit


# --- MIGRATIONS ---

def migrate_xp_grants(doc):
    """
    Convert a legacy `xpGrantedDates` list into the date -> grant time mapping.

    Old documents hold either bare date strings or {date, grantedAt} records.
    Bare strings get the epoch as their grant time so they can never be undone.
    Returns True if the document changed.
    """
    grants = doc.get("xpGrantedDates")
    if grants is None or isinstance(grants, dict):
        return False

    mapping = {}
    for entry in grants:
        if isinstance(entry, str):
            mapping[entry] = LEGACY_GRANT_TIME
        elif isinstance(entry, dict) and entry.get("date"):
            mapping[entry["date"]] = entry.get("grantedAt") or LEGACY_GRANT_TIME
    doc["xpGrantedDates"] = mapping
    return True


def init_db(store):
    """Run one-time document migrations. Safe to call on every startup."""
    migrated = 0
    for doc in store.find(HABITS):
        if migrate_xp_grants(doc):
            store.save(HABITS, doc)
            migrated += 1
    if migrated:
        logger.info(f"Migrated legacy XP grant records on {migrated} habits")
    return True
