"""
Tests for the document stores and the startup migrations.
"""

import sqlite3
from datetime import datetime, timezone

import pytest
from pymongo.errors import AutoReconnect, DuplicateKeyError

from habit_monster.database import LEGACY_GRANT_TIME, init_db, load_habit, matches, migrate_xp_grants
from habit_monster.db_mongo import MongoStore
from habit_monster.exceptions import ConflictError, InternalError
from habit_monster.schemas import HABITS, USERS


def user_doc(_id, email, code=None):
    return {"_id": _id, "email": email, "password": "x", "friendCode": code}


class TestMatches:
    @pytest.mark.parametrize(
        "query, expected",
        [
            ({}, True),
            ({"userId": "u1"}, True),
            ({"userId": "u2"}, False),
            ({"battleStatus": {"$ne": "completed"}}, True),
            ({"battleStatus": {"$ne": "active"}}, False),
            ({"battleStatus": {"$in": ["active", "completed"]}}, True),
            ({"battleStatus": {"$in": ["pending"]}}, False),
            ({"partnerId": None}, True),
        ],
    )
    def test_filters(self, query, expected):
        doc = {"_id": "h1", "userId": "u1", "battleStatus": "active"}
        assert matches(doc, query) is expected

    def test_unknown_operator(self):
        with pytest.raises(ValueError):
            matches({"level": 3}, {"level": {"$gt": 1}})


class TestSqliteStore:
    def test_insert_and_find(self, store):
        store.insert(USERS, user_doc("u1", "a@example.com", "AAAAA"))
        store.insert(USERS, user_doc("u2", "b@example.com"))

        assert store.find_by_id(USERS, "u1")["email"] == "a@example.com"
        assert store.find_one(USERS, {"friendCode": "AAAAA"})["_id"] == "u1"
        assert [d["_id"] for d in store.find(USERS)] == ["u1", "u2"]
        assert store.find_by_id(USERS, "missing") is None

    def test_save_upserts(self, store):
        store.save(USERS, user_doc("u1", "a@example.com"))
        store.save(USERS, {**user_doc("u1", "a@example.com"), "level": 3})

        assert len(store.find(USERS)) == 1
        assert store.find_by_id(USERS, "u1")["level"] == 3

    def test_unique_email(self, store):
        store.insert(USERS, user_doc("u1", "a@example.com"))
        with pytest.raises(ConflictError) as exc:
            store.insert(USERS, user_doc("u2", "a@example.com"))
        assert exc.value.details["field"] == "email"

    def test_unique_friend_code_on_save(self, store):
        store.insert(USERS, user_doc("u1", "a@example.com", "AAAAA"))
        store.insert(USERS, user_doc("u2", "b@example.com"))
        with pytest.raises(ConflictError):
            store.save(USERS, user_doc("u2", "b@example.com", "AAAAA"))

    def test_missing_codes_do_not_collide(self, store):
        store.insert(USERS, user_doc("u1", "a@example.com"))
        store.insert(USERS, user_doc("u2", "b@example.com"))
        assert len(store.find(USERS, {"friendCode": None})) == 2

    def test_delete(self, store):
        store.insert(HABITS, {"_id": "h1", "userId": "u1"})
        assert store.delete_by_id(HABITS, "h1") is True
        assert store.delete_by_id(HABITS, "h1") is False
        assert store.find(HABITS) == []

    def test_datetimes_stored_as_iso(self, store, now):
        store.insert(HABITS, {"_id": "h1", "createdAt": now})
        assert store.find_by_id(HABITS, "h1")["createdAt"] == now.isoformat()


class TestMongoStore:
    @pytest.fixture
    def client(self, mocker):
        return mocker.MagicMock()

    def test_creates_partial_unique_indexes(self, client):
        MongoStore("mongodb://localhost:27017/monster_app", client=client)
        db = client["monster_app"]
        kwargs = db[USERS].create_index.call_args_list[0].kwargs
        assert kwargs["unique"] is True
        assert kwargs["partialFilterExpression"] == {"email": {"$type": "string"}}
        assert db[USERS].create_index.call_count == 2

    def test_duplicate_key_becomes_conflict(self, client):
        store = MongoStore("mongodb://localhost:27017/monster_app", client=client)
        client["monster_app"][USERS].insert_one.side_effect = DuplicateKeyError(
            "E11000 duplicate key", 11000, {"keyValue": {"email": "a@example.com"}}
        )
        with pytest.raises(ConflictError, match="email"):
            store.insert(USERS, user_doc("u1", "a@example.com"))

    def test_save_replaces_by_id(self, client):
        store = MongoStore("mongodb://localhost:27017/monster_app", client=client)
        doc = user_doc("u1", "a@example.com")
        store.save(USERS, doc)
        client["monster_app"][USERS].replace_one.assert_called_once_with({"_id": "u1"}, doc, upsert=True)


class TestMigrations:
    def test_bare_dates_get_epoch(self):
        doc = {"_id": "h1", "xpGrantedDates": ["2025-01-01", "2025-01-02"]}
        assert migrate_xp_grants(doc) is True
        assert doc["xpGrantedDates"] == {"2025-01-01": LEGACY_GRANT_TIME, "2025-01-02": LEGACY_GRANT_TIME}

    def test_records_keep_grant_time(self):
        granted = datetime(2025, 1, 1, 8, tzinfo=timezone.utc)
        doc = {"xpGrantedDates": [{"date": "2025-01-01", "grantedAt": granted}, {"date": "2025-01-02"}]}
        migrate_xp_grants(doc)
        assert doc["xpGrantedDates"] == {"2025-01-01": granted, "2025-01-02": LEGACY_GRANT_TIME}

    def test_current_shape_untouched(self):
        assert migrate_xp_grants({"xpGrantedDates": {}}) is False
        assert migrate_xp_grants({}) is False

    def test_init_db_rewrites_legacy_habits(self, store, now):
        store.insert(
            HABITS,
            {
                "_id": "h1",
                "userId": "u1",
                "name": "Read",
                "completedDates": ["2025-01-01"],
                "xpGrantedDates": ["2025-01-01"],
            },
        )
        init_db(store)
        init_db(store)

        habit = load_habit(store, "h1")
        assert habit.xp_granted_dates == {"2025-01-01": LEGACY_GRANT_TIME}
        assert habit.battle_status == "active"


class TestStoreFailures:
    def test_sqlite_write_error_is_internal(self, store, mocker):
        conn = mocker.MagicMock()
        conn.execute.side_effect = sqlite3.OperationalError("database is locked")
        mocker.patch.object(store, "get_db_connection", return_value=conn)

        with pytest.raises(InternalError):
            store.save(USERS, user_doc("u1", "a@example.com"))
        conn.close.assert_called_once()

    def test_mongo_write_error_is_internal(self, mocker):
        client = mocker.MagicMock()
        store = MongoStore("mongodb://localhost:27017/monster_app", client=client)
        client["monster_app"][USERS].replace_one.side_effect = AutoReconnect("connection reset")

        with pytest.raises(InternalError) as exc:
            store.save(USERS, user_doc("u1", "a@example.com"))
        assert exc.value.status_code == 500
