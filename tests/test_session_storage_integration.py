import os
import uuid
from unittest.mock import MagicMock

import psycopg
import pytest

from config.postgres import PostgresConfig
from persistence.draft_store import DraftStore
from persistence.session_storage import PostgresSessionStorage
from registration.errors import DraftStoreError

needs_postgres = pytest.mark.skipif(
    "PG_HOST" not in os.environ, reason="PG_HOST not set, no Postgres to talk to"
)


@pytest.fixture
def pg_storage():
    pg = PostgresConfig.from_env()
    conn = pg.connect()
    storage = PostgresSessionStorage(conn, f"pytest_{uuid.uuid4().hex[:8]}", table=pg.storage_table)
    storage.setup()
    yield storage
    for key in storage.keys():
        storage.delete(key)
    conn.close()


@needs_postgres
def test_password_encrypted_in_db_and_plaintext_on_load(pg_storage, cipher, jane_draft, big_jpeg):
    store = DraftStore(pg_storage, cipher)
    staged_id = store.stage(jane_draft, big_jpeg)

    cur = pg_storage.conn.cursor()
    cur.execute(
        f"SELECT value FROM {PostgresConfig.from_env().storage_table} "
        "WHERE session_id = %s AND key = %s",
        (pg_storage.session_id, store.draft_key(staged_id)),
    )
    row = cur.fetchone()
    assert row is not None
    assert "__enc__" in row[0]
    assert "secret1" not in row[0]

    loaded = store.load(staged_id)
    assert loaded.draft.password == "secret1"
    assert loaded.attachment.data == big_jpeg.data

    store.clear(staged_id)
    assert pg_storage.keys() == []


@needs_postgres
def test_set_overwrites_existing_key(pg_storage):
    pg_storage.set("registration:x:draft", "one")
    pg_storage.set("registration:x:draft", "two")

    assert pg_storage.get("registration:x:draft") == "two"
    assert pg_storage.keys() == ["registration:x:draft"]


def test_database_errors_become_draft_store_errors():
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value.execute.side_effect = (
        psycopg.OperationalError("connection lost")
    )
    storage = PostgresSessionStorage(conn, "s1")

    with pytest.raises(DraftStoreError):
        storage.get("registration:x:draft")
