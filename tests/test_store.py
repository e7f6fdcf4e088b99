"""
Tests for cursor and submission persistence.
"""

import pytest

from attest_relayer.store import (
    MemoryStateStore,
    SqlStateStore,
    create_store,
    mask_url,
    parse_database_url,
)


@pytest.fixture
def sql_store(tmp_path):
    store = SqlStateStore(f"sqlite:///{tmp_path / 'relayer.db'}")
    yield store
    store.close()


class TestSqlStateStore:
    def test_cursor_absent_initially(self, sql_store) -> None:
        assert sql_store.load_cursor() is None

    def test_cursor_upsert(self, sql_store) -> None:
        sql_store.save_cursor(105)
        sql_store.save_cursor(210)
        assert sql_store.load_cursor() == 210

    def test_cursor_survives_reopen(self, tmp_path) -> None:
        url = f"sqlite:///{tmp_path / 'relayer.db'}"
        first = SqlStateStore(url)
        first.save_cursor(4242)
        first.close()

        second = SqlStateStore(url)
        assert second.load_cursor() == 4242
        second.close()

    def test_submissions(self, sql_store) -> None:
        sql_store.record_submission("0xq1", 11155111, 100, 103, 2)
        sql_store.record_submission("0xq2", 11155111, 104, 105, 1)
        sql_store.update_submission("0xq1", "finalized")

        records = sql_store.get_submissions()
        assert [r.query_key for r in records] == ["0xq1", "0xq2"]
        assert records[0].status == "finalized"
        assert records[0].entry_count == 2
        assert [r.query_key for r in sql_store.get_submissions(status="submitted")] == ["0xq2"]

    def test_resubmission_resets_status(self, sql_store) -> None:
        sql_store.record_submission("0xq1", 1, 100, 103, 2)
        sql_store.update_submission("0xq1", "failed")
        sql_store.record_submission("0xq1", 1, 100, 103, 2)

        [record] = sql_store.get_submissions()
        assert record.status == "submitted"


class TestMemoryStateStore:
    def test_cursor_and_submissions(self) -> None:
        store = MemoryStateStore()
        assert store.load_cursor() is None
        store.save_cursor(7)
        assert store.load_cursor() == 7

        store.record_submission("0xq1", 1, 0, 7, 3)
        store.update_submission("0xq1", "failed")
        store.update_submission("0xunknown", "failed")
        assert [r.status for r in store.get_submissions()] == ["failed"]
        assert store.get_submissions(status="finalized") == []


def test_create_store(tmp_path) -> None:
    assert isinstance(create_store(""), MemoryStateStore)
    store = create_store(str(tmp_path / "relayer.db"))
    assert isinstance(store, SqlStateStore)
    store.close()


class TestDatabaseUrl:
    def test_bare_path_becomes_sqlite(self) -> None:
        assert parse_database_url("./state.db") == "sqlite:///./state.db"

    def test_postgres_scheme_normalized(self) -> None:
        assert (
            parse_database_url("postgres://u:p@db:5432/relayer")
            == "postgresql://u:p@db:5432/relayer"
        )

    def test_known_schemes_untouched(self) -> None:
        assert parse_database_url("sqlite:///x.db") == "sqlite:///x.db"
        assert parse_database_url("postgresql://db/relayer") == "postgresql://db/relayer"

    def test_mask_url(self) -> None:
        assert mask_url("postgresql://u:secret@db/relayer") == "postgresql://u:***@db/relayer"
        assert mask_url("sqlite:///x.db") == "sqlite:///x.db"
