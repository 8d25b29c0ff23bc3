from __future__ import annotations

import pytest
from sqlalchemy import insert, text

from table_importer.core.errors import (
    DeletePhaseError,
    InputValidationError,
    InsertPhaseError,
)
from table_importer.services.table_store import SqlAlchemyTableStore

from conftest import WIDGET_TABLE


def seed(engine, widget_rows, table_id, rows):
    with engine.begin() as conn:
        conn.execute(
            insert(widget_rows.table),
            [{"table_id": table_id, "tblidx": i, "name": n} for i, n in rows],
        )


def records(*rows):
    return [{"tblidx": i, "name": n, "table_id": "T1"} for i, n in rows]


def test_replace_is_idempotent(engine, widget_rows):
    store = SqlAlchemyTableStore(engine)
    new = records((1, "Foo"), (2, "Bar"), (3, "Baz"))

    assert store.replace_rows(WIDGET_TABLE, "T1", new) == 3
    assert store.replace_rows(WIDGET_TABLE, "T1", new) == 3

    assert widget_rows.count("T1") == 3


def test_replace_only_touches_the_given_table_id(engine, widget_rows):
    seed(engine, widget_rows, "T1", [(9, "Old")])
    seed(engine, widget_rows, "T2", [(5, "Keep")])

    SqlAlchemyTableStore(engine).replace_rows(WIDGET_TABLE, "T1", records((1, "Foo")))

    assert widget_rows("T1") == [(1, "Foo")]
    assert widget_rows("T2") == [(5, "Keep")]


def test_empty_replacement_clears_rows(engine, widget_rows):
    seed(engine, widget_rows, "T1", [(9, "Old")])
    deleted = []

    count = SqlAlchemyTableStore(engine).replace_rows(
        WIDGET_TABLE, "T1", [], on_deleted=lambda: deleted.append(True)
    )

    assert count == 0
    assert deleted == [True]
    assert widget_rows.count("T1") == 0


@pytest.mark.parametrize(
    "table_name", ["missing_table", "table_without_scope", "bad-name", "x; DROP TABLE y", ""]
)
def test_rejects_unusable_tables(engine, table_name):
    with pytest.raises(InputValidationError):
        SqlAlchemyTableStore(engine).describe(table_name)


def test_describe_lists_columns(engine):
    assert SqlAlchemyTableStore(engine).describe(WIDGET_TABLE) == [
        "id",
        "table_id",
        "tblidx",
        "name",
    ]


def test_atomic_insert_failure_keeps_old_rows(engine, widget_rows):
    seed(engine, widget_rows, "T1", [(9, "Old")])
    store = SqlAlchemyTableStore(engine, atomic=True)

    with pytest.raises(InsertPhaseError) as excinfo:
        store.replace_rows(WIDGET_TABLE, "T1", [{"tblidx": 1, "bogus": "x", "table_id": "T1"}])

    assert excinfo.value.rolled_back is True
    assert widget_rows("T1") == [(9, "Old")]


def test_non_atomic_insert_failure_leaves_rows_empty(engine, widget_rows):
    seed(engine, widget_rows, "T1", [(9, "Old")])
    store = SqlAlchemyTableStore(engine, atomic=False)
    deleted = []

    with pytest.raises(InsertPhaseError) as excinfo:
        store.replace_rows(
            WIDGET_TABLE,
            "T1",
            [{"tblidx": 1, "bogus": "x", "table_id": "T1"}],
            on_deleted=lambda: deleted.append(True),
        )

    assert excinfo.value.rolled_back is False
    assert deleted == [True]
    assert widget_rows.count("T1") == 0


@pytest.mark.parametrize("atomic", [True, False])
def test_delete_failure_leaves_table_unchanged(engine, widget_rows, atomic):
    seed(engine, widget_rows, "T1", [(9, "Old")])
    with engine.begin() as conn:
        conn.execute(
            text(
                f"CREATE TRIGGER block_delete BEFORE DELETE ON {WIDGET_TABLE} "
                "BEGIN SELECT RAISE(ABORT, 'rows are locked'); END"
            )
        )
    deleted = []

    with pytest.raises(DeletePhaseError):
        SqlAlchemyTableStore(engine, atomic=atomic).replace_rows(
            WIDGET_TABLE, "T1", records((1, "Foo")), on_deleted=lambda: deleted.append(True)
        )

    assert deleted == []
    assert widget_rows("T1") == [(9, "Old")]


def test_fetch_rows_returns_requested_columns(engine, widget_rows):
    seed(engine, widget_rows, "T1", [(2, "Bar"), (1, "Foo")])
    seed(engine, widget_rows, "T2", [(3, "Other")])

    rows = SqlAlchemyTableStore(engine).fetch_rows(WIDGET_TABLE, "T1", ["tblidx", "name"])

    assert rows == [{"tblidx": 2, "name": "Bar"}, {"tblidx": 1, "name": "Foo"}]


def test_fetch_rows_rejects_unknown_columns(engine):
    with pytest.raises(InputValidationError, match="dwexp"):
        SqlAlchemyTableStore(engine).fetch_rows(WIDGET_TABLE, "T1", ["tblidx", "dwexp"])
