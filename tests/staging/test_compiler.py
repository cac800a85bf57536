"""Tests for DML compilation and transaction driving."""

import asyncio

import pytest

from tablestage.core.config import IdentityFallback
from tablestage.core.errors import TransactionError
from tablestage.staging.compiler import TransactionCompiler
from tablestage.staging.ledger import ChangeLedger
from tablestage.staging.models import (
    CellChange,
    CellKey,
    ChangeType,
    InsertKey,
    RowKey,
    SqlExpression,
    StagedChange,
)


def _update(table="t", pk=None, changes=None, column="a", row_index=0):
    return StagedChange(
        id=CellKey(table, row_index, column),
        type=ChangeType.UPDATE,
        table=table,
        primary_key=pk if pk is not None else {"id": 1},
        changes=changes or {column: CellChange(old="old", new="new")},
        column=column,
    )


def _insert(new_row, table="t"):
    return StagedChange(id=InsertKey.new(), type=ChangeType.INSERT, table=table, new_row=new_row)


def _delete(pk, table="t", row_index=0):
    return StagedChange(
        id=RowKey(table, row_index), type=ChangeType.DELETE, table=table, primary_key=pk
    )


class TestCompile:
    """Statement shapes per change type and dialect."""

    def test_mysql_insert_skips_null_auto_increment(self, mysql):
        compiler = TransactionCompiler(mysql, auto_increment_columns=["a"])
        [statement] = compiler.compile([_insert({"a": None, "b": "x"})])
        assert statement.sql == "INSERT INTO `t` (`b`) VALUES (?)"
        assert statement.params == ["x"]

    def test_auto_increment_with_value_is_kept(self, postgres):
        compiler = TransactionCompiler(postgres, auto_increment_columns=["id"])
        [statement] = compiler.compile([_insert({"id": 10, "b": "x"})])
        assert statement.sql == 'INSERT INTO "t" ("id", "b") VALUES ($1, $2)'
        assert statement.params == [10, "x"]

    def test_insert_with_only_defaults(self, mysql, postgres):
        row = {"id": None}
        [my] = TransactionCompiler(mysql, ["id"]).compile([_insert(row)])
        [pg] = TransactionCompiler(postgres, ["id"]).compile([_insert(row)])
        assert my.sql == "INSERT INTO `t` () VALUES ()"
        assert pg.sql == 'INSERT INTO "t" DEFAULT VALUES'
        assert my.params == []

    def test_mysql_update_limits_rows(self, mysql):
        [statement] = TransactionCompiler(mysql).compile([_update()])
        assert statement.sql == "UPDATE `t` SET `a` = ? WHERE `id` = ? LIMIT 1"
        assert statement.params == ["new", 1]

    def test_postgres_update_numbering(self, postgres):
        change = _update(
            pk={"id": 1, "tenant": 7},
            changes={"a": CellChange(old=1, new=2), "b": CellChange(old=1, new=3)},
        )
        [statement] = TransactionCompiler(postgres).compile([change])
        assert statement.sql == (
            'UPDATE "t" SET "a" = $1, "b" = $2 WHERE "id" = $3 AND "tenant" = $4'
        )
        assert statement.params == [2, 3, 1, 7]

    def test_null_safe_where(self, postgres):
        [statement] = TransactionCompiler(postgres).compile(
            [_delete({"id": 1, "deleted_at": None})]
        )
        assert statement.sql == 'DELETE FROM "t" WHERE "id" = $1 AND "deleted_at" IS NULL'
        assert statement.params == [1]

    def test_mysql_delete_limits_rows(self, mysql):
        [statement] = TransactionCompiler(mysql).compile([_delete({"id": 1})])
        assert statement.sql == "DELETE FROM `t` WHERE `id` = ? LIMIT 1"

    def test_sql_expression_emitted_verbatim(self, mysql):
        change = _update(changes={"updated_at": CellChange(old=None, new=SqlExpression.NOW)})
        [statement] = TransactionCompiler(mysql).compile([change])
        assert statement.sql == "UPDATE `t` SET `updated_at` = NOW() WHERE `id` = ? LIMIT 1"
        assert statement.params == [1]

    def test_schema_qualified(self, postgres):
        change = _insert({"b": 1})
        change.schema = "app"
        [statement] = TransactionCompiler(postgres).compile([change])
        assert statement.sql.startswith('INSERT INTO "app"."t"')

    def test_order_updates_inserts_deletes(self, mysql):
        changes = [_delete({"id": 3}), _insert({"b": 1}), _update()]
        statements = TransactionCompiler(mysql).compile(changes)
        assert [s.sql.split()[0] for s in statements] == ["UPDATE", "INSERT", "DELETE"]

    def test_update_without_identity_skipped(self, mysql):
        assert TransactionCompiler(mysql).compile([_update(pk={})]) == []


async def _wait_for(executor, fragment):
    for _ in range(100):
        if any(fragment in sql for sql in executor.statements):
            return
        await asyncio.sleep(0)
    raise AssertionError(f"{fragment!r} was never sent")


@pytest.fixture
def ledger():
    ledger = ChangeLedger(IdentityFallback.ALLOW)
    row0 = {"id": 1, "a": "x"}
    row1 = {"id": 2, "a": "y"}
    ledger.stage_cell_edit("t", None, 0, "a", "x", "x2", row0, ["id"])
    ledger.stage_cell_edit("t", None, 1, "a", "y", "y2", row1, ["id"])
    return ledger


class TestApply:
    """BEGIN ... COMMIT / ROLLBACK protocol."""

    async def test_commit(self, fake_executor, mysql, ledger):
        invalidated = []
        summary = await TransactionCompiler(mysql).apply(
            fake_executor, "s1", ledger, "t", on_committed=invalidated.append
        )

        assert fake_executor.statements[0] == "BEGIN"
        assert fake_executor.statements[-1] == "COMMIT"
        assert len(fake_executor.statements) == 4
        assert summary.updates == 2
        assert summary.total == 2
        assert len(ledger) == 0
        assert invalidated == ["t"]

    async def test_failure_rolls_back_and_keeps_ledger(self, fake_executor, mysql, ledger):
        # Only the second update (row id 2) fails
        fake_executor.fail_when = lambda sql, params: (
            "Duplicate entry 'y2'" if sql.startswith("UPDATE") and params[-1] == 2 else None
        )
        invalidated = []

        with pytest.raises(TransactionError) as exc_info:
            await TransactionCompiler(mysql).apply(
                fake_executor, "s1", ledger, "t", on_committed=invalidated.append
            )

        assert fake_executor.statements[-1] == "ROLLBACK"
        assert "COMMIT" not in fake_executor.statements
        assert len(ledger.list_for("t")) == 2
        assert invalidated == []

        error = exc_info.value
        assert error.cause == "Duplicate entry 'y2'"
        assert error.change.column == "a"
        assert "update on t.a failed" in str(error)

    async def test_executor_exception_handled_like_failure(self, fake_executor, mysql, ledger):
        fake_executor.raise_on["UPDATE"] = ConnectionError("connection reset")

        with pytest.raises(TransactionError, match="connection reset"):
            await TransactionCompiler(mysql).apply(fake_executor, "s1", ledger, "t")

        assert fake_executor.statements[-1] == "ROLLBACK"
        assert len(ledger) == 2

    async def test_commit_failure_rolls_back(self, fake_executor, mysql, ledger):
        fake_executor.fail_on["COMMIT"] = "serialization failure"

        with pytest.raises(TransactionError) as exc_info:
            await TransactionCompiler(mysql).apply(fake_executor, "s1", ledger, "t")

        assert exc_info.value.change is None
        assert str(exc_info.value) == "COMMIT failed: serialization failure"
        assert fake_executor.statements[-1] == "ROLLBACK"
        assert len(ledger) == 2

    async def test_rollback_failure_is_not_retried(self, fake_executor, mysql, ledger):
        fake_executor.fail_on["UPDATE"] = "boom"
        fake_executor.fail_on["ROLLBACK"] = "gone"

        with pytest.raises(TransactionError, match="boom"):
            await TransactionCompiler(mysql).apply(fake_executor, "s1", ledger, "t")

        assert fake_executor.statements.count("ROLLBACK") == 1

    async def test_empty_ledger_runs_nothing(self, fake_executor, mysql):
        summary = await TransactionCompiler(mysql).apply(
            fake_executor, "s1", ChangeLedger(IdentityFallback.ALLOW), "t"
        )
        assert summary.total == 0
        assert fake_executor.calls == []

    async def test_only_table_changes_committed(self, fake_executor, mysql, ledger):
        other = ledger.stage_insert("other", None, {"a": 1})
        await TransactionCompiler(mysql).apply(fake_executor, "s1", ledger, "t")
        assert ledger.list_for("other") == [other]

    async def test_edit_during_commit_stays_staged(self, fake_executor, mysql, ledger):
        gate = asyncio.Event()
        fake_executor.hold("UPDATE", gate)

        compiler = TransactionCompiler(mysql)
        task = asyncio.create_task(compiler.apply(fake_executor, "s1", ledger, "t"))
        await _wait_for(fake_executor, "UPDATE")
        ledger.stage_cell_edit("t", None, 0, "a", "x2", "C", {"id": 1, "a": "x2"}, ["id"])
        gate.set()
        summary = await task

        assert summary.updates == 2
        [change] = ledger.list_for("t")
        assert change.id == CellKey("t", 0, "a")
        assert change.new_value == "C"
        assert change.old_value == "x2"
        assert change.changes == {"a": CellChange(old="x2", new="C")}

        # Editing back to the committed value is now a revert
        row = {"id": 1, "a": "x2"}
        assert ledger.stage_cell_edit("t", None, 0, "a", "C", "x2", row, ["id"]) is None
        assert len(ledger) == 0

    async def test_skipped_change_stays_staged(self, fake_executor, mysql):
        ledger = ChangeLedger(IdentityFallback.ALLOW)
        unidentified = _update(pk={})
        ledger.upsert(unidentified)

        summary = await TransactionCompiler(mysql).apply(fake_executor, "s1", ledger, "t")

        assert summary.total == 0
        assert ledger.list_for("t") == [unidentified]
        assert fake_executor.calls == []

    async def test_skipped_change_not_counted(self, fake_executor, mysql, ledger):
        ledger.upsert(_update(pk={}, row_index=5))

        summary = await TransactionCompiler(mysql).apply(fake_executor, "s1", ledger, "t")

        assert summary.updates == 2
        assert [c.id for c in ledger.list_for("t")] == [CellKey("t", 5, "a")]
