"""Tests for the change ledger."""

import pytest

from tablestage.core.config import IdentityFallback
from tablestage.core.errors import ValidationError
from tablestage.staging.ledger import ChangeLedger, build_primary_key
from tablestage.staging.models import CellKey, ChangeType, InsertKey, RowKey

ROW = {"id": 1, "name": "Ada", "age": 36, "__rowIndex": 0}


@pytest.fixture
def ledger():
    return ChangeLedger(IdentityFallback.ALLOW)


def _edit(ledger, new, field="name", row_index=0, old=None, row=ROW, pk=("id",)):
    old = row[field] if old is None else old
    return ledger.stage_cell_edit("users", None, row_index, field, old, new, row, list(pk))


class TestBuildPrimaryKey:
    """Row identity for WHERE clauses."""

    def test_known_primary_key(self):
        assert build_primary_key(ROW, ["id"]) == {"id": 1}

    def test_fallback_uses_non_synthetic_columns(self):
        identity = build_primary_key(ROW, [], IdentityFallback.ALLOW)
        assert identity == {"id": 1, "name": "Ada", "age": 36}

    def test_warn_still_returns_identity(self):
        assert build_primary_key(ROW, [], IdentityFallback.WARN) == {"id": 1, "name": "Ada", "age": 36}

    def test_refuse(self):
        with pytest.raises(ValidationError, match="no primary key"):
            build_primary_key(ROW, [], IdentityFallback.REFUSE, table="users")


class TestCellEdits:
    """Upsert-by-id and revert detection."""

    def test_first_edit(self, ledger):
        change = _edit(ledger, "Augusta")

        assert change.id == CellKey("users", 0, "name")
        assert change.type == ChangeType.UPDATE
        assert change.primary_key == {"id": 1}
        assert change.changes["name"].old == "Ada"
        assert change.changes["name"].new == "Augusta"
        assert len(ledger) == 1

    def test_same_edit_twice_is_one_entry(self, ledger):
        _edit(ledger, "Augusta")
        _edit(ledger, "Augusta")
        assert len(ledger) == 1

    def test_later_edit_keeps_first_original(self, ledger):
        _edit(ledger, "Augusta")
        change = _edit(ledger, "Lovelace", old="Augusta")
        assert change.old_value == "Ada"
        assert change.new_value == "Lovelace"
        assert len(ledger) == 1

    def test_revert_removes_entry(self, ledger):
        _edit(ledger, "Augusta")
        assert _edit(ledger, "Ada", old="Augusta") is None
        assert len(ledger) == 0

    def test_revert_tolerates_string_coercion(self, ledger):
        _edit(ledger, "37", field="age")
        assert _edit(ledger, "36", field="age", old="37") is None
        assert len(ledger) == 0

    def test_none_does_not_match_string(self, ledger):
        row = {"id": 1, "note": None}
        change = ledger.stage_cell_edit("users", None, 0, "note", None, "None", row, ["id"])
        assert change is not None

    def test_revert_forgets_original(self, ledger):
        _edit(ledger, "Augusta")
        _edit(ledger, "Ada", old="Augusta")
        # A fresh first edit captures the value shown now
        change = _edit(ledger, "X", old="Shown")
        assert change.old_value == "Shown"

    def test_cells_are_independent(self, ledger):
        _edit(ledger, "Augusta")
        _edit(ledger, 37, field="age")
        _edit(ledger, "Grace", row_index=1)
        assert len(ledger) == 3
        assert ledger.edited_cells("users") == {(0, "name"), (0, "age"), (1, "name")}

    def test_edit_on_deleted_row_ignored(self, ledger):
        ledger.stage_delete("users", None, 0, ROW, ["id"])
        assert _edit(ledger, "Augusta") is None
        assert len(ledger) == 1

    def test_refuse_policy(self):
        ledger = ChangeLedger(IdentityFallback.REFUSE)
        with pytest.raises(ValidationError):
            _edit(ledger, "Augusta", pk=())
        assert len(ledger) == 0


class TestDeletes:
    """Row deletes."""

    def test_delete_removes_row_edits(self, ledger):
        _edit(ledger, "Augusta")
        _edit(ledger, 40, field="age")
        _edit(ledger, "Grace", row_index=1)

        change = ledger.stage_delete("users", None, 0, ROW, ["id"])

        assert change.id == RowKey("users", 0)
        assert change.type == ChangeType.DELETE
        assert change.primary_key == {"id": 1}
        assert ledger.edited_cells("users") == {(1, "name")}
        assert ledger.deleted_rows("users") == {0}

    def test_delete_twice_is_noop(self, ledger):
        first = ledger.stage_delete("users", None, 0, ROW, ["id"])
        second = ledger.stage_delete("users", None, 0, ROW, ["id"])
        assert second is first
        assert len(ledger) == 1


class TestInserts:
    """Staged inserts are individually addressable."""

    def test_inserts_get_random_ids(self, ledger):
        a = ledger.stage_insert("users", None, {"id": None, "name": None})
        b = ledger.stage_insert("users", None, {"id": None, "name": None})
        assert isinstance(a.id, InsertKey)
        assert a.id != b.id
        assert ledger.inserts("users") == [a, b]

    def test_update_insert(self, ledger):
        change = ledger.stage_insert("users", None, {"name": None})
        ledger.update_insert(change.id, "name", "New")
        assert ledger.get(change.id).new_row == {"name": "New"}

    def test_update_missing_insert(self, ledger):
        with pytest.raises(KeyError):
            ledger.update_insert(InsertKey("missing"), "name", "x")

    def test_delete_insert_never_stages_delete(self, ledger):
        change = ledger.stage_insert("users", None, {"name": "x"})
        assert ledger.delete_insert(change.id) is True
        assert len(ledger) == 0


class TestScopes:
    """Listing, snapshots and discards are per table."""

    def test_list_for_filters_table_and_schema(self, ledger):
        ledger.stage_insert("users", None, {})
        ledger.stage_insert("users", "other", {})
        ledger.stage_insert("orders", None, {})
        assert len(ledger.list_for("users")) == 1
        assert len(ledger.list_for("users", "other")) == 1

    def test_snapshot_is_a_copy(self, ledger):
        _edit(ledger, "Augusta")
        snapshot = ledger.snapshot("users")
        snapshot[0].changes["name"].new = "Mutated"
        assert ledger.get(CellKey("users", 0, "name")).changes["name"].new == "Augusta"

    def test_discard_positional_keeps_inserts(self, ledger):
        _edit(ledger, "Augusta")
        ledger.stage_delete("users", None, 1, {"id": 2}, ["id"])
        insert = ledger.stage_insert("users", None, {"name": "x"})

        removed = ledger.discard_positional("users")

        assert removed == 2
        assert ledger.list_for("users") == [insert]

    def test_discard_positional_forgets_originals(self, ledger):
        _edit(ledger, "Augusta")
        ledger.discard_positional("users")
        change = _edit(ledger, "B", old="Shown")
        assert change.old_value == "Shown"

    def test_discard(self, ledger):
        _edit(ledger, "Augusta")
        ledger.stage_insert("users", None, {})
        ledger.stage_insert("orders", None, {})
        assert ledger.discard("users") == 2
        assert len(ledger) == 1

    def test_remove_and_get(self, ledger):
        change = _edit(ledger, "Augusta")
        assert ledger.get(change.id) is change
        assert ledger.remove(change.id) is change
        assert ledger.remove(change.id) is None


class TestSettle:
    """Clearing committed changes against the live ledger."""

    def test_unchanged_entry_removed(self, ledger):
        change = _edit(ledger, "Augusta")
        [committed] = ledger.snapshot("users")
        assert ledger.settle(committed) is True
        assert change.id not in ledger

    def test_newer_primary_key_edit_is_rebased(self, ledger):
        _edit(ledger, 7, field="id")
        [committed] = ledger.snapshot("users")
        _edit(ledger, 9, field="id")

        assert ledger.settle(committed) is False

        change = ledger.get(CellKey("users", 0, "id"))
        assert change.old_value == 7
        assert change.primary_key == {"id": 7}

    def test_newer_insert_edit_dropped(self, ledger):
        insert = ledger.stage_insert("users", None, {"name": "x"})
        [committed] = ledger.snapshot("users")
        ledger.update_insert(insert.id, "name", "y")

        assert ledger.settle(committed) is True
        assert len(ledger) == 0

    def test_already_gone(self, ledger):
        _edit(ledger, "Augusta")
        [committed] = ledger.snapshot("users")
        ledger.discard("users")
        assert ledger.settle(committed) is False
