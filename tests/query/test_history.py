"""Tests for the query log."""

from tablestage.query.history import QueryHistory, QueryHistoryEntry, format_query_for_log


class TestFormatQueryForLog:
    """Parameter inlining for display."""

    def test_question_marks_consumed_in_order(self):
        sql = "UPDATE `t` SET `a` = ? WHERE `id` = ? LIMIT 1"
        assert format_query_for_log(sql, ["x", 5]) == "UPDATE `t` SET `a` = 'x' WHERE `id` = 5 LIMIT 1"

    def test_numbered_placeholders(self):
        sql = 'SELECT * FROM "t" WHERE "a" = $2 AND "b" = $1'
        assert format_query_for_log(sql, ["one", None]) == (
            'SELECT * FROM "t" WHERE "a" = NULL AND "b" = \'one\''
        )

    def test_values(self):
        assert format_query_for_log("?, ?, ?", [True, 1.5, "O'Brien"]) == "TRUE, 1.5, 'O''Brien'"

    def test_no_params(self):
        assert format_query_for_log("BEGIN", None) == "BEGIN"

    def test_missing_param_left_alone(self):
        assert format_query_for_log("$1, $3", ["a"]) == "'a', $3"


class TestQueryHistory:
    """Bounded, newest-first history."""

    def test_newest_first(self):
        history = QueryHistory(limit=10)
        history.record("SELECT 1")
        history.record("SELECT 2")
        assert [e.query for e in history.entries] == ["SELECT 2", "SELECT 1"]

    def test_bounded(self):
        history = QueryHistory(limit=3)
        for i in range(5):
            history.record(f"SELECT {i}")
        assert len(history) == 3
        assert history.entries[-1].query == "SELECT 2"

    def test_default_limit_from_settings(self):
        assert QueryHistory().limit == 500

    def test_clear_keeps_favorites(self):
        history = QueryHistory(limit=10)
        keep = history.record("SELECT 1")
        history.record("SELECT 2")

        assert history.toggle_favorite(keep.id) is True
        history.clear()

        assert [e.id for e in history.entries] == [keep.id]
        assert history.favorites() == history.entries

    def test_toggle_unknown(self):
        assert QueryHistory(limit=1).toggle_favorite("nope") is False

    def test_record_fields(self):
        history = QueryHistory(limit=1)
        entry = history.record("DELETE FROM t WHERE id = ?", [3], 1.2, row_count=1, error=None)
        assert isinstance(entry, QueryHistoryEntry)
        assert entry.query == "DELETE FROM t WHERE id = 3"
        assert entry.row_count == 1
        assert entry.is_favorite is False
