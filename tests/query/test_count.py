"""Tests for estimated vs exact row counting."""

import pytest

from tablestage.core.errors import QueryError, StaleResultDiscard
from tablestage.query.count import CountEstimator
from tablestage.query.models import FilterOperator, TableFilter


@pytest.fixture
def estimator(fake_executor, mysql):
    return CountEstimator(fake_executor, "s1", mysql, threshold=500_000)


class TestCountEstimator:
    """Threshold-driven choice between estimate and COUNT(*)."""

    async def test_large_estimate_is_kept(self, estimator, fake_executor):
        """Above the threshold no COUNT(*) is dispatched."""
        fake_executor.estimate = 600_000

        count = await estimator.count("t", None, [])

        assert count.total_rows == 600_000
        assert count.is_estimated is True
        assert fake_executor.count_queries() == 0

    async def test_small_estimate_triggers_exact_count(self, estimator, fake_executor):
        fake_executor.estimate = 400_000
        fake_executor.count = 400_123

        count = await estimator.count("t", None, [])

        assert count.total_rows == 400_123
        assert count.is_estimated is False
        assert fake_executor.count_queries() == 1

    async def test_threshold_is_inclusive(self, estimator, fake_executor):
        fake_executor.estimate = 500_000
        count = await estimator.count("t", None, [])
        assert count.is_estimated is False

    async def test_filters_always_count_exactly(self, estimator, fake_executor):
        fake_executor.estimate = 10_000_000
        fake_executor.count = 7
        filters = [TableFilter(id="1", column="a", operator=FilterOperator.EQUALS, value="1")]

        count = await estimator.count("t", None, filters)

        assert count.total_rows == 7
        assert count.is_estimated is False
        assert fake_executor.estimate_calls == 0
        assert fake_executor.calls[-1] == ("SELECT COUNT(*) AS count FROM `t` WHERE `a` = ?", ["1"])

    async def test_disabled_filters_use_estimate(self, estimator, fake_executor):
        fake_executor.estimate = 900_000
        filters = [TableFilter(id="1", enabled=False, column="a", value="1")]

        count = await estimator.count("t", None, filters)

        assert count.is_estimated is True

    async def test_failed_estimate_falls_back_to_exact(self, estimator, fake_executor):
        fake_executor.estimate_error = "no statistics"
        fake_executor.count = 12

        count = await estimator.count("t", None, [])

        assert count.total_rows == 12
        assert count.is_estimated is False

    async def test_failed_exact_count_raises(self, estimator, fake_executor):
        fake_executor.fail_on["COUNT(*)"] = "timeout"

        with pytest.raises(QueryError, match="timeout") as exc_info:
            await estimator.exact("t", None, [])
        assert exc_info.value.sql.startswith("SELECT COUNT(*)")

    async def test_checkpoint_stops_before_query(self, estimator, fake_executor):
        def stale():
            raise StaleResultDiscard(1)

        with pytest.raises(StaleResultDiscard):
            await estimator.exact("t", None, [], checkpoint=stale)
        assert fake_executor.calls == []

    def test_threshold_defaults_to_settings(self, fake_executor, mysql):
        assert CountEstimator(fake_executor, "s1", mysql).threshold == 500_000
