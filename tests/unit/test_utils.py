"""
Unit tests for utilities
"""

import pytest
from unittest.mock import Mock, patch

from binsync.exceptions import ConnectionError, ConfigurationError
from binsync.models.events import ColumnSet
from binsync.utils.retry import RetryConfig, retry, retry_on_connection_error
from binsync.utils.sql_builder import SQLBuilder


class TestSQLBuilder:
    """Test SQLBuilder"""

    columns = ColumnSet.from_names(["id", "amount"], ["id"])

    def test_build_insert_sql(self):
        sql, values = SQLBuilder().build_insert_sql("targetDB.orders", ["id", "amount"], [7, 42])

        assert sql == "INSERT INTO targetDB.orders (id, amount) VALUES (%s, %s)"
        assert values == [7, 42]

    def test_build_insert_sql_qmark(self):
        sql, values = SQLBuilder(placeholder="?").build_insert_sql("targetDB.orders", ["id", "amount"], [7, 42])

        assert sql == "INSERT INTO targetDB.orders (id, amount) VALUES (?, ?)"
        assert values == [7, 42]

    def test_build_insert_sql_width_mismatch(self):
        with pytest.raises(ValueError, match="Row has 1 values for 2 columns"):
            SQLBuilder().build_insert_sql("t", ["id", "amount"], [7])

    def test_build_batch_insert_sql(self):
        sql, values = SQLBuilder().build_batch_insert_sql(
            "targetDB.orders", ["id", "amount"], [[1, 10], [2, 20], [3, 30]])

        assert sql == ("INSERT INTO targetDB.orders (id, amount) VALUES "
                       "(%s, %s), (%s, %s), (%s, %s)")
        assert values == [1, 10, 2, 20, 3, 30]

    def test_build_batch_insert_sql_empty(self):
        with pytest.raises(ValueError, match="Rows cannot be empty"):
            SQLBuilder().build_batch_insert_sql("t", ["id"], [])

    def test_build_update_sql(self):
        sql, values = SQLBuilder(placeholder="?").build_update_sql(
            "targetDB.orders", self.columns, [7, 42], [7, 99])

        assert sql == "UPDATE targetDB.orders SET id = ?, amount = ? WHERE id = ?"
        assert values == [7, 99, 7]

    def test_build_update_sql_key_from_before_row(self):
        sql, values = SQLBuilder().build_update_sql("t", self.columns, [7, 42], [8, 42])

        assert values == [8, 42, 7]

    def test_build_update_sql_composite_key(self):
        columns = ColumnSet.from_names(["tenant", "id", "amount"], ["tenant", "id"])

        sql, values = SQLBuilder().build_update_sql("t", columns, ["a", 1, 5], ["a", 1, 6])

        assert sql == "UPDATE t SET tenant = %s, id = %s, amount = %s WHERE tenant = %s AND id = %s"
        assert values == ["a", 1, 6, "a", 1]

    def test_build_update_sql_without_primary_key(self):
        with pytest.raises(ValueError, match="has no primary key"):
            SQLBuilder().build_update_sql("t", ColumnSet.from_names(["a"]), [1], [2])

    def test_build_delete_sql(self):
        sql, values = SQLBuilder(placeholder="?").build_delete_sql("targetDB.orders", self.columns, [7, 99])

        assert sql == "DELETE FROM targetDB.orders WHERE id = ?"
        assert values == [7]

    def test_build_delete_sql_without_primary_key(self):
        with pytest.raises(ValueError, match="has no primary key"):
            SQLBuilder().build_delete_sql("t", ColumnSet.from_names(["a"]), [1])

    def test_build_select_and_count_sql(self):
        assert SQLBuilder.build_select_sql("shop.orders", ["id", "amount"]) == "SELECT id, amount FROM shop.orders"
        assert SQLBuilder.build_count_sql("warehouse.orders") == "SELECT COUNT(1) FROM warehouse.orders"
        assert SQLBuilder.qualified_name("warehouse", "orders") == "warehouse.orders"


class TestRetry:
    """Test retry decorator"""

    @patch('binsync.utils.retry.time.sleep')
    def test_retry_until_success(self, mock_sleep):
        func = Mock(side_effect=[ConnectionError("down"), ConnectionError("down"), "ok"])
        func.__name__ = "func"

        result = retry(RetryConfig(max_attempts=3, base_delay=0.1, jitter=False))(func)()

        assert result == "ok"
        assert func.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.1, 0.2]

    @patch('binsync.utils.retry.time.sleep')
    def test_retry_exhausted(self, mock_sleep):
        func = Mock(side_effect=ConnectionError("down"))
        func.__name__ = "func"

        with pytest.raises(ConnectionError, match="down"):
            retry_on_connection_error(max_attempts=2, base_delay=0.01)(func)()

        assert func.call_count == 2
        assert mock_sleep.call_count == 1

    @patch('binsync.utils.retry.time.sleep')
    def test_non_retryable_exception(self, mock_sleep):
        func = Mock(side_effect=ConfigurationError("bad"))
        func.__name__ = "func"

        with pytest.raises(ConfigurationError):
            retry(RetryConfig(max_attempts=5))(func)()

        assert func.call_count == 1
        mock_sleep.assert_not_called()

    def test_delay_is_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)

        assert config.delay_for(0) == 1.0
        assert config.delay_for(2) == 4.0
        assert config.delay_for(10) == 5.0

    def test_jitter_stays_below_delay(self):
        config = RetryConfig(base_delay=2.0, jitter=True)

        for _ in range(20):
            assert 1.0 <= config.delay_for(0) <= 2.0
