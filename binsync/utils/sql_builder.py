"""
SQL builder utilities for binsync
"""

from typing import Any, List, Sequence, Tuple

from ..models.events import ColumnSet


class SQLBuilder:
    """Builds positional-parameter statements for a target table

    ``placeholder`` is the driver's positional marker: ``%s`` for pymysql,
    ``?`` for qmark-style drivers.
    """

    def __init__(self, placeholder: str = "%s"):
        self.placeholder = placeholder

    @staticmethod
    def qualified_name(database: str, table: str) -> str:
        return f"{database}.{table}"

    def _group(self, size: int) -> str:
        return f"({', '.join([self.placeholder] * size)})"

    def build_insert_sql(self, table_name: str, columns: Sequence[str],
                         row: Sequence[Any]) -> Tuple[str, List[Any]]:
        """
        Build single-row INSERT statement

        Args:
            table_name: Qualified target table name
            columns: Column names in table order
            row: Values aligned with columns

        Returns:
            Tuple of (SQL statement, values list)
        """
        if not columns:
            raise ValueError("Columns cannot be empty")
        if len(row) != len(columns):
            raise ValueError(f"Row has {len(row)} values for {len(columns)} columns")

        sql = f"INSERT INTO {table_name} ({', '.join(columns)}) VALUES {self._group(len(columns))}"
        return sql, list(row)

    def build_batch_insert_sql(self, table_name: str, columns: Sequence[str],
                               rows: Sequence[Sequence[Any]]) -> Tuple[str, List[Any]]:
        """
        Build one multi-row INSERT statement with a placeholder group per row

        Returns:
            Tuple of (SQL statement, flattened values list)
        """
        if not columns:
            raise ValueError("Columns cannot be empty")
        if not rows:
            raise ValueError("Rows cannot be empty")

        values: List[Any] = []
        for row in rows:
            if len(row) != len(columns):
                raise ValueError(f"Row has {len(row)} values for {len(columns)} columns")
            values.extend(row)

        groups = ", ".join([self._group(len(columns))] * len(rows))
        sql = f"INSERT INTO {table_name} ({', '.join(columns)}) VALUES {groups}"
        return sql, values

    def build_update_sql(self, table_name: str, columns: ColumnSet,
                         before_row: Sequence[Any], after_row: Sequence[Any]) -> Tuple[str, List[Any]]:
        """
        Build UPDATE statement setting every column from the new row, keyed by
        the old row's primary key values

        Raises:
            ValueError: if the table has no primary key
        """
        if not columns.has_primary_key:
            raise ValueError(f"Table {table_name} has no primary key")

        set_parts = [f"{name} = {self.placeholder}" for name in columns.names]
        where_parts = [f"{name} = {self.placeholder}" for name in columns.primary_key_names]

        sql = f"UPDATE {table_name} SET {', '.join(set_parts)} WHERE {' AND '.join(where_parts)}"
        values = list(after_row) + columns.key_values(before_row)
        return sql, values

    def build_delete_sql(self, table_name: str, columns: ColumnSet,
                         row: Sequence[Any]) -> Tuple[str, List[Any]]:
        """
        Build DELETE statement keyed by the row's primary key values

        Raises:
            ValueError: if the table has no primary key
        """
        if not columns.has_primary_key:
            raise ValueError(f"Table {table_name} has no primary key")

        where_parts = [f"{name} = {self.placeholder}" for name in columns.primary_key_names]
        sql = f"DELETE FROM {table_name} WHERE {' AND '.join(where_parts)}"
        return sql, columns.key_values(row)

    @staticmethod
    def build_select_sql(table_name: str, columns: Sequence[str]) -> str:
        if not columns:
            raise ValueError("Columns cannot be empty")
        return f"SELECT {', '.join(columns)} FROM {table_name}"

    @staticmethod
    def build_count_sql(table_name: str) -> str:
        return f"SELECT COUNT(1) FROM {table_name}"
