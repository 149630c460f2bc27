"""
Database service for binsync
"""

import threading
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence

import pymysql
import pymysql.cursors
import pymysql.err
import structlog

from ..exceptions import ConnectionError
from ..models.config import DatabaseConfig
from ..models.events import ColumnSet
from ..models.position import BinlogPosition
from ..utils.retry import RetryConfig, retry


_CONNECTION_OPTIONS = {
    'connect_timeout': 10,
    'read_timeout': 60,
    'write_timeout': 60,
    'use_unicode': True,
    'init_command': "SET SESSION wait_timeout=28800, interactive_timeout=28800"
}

_MASTER_STATUS_QUERIES = ("SHOW MASTER STATUS", "SHOW BINARY LOG STATUS")


class DatabaseService:
    """Owns the connection to one MySQL/MariaDB server and runs statements on it"""

    def __init__(self, config: DatabaseConfig, name: str = "default",
                 retry_config: Optional[RetryConfig] = None):
        self.config = config
        self.name = name
        self.retry_config = retry_config or RetryConfig()
        self._connection: Optional[pymysql.connections.Connection] = None
        self._lock = threading.RLock()
        self.logger = structlog.get_logger()

    def _connection_params(self, **overrides) -> dict:
        params = self.config.to_connection_params()
        params.update(_CONNECTION_OPTIONS)
        params.update(overrides)
        return params

    def _open(self, **overrides) -> pymysql.connections.Connection:
        try:
            return pymysql.connect(**self._connection_params(**overrides))
        except pymysql.err.MySQLError as e:
            raise ConnectionError(f"Failed to connect to {self.name} database at {self.config.address}: {e}")

    def connect(self) -> pymysql.connections.Connection:
        """Open the connection, retrying with backoff on connection failures"""
        with self._lock:
            if self._connection is not None and self._connection.open:
                return self._connection
            self._connection = retry(self.retry_config)(self._open)()
            self.logger.info("Database connection established",
                             connection_name=self.name, address=self.config.address)
            return self._connection

    def get_connection(self) -> pymysql.connections.Connection:
        """Get the live connection, reconnecting if it was lost"""
        with self._lock:
            if self._connection is None or not self._connection.open:
                if self._connection is not None:
                    self.logger.warning("Connection lost, reconnecting", connection_name=self.name)
                self._connection = None
                return self.connect()
            return self._connection

    @contextmanager
    def get_cursor(self):
        """Get database cursor with automatic cleanup"""
        with self._lock:
            connection = self.get_connection()
            cursor = connection.cursor()
            try:
                yield cursor
            finally:
                try:
                    cursor.close()
                except pymysql.err.MySQLError as e:
                    self.logger.debug("Error closing cursor", connection_name=self.name, error=str(e))

    def execute_query(self, sql: str, values: Optional[Sequence[Any]] = None) -> List[tuple]:
        """Execute query and return all rows"""
        with self.get_cursor() as cursor:
            cursor.execute(sql, values)
            return list(cursor.fetchall())

    def execute_update(self, sql: str, values: Optional[Sequence[Any]] = None) -> int:
        """Execute one write statement in its own transaction and return affected rows"""
        with self._lock:
            connection = self.get_connection()
            try:
                with self.get_cursor() as cursor:
                    affected = cursor.execute(sql, values)
                connection.commit()
                return affected
            except Exception:
                self._rollback(connection)
                raise

    def _rollback(self, connection) -> None:
        try:
            connection.rollback()
        except pymysql.err.MySQLError as e:
            self.logger.debug("Rollback failed", connection_name=self.name, error=str(e))

    def count_rows(self, table_name: str) -> int:
        """Row count of a qualified table"""
        rows = self.execute_query(f"SELECT COUNT(1) FROM {table_name}")
        return int(rows[0][0]) if rows else 0

    def get_table_columns(self, database: str, table: str) -> List[str]:
        """Column names of a table in ordinal order"""
        return list(self.get_table_schema(database, table).names)

    def get_table_schema(self, database: str, table: str) -> ColumnSet:
        """Column names and primary key columns of a table"""
        try:
            rows = self.execute_query(f"SHOW COLUMNS FROM {database}.{table}")
        except pymysql.err.MySQLError as e:
            raise ConnectionError(f"Error getting columns for table '{database}.{table}': {e}")

        names = []
        primary_key = []
        for row in rows:
            field, key = row[0], row[3]
            if field is None:
                raise ConnectionError(f"Invalid column name for table '{database}.{table}'")
            names.append(field)
            if key == 'PRI':
                primary_key.append(field)

        if not names:
            raise ConnectionError(f"Table '{database}.{table}' has no columns")
        return ColumnSet.from_names(names, primary_key)

    def stream_rows(self, sql: str, fetch_size: int = 100) -> Iterator[tuple]:
        """
        Stream the result of a query without buffering it in memory

        Uses a dedicated unbuffered connection so the service's own connection
        stays usable while the stream is open.
        """
        connection = self._open(cursorclass=pymysql.cursors.SSCursor)
        try:
            with connection.cursor() as cursor:
                cursor.execute(sql)
                while True:
                    rows = cursor.fetchmany(fetch_size)
                    if not rows:
                        break
                    for row in rows:
                        yield row
        finally:
            try:
                connection.close()
            except pymysql.err.MySQLError as e:
                self.logger.debug("Error closing streaming connection", connection_name=self.name, error=str(e))

    def get_master_status(self) -> BinlogPosition:
        """Current end of the server's binlog"""
        last_error = None
        for query in _MASTER_STATUS_QUERIES:
            try:
                rows = self.execute_query(query)
            except pymysql.err.ProgrammingError as e:
                # MySQL 8.4 dropped SHOW MASTER STATUS
                last_error = e
                continue
            except pymysql.err.MySQLError as e:
                raise ConnectionError(f"Error getting master status: {e}")

            if not rows:
                raise ConnectionError("Could not get master status, is binary logging enabled?")
            return BinlogPosition(name=rows[0][0], pos=int(rows[0][1]))

        raise ConnectionError(f"Error getting master status: {last_error}")

    def test_connection(self) -> bool:
        """Test database connection"""
        try:
            rows = self.execute_query("SELECT 1")
            return bool(rows) and rows[0][0] == 1
        except (ConnectionError, pymysql.err.MySQLError) as e:
            self.logger.error("Connection test failed", connection_name=self.name, error=str(e))
            return False

    def close(self) -> None:
        """Close database connection"""
        with self._lock:
            if self._connection is None:
                return
            try:
                if self._connection.open:
                    self._connection.close()
            except pymysql.err.MySQLError as e:
                self.logger.debug("Error during close (expected)", connection_name=self.name, error=str(e))
            finally:
                self._connection = None
            self.logger.info("Database connection closed", connection_name=self.name)

