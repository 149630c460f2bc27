"""
Binlog reader for binsync

Adapts pymysqlreplication's BinLogStreamReader to the dispatcher: every row of
a row event becomes one RowChangeEvent with values ordered by the table's
columns, and the resumable position advances only at transaction commits.
"""

import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from pymysqlreplication import BinLogStreamReader
from pymysqlreplication import row_event
from pymysqlreplication.event import QueryEvent, RotateEvent, XidEvent
import structlog

from ..exceptions import ConnectionError, ReplicationError
from ..models.config import DatabaseConfig, MappingTable, ReplicationConfig
from ..models.events import ColumnSet, RowChangeEvent, InsertEvent, UpdateEvent, DeleteEvent
from ..models.position import BinlogPosition
from .database_service import DatabaseService
from .dispatcher import ChangeEventSink


ROW_EVENTS = (
    row_event.WriteRowsEvent,
    row_event.UpdateRowsEvent,
    row_event.DeleteRowsEvent
)


class BinlogReader:
    """Reads row changes from the source binlog and feeds them to a sink"""

    def __init__(self, source_db: DatabaseService, source_config: DatabaseConfig,
                 replication_config: ReplicationConfig, mapping_table: MappingTable,
                 stop_event: Optional[threading.Event] = None,
                 stream_factory: Callable[..., Any] = BinLogStreamReader):
        self.source_db = source_db
        self.source_config = source_config
        self.replication_config = replication_config
        self.mapping_table = mapping_table
        self.stop_event = stop_event or threading.Event()
        self.stream_factory = stream_factory
        self.logger = structlog.get_logger()

        self._sink: Optional[ChangeEventSink] = None
        self._stream = None
        self._stream_lock = threading.Lock()
        self._position: Optional[BinlogPosition] = None
        self._position_lock = threading.Lock()
        self._schemas: Dict[Tuple[str, str], ColumnSet] = {}
        self._stats = {'events_read': 0, 'rows_read': 0, 'rows_discarded': 0}

    def set_event_sink(self, sink: ChangeEventSink) -> None:
        self._sink = sink

    def default_position(self) -> BinlogPosition:
        """Where to start without a checkpoint: the current end of the source binlog"""
        try:
            return self.source_db.get_master_status()
        except ConnectionError as e:
            raise ReplicationError(f"Cannot determine starting binlog position: {e}")

    def current_position(self) -> Optional[BinlogPosition]:
        """Last position at a transaction boundary; safe to call from any thread"""
        with self._position_lock:
            return self._position

    def _set_position(self, position: BinlogPosition) -> None:
        with self._position_lock:
            self._position = position

    def start(self, resume_position: Optional[BinlogPosition] = None) -> None:
        """
        Open the stream and deliver events until the stop event is set

        Blocks the calling thread. The sink sees events strictly in binlog
        order, one at a time.

        Raises:
            ReplicationError: if the stream cannot be opened or breaks while running
        """
        if self._sink is None:
            raise ReplicationError("No event sink registered")

        start_position = resume_position or self.default_position()
        self._open_stream(start_position)
        try:
            self._read_events()
        finally:
            self._close_stream()

    def stop(self) -> None:
        """Request shutdown and unblock a pending read"""
        self.stop_event.set()
        self._close_stream()

    def _open_stream(self, position: BinlogPosition) -> None:
        include_tables = self.mapping_table.include_tables()
        only_schemas = sorted({schema for schema, _ in include_tables})
        only_tables = sorted({table for _, table in include_tables})

        kwargs = dict(
            connection_settings=self.source_config.to_replication_settings(),
            server_id=self.replication_config.server_id,
            log_file=position.name,
            log_pos=position.pos,
            resume_stream=True,
            blocking=self.replication_config.blocking,
            only_events=list(ROW_EVENTS) + [XidEvent, QueryEvent, RotateEvent],
            only_schemas=only_schemas,
            only_tables=only_tables
        )
        if self.replication_config.slave_heartbeat:
            kwargs['slave_heartbeat'] = self.replication_config.slave_heartbeat

        try:
            stream = self.stream_factory(**kwargs)
        except Exception as e:
            raise ReplicationError(f"Failed to create binlog stream at {position}: {e}")

        with self._stream_lock:
            self._stream = stream
        self._set_position(position)

        self.logger.info("Connected to binlog stream",
                         position=str(position),
                         server_id=self.replication_config.server_id,
                         only_schemas=only_schemas,
                         only_tables=only_tables)

    def _close_stream(self) -> None:
        with self._stream_lock:
            stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.close()
        except Exception as e:
            self.logger.debug("Error closing binlog stream (expected during shutdown)", error=str(e))

    def _read_events(self) -> None:
        with self._stream_lock:
            stream = self._stream
        if stream is None:
            raise ReplicationError("Binlog stream not connected")

        try:
            for binlog_event in stream:
                self._handle(stream, binlog_event)
                if self.stop_event.is_set():
                    self.logger.info("Shutdown requested, stopping binlog reader")
                    break
        except ReplicationError:
            raise
        except Exception as e:
            if self.stop_event.is_set():
                self.logger.info("Binlog stream closed during shutdown", error=str(e))
                return
            raise ReplicationError(f"Error reading binlog events: {e}")

        self.logger.info("Binlog reader finished",
                         position=str(self.current_position()), **self._stats)

    def _handle(self, stream, binlog_event) -> None:
        self._stats['events_read'] += 1

        if isinstance(binlog_event, RotateEvent):
            self._set_position(BinlogPosition(name=binlog_event.next_binlog, pos=binlog_event.position))
            self.logger.debug("Binlog rotated", position=str(self.current_position()))
        elif isinstance(binlog_event, XidEvent):
            self._commit(stream)
        elif isinstance(binlog_event, QueryEvent):
            # non-transactional engines commit with a COMMIT query instead of an XID
            if _query_text(binlog_event).upper() == "COMMIT":
                self._commit(stream)
        elif isinstance(binlog_event, ROW_EVENTS):
            for event in self.convert(binlog_event):
                self._sink.on_row_change(event)

    def _commit(self, stream) -> None:
        position = BinlogPosition(name=stream.log_file, pos=stream.log_pos)
        self._set_position(position)
        self._sink.on_position_sync(position)

    def convert(self, binlog_event) -> List[RowChangeEvent]:
        """Split a row event into one RowChangeEvent per row"""
        schema, table = binlog_event.schema, binlog_event.table
        rows = binlog_event.rows or []
        if not rows:
            return []
        columns = self._column_set(schema, table, rows[0])

        events = []
        for row in rows:
            self._stats['rows_read'] += 1
            try:
                events.append(self._convert_row(binlog_event, schema, table, columns, row))
            except ValueError:
                # the table may have changed since its columns were cached
                self._schemas.pop((schema, table), None)
                columns = self._column_set(schema, table, row)
                try:
                    events.append(self._convert_row(binlog_event, schema, table, columns, row))
                except ValueError as e:
                    self._stats['rows_discarded'] += 1
                    self.logger.error("Row does not match table columns, discarding",
                                      source_table=f"{schema}.{table}", error=str(e))
        return events

    def _convert_row(self, binlog_event, schema: str, table: str,
                     columns: ColumnSet, row: Dict[str, Any]) -> RowChangeEvent:
        if isinstance(binlog_event, row_event.UpdateRowsEvent):
            return UpdateEvent(
                schema=schema,
                table=table,
                columns=columns,
                before_row=_ordered_values(row["before_values"], columns),
                after_row=_ordered_values(row["after_values"], columns)
            )
        if isinstance(binlog_event, row_event.DeleteRowsEvent):
            return DeleteEvent(schema=schema, table=table, columns=columns,
                               row=_ordered_values(row["values"], columns))
        return InsertEvent(schema=schema, table=table, columns=columns,
                           row=_ordered_values(row["values"], columns))

    def _column_set(self, schema: str, table: str, sample_row: Dict[str, Any]) -> ColumnSet:
        key = (schema, table)
        if key in self._schemas:
            return self._schemas[key]

        try:
            columns = self.source_db.get_table_schema(schema, table)
        except ConnectionError as e:
            if self.mapping_table.resolve(schema, table) is not None:
                raise ReplicationError(f"Cannot read columns of mapped table {schema}.{table}: {e}")
            # unmapped tables are discarded by the sink, names from the event are enough
            return ColumnSet(names=tuple(sample_row.get("values") or sample_row.get("after_values")))

        self._schemas[key] = columns
        self.logger.debug("Cached table columns",
                          source_table=f"{schema}.{table}",
                          columns=list(columns.names),
                          primary_key=columns.primary_key_names)
        return columns

    def get_stats(self) -> Dict[str, Any]:
        return dict(self._stats)


def _ordered_values(values: Dict[str, Any], columns: ColumnSet) -> List[Any]:
    """Row values in table column order

    Without full row metadata the binlog carries placeholder column names, so
    values are matched by position when the names are not all known.
    """
    if all(name in values for name in columns.names):
        return [values[name] for name in columns.names]
    if len(values) != len(columns):
        raise ValueError(f"Row has {len(values)} values for {len(columns)} columns")
    return list(values.values())


def _query_text(event) -> str:
    query = getattr(event, 'query', '') or ''
    if isinstance(query, bytes):
        query = query.decode('utf-8', errors='replace')
    return query.strip()
