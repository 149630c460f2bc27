"""
Unit tests for the binlog reader
"""

import threading

import pytest
from unittest.mock import Mock

from pymysqlreplication import row_event
from pymysqlreplication.event import QueryEvent, RotateEvent, XidEvent

from binsync.models.config import (
    DatabaseConfig, ReplicationConfig, DatabaseMapping, TableMapping, MappingTable
)
from binsync.models.events import ColumnSet, InsertEvent, UpdateEvent, DeleteEvent
from binsync.models.position import BinlogPosition
from binsync.services.binlog_reader import BinlogReader
from binsync.exceptions import ConnectionError, ReplicationError


ORDERS = ColumnSet.from_names(["id", "amount"], ["id"])


class FakeStream:
    """Iterable stand-in for BinLogStreamReader that moves log_file/log_pos along"""

    def __init__(self, entries, error=None):
        self.entries = entries
        self.error = error
        self.log_file = None
        self.log_pos = None
        self.closed = False

    def __iter__(self):
        for event, log_file, log_pos in self.entries:
            self.log_file, self.log_pos = log_file, log_pos
            yield event
        if self.error is not None:
            raise self.error

    def close(self):
        self.closed = True


def rows_event(cls, table, rows, schema="sourceDB"):
    event = Mock(spec=cls)
    event.schema = schema
    event.table = table
    event.rows = rows
    return event


def xid_event():
    return Mock(spec=XidEvent)


def query_event(query):
    event = Mock(spec=QueryEvent)
    event.query = query
    return event


def rotate_event(next_binlog, position):
    event = Mock(spec=RotateEvent)
    event.next_binlog = next_binlog
    event.position = position
    return event


@pytest.fixture
def source_db():
    source = Mock()
    source.get_table_schema.return_value = ORDERS
    source.get_master_status.return_value = BinlogPosition("mysql-bin.000009", 120)
    return source


@pytest.fixture
def mapping_table():
    return MappingTable([DatabaseMapping(
        source_database="sourceDB",
        target_database="targetDB",
        tables=[TableMapping(source_table="orders", target_table="orders"),
                TableMapping(source_table="items", target_table="items")]
    )])


def make_reader(source_db, mapping_table, stream, replication_config=None):
    factory = Mock(return_value=stream)
    reader = BinlogReader(
        source_db=source_db,
        source_config=DatabaseConfig(host="src", user="repl", password="pw"),
        replication_config=replication_config or ReplicationConfig(server_id=7),
        mapping_table=mapping_table,
        stop_event=threading.Event(),
        stream_factory=factory
    )
    sink = Mock()
    reader.set_event_sink(sink)
    return reader, sink, factory


class TestBinlogReader:
    """Test BinlogReader"""

    def test_stream_settings(self, source_db, mapping_table):
        reader, _, factory = make_reader(source_db, mapping_table, FakeStream([]))

        reader.start(BinlogPosition("mysql-bin.000003", 1547))

        kwargs = factory.call_args.kwargs
        assert kwargs['connection_settings']['host'] == "src"
        assert kwargs['server_id'] == 7
        assert kwargs['log_file'] == "mysql-bin.000003"
        assert kwargs['log_pos'] == 1547
        assert kwargs['resume_stream'] is True
        assert kwargs['blocking'] is True
        assert kwargs['only_schemas'] == ["sourceDB"]
        assert kwargs['only_tables'] == ["items", "orders"]
        assert XidEvent in kwargs['only_events']
        assert row_event.WriteRowsEvent in kwargs['only_events']
        assert 'slave_heartbeat' not in kwargs

    def test_heartbeat_passed_when_configured(self, source_db, mapping_table):
        reader, _, factory = make_reader(source_db, mapping_table, FakeStream([]),
                                         ReplicationConfig(server_id=7, slave_heartbeat=5))

        reader.start(BinlogPosition("mysql-bin.000003", 4))

        assert factory.call_args.kwargs['slave_heartbeat'] == 5

    def test_default_position_without_checkpoint(self, source_db, mapping_table):
        reader, _, factory = make_reader(source_db, mapping_table, FakeStream([]))

        reader.start()

        assert factory.call_args.kwargs['log_file'] == "mysql-bin.000009"
        assert factory.call_args.kwargs['log_pos'] == 120

    def test_default_position_failure(self, source_db, mapping_table):
        source_db.get_master_status.side_effect = ConnectionError("binlog disabled")
        reader, _, _ = make_reader(source_db, mapping_table, FakeStream([]))

        with pytest.raises(ReplicationError, match="Cannot determine starting binlog position"):
            reader.start()

    def test_requires_sink(self, source_db, mapping_table):
        reader = BinlogReader(source_db, DatabaseConfig(host="src", user="repl"), ReplicationConfig(),
                              mapping_table, stream_factory=Mock())

        with pytest.raises(ReplicationError, match="No event sink registered"):
            reader.start(BinlogPosition("mysql-bin.000001", 4))

    def test_stream_creation_failure(self, source_db, mapping_table):
        reader, _, factory = make_reader(source_db, mapping_table, None)
        factory.side_effect = Exception("Access denied")

        with pytest.raises(ReplicationError, match="Failed to create binlog stream"):
            reader.start(BinlogPosition("mysql-bin.000001", 4))

    def test_delivers_row_events_in_order(self, source_db, mapping_table):
        stream = FakeStream([
            (rows_event(row_event.WriteRowsEvent, "orders",
                        [{"values": {"id": 7, "amount": 42}}, {"values": {"id": 8, "amount": 1}}]),
             "mysql-bin.000003", 300),
            (rows_event(row_event.UpdateRowsEvent, "orders",
                        [{"before_values": {"id": 7, "amount": 42}, "after_values": {"id": 7, "amount": 99}}]),
             "mysql-bin.000003", 400),
            (rows_event(row_event.DeleteRowsEvent, "orders", [{"values": {"id": 7, "amount": 99}}]),
             "mysql-bin.000003", 500),
        ])
        reader, sink, _ = make_reader(source_db, mapping_table, stream)

        reader.start(BinlogPosition("mysql-bin.000003", 4))

        events = [c.args[0] for c in sink.on_row_change.call_args_list]
        assert [type(e) for e in events] == [InsertEvent, InsertEvent, UpdateEvent, DeleteEvent]
        assert events[0].row == [7, 42]
        assert events[1].row == [8, 1]
        assert events[2].before_row == [7, 42]
        assert events[2].after_row == [7, 99]
        assert events[3].row == [7, 99]
        assert events[0].columns is ORDERS
        assert stream.closed
        source_db.get_table_schema.assert_called_once_with("sourceDB", "orders")

    def test_values_follow_column_order(self, source_db, mapping_table):
        binlog_event = rows_event(row_event.WriteRowsEvent, "orders", [{"values": {"amount": 42, "id": 7}}])
        reader, _, _ = make_reader(source_db, mapping_table, FakeStream([]))

        events = reader.convert(binlog_event)

        assert events[0].row == [7, 42]

    def test_placeholder_column_names_match_by_position(self, source_db, mapping_table):
        binlog_event = rows_event(row_event.WriteRowsEvent, "orders",
                                  [{"values": {"UNKNOWN_COL0": 7, "UNKNOWN_COL1": 42}}])
        reader, _, _ = make_reader(source_db, mapping_table, FakeStream([]))

        events = reader.convert(binlog_event)

        assert events[0].row == [7, 42]

    def test_reloads_columns_after_table_change(self, source_db, mapping_table):
        widened = ColumnSet.from_names(["id", "amount", "note"], ["id"])
        source_db.get_table_schema.side_effect = [ORDERS, widened]
        reader, _, _ = make_reader(source_db, mapping_table, FakeStream([]))

        reader.convert(rows_event(row_event.WriteRowsEvent, "orders", [{"values": {"id": 1, "amount": 2}}]))
        events = reader.convert(rows_event(row_event.WriteRowsEvent, "orders",
                                           [{"values": {"UNKNOWN_COL0": 3, "UNKNOWN_COL1": 4,
                                                        "UNKNOWN_COL2": "x"}}]))

        assert events[0].columns is widened
        assert events[0].row == [3, 4, "x"]

    def test_discards_row_that_never_matches(self, source_db, mapping_table):
        reader, _, _ = make_reader(source_db, mapping_table, FakeStream([]))

        events = reader.convert(rows_event(row_event.WriteRowsEvent, "orders",
                                           [{"values": {"UNKNOWN_COL0": 3}},
                                            {"values": {"id": 4, "amount": 5}}]))

        assert [e.row for e in events] == [[4, 5]]
        assert reader.get_stats()['rows_discarded'] == 1

    def test_empty_rows_event(self, source_db, mapping_table):
        reader, _, _ = make_reader(source_db, mapping_table, FakeStream([]))

        assert reader.convert(rows_event(row_event.WriteRowsEvent, "orders", [])) == []
        source_db.get_table_schema.assert_not_called()

    def test_metadata_failure_for_mapped_table_is_fatal(self, source_db, mapping_table):
        source_db.get_table_schema.side_effect = ConnectionError("lost connection")
        stream = FakeStream([
            (rows_event(row_event.WriteRowsEvent, "orders", [{"values": {"id": 7, "amount": 42}}]),
             "mysql-bin.000003", 300),
        ])
        reader, _, _ = make_reader(source_db, mapping_table, stream)

        with pytest.raises(ReplicationError, match="Cannot read columns of mapped table sourceDB.orders"):
            reader.start(BinlogPosition("mysql-bin.000003", 4))
        assert stream.closed

    def test_metadata_failure_for_unmapped_table_uses_event_names(self, source_db, mapping_table):
        source_db.get_table_schema.side_effect = ConnectionError("no such table")
        reader, _, _ = make_reader(source_db, mapping_table, FakeStream([]))

        events = reader.convert(rows_event(row_event.WriteRowsEvent, "invoices",
                                           [{"values": {"id": 1, "total": 9}}]))

        assert events[0].columns.names == ("id", "total")
        assert not events[0].columns.has_primary_key

    def test_position_advances_at_commit(self, source_db, mapping_table):
        positions = []
        stream = FakeStream([
            (rows_event(row_event.WriteRowsEvent, "orders", [{"values": {"id": 7, "amount": 42}}]),
             "mysql-bin.000003", 300),
            (xid_event(), "mysql-bin.000003", 331),
            (rows_event(row_event.WriteRowsEvent, "orders", [{"values": {"id": 8, "amount": 43}}]),
             "mysql-bin.000003", 500),
        ])
        reader, sink, _ = make_reader(source_db, mapping_table, stream)
        sink.on_row_change.side_effect = lambda event: positions.append(reader.current_position())

        reader.start(BinlogPosition("mysql-bin.000003", 4))

        assert positions == [BinlogPosition("mysql-bin.000003", 4), BinlogPosition("mysql-bin.000003", 331)]
        sink.on_position_sync.assert_called_once_with(BinlogPosition("mysql-bin.000003", 331))
        assert reader.current_position() == BinlogPosition("mysql-bin.000003", 331)

    def test_commit_query_advances_position(self, source_db, mapping_table):
        stream = FakeStream([
            (query_event("BEGIN"), "mysql-bin.000003", 200),
            (query_event(b"COMMIT"), "mysql-bin.000003", 260),
        ])
        reader, sink, _ = make_reader(source_db, mapping_table, stream)

        reader.start(BinlogPosition("mysql-bin.000003", 4))

        sink.on_position_sync.assert_called_once_with(BinlogPosition("mysql-bin.000003", 260))

    def test_rotate_moves_to_next_file(self, source_db, mapping_table):
        stream = FakeStream([(rotate_event("mysql-bin.000004", 4), "mysql-bin.000003", 900)])
        reader, sink, _ = make_reader(source_db, mapping_table, stream)

        reader.start(BinlogPosition("mysql-bin.000003", 4))

        assert reader.current_position() == BinlogPosition("mysql-bin.000004", 4)
        sink.on_position_sync.assert_not_called()

    def test_stream_error_is_fatal(self, source_db, mapping_table):
        stream = FakeStream([], error=OSError("Lost connection to MySQL server"))
        reader, _, _ = make_reader(source_db, mapping_table, stream)

        with pytest.raises(ReplicationError, match="Error reading binlog events"):
            reader.start(BinlogPosition("mysql-bin.000003", 4))

    def test_stream_error_after_stop_is_quiet(self, source_db, mapping_table):
        stream = FakeStream([], error=OSError("Bad file descriptor"))
        reader, _, _ = make_reader(source_db, mapping_table, stream)
        reader.stop_event.set()

        reader.start(BinlogPosition("mysql-bin.000003", 4))

    def test_stop_from_sink(self, source_db, mapping_table):
        stream = FakeStream([
            (rows_event(row_event.WriteRowsEvent, "orders", [{"values": {"id": 7, "amount": 42}}]),
             "mysql-bin.000003", 300),
            (rows_event(row_event.WriteRowsEvent, "orders", [{"values": {"id": 8, "amount": 43}}]),
             "mysql-bin.000003", 400),
        ])
        reader, sink, _ = make_reader(source_db, mapping_table, stream)
        sink.on_row_change.side_effect = lambda event: reader.stop()

        reader.start(BinlogPosition("mysql-bin.000003", 4))

        assert sink.on_row_change.call_count == 1
        assert stream.closed
        assert reader.stop_event.is_set()
