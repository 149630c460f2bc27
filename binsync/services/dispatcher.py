"""
Change event dispatcher for binsync

Turns each decoded row change into exactly one statement against the target.
Events are applied synchronously in delivery order; a failed statement is
logged and the stream moves on.
"""

import threading
import time
from typing import Any, Dict, Optional, Protocol

import structlog

from ..models.config import MappingTable, ResolvedMapping
from ..models.events import RowChangeEvent, InsertEvent, UpdateEvent, DeleteEvent
from ..models.position import BinlogPosition
from ..utils.sql_builder import SQLBuilder
from .database_service import DatabaseService
from .metrics_service import MetricsService


class ChangeEventSink(Protocol):
    """What the binlog reader calls back into"""

    def on_row_change(self, event: RowChangeEvent) -> None:
        ...

    def on_position_sync(self, position: BinlogPosition) -> None:
        ...


class ChangeEventDispatcher:
    """Applies row change events to the target database"""

    def __init__(self, target_db: DatabaseService, mapping_table: MappingTable,
                 sql_builder: Optional[SQLBuilder] = None,
                 metrics_service: Optional[MetricsService] = None):
        self.target_db = target_db
        self.mapping_table = mapping_table
        self.sql_builder = sql_builder or SQLBuilder()
        self.metrics_service = metrics_service
        self.logger = structlog.get_logger()

        self._synced_position: Optional[BinlogPosition] = None
        self._stats = {
            'events_applied': 0,
            'events_failed': 0,
            'events_skipped': 0,
            'last_event_time': None
        }
        self._stats_lock = threading.Lock()

    def on_row_change(self, event: RowChangeEvent) -> None:
        """Resolve the mapping and apply the event; never raises on target errors"""
        mapping = self.mapping_table.resolve(event.schema, event.table)
        if mapping is None:
            self.logger.warning("No mapping found for source table, discarding event",
                                source_table=f"{event.schema}.{event.table}",
                                event_type=event.event_type.value)
            self._count(event, 'skipped')
            return

        if isinstance(event, InsertEvent):
            self.handle_insert(mapping, event)
        elif isinstance(event, UpdateEvent):
            self.handle_update(mapping, event)
        elif isinstance(event, DeleteEvent):
            self.handle_delete(mapping, event)
        else:
            self.logger.warning("Unsupported event type, discarding",
                                event_class=type(event).__name__,
                                source_table=mapping.source_name)
            self._count(event, 'skipped')

    def on_position_sync(self, position: BinlogPosition) -> None:
        """Called by the reader whenever a transaction commit has been delivered"""
        self._synced_position = position
        self.logger.debug("Binlog position synced", position=str(position))

    @property
    def synced_position(self) -> Optional[BinlogPosition]:
        return self._synced_position

    def handle_insert(self, mapping: ResolvedMapping, event: InsertEvent) -> None:
        sql, values = self.sql_builder.build_insert_sql(mapping.target_name, event.columns.names, event.row)
        self._execute(mapping, event, sql, values)

    def handle_update(self, mapping: ResolvedMapping, event: UpdateEvent) -> None:
        if not event.columns.has_primary_key:
            self.logger.warning("No primary key defined on table, cannot perform update",
                                target_table=mapping.target_name)
            self._count(event, 'skipped')
            return
        sql, values = self.sql_builder.build_update_sql(
            mapping.target_name, event.columns, event.before_row, event.after_row)
        self._execute(mapping, event, sql, values)

    def handle_delete(self, mapping: ResolvedMapping, event: DeleteEvent) -> None:
        if not event.columns.has_primary_key:
            self.logger.warning("No primary key defined on table, cannot perform delete",
                                target_table=mapping.target_name)
            self._count(event, 'skipped')
            return
        sql, values = self.sql_builder.build_delete_sql(mapping.target_name, event.columns, event.row)
        self._execute(mapping, event, sql, values)

    def _execute(self, mapping: ResolvedMapping, event: RowChangeEvent, sql: str, values: list) -> None:
        try:
            affected = self.target_db.execute_update(sql, values)
        except Exception as e:
            self.logger.error("Failed to apply event to target database",
                              event_type=event.event_type.value,
                              target_table=mapping.target_name,
                              error_type=type(e).__name__,
                              error=str(e))
            self._count(event, 'failed')
            return

        self.logger.debug("Event applied",
                          event_type=event.event_type.value,
                          target_table=mapping.target_name,
                          affected_rows=affected)
        self._count(event, 'applied')

    def _count(self, event: RowChangeEvent, status: str) -> None:
        with self._stats_lock:
            self._stats[f'events_{status}'] += 1
            self._stats['last_event_time'] = time.time()
        if self.metrics_service:
            self.metrics_service.record_event(event.event_type.value, status)

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            return self._stats.copy()
