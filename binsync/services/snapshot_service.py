"""
Initial full sync for binsync

Copies every mapped source table whose target table is empty, in batches of
multi-row INSERT statements. Best effort: failures are logged and scoped to the
row, batch or table they happened in.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence

import structlog

from ..exceptions import SnapshotError
from ..models.config import MappingTable, ResolvedMapping, DEFAULT_BATCH_SIZE
from ..utils.sql_builder import SQLBuilder
from .database_service import DatabaseService
from .metrics_service import MetricsService


class SnapshotStatus(Enum):
    """Outcome of the initial sync of one table"""
    COPIED = "copied"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TableSnapshotResult:
    """Counters for the initial sync of one table"""
    source: str
    target: str
    status: SnapshotStatus = SnapshotStatus.COPIED
    rows_inserted: int = 0
    rows_skipped: int = 0
    batches_inserted: int = 0
    batches_failed: int = 0
    error: Optional[str] = None


class SnapshotService:
    """Runs the initial full sync for every mapped table"""

    def __init__(self, source_db: DatabaseService, target_db: DatabaseService,
                 mapping_table: MappingTable, batch_size: int = DEFAULT_BATCH_SIZE,
                 sql_builder: Optional[SQLBuilder] = None,
                 metrics_service: Optional[MetricsService] = None,
                 stop_event: Optional[threading.Event] = None):
        if batch_size <= 0:
            raise ValueError("Batch size must be positive")
        self.source_db = source_db
        self.target_db = target_db
        self.mapping_table = mapping_table
        self.batch_size = batch_size
        self.sql_builder = sql_builder or SQLBuilder()
        self.metrics_service = metrics_service
        self.stop_event = stop_event or threading.Event()
        self.logger = structlog.get_logger()

    def run(self) -> List[TableSnapshotResult]:
        """Sync every mapped table; a failing table never stops the others"""
        results = []
        started = time.time()
        for mapping in self.mapping_table:
            if self.stop_event.is_set():
                self.logger.info("Initial sync cancelled", remaining_table=mapping.source_name)
                break
            results.append(self.sync_table(mapping))

        self.logger.info("Initial sync finished",
                         tables=len(results),
                         copied=sum(1 for r in results if r.status == SnapshotStatus.COPIED),
                         skipped=sum(1 for r in results if r.status == SnapshotStatus.SKIPPED),
                         failed=sum(1 for r in results if r.status == SnapshotStatus.FAILED),
                         rows_inserted=sum(r.rows_inserted for r in results),
                         duration=round(time.time() - started, 3))
        return results

    def sync_table(self, mapping: ResolvedMapping) -> TableSnapshotResult:
        """Copy one table if its target is empty"""
        result = TableSnapshotResult(source=mapping.source_name, target=mapping.target_name)

        try:
            count = self.target_db.count_rows(mapping.target_name)
        except Exception as e:
            return self._fail(result, "Could not check if target table is empty", e)

        if count > 0:
            self.logger.info("Target table already has rows, skipping initial sync",
                             target_table=mapping.target_name, rows=count)
            result.status = SnapshotStatus.SKIPPED
            return result

        self.logger.info("Target table is empty, starting initial sync",
                         source_table=mapping.source_name, target_table=mapping.target_name)

        try:
            columns = self.source_db.get_table_columns(mapping.source_database, mapping.source_table)
        except Exception as e:
            return self._fail(result, "Failed to get columns of source table", e)

        select_sql = self.sql_builder.build_select_sql(mapping.source_name, columns)
        batch: List[List[Any]] = []

        # A driver error while fetching ends the unbuffered cursor, so it fails the
        # whole table. Only rows of the wrong shape are skipped one by one.
        try:
            for raw_row in self.source_db.stream_rows(select_sql, fetch_size=self.batch_size):
                try:
                    batch.append(self._scan_row(raw_row, len(columns)))
                except SnapshotError as e:
                    result.rows_skipped += 1
                    self.logger.error("Failed to scan source row, skipping it",
                                      source_table=mapping.source_name, error=str(e))
                    continue

                if len(batch) == self.batch_size:
                    self._flush(mapping, columns, batch, result)
                    batch = []
                    if self.stop_event.is_set():
                        result.status = SnapshotStatus.CANCELLED
                        self.logger.warning("Initial sync interrupted by shutdown",
                                            target_table=mapping.target_name,
                                            rows_inserted=result.rows_inserted)
                        return result
        except Exception as e:
            return self._fail(result, "Failed to query source table", e)

        if batch:
            self._flush(mapping, columns, batch, result)

        self.logger.info("Initial sync for table completed",
                         source_table=mapping.source_name,
                         target_table=mapping.target_name,
                         rows_inserted=result.rows_inserted,
                         rows_skipped=result.rows_skipped,
                         batches_failed=result.batches_failed)
        return result

    def _flush(self, mapping: ResolvedMapping, columns: Sequence[str],
               batch: List[List[Any]], result: TableSnapshotResult) -> None:
        """Insert one batch; a failed batch is logged and dropped"""
        try:
            self.insert_batch(mapping.target_name, columns, batch)
        except Exception as e:
            result.batches_failed += 1
            self.logger.error("Batch insert failed",
                              target_table=mapping.target_name,
                              batch_rows=len(batch),
                              error_type=type(e).__name__,
                              error=str(e))
            if self.metrics_service:
                self.metrics_service.record_snapshot_batch(mapping.target_name, len(batch), success=False)
            return

        result.rows_inserted += len(batch)
        result.batches_inserted += 1
        if self.metrics_service:
            self.metrics_service.record_snapshot_batch(mapping.target_name, len(batch), success=True)

    def insert_batch(self, table_name: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> int:
        """Insert rows with a single multi-row INSERT statement"""
        if not rows:
            return 0
        sql, values = self.sql_builder.build_batch_insert_sql(table_name, columns, rows)
        return self.target_db.execute_update(sql, values)

    @staticmethod
    def _scan_row(row: Sequence[Any], width: int) -> List[Any]:
        if row is None:
            raise SnapshotError("Source returned an empty row")
        values = list(row)
        if len(values) != width:
            raise SnapshotError(f"Row has {len(values)} values, expected {width}")
        return values

    def _fail(self, result: TableSnapshotResult, message: str, error: Exception) -> TableSnapshotResult:
        result.status = SnapshotStatus.FAILED
        result.error = str(error)
        self.logger.error(message,
                          source_table=result.source,
                          target_table=result.target,
                          error_type=type(error).__name__,
                          error=str(error))
        return result
