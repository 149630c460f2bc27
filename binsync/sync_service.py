"""
Replication orchestrator for binsync

Init -> Snapshot -> Incremental -> Stopped. The incremental phase runs the
binlog reader and the checkpoint ticker as two threads bound to one stop event.
"""

import threading
from enum import Enum
from typing import List, Optional

import structlog

from .exceptions import ReplicationError, SyncException
from .models.config import SyncConfig, MappingTable
from .models.position import BinlogPosition
from .services.binlog_reader import BinlogReader
from .services.checkpoint_service import CheckpointStore, CheckpointTicker
from .services.config_service import ConfigService
from .services.database_service import DatabaseService
from .services.dispatcher import ChangeEventDispatcher
from .services.metrics_endpoint import MetricsEndpoint
from .services.metrics_service import MetricsService
from .services.snapshot_service import SnapshotService, TableSnapshotResult


class SyncState(Enum):
    """Replication lifecycle"""
    INIT = "init"
    SNAPSHOT = "snapshot"
    INCREMENTAL = "incremental"
    STOPPED = "stopped"


class SyncService:
    """Wires the snapshot engine, the dispatcher, the reader and checkpoints together"""

    def __init__(self, config: SyncConfig,
                 source_db: Optional[DatabaseService] = None,
                 target_db: Optional[DatabaseService] = None,
                 reader: Optional[BinlogReader] = None,
                 metrics_service: Optional[MetricsService] = None,
                 stop_event: Optional[threading.Event] = None):
        self.config = config
        self.logger = structlog.get_logger()
        self.stop_event = stop_event or threading.Event()
        self.metrics_service = metrics_service or MetricsService()

        self.source_db = source_db
        self.target_db = target_db
        self.reader = reader
        self.mapping_table: Optional[MappingTable] = None
        self.dispatcher: Optional[ChangeEventDispatcher] = None
        self.snapshot_service: Optional[SnapshotService] = None
        self.checkpoint_store: Optional[CheckpointStore] = None
        self.checkpoint_ticker: Optional[CheckpointTicker] = None
        self.metrics_endpoint: Optional[MetricsEndpoint] = None
        self.snapshot_results: List[TableSnapshotResult] = []

        self._state = SyncState.INIT
        self._initialized = False
        self._reader_thread: Optional[threading.Thread] = None
        self._reader_error: Optional[BaseException] = None
        self.metrics_service.set_state(self._state.value)

    @classmethod
    def from_file(cls, config_path: str) -> 'SyncService':
        config_service = ConfigService()
        config = config_service.load_config(config_path)
        config_service.validate_config(config)
        return cls(config)

    @property
    def state(self) -> SyncState:
        return self._state

    def _set_state(self, state: SyncState) -> None:
        self.logger.info("Replication state changed", previous=self._state.value, state=state.value)
        self._state = state
        self.metrics_service.set_state(state.value)

    def initialize(self) -> None:
        """
        Validate the mapping, resolve connections and build every component

        Raises:
            ConfigurationError: on an invalid connection string or mapping
            ConnectionError: if either database is unreachable
        """
        if self._initialized:
            return

        self.mapping_table = self.config.build_mapping_table()
        source_config = self.config.source_config()
        target_config = self.config.target_config()

        if self.source_db is None:
            self.source_db = DatabaseService(source_config, name="source")
        if self.target_db is None:
            self.target_db = DatabaseService(target_config, name="target")
        self.source_db.connect()
        self.target_db.connect()

        self.dispatcher = ChangeEventDispatcher(
            target_db=self.target_db,
            mapping_table=self.mapping_table,
            metrics_service=self.metrics_service
        )
        self.snapshot_service = SnapshotService(
            source_db=self.source_db,
            target_db=self.target_db,
            mapping_table=self.mapping_table,
            batch_size=self.config.batch_size,
            metrics_service=self.metrics_service,
            stop_event=self.stop_event
        )
        if self.reader is None:
            self.reader = BinlogReader(
                source_db=self.source_db,
                source_config=source_config,
                replication_config=self.config.replication,
                mapping_table=self.mapping_table,
                stop_event=self.stop_event
            )
        self.reader.set_event_sink(self.dispatcher)

        if self.config.position_path:
            self.checkpoint_store = CheckpointStore(self.config.position_path)
        else:
            self.logger.warning("No position_path configured, binlog position will not be checkpointed")

        self._initialized = True
        self.logger.info("Replication service initialized",
                         tables=len(self.mapping_table),
                         source=source_config.address,
                         target=target_config.address,
                         batch_size=self.config.batch_size)

    def request_shutdown(self) -> None:
        """Set the shared stop signal; safe to call from a signal handler"""
        if not self.stop_event.is_set():
            self.logger.info("Shutdown requested")
        self.stop_event.set()
        if self.reader is not None:
            self.reader.stop()

    def run(self) -> None:
        """
        Run the initial sync, then replicate until shutdown is requested

        Raises:
            ReplicationError: if the binlog reader cannot start or fails while running
        """
        try:
            self.initialize()
            self._start_metrics_endpoint()

            resume_position = self.load_checkpoint()
            start_position = resume_position
            if start_position is None:
                # taken before copying so writes made during the snapshot are replayed
                start_position = self.reader.default_position()
                self.logger.info("No checkpoint, incremental sync will start at current binlog end",
                                 position=str(start_position))

            self._set_state(SyncState.SNAPSHOT)
            self.snapshot_results = self.snapshot_service.run()

            if self.stop_event.is_set():
                self.logger.info("Shutdown requested before incremental sync")
                return

            self._set_state(SyncState.INCREMENTAL)
            self._run_incremental(start_position)
        finally:
            self._cleanup()
            self._set_state(SyncState.STOPPED)

        if self._reader_error is not None:
            raise ReplicationError(f"Binlog reader failed: {self._reader_error}") from self._reader_error

    def load_checkpoint(self) -> Optional[BinlogPosition]:
        if self.checkpoint_store is None:
            return None
        return self.checkpoint_store.load()

    def _run_incremental(self, start_position: BinlogPosition) -> None:
        self._reader_thread = threading.Thread(
            target=self._run_reader, args=(start_position,), name="binlog_reader", daemon=True)
        self._reader_thread.start()

        if self.checkpoint_store is not None:
            self.checkpoint_ticker = CheckpointTicker(
                store=self.checkpoint_store,
                position_source=self.reader.current_position,
                stop_event=self.stop_event,
                interval=self.config.checkpoint_interval,
                metrics_service=self.metrics_service
            )
            self.checkpoint_ticker.start()

        self.logger.info("Incremental sync running", start_position=str(start_position))

        while not self.stop_event.wait(1.0):
            if self.checkpoint_ticker is not None and self.checkpoint_ticker.error is not None:
                self.logger.error("Checkpoint ticker is not running, replication continues without checkpoints",
                                  error=str(self.checkpoint_ticker.error))
                self.checkpoint_ticker.error = None

        self.reader.stop()
        self._reader_thread.join(timeout=10.0)
        if self._reader_thread.is_alive():
            self.logger.warning("Binlog reader did not stop gracefully")
        if self.checkpoint_ticker is not None:
            self.checkpoint_ticker.join(timeout=5.0)

        self.logger.info("Replication stopped",
                         position=str(self.reader.current_position()),
                         **self.dispatcher.get_stats())

    def _run_reader(self, start_position: BinlogPosition) -> None:
        try:
            self.reader.start(start_position)
        except Exception as e:
            self._reader_error = e
            self.logger.error("Binlog reader failed, stopping replication",
                              error_type=type(e).__name__, error=str(e))
        finally:
            self.stop_event.set()

    def _start_metrics_endpoint(self) -> None:
        port = self.config.metrics_port
        if not port or self.metrics_endpoint is not None:
            return
        self.metrics_endpoint = MetricsEndpoint(self.metrics_service, port=port)
        try:
            self.metrics_endpoint.start()
        except OSError as e:
            self.logger.error("Failed to start metrics endpoint", port=port, error=str(e))
            self.metrics_endpoint = None

    def test_connections(self) -> bool:
        """Check that both databases answer a trivial query"""
        try:
            source_db = self.source_db or DatabaseService(self.config.source_config(), name="source")
            target_db = self.target_db or DatabaseService(self.config.target_config(), name="target")
        except SyncException as e:
            self.logger.error("Connection test failed", error=str(e))
            return False

        try:
            ok = True
            for db in (source_db, target_db):
                try:
                    if not db.test_connection():
                        ok = False
                except SyncException as e:
                    self.logger.error("Connection test failed", connection_name=db.name, error=str(e))
                    ok = False
            return ok
        finally:
            source_db.close()
            target_db.close()

    def _cleanup(self) -> None:
        if self.metrics_endpoint is not None:
            self.metrics_endpoint.stop()
            self.metrics_endpoint = None
        for db in (self.source_db, self.target_db):
            if db is not None:
                db.close()
