"""
Services for binsync
"""

from .config_service import ConfigService
from .database_service import DatabaseService
from .metrics_service import MetricsService
from .metrics_endpoint import MetricsEndpoint
from .snapshot_service import SnapshotService, SnapshotStatus, TableSnapshotResult
from .dispatcher import ChangeEventDispatcher, ChangeEventSink
from .checkpoint_service import CheckpointStore, CheckpointTicker
from .binlog_reader import BinlogReader

__all__ = [
    'ConfigService',
    'DatabaseService',
    'MetricsService',
    'MetricsEndpoint',
    'SnapshotService',
    'SnapshotStatus',
    'TableSnapshotResult',
    'ChangeEventDispatcher',
    'ChangeEventSink',
    'CheckpointStore',
    'CheckpointTicker',
    'BinlogReader'
]
