"""
Data models for binsync
"""

from .config import (
    DatabaseConfig,
    ReplicationConfig,
    TableMapping,
    DatabaseMapping,
    MappingTable,
    ResolvedMapping,
    SyncConfig,
    parse_dsn
)
from .events import (
    ColumnSet,
    EventType,
    RowChangeEvent,
    InsertEvent,
    UpdateEvent,
    DeleteEvent
)
from .position import BinlogPosition

__all__ = [
    'DatabaseConfig',
    'ReplicationConfig',
    'TableMapping',
    'DatabaseMapping',
    'MappingTable',
    'ResolvedMapping',
    'SyncConfig',
    'parse_dsn',
    'ColumnSet',
    'EventType',
    'RowChangeEvent',
    'InsertEvent',
    'UpdateEvent',
    'DeleteEvent',
    'BinlogPosition'
]
