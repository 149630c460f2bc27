"""
Custom exceptions for binsync
"""


class SyncException(Exception):
    """Base exception for replication operations"""
    pass


class ConfigurationError(SyncException):
    """Configuration related errors"""
    pass


class ConnectionError(SyncException):
    """Database connection errors"""
    pass


class ReplicationError(SyncException):
    """Binlog stream errors"""
    pass


class SnapshotError(SyncException):
    """Initial full sync errors scoped to one table"""
    pass


class CheckpointError(SyncException):
    """Checkpoint serialization or storage errors"""
    pass
