"""
binsync - MySQL/MariaDB table replication

Initial full sync of mapped tables followed by continuous binlog replication
into a target database.
"""

__version__ = "1.0.0"

from .sync_service import SyncService, SyncState
from .exceptions import SyncException

__all__ = [
    "SyncService",
    "SyncState",
    "SyncException",
    "__version__",
]
