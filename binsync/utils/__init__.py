"""
Utilities for binsync
"""

from .retry import retry, RetryConfig, retry_on_connection_error
from .sql_builder import SQLBuilder
from .logger import setup_logging, get_logger

__all__ = [
    'retry',
    'RetryConfig',
    'retry_on_connection_error',
    'SQLBuilder',
    'setup_logging',
    'get_logger'
]
