"""
Subscription Store Core
=======================

Configuration, JSON file persistence and logging shared by the modules.
"""

from .config import Config
from .database import Database
from .logging_service import LoggingService
from .storage import CorruptStoreError, StorageError, read_collection, write_collection

__all__ = [
    'Config', 'Database', 'LoggingService',
    'CorruptStoreError', 'StorageError', 'read_collection', 'write_collection',
]
