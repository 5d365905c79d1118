from capgate.storage.base import StorageAdapter
from capgate.storage.factory import StorageConfigError, build_storage
from capgate.storage.file import FileStorage
from capgate.storage.memory import MemoryStorage

__all__ = [
    "FileStorage",
    "MemoryStorage",
    "StorageAdapter",
    "StorageConfigError",
    "build_storage",
]
