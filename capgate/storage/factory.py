from capgate.config import Settings
from capgate.storage.base import StorageAdapter


class StorageConfigError(ValueError):
    pass


def build_storage(settings: Settings) -> StorageAdapter:
    """Instantiate the backend named by ``settings.storage_backend``."""
    backend = settings.storage_backend

    if backend == "memory":
        from capgate.storage.memory import MemoryStorage

        return MemoryStorage(cleanup_interval=settings.cleanup_interval_seconds)

    if backend == "file":
        from capgate.storage.file import FileStorage

        if not settings.storage_file_path:
            raise StorageConfigError("STORAGE_FILE_PATH is required for the file backend")
        return FileStorage(settings.storage_file_path)

    if backend == "sql":
        from capgate.database import make_session_factory
        from capgate.storage.sql import SqlStorage

        return SqlStorage(make_session_factory(settings.database_url))

    if backend == "redis":
        from capgate.storage.redis_storage import RedisStorage

        if not settings.redis_url:
            raise StorageConfigError("REDIS_URL is required for the redis backend")
        return RedisStorage.from_url(settings.redis_url, prefix=settings.redis_prefix)

    raise StorageConfigError(f"Unknown storage backend: {backend}")
