"""
LevelDB wrapper used to persist pool records.
"""
import plyvel
import logging
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class DB:
    def __init__(self, db_path: str, create_if_missing: bool = True,
                 write_buffer_size: int = 4 * 1024 * 1024,
                 max_open_files: int = 1000,
                 compression: Optional[str] = 'snappy'):
        """
        Open (or create) the database.

        Args:
            db_path: Path to database directory
            create_if_missing: Create database if it doesn't exist
            write_buffer_size: Size of write buffer
            max_open_files: Maximum number of open files
            compression: 'snappy' or None
        """
        try:
            self._db = plyvel.DB(
                db_path,
                create_if_missing=create_if_missing,
                write_buffer_size=write_buffer_size,
                max_open_files=max_open_files,
                compression=compression,
            )
            self._closed = False
            logger.info(f"Database opened at {db_path}")
        except Exception as e:
            logger.error(f"Failed to open database at {db_path}: {e}")
            raise

    def _ensure_open(self):
        if self._closed:
            raise RuntimeError("Database is closed")

    def get(self, key: bytes) -> Optional[bytes]:
        """
        Get value by key.

        Returns None if key doesn't exist.
        """
        self._ensure_open()
        try:
            return self._db.get(key)
        except Exception as e:
            logger.error(f"Error getting key {key.hex()[:16]}: {e}")
            raise

    def put(self, key: bytes, value: bytes):
        """Put a key-value pair."""
        self._ensure_open()
        try:
            self._db.put(key, value)
        except Exception as e:
            logger.error(f"Error putting key {key.hex()[:16]}: {e}")
            raise

    def exists(self, key: bytes) -> bool:
        return self.get(key) is not None

    def iterate_prefix(self, prefix: bytes) -> Iterator[tuple[bytes, bytes]]:
        """Yield (key, value) pairs whose key starts with prefix, in key order."""
        self._ensure_open()
        with self._db.iterator(prefix=prefix) as it:
            for key, value in it:
                yield key, value

    def close(self):
        """Close the database."""
        if not self._closed:
            try:
                self._db.close()
                self._closed = True
                logger.info("Database closed")
            except Exception as e:
                logger.error(f"Error closing database: {e}")
                raise

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
