"""
JSON-backed key-value cache file.

`JsonFileCache` stores named entries in a single JSON object on disk. Every
operation reads the file again, so several instances (or processes) pointing
at the same file always see each other's writes.

Example:
    >>> from fetchqueue import JsonFileCache
    >>> cache = JsonFileCache("cache/tokens.json")
    >>> cache.write("token", {"value": "abc", "expires": 1700000000})
    >>> cache.read("token")
    {'value': 'abc', 'expires': 1700000000}
    >>> cache.ensure("settings", lambda: {"theme": "dark"})
    {'theme': 'dark'}
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from fetchqueue._utils import load_json_file, save_json_file

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheError(RuntimeError):
    """
    Raised when the cache file cannot be read, parsed, written or removed.

    The original exception is available as `__cause__`.

    Attributes:
        file_path: The cache file involved.
    """

    def __init__(self, message: str, file_path: Path):
        self.file_path = file_path
        super().__init__(message)


class JsonFileCache:
    """
    Access and modify a JSON cache file.

    Args:
        file_name: Path of the cache file. Defaults to
            `FETCHQUEUE.config.cache.file_name` ("cache.json").
    """

    def __init__(self, file_name: str | Path | None = None):
        if file_name is None:
            from fetchqueue._config import FETCHQUEUE

            file_name = FETCHQUEUE.config.cache.file_name

        assert str(file_name).strip(), "file_name cannot be empty."
        self.file_path = Path(file_name)

    def _read_file(self) -> dict[str, Any]:
        try:
            return load_json_file(self.file_path)
        except (OSError, ValueError) as e:
            logger.error(
                f"❌ Error reading cache file ({self.file_path}): {e}",
                exc_info=logger.isEnabledFor(logging.DEBUG)
            )
            raise CacheError(
                f"It's not possible to read the cache file ({self.file_path}). "
                f"Check its permissions or clear the cache: {e}",
                file_path=self.file_path,
            ) from e

    def _write_file(self, data: dict[str, Any]) -> None:
        try:
            save_json_file(data, self.file_path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(
                f"❌ Error writing cache file ({self.file_path}): {e}",
                exc_info=logger.isEnabledFor(logging.DEBUG)
            )
            raise CacheError(
                f"It's not possible to write the cache file ({self.file_path}): {e}",
                file_path=self.file_path,
            ) from e

    def read(self, name: str, default: Any = None) -> Any:
        """
        Read the value stored under `name`.

        Returns:
            The stored value, or `default` if the entry does not exist.
        """
        return self._read_file().get(name, default)

    def write(self, name: str, data: Any) -> None:
        """Store `data` under `name`, replacing any previous value."""
        cache = self._read_file()
        cache[name] = data
        self._write_file(cache)
        logger.debug(f"Cache entry '{name}' written to {self.file_path}.")

    def delete(self, name: str) -> None:
        """Remove the entry `name`. Does nothing if it does not exist."""
        cache = self._read_file()
        if name not in cache:
            return
        del cache[name]
        self._write_file(cache)
        logger.debug(f"Cache entry '{name}' deleted from {self.file_path}.")

    def clear(self) -> None:
        """Remove the cache file and every entry in it."""
        try:
            self.file_path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(
                f"❌ Error clearing cache file ({self.file_path}): {e}",
                exc_info=logger.isEnabledFor(logging.DEBUG)
            )
            raise CacheError(
                f"It's not possible to clear the cache file ({self.file_path}): {e}",
                file_path=self.file_path,
            ) from e

    @property
    def entries(self) -> list[str]:
        """Names of the entries currently stored, in insertion order."""
        return list(self._read_file().keys())

    def ensure(self, name: str, factory: Callable[[], T]) -> T:
        """
        Return the entry `name`, creating it with `factory()` if absent.

        `factory` is only called when the entry does not exist yet.
        """
        cache = self._read_file()
        if name not in cache:
            cache[name] = factory()
            self._write_file(cache)
            logger.debug(f"Cache entry '{name}' created in {self.file_path}.")
        value: T = cache[name]
        return value

    def __contains__(self, name: object) -> bool:
        return name in self._read_file()

    def __repr__(self) -> str:
        return f"JsonFileCache(file_path={str(self.file_path)!r})"
