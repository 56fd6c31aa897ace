"""
fetchqueue: priority-aware admission control for async HTTP requests.

Quick Start:
    >>> import asyncio
    >>> from fetchqueue import AdmissionQueue
    >>>
    >>> async def main():
    ...     queue = AdmissionQueue(max_requests=4, request_interval=0.1)
    ...     responses = await asyncio.gather(
    ...         *(queue.fetch(f"https://api.example.com/items/{i}") for i in range(20))
    ...     )
    ...     return [await r.json() for r in responses]
    >>>
    >>> asyncio.run(main())

Global Configuration:
    >>> from fetchqueue import FETCHQUEUE
    >>> FETCHQUEUE.configure(queue={"max_requests": 8, "buffer_body": False})
    >>> queue = AdmissionQueue.from_config()

Main Classes:
    - AdmissionQueue: Limits concurrent jobs, paces admissions, orders waiters by priority.
    - Admission: One-shot handle returned when a job is admitted.
    - ManagedResponse: Response whose body reads go through the owning queue.
    - BodyDecodeError: Exception raised when a body cannot be parsed as form data.
    - DEFAULT_PRIORITY / BODY_READ_PRIORITY: Built-in priority levels.

HTTP Client:
    - HttpClient: Abstract base class for async HTTP clients.
    - RequestsHttpClient: Default implementation backed by requests.

Cache:
    - JsonFileCache: JSON-backed key-value cache file.
    - CacheError: Exception raised when the cache file cannot be accessed.

Configuration:
    - FETCHQUEUE: Global singleton for configuration.
    - FetchQueueConfig: Root configuration dataclass.
    - QueueConfig: AdmissionQueue configuration.
    - CacheConfig: JsonFileCache configuration.
    - ConfigEntry: Resolved configuration value and its source.
    - ConfigEnvVarError: Exception raised when env var parsing fails.
    - ConfigValidationError: Exception raised when config validation fails.
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("fetchqueue")

from fetchqueue._cache import (
    CacheError,
    JsonFileCache,
)
from fetchqueue._config import (
    FETCHQUEUE,
    CacheConfig,
    ConfigEntry,
    ConfigEnvVarError,
    ConfigValidationError,
    FetchQueueConfig,
    QueueConfig,
)
from fetchqueue._http import (
    HttpClient,
    RequestsHttpClient,
)
from fetchqueue._queue import (
    BODY_READ_PRIORITY,
    DEFAULT_PRIORITY,
    Admission,
    AdmissionQueue,
)
from fetchqueue._response import (
    BodyDecodeError,
    ManagedResponse,
)

__all__ = [
    "__version__",
    # Configuration
    "FETCHQUEUE",
    "FetchQueueConfig",
    "QueueConfig",
    "CacheConfig",
    "ConfigEntry",
    "ConfigEnvVarError",
    "ConfigValidationError",
    # Queue
    "AdmissionQueue",
    "Admission",
    "DEFAULT_PRIORITY",
    "BODY_READ_PRIORITY",
    "ManagedResponse",
    "BodyDecodeError",
    # HTTP Client
    "HttpClient",
    "RequestsHttpClient",
    # Cache
    "JsonFileCache",
    "CacheError",
]
