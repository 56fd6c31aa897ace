"""
Priority-aware admission control for async jobs.

`AdmissionQueue` bounds how many jobs run at the same time, optionally paces
admissions so they start at least `request_interval` seconds apart, and
orders waiting jobs by priority (lower number first, FIFO within a priority).

MENTAL MODEL
------------
A job asks for admission and receives an `Admission` handle once one of the
`max_requests` slots is reserved for it. Releasing the handle returns the
slot, which is immediately handed to exactly one waiter: the oldest job in
the lowest populated priority bucket. There are no batch wake-ups.

All state lives on a single event loop and is only mutated between
suspension points, so no lock is needed.

Example:
    >>> from fetchqueue import AdmissionQueue
    >>> queue = AdmissionQueue(max_requests=2, request_interval=0.1)
    >>> async with queue.admitted(priority=0):
    ...     await do_work()
    >>>
    >>> # Or let the queue drive the HTTP call itself
    >>> response = await queue.fetch("https://api.example.com/items")
    >>> items = await response.json()
"""

from __future__ import annotations

import asyncio
import bisect
import logging
import time
from collections import deque
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fetchqueue._http import HttpClient, RequestsHttpClient

if TYPE_CHECKING:
    from fetchqueue._config import QueueConfig
    from fetchqueue._response import ManagedResponse

logger = logging.getLogger(__name__)

# Priority used when the caller does not pass one.
DEFAULT_PRIORITY = 5

# Priority used for deferred body reads. More urgent than new fetches, so
# downloads already in flight drain before new requests are started.
BODY_READ_PRIORITY = 1


class Admission:
    """
    One-shot handle for an admitted job.

    Call `release()` (or the handle itself) exactly once when the protected
    work is done. Extra calls are ignored, so the queue's slot count can
    never be corrupted by a double release.

    Example:
        >>> admission = await queue.request_admission()
        >>> try:
        ...     await do_work()
        ... finally:
        ...     admission.release()
    """

    def __init__(self, queue: AdmissionQueue, priority: int):
        self._queue = queue
        self.priority = priority
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Return the slot to the queue and admit the next waiter, if any."""
        if self._released:
            logger.warning("Admission (priority=%d) released more than once. Ignoring.", self.priority)
            return
        self._released = True
        self._queue._release()

    def __call__(self) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"Admission(priority={self.priority}, released={self._released})"


@dataclass
class _Waiter:
    """A queued admission request, resolved with its pacing delay once admitted."""

    priority: int
    future: asyncio.Future[float]


class AdmissionQueue:
    """
    Limits concurrent jobs and orders waiting ones by priority.

    Args:
        max_requests: Maximum number of concurrently admitted jobs.
        request_interval: Minimum seconds between two successive admissions.
            Use 0 (default) to disable pacing.
        buffer_body: If True (default), `fetch()` downloads the whole body
            before giving its slot back, and body reads on the returned
            response never wait. If False, the slot is returned once headers
            arrive and each body read queues again; close responses whose
            body is never read.
        http_client: Transport used by `fetch()`. Defaults to a
            `RequestsHttpClient` created on first use.
        request_timeout: Default timeout in seconds for `fetch()`.
        clock: Monotonic clock, injectable for tests.

    Raises:
        AssertionError: If any parameter is invalid.
    """

    def __init__(
        self,
        max_requests: int,
        request_interval: float = 0.0,
        buffer_body: bool = True,
        http_client: HttpClient | None = None,
        request_timeout: int = 30,
        clock: Callable[[], float] = time.monotonic,
    ):
        assert max_requests is not None, "max_requests cannot be None."
        assert max_requests > 0, "max_requests must be greater than 0."
        assert request_interval is not None, "request_interval cannot be None."
        assert request_interval >= 0, "request_interval must be >= 0."
        assert request_timeout is not None, "request_timeout cannot be None."
        assert request_timeout > 0, "request_timeout must be greater than 0."
        assert clock is not None, "clock cannot be None."

        self.max_requests = max_requests
        self.request_interval = float(request_interval)
        self.buffer_body = buffer_body
        self.request_timeout = request_timeout

        self._http_client = http_client
        self._clock = clock

        self._active = 0
        self._pending: dict[int, deque[_Waiter]] = {}
        self._priorities: list[int] = []  # sorted keys of _pending
        self._pending_count = 0
        self._last_release_time: float | None = None

    @classmethod
    def from_config(
        cls,
        config: QueueConfig | None = None,
        http_client: HttpClient | None = None,
    ) -> AdmissionQueue:
        """
        Build a queue from configuration.

        Args:
            config: Queue settings. Defaults to `FETCHQUEUE.config.queue`.
            http_client: Transport used by `fetch()`.
        """
        if config is None:
            from fetchqueue._config import FETCHQUEUE

            config = FETCHQUEUE.config.queue

        return cls(
            max_requests=config.max_requests,
            request_interval=config.request_interval,
            buffer_body=config.buffer_body,
            http_client=http_client,
            request_timeout=config.request_timeout,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def active_request_count(self) -> int:
        """Number of jobs currently holding a slot."""
        return self._active

    @property
    def pending_request_count(self) -> int:
        """Number of jobs waiting for a slot."""
        return self._pending_count

    @property
    def pending_priorities(self) -> list[int]:
        """Populated priority buckets, most urgent first."""
        return list(self._priorities)

    @property
    def http_client(self) -> HttpClient:
        if self._http_client is None:
            self._http_client = RequestsHttpClient()
        return self._http_client

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def request_admission(self, priority: int = DEFAULT_PRIORITY) -> Admission:
        """
        Wait until a slot is available and return its `Admission` handle.

        If a slot is free the job is admitted right away (after the pacing
        delay, if any). Otherwise it waits, without timeout, until a release
        hands it a slot.

        Args:
            priority: Lower values are served first.

        Returns:
            The handle that must be released exactly once.
        """
        if self._active < self.max_requests:
            self._active += 1
            delay = self._reserve_start()
            logger.debug(
                "Admitted immediately (priority=%d, active=%d/%d).",
                priority, self._active, self.max_requests,
            )
        else:
            waiter = self._enqueue(priority)
            try:
                delay = await waiter.future
            except asyncio.CancelledError:
                if waiter.future.done() and not waiter.future.cancelled():
                    # A slot was handed over just before the cancellation landed
                    self._release()
                else:
                    self._discard(waiter)
                raise

        if delay > 0:
            logger.debug("Pacing admission (priority=%d) by %.3fs.", priority, delay)
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                self._release()
                raise

        return Admission(self, priority)

    @asynccontextmanager
    async def admitted(self, priority: int = DEFAULT_PRIORITY) -> AsyncIterator[Admission]:
        """
        Hold a slot for the duration of an `async with` block.

        The slot is released on every exit path, including exceptions.

        Example:
            >>> async with queue.admitted(priority=0) as admission:
            ...     await do_work()
        """
        admission = await self.request_admission(priority)
        try:
            yield admission
        finally:
            admission.release()

    def _enqueue(self, priority: int) -> _Waiter:
        waiter = _Waiter(priority=priority, future=asyncio.get_running_loop().create_future())
        bucket = self._pending.get(priority)
        if bucket is None:
            bucket = self._pending[priority] = deque()
            bisect.insort(self._priorities, priority)
        bucket.append(waiter)
        self._pending_count += 1
        logger.debug(
            "Queued (priority=%d, active=%d/%d, pending=%d).",
            priority, self._active, self.max_requests, self._pending_count,
        )
        return waiter

    def _discard(self, waiter: _Waiter) -> None:
        bucket = self._pending.get(waiter.priority)
        if bucket is None:
            return
        try:
            bucket.remove(waiter)
        except ValueError:
            return
        self._pending_count -= 1
        if not bucket:
            self._drop_bucket(waiter.priority)

    def _drop_bucket(self, priority: int) -> None:
        del self._pending[priority]
        self._priorities.remove(priority)

    def _release(self) -> None:
        self._active -= 1
        now = self._clock()
        if self._last_release_time is None or now > self._last_release_time:
            self._last_release_time = now
        logger.debug("Released (active=%d/%d).", self._active, self.max_requests)
        self._admit_next()

    def _admit_next(self) -> None:
        """Hand the free slot to the oldest waiter of the most urgent bucket."""
        while self._priorities:
            priority = self._priorities[0]
            bucket = self._pending[priority]
            waiter = bucket.popleft()
            self._pending_count -= 1
            if not bucket:
                self._drop_bucket(priority)
            if waiter.future.done():
                continue

            self._active += 1
            waiter.future.set_result(self._reserve_start())
            logger.debug(
                "Handed slot to waiter (priority=%d, active=%d/%d, pending=%d).",
                priority, self._active, self.max_requests, self._pending_count,
            )
            return

    def _reserve_start(self) -> float:
        """
        Reserve the start time of the admission being granted.

        Returns the number of seconds the admitted job must wait so that it
        starts at least `request_interval` after the previous admission or
        release.
        """
        now = self._clock()
        start = now
        if self.request_interval > 0 and self._last_release_time is not None:
            start = max(now, self._last_release_time + self.request_interval)
        self._last_release_time = start
        return start - now

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        *,
        priority: int = DEFAULT_PRIORITY,
        **options: Any,
    ) -> ManagedResponse:
        """
        Perform an HTTP request inside an admission slot.

        When `buffer_body` is enabled the body is downloaded before the slot
        is released, so slow transfers count against the concurrency limit.
        Otherwise the slot is released as soon as headers are available and
        body reads on the returned response queue again.

        Args:
            url: The full URL to request.
            method: HTTP method (default: GET).
            priority: Admission priority (default: DEFAULT_PRIORITY).
            **options: Forwarded to `HttpClient.request()` (params, headers,
                data, json, timeout).

        Returns:
            The response wrapped in a ManagedResponse.

        Raises:
            requests.RequestException: If the HTTP request fails (propagated unchanged).
        """
        from fetchqueue._response import ManagedResponse

        options.setdefault("timeout", self.request_timeout)

        async with self.admitted(priority):
            raw = await self.http_client.request(method, url, **options)
            body: bytes | None = None
            if self.buffer_body:
                try:
                    body = await self.http_client.read_body(raw)
                except BaseException:
                    raw.close()
                    raise
            return ManagedResponse(raw, self, body=body)

    def __repr__(self) -> str:
        return (
            f"AdmissionQueue(max_requests={self.max_requests}, "
            f"request_interval={self.request_interval}, buffer_body={self.buffer_body}, "
            f"active={self._active}, pending={self.pending_request_count})"
        )
