"""
Async HTTP client abstraction used by AdmissionQueue.

The queue never talks to the network directly: it delegates every call to an
`HttpClient`, which makes the rate-limited operation swappable (and trivially
mockable in tests).

Available implementations:
    - RequestsHttpClient: Drives a `requests.Session` from worker threads. Default.

Example:
    >>> from fetchqueue import AdmissionQueue, RequestsHttpClient
    >>> queue = AdmissionQueue(max_requests=4, http_client=RequestsHttpClient())
    >>> response = await queue.fetch("https://api.example.com/v1/resource")
    >>> payload = await response.json()
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, override

import requests

logger = logging.getLogger(__name__)


# =============================================================================
# Abstract Base Class
# =============================================================================


class HttpClient(ABC):
    """
    Abstract base class for async HTTP clients.

    A request is split in two steps so the caller decides when the body is
    transferred: `request()` returns once the status line and headers are
    available, `read_body()` downloads the payload.

    Example:
        >>> class MyHttpClient(HttpClient):
        ...     async def request(self, method, url, **kwargs):
        ...         ...
        ...     async def read_body(self, response):
        ...         ...
    """

    @abstractmethod
    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        data: Any = None,
        json: Any = None,
        timeout: int = 30,
    ) -> requests.Response:
        """
        Send a request and return as soon as the response headers arrive.

        Args:
            method: HTTP method (GET, POST, ...).
            url: The full URL to request.
            params: Query string parameters.
            headers: Additional headers to include.
            data: Raw body or form fields.
            json: JSON-serializable body.
            timeout: Request timeout in seconds.

        Returns:
            The HTTP response, with its body not yet consumed.

        Raises:
            requests.RequestException: If the HTTP request fails.
        """
        pass

    @abstractmethod
    async def read_body(self, response: requests.Response) -> bytes:
        """
        Download the full body of a response returned by `request()`.

        Raises:
            requests.RequestException: If the transfer fails.
        """
        pass


# =============================================================================
# requests Implementation
# =============================================================================


class RequestsHttpClient(HttpClient):
    """
    HTTP client backed by a `requests.Session`.

    Every blocking call runs in a worker thread via `asyncio.to_thread`, so
    the event loop keeps scheduling other admissions while a transfer is in
    progress. Requests are sent with `stream=True`; the body is only pulled
    from the socket by `read_body()`.

    Example:
        >>> client = RequestsHttpClient(default_headers={"User-Agent": "my-app"})
        >>> response = await client.request("GET", "https://example.com")
        >>> body = await client.read_body(response)

    Args:
        session: Session to reuse. A new one is created when omitted.
        default_headers: Headers merged under every request's own headers.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        default_headers: dict[str, str] | None = None,
    ):
        self._session = session or requests.Session()
        self._default_headers = dict(default_headers or {})

    @override
    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        data: Any = None,
        json: Any = None,
        timeout: int = 30,
    ) -> requests.Response:
        """
        Send the request from a worker thread.

        Raises:
            AssertionError: If method/url are empty or timeout is invalid.
            requests.RequestException: If the HTTP request fails.
        """
        assert method, "Method cannot be empty."
        assert url, "URL cannot be empty."
        assert timeout is not None, "Timeout cannot be None."
        assert timeout > 0, "Timeout must be greater than 0."

        merged_headers = {**self._default_headers, **(headers or {})}

        logger.debug(f"{method.upper()} {url}")
        return await asyncio.to_thread(
            self._session.request,
            method.upper(),
            url,
            params=params,
            headers=merged_headers,
            data=data,
            json=json,
            timeout=timeout,
            stream=True,
        )

    @override
    async def read_body(self, response: requests.Response) -> bytes:
        """Read `response.content` from a worker thread."""
        content: bytes | None = await asyncio.to_thread(lambda: response.content)
        return content or b""

    def close(self) -> None:
        """Close the underlying session and its pooled connections."""
        self._session.close()
