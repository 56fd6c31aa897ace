"""
Response handle returned by AdmissionQueue.fetch().

Metadata (status, headers, URL, ...) is available synchronously. Body reads
are coroutines: they either return the buffered body right away, or queue
through the owning AdmissionQueue so large downloads are capacity-limited
too.
"""

from __future__ import annotations

import email.parser
import email.policy
import json as jsonlib
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs

import requests
from requests.structures import CaseInsensitiveDict

from fetchqueue._queue import BODY_READ_PRIORITY

if TYPE_CHECKING:
    from fetchqueue._queue import AdmissionQueue

logger = logging.getLogger(__name__)


class BodyDecodeError(ValueError):
    """
    Raised when a response body cannot be decoded as requested.

    Attributes:
        content_type: The Content-Type header of the response (may be empty).
    """

    def __init__(self, message: str, content_type: str = ""):
        self.content_type = content_type
        super().__init__(message)


class ManagedResponse:
    """
    A response produced by `AdmissionQueue.fetch()`.

    Should not be created directly: the queue builds it once the request
    completes.

    Attributes:
        status_code: HTTP status code.
        reason: Human-readable status text.
        headers: Case-insensitive copy of the response headers.
        ok: True if status_code is below 400.
        redirected: True if the request followed at least one redirect.
        url: Final URL after redirects.
        encoding: Charset declared in the Content-Type header, if any.

    Unbuffered responses hold a pooled connection until the body is read or
    the response is closed, so use `async with` (or call `close()`) when the
    body may be skipped.

    Example:
        >>> response = await queue.fetch("https://api.example.com/items")
        >>> if response.ok:
        ...     items = await response.json()
        >>>
        >>> async with await queue.fetch("https://api.example.com/large") as response:
        ...     if response.status_code == 304:
        ...         return
    """

    def __init__(
        self,
        raw: requests.Response,
        queue: AdmissionQueue,
        body: bytes | None = None,
    ):
        assert raw is not None, "raw response cannot be None."
        assert queue is not None, "queue cannot be None."

        self.status_code: int = raw.status_code
        self.reason: str = raw.reason or ""
        self.headers: CaseInsensitiveDict[str] = CaseInsensitiveDict(raw.headers)
        self.ok: bool = raw.ok
        self.redirected: bool = bool(raw.history)
        self.url: str = raw.url
        self.encoding: str | None = _declared_charset(self.headers)

        self._raw = raw
        self._queue = queue
        self._body = body

    @property
    def is_buffered(self) -> bool:
        """True if the body is held in memory and reads will not queue."""
        return self._body is not None

    async def content(self) -> bytes:
        """
        Get the response body as bytes.

        Queues with BODY_READ_PRIORITY unless the body is already buffered.
        """
        if self._body is None:
            async with self._queue.admitted(BODY_READ_PRIORITY):
                self._body = await self._queue.http_client.read_body(self._raw)
        return self._body

    async def text(self) -> str:
        """Get the response body decoded as text (UTF-8 if no encoding was declared)."""
        body = await self.content()
        return body.decode(self.encoding or "utf-8", errors="replace")

    async def json(self) -> Any:
        """
        Get the response body parsed as JSON.

        Raises:
            json.JSONDecodeError: If the body is not valid JSON.
        """
        body = await self.content()
        return jsonlib.loads(body)

    async def form_data(self) -> dict[str, list[str]]:
        """
        Get the response body parsed as form data.

        Supports `application/x-www-form-urlencoded` and `multipart/form-data`.
        Repeated field names keep every value, in order. File parts are
        returned decoded as text.

        Raises:
            BodyDecodeError: If the content type is not a form encoding, or
                the multipart body is malformed.
        """
        content_type = self.headers.get("Content-Type", "")
        mime_type = content_type.split(";", 1)[0].strip().lower()
        body = await self.content()

        if mime_type == "application/x-www-form-urlencoded":
            return parse_qs(body.decode(self.encoding or "utf-8"), keep_blank_values=True)
        if mime_type == "multipart/form-data":
            return self._parse_multipart(content_type, body)

        raise BodyDecodeError(
            f"Cannot parse form data from content type {content_type!r}.",
            content_type=content_type,
        )

    def _parse_multipart(self, content_type: str, body: bytes) -> dict[str, list[str]]:
        header = f"Content-Type: {content_type}\r\nMIME-Version: 1.0\r\n\r\n".encode()
        message = email.parser.BytesParser(policy=email.policy.HTTP).parsebytes(header + body)
        if not message.is_multipart():
            raise BodyDecodeError("Malformed multipart body.", content_type=content_type)

        fields: dict[str, list[str]] = {}
        for part in message.iter_parts():
            name = part.get_param("name", header="content-disposition")
            if not name:
                logger.debug("Skipping multipart section without a field name.")
                continue
            payload = part.get_payload(decode=True) or b""
            charset = part.get_content_charset() or self.encoding or "utf-8"
            fields.setdefault(str(name), []).append(payload.decode(charset, errors="replace"))
        return fields

    def close(self) -> None:
        """
        Release the underlying connection back to the pool.

        Reads of a body that was already buffered keep working afterwards.
        """
        self._raw.close()

    async def __aenter__(self) -> ManagedResponse:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<ManagedResponse [{self.status_code}] {self.url}>"


def _declared_charset(headers: CaseInsensitiveDict[str]) -> str | None:
    """
    Return the charset explicitly declared in Content-Type, or None.

    `requests` reports ISO-8859-1 for any `text/*` response without a charset;
    only an explicit `charset=` parameter is honoured here.
    """
    content_type = headers.get("Content-Type", "")
    if "charset=" not in content_type.lower():
        return None
    return requests.utils.get_encoding_from_headers(headers)
