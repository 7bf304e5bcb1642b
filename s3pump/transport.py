# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""HTTP transport.

The client only needs to send a fully signed request and get back a
status, headers and a body stream.  :class:`Transport` is that seam;
:class:`HttpxTransport` implements it on an ``httpx.Client`` (connection
pooling, TLS, DNS).  Tests inject an ``httpx.Client`` built on
``httpx.MockTransport``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from s3pump.errors import TransportError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpRequest:
    """A signed request ready to send.

    Attributes:
        method: HTTP method.
        url: Absolute URL including the query string.
        headers: Header pairs in send order.
        content: Request body.
        timeout: Timeout in seconds for connect, read and write.
    """

    method: str
    url: str
    headers: list[tuple[str, str]]
    content: bytes = b""
    timeout: float | None = None


@dataclass
class HttpResponse:
    """A response whose body has not necessarily been read yet.

    Call :meth:`close` (or read the body fully) to release the
    connection.
    """

    status_code: int
    reason: str
    headers: Mapping[str, str]
    stream: Iterator[bytes] = field(default_factory=lambda: iter(()))
    on_close: Callable[[], None] | None = None
    _closed: bool = field(default=False, init=False, repr=False)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    def iter_bytes(self) -> Iterator[bytes]:
        """Yield the body in chunks, closing the response at the end."""
        try:
            yield from self.stream
        finally:
            self.close()

    def read(self) -> bytes:
        """Read the whole body and close the response."""
        return b"".join(self.iter_bytes())

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.on_close is not None:
            self.on_close()


class Transport(Protocol):
    """Sends signed requests."""

    def send(self, request: HttpRequest) -> HttpResponse: ...

    def close(self) -> None: ...


class HttpxTransport:
    """Transport backed by ``httpx.Client``.

    Args:
        client: Client to use.  A default one is created (and owned) when
            omitted.
    """

    def __init__(self, client: httpx.Client | None = None) -> None:
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client()

    def send(self, request: HttpRequest) -> HttpResponse:
        """Send a request, streaming the response body.

        Raises:
            TransportError: Connection failure or timeout.
        """
        extensions = {}
        if request.timeout is not None:
            extensions["timeout"] = httpx.Timeout(request.timeout).as_dict()
        req = self._client.build_request(
            request.method,
            request.url,
            headers=request.headers,
            content=request.content,
            extensions=extensions,
        )
        try:
            resp = self._client.send(req, stream=True)
        except httpx.TransportError as e:
            raise TransportError(
                f"{request.method} {request.url} failed: {e}"
            ) from e

        return HttpResponse(
            status_code=resp.status_code,
            reason=resp.reason_phrase,
            headers=resp.headers,
            stream=self._body(resp, request),
            on_close=resp.close,
        )

    @staticmethod
    def _body(resp: httpx.Response, request: HttpRequest) -> Iterator[bytes]:
        # Raw bytes: an object stored with Content-Encoding comes back as
        # stored, not decompressed.
        try:
            yield from resp.iter_raw()
        except httpx.TransportError as e:
            raise TransportError(
                f"{request.method} {request.url}: body read failed: {e}"
            ) from e

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
