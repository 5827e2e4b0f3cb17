"""Immutable HTTP request.

Frozen metadata with async body access. Collections read it through
``RequestContext.request``.
"""

from __future__ import annotations

import json as json_module
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import SplitResult, quote, urlsplit

from perch._internal.asgi import Receive, Scope
from perch.http.headers import Headers
from perch.http.query import QueryParams

# RFC 3986 pchar plus "/"; anything else in a decoded path is re-escaped
_PATH_SAFE = "/:@!$&'()*+,;=-._~"


@dataclass(frozen=True, slots=True)
class Request:
    """An immutable HTTP request.

    ``path`` is percent-decoded (as ASGI delivers it); ``raw_path`` keeps
    the escapes so route parameters can be decoded one at a time. Servers
    that omit ``raw_path`` get ``path`` re-escaped instead.
    """

    method: str
    path: str
    raw_path: str
    headers: Headers
    query: QueryParams
    scheme: str
    http_version: str
    server: tuple[str, int] | None
    client: tuple[str, int] | None

    _receive: Receive

    # Body cache; the dict is mutable even though the field is frozen
    _cache: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    # -- Computed properties --

    @property
    def content_type(self) -> str | None:
        return self.headers.get("content-type")

    @property
    def accept(self) -> str | None:
        return self.headers.get("accept")

    @property
    def host(self) -> str:
        """Host header, else the server address, else ``localhost``."""
        host = self.headers.get("host")
        if host:
            return host
        if self.server:
            return f"{self.server[0]}:{self.server[1]}"
        return "localhost"

    @property
    def url(self) -> str:
        """Raw path plus query string."""
        qs = str(self.query)
        if qs:
            return f"{self.raw_path}?{qs}"
        return self.raw_path

    @property
    def location(self) -> SplitResult:
        """The absolute request URL, parsed."""
        return urlsplit(f"{self.scheme}://{self.host}{self.url}")

    @property
    def referrer(self) -> SplitResult:
        """The parsed ``Referer`` header (empty when absent)."""
        return urlsplit(self.headers.get("referer", ""))

    # -- Async body access --

    async def body(self) -> bytes:
        """Read the full request body. Cached after the first call."""
        if "_body" in self._cache:
            return self._cache["_body"]
        chunks = [chunk async for chunk in self.stream()]
        result = b"".join(chunks)
        self._cache["_body"] = result
        return result

    async def stream(self) -> AsyncGenerator[bytes]:
        """Stream the request body in chunks."""
        while True:
            message = await self._receive()
            body = message.get("body", b"")
            if body:
                yield body
            if not message.get("more_body", False):
                break

    async def json(self) -> Any:
        return json_module.loads(await self.body())

    async def text(self) -> str:
        return (await self.body()).decode("utf-8")

    # -- Factory --

    @classmethod
    def from_asgi(cls, scope: Scope, receive: Receive) -> Request:
        """Create a Request from an ASGI scope and receive callable."""
        server = scope.get("server")
        client = scope.get("client")
        raw_path = scope.get("raw_path")
        path = scope["path"]
        return cls(
            method=scope["method"].upper(),
            path=path,
            raw_path=raw_path.decode("latin-1") if raw_path else quote(path, safe=_PATH_SAFE),
            headers=Headers(tuple(scope.get("headers", ()))),
            query=QueryParams(scope.get("query_string", b"")),
            scheme=scope.get("scheme", "http"),
            http_version=scope.get("http_version", "1.1"),
            server=tuple(server) if server else None,
            client=tuple(client) if client else None,
            _receive=receive,
        )
