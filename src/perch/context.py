"""Per-request context handed to collections, middleware, and formatters.

A ``RequestContext`` is created fresh for every request and lives until
the response is sent, including any forwarded sub-dispatch. It is never
shared or pooled, so it needs no locking.

The current context is also published through a ``ContextVar`` for code
that is not handed one explicitly (helper modules, logging filters)::

    from perch.context import get_context

    def audit(event):
        ctx = get_context()
        log.info("%s by %s", event, ctx.state.get("user"))

Thread safety:
    ``ContextVar`` is task-local under asyncio, so concurrent requests
    each see their own context.
"""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import SplitResult

from perch.actions import Forward, Missing, Redirect, Suppress
from perch.http.headers import ResponseHeaders
from perch.http.request import Request
from perch.http.response import Response
from perch.routing.route import Params


@dataclass(slots=True)
class ResponseState:
    """Mutable response metadata accumulated while a request is handled.

    Handlers and middleware may set ``status``, headers, or an explicit
    content type; the negotiator honours an explicit content type over the
    ``Accept`` header.
    """

    status: int = 200
    headers: ResponseHeaders = field(default_factory=ResponseHeaders)
    charset: str = "utf-8"

    @property
    def content_type(self) -> str | None:
        return self.headers.get("Content-Type")

    @content_type.setter
    def content_type(self, value: str | None) -> None:
        if value is None:
            self.headers.remove("Content-Type")
        else:
            self.headers.set("Content-Type", value)

    def set_header(self, name: str, value: str | int) -> None:
        self.headers.set(name, value)

    def to_response(self, body: bytes = b"") -> Response:
        """Freeze the accumulated state around *body*."""
        return Response(body=body, status=self.status, headers=self.headers.items())


@dataclass(slots=True)
class RequestContext:
    """Everything a collection handler knows about the current request.

    ``collection_name`` and ``handle_name`` track the handler currently
    running; they change when a request is forwarded. ``forwards`` records
    every ``(collection, handle)`` visited, in order.
    """

    request: Request
    response: ResponseState = field(default_factory=ResponseState)
    params: Params = field(default_factory=dict)
    collection_name: str = ""
    handle_name: str = ""
    state: dict[str, Any] = field(default_factory=dict)
    forwards: list[tuple[str, str]] = field(default_factory=list)
    debug: bool = False
    location: SplitResult = field(init=False)
    referrer: SplitResult = field(init=False)

    def __post_init__(self) -> None:
        self.location = self.request.location
        self.referrer = self.request.referrer

    @property
    def method(self) -> str:
        return self.request.method

    @property
    def is_head(self) -> bool:
        return self.request.method == "HEAD"

    # -- Result builders --

    def forward(self, collection_name: str, handle_name: str) -> Forward:
        """``return ctx.forward("users", "one")`` re-dispatches in-process."""
        return Forward(collection_name, handle_name)

    def not_found(self, message: str = "Not Found", code: str = "") -> Missing:
        return Missing(message, code)

    def redirect(self, url: str, status: int = 302) -> Redirect:
        return Redirect(url, status)

    def suppress(self) -> Suppress:
        return Suppress()


context_var: ContextVar[RequestContext] = ContextVar("perch_context")
"""The context of the request being dispatched on this task."""


def get_context() -> RequestContext:
    """Return the current request context.

    Raises ``LookupError`` if called outside a request.
    """
    return context_var.get()
