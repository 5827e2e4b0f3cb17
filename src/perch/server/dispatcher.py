"""Request dispatcher — match, middleware, handle, process, format.

Pipeline per request::

    Received -> Matched | Unmatched -> Middleware -> Handling
             -> ResultProcessing -> Formatting -> Sent | Redirected | Suppressed

Any exception moves the request to error rendering, which never raises.
Forwards re-enter Handling with the same ``RequestContext``; status and
formatting are applied once, after the last hop.
"""

import logging
from collections.abc import Callable, Sequence
from typing import Any

from perch._internal.invoke import invoke
from perch.actions import Action, Forward, Missing, Ok, Redirect, Suppress, as_action
from perch.context import RequestContext, ResponseState, context_var
from perch.errors import (
    HTTPError,
    InternalServerError,
    NotAcceptable,
    NotFound,
    NotImplementedRoute,
)
from perch.events import EventBus, Forwarding, IncomingRequest
from perch.http.request import Request
from perch.http.response import Response
from perch.registry.loader import CollectionLoader
from perch.routing.route import Route
from perch.routing.table import RouteTable
from perch.server.negotiation import FormatterProvider

logger = logging.getLogger("perch.server")

type Middleware = Callable[[RequestContext], Any]
type NotImplementedHandler = Callable[[RequestContext], Any]

FORWARD_NOT_FOUND = "forwardCollectionNotFound"
FORWARD_LIMIT_EXCEEDED = "forwardLimitExceeded"


def default_not_implemented(ctx: RequestContext) -> Any:
    """Raise 501 for a request no route matches."""
    raise NotImplementedRoute(f"Resource or collection '{ctx.request.url}' not implemented in API")


def _as_http_error(exc: Exception) -> HTTPError:
    if isinstance(exc, HTTPError):
        return exc
    try:
        raise InternalServerError(str(exc) or type(exc).__name__) from exc
    except InternalServerError as wrapped:
        return wrapped


class Dispatcher:
    """Turns a ``Request`` into a ``Response``.

    The route table is read through *routes* on every request, so the app
    can swap in a rebuilt table without coordinating with in-flight
    requests.
    """

    __slots__ = (
        "_events",
        "_formatters",
        "_loader",
        "_middleware",
        "_not_implemented",
        "_routes",
        "charset",
        "debug",
        "max_forwards",
    )

    def __init__(
        self,
        *,
        loader: CollectionLoader,
        routes: Callable[[], RouteTable],
        formatters: FormatterProvider,
        middleware: Sequence[Middleware] = (),
        not_implemented: NotImplementedHandler | None = None,
        events: EventBus | None = None,
        debug: bool = False,
        charset: str = "utf-8",
        max_forwards: int = 32,
    ) -> None:
        self._loader = loader
        self._routes = routes
        self._formatters = formatters
        self._middleware = tuple(middleware)
        self._not_implemented = not_implemented or default_not_implemented
        self._events = events or EventBus()
        self.debug = debug
        self.charset = charset
        self.max_forwards = max_forwards

    async def dispatch(self, request: Request) -> Response:
        """Run the full pipeline. Only cancellation propagates."""
        ctx = RequestContext(
            request=request,
            response=ResponseState(charset=self.charset),
            debug=self.debug,
        )
        token = context_var.set(ctx)
        try:
            try:
                return await self._run(ctx)
            except Exception as exc:
                return await self.render_error(ctx, exc)
        finally:
            context_var.reset(token)

    # -- Pipeline --

    async def _run(self, ctx: RequestContext) -> Response:
        request = ctx.request
        self._events.emit(IncomingRequest(request.method, request.path))

        table = self._routes()
        match = table.find(request.method, request.raw_path)
        if match is not None:
            ctx.params = match.params
            ctx.collection_name = match.route.collection_name
            ctx.handle_name = match.route.handle_name

        outcome = await self._run_middleware(ctx)
        if outcome is None:
            if match is None:
                outcome = await invoke(self._not_implemented, ctx)
            else:
                outcome = await self._handle(ctx, match.route)

        return await self._process(ctx, table, as_action(outcome))

    async def _run_middleware(self, ctx: RequestContext) -> Any:
        for middleware in self._middleware:
            outcome = await invoke(middleware, ctx)
            if outcome is not None:
                return outcome
        return None

    async def _handle(self, ctx: RequestContext, route: Route) -> Any:
        collection = self._loader.get_by_name(route.collection_name)
        if collection is None:
            msg = f"Collection '{route.collection_name}' is not loaded"
            raise InternalServerError(msg)

        ctx.collection_name = route.collection_name
        ctx.handle_name = route.handle_name
        ctx.forwards.append((route.collection_name, route.handle_name))
        logger.debug("Call handle %s in %s", route.handle_name, route.collection_name)

        instance = await invoke(collection.factory, ctx)
        handler = getattr(instance, route.handle_name, None)
        if handler is None or not callable(handler):
            msg = (
                f"Not found handler '{route.handle_name}' in collection's logic file "
                f"'{route.collection_name}'"
            )
            self._events.error(msg)
            raise InternalServerError(msg)

        return await invoke(handler)

    async def _process(self, ctx: RequestContext, table: RouteTable, action: Action) -> Response:
        while True:
            match action:
                case Missing(message=message, code=code):
                    raise NotFound(message, code)
                case Forward(collection_name=collection_name, handle_name=handle_name):
                    route = self._forward_route(ctx, table, collection_name, handle_name)
                    self._events.emit(Forwarding(collection_name, handle_name))
                    action = as_action(await self._handle(ctx, route))
                case Redirect(url=url, status=status):
                    ctx.response.status = status
                    ctx.response.set_header("Location", url)
                    return ctx.response.to_response()
                case Suppress():
                    return ctx.response.to_response()
                case Ok(body=body):
                    return await self._format(ctx, body)

    def _forward_route(
        self, ctx: RequestContext, table: RouteTable, collection_name: str, handle_name: str
    ) -> Route:
        route = table.find_handle(collection_name, handle_name)
        if route is None:
            if collection_name not in table.collections:
                msg = f"Collection {collection_name} not found for forward"
            else:
                msg = f"Handle {handle_name} not found for forward"
            raise InternalServerError(msg, code=FORWARD_NOT_FOUND)

        target = (collection_name, handle_name)
        if target in ctx.forwards:
            trail = " -> ".join(f"{c}.{h}" for c, h in (*ctx.forwards, target))
            logger.warning("Forward cycle detected: %s", trail)
        if len(ctx.forwards) > self.max_forwards:
            msg = f"Forward chain exceeded {self.max_forwards} hops at {collection_name}.{handle_name}"
            raise InternalServerError(msg, code=FORWARD_LIMIT_EXCEEDED)

        logger.debug("Forwarding to %s.%s ...", collection_name, handle_name)
        return route

    async def _format(self, ctx: RequestContext, body: Any) -> Response:
        formatter = self._formatters.get_formatter(ctx)
        if formatter is None:
            if ctx.response.status == 406:
                raise NotAcceptable(
                    f"None of {', '.join(self._formatters.acceptable)} is acceptable"
                )
            raise InternalServerError(
                f"No formatter for content type {ctx.response.content_type!r}"
            )

        if ctx.is_head:
            return ctx.response.to_response()

        rendered = await invoke(formatter, ctx, body)
        return ctx.response.to_response(self._encode(ctx, rendered))

    # -- Errors --

    async def render_error(self, ctx: RequestContext, exc: Exception) -> Response:
        """Render *exc* through the context's formatter. Never raises."""
        try:
            error = _as_http_error(exc)
            if error.status >= 500:
                logger.error(
                    "%s %s -> %d %s",
                    ctx.request.method,
                    ctx.request.path,
                    error.status,
                    error.message,
                    exc_info=exc,
                )
            else:
                logger.debug(
                    "%s %s -> %d %s", ctx.request.method, ctx.request.path, error.status, error.message
                )

            ctx.response.status = error.status
            ctx.response.headers.remove("Location")
            for name, value in error.headers:
                ctx.response.set_header(name, value)

            formatter = self._formatters.get_formatter(ctx)
            if formatter is None:
                return Response.plain(f"{error.status}: {error.message}", status=error.status)
            if ctx.is_head:
                return ctx.response.to_response()

            rendered = await invoke(formatter, ctx, error)
            return ctx.response.to_response(self._encode(ctx, rendered))
        except Exception:
            logger.exception("Failed to render error response for %s %s", ctx.request.method, ctx.request.path)
            return Response.plain("Internal Server Error", status=500)

    @staticmethod
    def _encode(ctx: RequestContext, rendered: Any) -> bytes:
        if isinstance(rendered, bytes | bytearray):
            return bytes(rendered)
        return str(rendered).encode(ctx.response.charset)
