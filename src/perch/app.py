"""Perch application class.

Mutable during setup (middleware, formatters, not-implemented hook).
Frozen at runtime when ``app.run()`` or ``__call__()`` is first invoked.
Collections are discovered and loaded on startup; with ``watch=True``
they keep reloading while the app runs.
"""

import inspect
import logging
import threading
from collections.abc import Callable
from typing import Any

import anyio.to_thread

from perch._internal.asgi import Receive, Scope, Send
from perch.config import AppConfig
from perch.events import EventBus, RoutesCompiled
from perch.registry.finder import CollectionFinder
from perch.registry.loader import CollectionLoader
from perch.registry.watcher import CollectionWatcher
from perch.routing.factory import RoutesFactory
from perch.routing.table import RouteTable
from perch.server.dispatcher import Dispatcher, Middleware, NotImplementedHandler
from perch.server.formatters import Formatter
from perch.server.handler import handle_request
from perch.server.negotiation import FormatterProvider

logger = logging.getLogger("perch.app")


class App:
    """The perch application.

    Wires the registry, route compiler, and dispatcher together by
    constructor injection::

        app = App(AppConfig(routes={"widgets": "/api/widgets"}, watch=True))

        @app.middleware
        def require_token(ctx):
            if ctx.request.headers.get("x-token") != TOKEN:
                return ctx.not_found()

        @app.formatter("text/csv; q=0.5")
        def csv(ctx, body):
            ...

    Thread safety:
        Setup is single-threaded. The freeze transition and the initial
        load each use a Lock + double-check. The route table is replaced
        by a single attribute assignment, so requests always read a whole
        table while the watcher thread rebuilds the next one.
    """

    __slots__ = (
        "_dispatcher",
        "_formatter_list",
        "_freeze_lock",
        "_frozen",
        "_middleware_list",
        "_not_implemented",
        "_ready",
        "_ready_lock",
        "_shutdown_hooks",
        "_startup_hooks",
        "_table",
        "config",
        "events",
        "finder",
        "loader",
        "routes_factory",
        "watcher",
    )

    def __init__(self, config: AppConfig | None = None, *, events: EventBus | None = None) -> None:
        self.config: AppConfig = config or AppConfig()
        self.events: EventBus = events or EventBus()

        self._middleware_list: list[Middleware] = []
        self._formatter_list: list[tuple[str, Formatter]] = []
        self._not_implemented: NotImplementedHandler | None = None
        self._startup_hooks: list[Callable[..., Any]] = []
        self._shutdown_hooks: list[Callable[..., Any]] = []
        self._frozen: bool = False
        self._freeze_lock: threading.Lock = threading.Lock()
        self._ready: bool = False
        self._ready_lock: threading.Lock = threading.Lock()

        self.finder = CollectionFinder(
            self.config.collections_glob,
            root=self.config.root_path,
            events=self.events,
            logic_filename=self.config.logic_filename,
            factory_name=self.config.factory_name,
        )
        self.loader = CollectionLoader(self.finder, events=self.events)
        self.routes_factory = RoutesFactory(
            self.config.routes,
            auto_mount=self.config.auto_mount,
            events=self.events,
        )
        self.watcher: CollectionWatcher | None = None

        # Compiled state, set during _freeze() and ready()
        self._table: RouteTable = RouteTable()
        self._dispatcher: Dispatcher | None = None

    # -- Registration --

    def use(self, middleware: Middleware) -> Middleware:
        """Add request middleware; runs in registration order.

        Middleware receives the ``RequestContext`` and may be sync or
        async. Returning ``None`` continues; any other value
        short-circuits and is processed like a handler result.
        """
        self._check_not_frozen()
        self._middleware_list.append(middleware)
        return middleware

    def middleware(self, func: Middleware) -> Middleware:
        """Decorator form of ``use()``."""
        return self.use(func)

    def add_formatter(self, media_type: str, func: Formatter) -> None:
        """Register a formatter for ``"type[; q=weight]"``.

        Replaces a built-in formatter of the same media type.
        """
        self._check_not_frozen()
        self._formatter_list.append((media_type, func))

    def formatter(self, media_type: str) -> Callable[[Formatter], Formatter]:
        """Decorator form of ``add_formatter()``."""

        def decorator(func: Formatter) -> Formatter:
            self.add_formatter(media_type, func)
            return func

        return decorator

    def not_implemented(self, func: NotImplementedHandler) -> NotImplementedHandler:
        """Replace the default 501 handler for unmatched requests.

        The handler receives the ``RequestContext``; its return value is
        processed like a collection handler's.
        """
        self._check_not_frozen()
        self._not_implemented = func
        return func

    def on_startup(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register a hook to run after collections are loaded."""
        self._check_not_frozen()
        self._startup_hooks.append(func)
        return func

    def on_shutdown(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Register a hook to run after watching has stopped."""
        self._check_not_frozen()
        self._shutdown_hooks.append(func)
        return func

    # -- Registry --

    @property
    def route_table(self) -> RouteTable:
        return self._table

    def ready(self) -> None:
        """Discover and load every collection, then compile routes.

        Blocking (filesystem and imports). Idempotent.
        """
        if self._ready:
            return
        with self._ready_lock:
            if self._ready:
                return
            collections = self.loader.load()
            logger.info("Loaded %d collection(s)", len(collections))
            self.reload_routes()
            self._ready = True

    def reload_routes(self) -> RouteTable:
        """Compile routes from the loaded collections and swap them in."""
        routes = self.routes_factory.compile(self.loader.get_all())
        table = RouteTable(routes, events=self.events)
        self._table = table
        self.events.emit(RoutesCompiled(table.routes))
        logger.debug("Compiled %d route(s)", len(table))
        return table

    def start_watching(self) -> None:
        """Start the collection watcher (blocking; call from a thread)."""
        if self.watcher is None:
            self.watcher = CollectionWatcher(
                self.finder,
                self.loader,
                events=self.events,
                on_reload=self.reload_routes,
            )
        self.watcher.start()

    def stop_watching(self) -> None:
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None

    # -- Lifecycle --

    async def startup(self) -> None:
        """Freeze, load collections, start watching, run startup hooks."""
        self._ensure_frozen()
        await anyio.to_thread.run_sync(self.ready)
        if self.config.watch:
            await anyio.to_thread.run_sync(self.start_watching)
        for hook in self._startup_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result

    async def shutdown(self) -> None:
        """Stop watching and run shutdown hooks."""
        await anyio.to_thread.run_sync(self.stop_watching)
        for hook in self._shutdown_hooks:
            result = hook()
            if inspect.isawaitable(result):
                await result

    # -- Server --

    def run(self, host: str | None = None, port: int | None = None) -> None:
        """Start serving through pounce.

        Collections load during ASGI lifespan startup, so a broken
        collection is reported before the first request arrives.
        """
        self._ensure_frozen()

        from perch.server.dev import run_server

        run_server(
            self,
            host or self.config.host,
            port or self.config.port,
            workers=self.config.workers,
        )

    # -- ASGI interface --

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI 3.0 entry point."""
        if scope["type"] == "lifespan":
            await self._handle_lifespan(scope, receive, send)
            return

        self._ensure_frozen()
        if not self._ready:
            await anyio.to_thread.run_sync(self.ready)

        assert self._dispatcher is not None
        await handle_request(scope, receive, send, dispatcher=self._dispatcher)

    async def _handle_lifespan(self, scope: Scope, receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            msg_type = message["type"]

            if msg_type == "lifespan.startup":
                try:
                    await self.startup()
                except Exception as exc:
                    logger.exception("Startup failed")
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})

            elif msg_type == "lifespan.shutdown":
                try:
                    await self.shutdown()
                except Exception as exc:
                    logger.exception("Shutdown failed")
                    await send({"type": "lifespan.shutdown.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.shutdown.complete"})
                return

    # -- Internal --

    def _ensure_frozen(self) -> None:
        """Thread-safe freeze with double-check locking."""
        if self._frozen:
            return
        with self._freeze_lock:
            if self._frozen:
                return
            self._freeze()

    def _freeze(self) -> None:
        """Compile the registration surface. MUST hold _freeze_lock.

        Raises ``ConfigurationError`` for an invalid formatter key.
        """
        formatters = FormatterProvider(self._formatter_list)
        self._dispatcher = Dispatcher(
            loader=self.loader,
            routes=lambda: self._table,
            formatters=formatters,
            middleware=self._middleware_list,
            not_implemented=self._not_implemented,
            events=self.events,
            debug=self.config.debug,
            charset=self.config.charset,
            max_forwards=self.config.max_forwards,
        )
        self._frozen = True

    def _check_not_frozen(self) -> None:
        if self._frozen:
            msg = (
                "Cannot modify the app after it has started serving requests. "
                "Register middleware and formatters before calling app.run()."
            )
            raise RuntimeError(msg)
