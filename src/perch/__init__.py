"""Perch — a host for hot-reloadable REST collections.

Each collection is a directory with a ``collection.json`` manifest and a
logic module. Perch discovers them, mounts their endpoints, and reloads
them when files change.

Basic usage::

    # collections/widgets/logic.py
    class Collection:
        def __init__(self, ctx):
            self.ctx = ctx

        def one(self):
            return {"id": self.ctx.params["id"]}

    # app.py
    from perch import App, AppConfig

    app = App(AppConfig(watch=True))
    app.run()

``GET /widgets/7`` now answers ``{"id": "7"}``.
"""

__version__ = "0.1.0"
__all__ = [
    "App",
    "AppConfig",
    "BadRequest",
    "ConfigurationError",
    "Diagnostic",
    "EventBus",
    "Forward",
    "HTTPError",
    "InternalServerError",
    "Missing",
    "NotAcceptable",
    "NotFound",
    "PerchError",
    "Redirect",
    "Request",
    "RequestContext",
    "Response",
    "Suppress",
    "get_context",
]


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import perch`` fast while providing a clean top-level API.
    """
    if name == "App":
        from perch.app import App

        return App

    if name == "AppConfig":
        from perch.config import AppConfig

        return AppConfig

    if name == "Request":
        from perch.http.request import Request

        return Request

    if name == "Response":
        from perch.http.response import Response

        return Response

    if name in ("Forward", "Missing", "Redirect", "Suppress"):
        from perch import actions as _actions

        return getattr(_actions, name)

    if name in ("RequestContext", "get_context"):
        from perch import context as _ctx

        return getattr(_ctx, name)

    if name in ("Diagnostic", "EventBus"):
        from perch import events as _events

        return getattr(_events, name)

    if name in (
        "BadRequest",
        "ConfigurationError",
        "HTTPError",
        "InternalServerError",
        "NotAcceptable",
        "NotFound",
        "PerchError",
    ):
        from perch import errors as _errors

        return getattr(_errors, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
