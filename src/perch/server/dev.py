"""Serving through pounce.

Pounce's ``run()`` takes an import string, but perch has a live ``App``
object, so ``pounce.Server`` is used directly with the ASGI callable.
Collection reloads are handled by perch's own watcher, so pounce's
process reloader stays off.
"""


def run_server(app: object, host: str, port: int, *, workers: int = 1) -> None:
    """Start a pounce server for *app*.

    Args:
        app: ASGI callable (perch App instance).
        host: Bind host address.
        port: Bind port number.
        workers: Worker count. Collection watching is per process, so
            more than one worker means more than one watcher.
    """
    from pounce.config import ServerConfig
    from pounce.server import Server

    config = ServerConfig(host=host, port=port, workers=workers, reload=False)
    server = Server(config, app)
    server.run()
