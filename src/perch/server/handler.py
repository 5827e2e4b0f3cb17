"""ASGI handler — the only component that touches raw HTTP scopes.

Builds a ``Request`` from the scope, runs it through the ``Dispatcher``,
and writes the resulting ``Response``.
"""

from perch._internal.asgi import Receive, Scope, Send
from perch.http.request import Request
from perch.server.dispatcher import Dispatcher
from perch.server.sender import send_response


async def handle_request(scope: Scope, receive: Receive, send: Send, *, dispatcher: Dispatcher) -> None:
    """Process a single HTTP request through the dispatch pipeline."""
    if scope["type"] != "http":
        return

    request = Request.from_asgi(scope, receive)
    response = await dispatcher.dispatch(request)
    await send_response(response, send)
