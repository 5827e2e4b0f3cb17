"""Built-in response formatters.

A formatter renders a handler's body (or an ``HTTPError`` during error
handling) for one media type::

    def format_csv(ctx: RequestContext, body: Any) -> str:
        ...

    app.add_formatter("text/csv; q=0.5", format_csv)

Formatters may be sync or async and return ``str`` (encoded with the
response charset) or ``bytes``. They may also adjust ``ctx.response``.
"""

import base64
import dataclasses
import json as json_module
import traceback
from collections.abc import Awaitable, Callable
from typing import Any

from perch.context import RequestContext
from perch.errors import HTTPError, InternalServerError

type Formatter = Callable[[RequestContext, Any], str | bytes | Awaitable[str | bytes]]


def error_payload(ctx: RequestContext, error: HTTPError) -> dict[str, Any]:
    """``{name, status, message, code}``, plus ``stack`` in debug mode."""
    payload = error.to_dict()
    if ctx.debug:
        origin = error.__cause__ or error
        payload["stack"] = "".join(traceback.format_exception(origin)).rstrip()
    return payload


def _json_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, set | frozenset):
        return sorted(value, key=str)
    return str(value)


def format_json(ctx: RequestContext, data: Any) -> str:
    """JSON; bytes bodies are sent as a base64 string."""
    if isinstance(data, HTTPError):
        data = error_payload(ctx, data)
    elif isinstance(data, bytes | bytearray):
        data = base64.b64encode(data).decode("ascii")
    return json_module.dumps(data, default=_json_default)


def format_text(ctx: RequestContext, data: Any) -> str:
    """Plain text; errors render as ``"<status>: <message>"``."""
    if data is None:
        return ""
    if isinstance(data, bytes | bytearray):
        return bytes(data).decode(ctx.response.charset, errors="replace")
    if isinstance(data, HTTPError):
        return f"{data.status}: {data.message}"
    return str(data)


def format_binary(ctx: RequestContext, data: Any) -> bytes:
    """Raw bytes. Errors also set the response status."""
    if isinstance(data, BaseException):
        if not isinstance(data, HTTPError):
            data = InternalServerError(str(data))
        ctx.response.status = data.status
    ctx.response.content_type = "application/octet-stream"
    if isinstance(data, bytes | bytearray):
        return bytes(data)
    if data is None:
        return b""
    return str(data).encode(ctx.response.charset)


BUILTIN_FORMATTERS: dict[str, Formatter] = {
    "application/json; q=0.3": format_json,
    "text/plain; q=0.2": format_text,
    "application/octet-stream; q=0.1": format_binary,
}
