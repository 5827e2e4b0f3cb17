"""Perch exception hierarchy.

Shared across the registry, routing, dispatcher, and formatters so every
module raises and catches the same types.
"""

from dataclasses import dataclass
from http import HTTPStatus
from typing import Any


class PerchError(Exception):
    """Base for all perch-specific errors."""


class ConfigurationError(PerchError):
    """Raised when app configuration is invalid.

    Typically caught during ``App._freeze()`` at startup.
    """


class RoutingError(ConfigurationError):
    """An endpoint declaration could not be compiled into a route."""


class ManifestError(PerchError):
    """A collection manifest could not be read or parsed."""


class InvalidCollectionName(ManifestError):
    """The name derived from a manifest is not a valid identifier."""


def _status_name(status: int) -> str:
    try:
        phrase = HTTPStatus(status).phrase
    except ValueError:
        return "HTTPError"
    return "".join(piece.capitalize() for piece in phrase.replace("-", " ").split())


@dataclass(frozen=True, slots=True)
class HTTPError(PerchError):
    """An error that maps directly to an HTTP status code.

    Raised by the router, middleware, or handlers. The dispatcher catches
    these and renders them through the negotiated formatter as
    ``{name, status, message, code}``.
    """

    status: int
    detail: str = ""
    code: str = ""
    headers: tuple[tuple[str, str], ...] = ()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status}: {self.detail}"
        return str(self.status)

    @property
    def name(self) -> str:
        """``NotFound``, ``InternalServerError``, ... derived from the status phrase."""
        return _status_name(self.status)

    @property
    def message(self) -> str:
        if self.detail:
            return self.detail
        try:
            return HTTPStatus(self.status).phrase
        except ValueError:
            return str(self.status)

    def to_dict(self) -> dict[str, Any]:
        """Structured body shape used by the built-in formatters."""
        return {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "code": self.code or self.name,
        }


class BadRequest(HTTPError):  # noqa: N818
    """400 — the request could not be understood (e.g. malformed path escape)."""

    def __init__(self, detail: str = "Bad Request", code: str = "") -> None:
        super().__init__(status=400, detail=detail, code=code)


class NotFound(HTTPError):  # noqa: N818
    """404 — a handler reported the resource as missing."""

    def __init__(self, detail: str = "Not Found", code: str = "") -> None:
        super().__init__(status=404, detail=detail, code=code)


class NotAcceptable(HTTPError):  # noqa: N818
    """406 — no registered formatter satisfies the ``Accept`` header."""

    def __init__(self, detail: str = "Not Acceptable", code: str = "") -> None:
        super().__init__(status=406, detail=detail, code=code)


class InternalServerError(HTTPError):
    """500 — configuration problems and unexpected failures."""

    def __init__(self, detail: str = "Internal Server Error", code: str = "") -> None:
        super().__init__(status=500, detail=detail, code=code)


class NotImplementedRoute(HTTPError):
    """501 — no route matches the request method and path."""

    def __init__(self, detail: str = "Not Implemented", code: str = "") -> None:
        super().__init__(status=501, detail=detail, code=code)


def http_error(status: int, detail: str = "", code: str = "") -> HTTPError:
    """Build an ``HTTPError`` for any 4xx/5xx status.

    Raises ``ValueError`` for statuses outside that range.
    """
    if not 400 <= status < 600:
        msg = f"HTTP error status must be 4xx or 5xx, got {status}"
        raise ValueError(msg)
    return HTTPError(status=status, detail=detail, code=code)
