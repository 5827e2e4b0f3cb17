"""Final HTTP response value handed to the ASGI sender.

The dispatcher accumulates status and headers on the per-request
``ResponseState`` and freezes them into a ``Response`` once the body is
known.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Response:
    """An immutable HTTP response."""

    body: bytes = b""
    status: int = 200
    headers: tuple[tuple[str, str], ...] = ()

    @classmethod
    def plain(cls, text: str, status: int = 200) -> Response:
        """A ``text/plain`` response with no other headers."""
        return cls(
            body=text.encode("utf-8"),
            status=status,
            headers=(("Content-Type", "text/plain; charset=utf-8"),),
        )

    @property
    def content_type(self) -> str | None:
        return self.header("content-type")

    @property
    def text(self) -> str:
        return self.body.decode("utf-8")

    def header(self, name: str, default: str | None = None) -> str | None:
        wanted = name.lower()
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return default
