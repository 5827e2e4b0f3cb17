"""Handler results — what a collection method asks the dispatcher to do.

A handler's return value is interpreted after it settles::

    class Collection:
        def __init__(self, context):
            self.context = context

        def one(self):
            item = STORE.get(self.context.params["id"])
            if item is None:
                return Missing(f"No widget {self.context.params['id']}")
            return item                       # same as Ok(item)

        def legacy(self):
            return Forward("widgets", "list")

Any value that is not one of these types is treated as ``Ok(value)``.
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class Ok:
    """Format *body* through the negotiated formatter."""

    body: Any = None


@dataclass(frozen=True, slots=True)
class Forward:
    """Re-dispatch to another collection's handler within this request."""

    collection_name: str
    handle_name: str


@dataclass(frozen=True, slots=True)
class Missing:
    """Respond 404 with *message* and an optional machine-readable code."""

    message: str = "Not Found"
    code: str = ""


@dataclass(frozen=True, slots=True)
class Redirect:
    """Respond with a redirect to *url*; nothing is formatted."""

    url: str
    status: int = 302

    def __post_init__(self) -> None:
        if not 300 <= self.status < 400:
            msg = f"Redirect status must be 3xx, got {self.status}"
            raise ValueError(msg)


@dataclass(frozen=True, slots=True)
class Suppress:
    """Send status and headers only, with an empty body."""


type Action = Ok | Forward | Missing | Redirect | Suppress


def as_action(value: Any) -> Action:
    """Wrap plain return values in ``Ok``."""
    if isinstance(value, Ok | Forward | Missing | Redirect | Suppress):
        return value
    return Ok(value)
