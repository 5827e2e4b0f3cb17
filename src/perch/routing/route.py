"""Route frozen dataclass — one compiled endpoint."""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass

from perch.routing.pattern import compile_path, decode_param

type Params = dict[str, str | None]


def join_mount(mount: str, endpoint_path: str) -> str:
    """Join a mount path and an endpoint path into an absolute route path.

    The trailing slash is stripped except for the root path::

        join_mount("/widgets", "/")      -> "/widgets"
        join_mount("/", "/:id")          -> "/:id"
        join_mount("api/v1/", "items/")  -> "/api/v1/items"
    """
    pieces = [piece.strip("/") for piece in (mount, endpoint_path)]
    return posixpath.normpath("/" + "/".join(piece for piece in pieces if piece))


@dataclass(frozen=True, slots=True)
class Route:
    """A frozen route definition.

    Created by ``RoutesFactory`` and indexed by ``RouteTable``. The
    string form is used in listings::

        get /widgets/:id | widgets.one
    """

    method: str
    path: str
    pattern: re.Pattern[str]
    keys: tuple[str, ...]
    collection_name: str
    handle_name: str

    @classmethod
    def create(cls, method: str, path: str, collection_name: str, handle_name: str) -> Route:
        compiled = compile_path(path)
        return cls(
            method=method.lower(),
            path=path,
            pattern=compiled.regex,
            keys=compiled.keys,
            collection_name=collection_name,
            handle_name=handle_name,
        )

    @property
    def is_root(self) -> bool:
        return self.path == "/"

    def match(self, path: str) -> Params | None:
        """Return decoded parameters if *path* matches, else ``None``.

        Raises:
            BadRequest: If a captured value cannot be percent-decoded.
        """
        if not path:
            return None
        if self.is_root:
            return {} if path == "/" else None

        found = self.pattern.match(path)
        if found is None:
            return None

        params: Params = {}
        for key, value in zip(self.keys, found.groups(), strict=True):
            decoded = decode_param(value)
            if decoded is not None or key not in params:
                params[key] = decoded
        return params

    def __str__(self) -> str:
        return f"{self.method} {self.path} | {self.collection_name}.{self.handle_name}"
