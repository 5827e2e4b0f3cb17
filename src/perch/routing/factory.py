"""Route compiler — expands collection endpoint tables into routes.

Every collection starts from the conventional REST table unless its
manifest sets ``"endpointsDefault": false``::

    get /       -> list
    get /:id    -> one
    post /      -> create
    put /:id    -> update
    delete /:id -> delete

Manifest ``endpoints`` entries override or extend it; an entry set to
``false`` removes the endpoint. Paths are joined onto the collection's
mount path from the routing table.
"""

import re
from collections.abc import Iterable, Mapping

from perch.errors import RoutingError
from perch.events import EventBus
from perch.registry.descriptor import Descriptor
from perch.registry.loader import Collection
from perch.routing.route import Route, join_mount

DEFAULT_ENDPOINTS: Mapping[str, str] = {
    "get /": "list",
    "get /:id": "one",
    "post /": "create",
    "put /:id": "update",
    "delete /:id": "delete",
}


def parse_endpoint(key: str) -> tuple[str, str]:
    """Split ``"GET /path"`` into ``("get", "/path")``.

    Raises ``RoutingError`` if the method or path is missing.
    """
    parts = key.split()
    if len(parts) != 2:
        msg = f"Endpoint {key!r} must be written as '<method> <path>'"
        raise RoutingError(msg)
    method, path = parts
    return method.lower(), path


def assign(destination: dict[str, str], source: Mapping[str, str | bool]) -> None:
    """Merge *source* into *destination*; ``False`` values delete keys."""
    for key, handle in source.items():
        method, path = parse_endpoint(key)
        normalized = f"{method} {path}"
        if handle is False:
            destination.pop(normalized, None)
        elif isinstance(handle, str) and handle:
            destination[normalized] = handle
        else:
            msg = f"Endpoint {key!r} must map to a handler name or false, got {handle!r}"
            raise RoutingError(msg)


class RoutesFactory:
    """Compiles loaded collections into an ordered route list.

    Deterministic: the same collections and routing table always yield the
    same routes in the same order, so a rebuilt list can replace the live
    one wholesale.
    """

    __slots__ = ("_auto_mount", "_events", "_routes")

    def __init__(
        self,
        routes: Mapping[str, str] | None = None,
        *,
        auto_mount: bool = True,
        events: EventBus | None = None,
    ) -> None:
        self._routes = {name.lower(): path for name, path in (routes or {}).items()}
        self._auto_mount = auto_mount
        self._events = events or EventBus()

    def mount_path(self, name: str) -> str | None:
        """Mount path for collection *name*, or ``None`` if it is not routed."""
        mount = self._routes.get(name)
        if mount is None and self._auto_mount:
            return f"/{name}"
        return mount

    def endpoints(self, descriptor: Descriptor) -> dict[str, str]:
        """The merged ``"<method> <path>" -> handler`` table for *descriptor*."""
        table: dict[str, str] = {}
        if descriptor.endpoints_default:
            assign(table, DEFAULT_ENDPOINTS)
        assign(table, descriptor.endpoints)
        return table

    def compile_collection(self, collection: Collection) -> list[Route]:
        """Routes for one collection, in endpoint-table order.

        Raises:
            RoutingError: If an endpoint key or path cannot be compiled.
        """
        descriptor = collection.descriptor
        mount = self.mount_path(descriptor.name)
        if mount is None:
            return []

        routes: list[Route] = []
        for key, handle in self.endpoints(descriptor).items():
            method, path = parse_endpoint(key)
            try:
                route = Route.create(method, join_mount(mount, path), descriptor.name, handle)
            except re.error as exc:
                msg = f"Endpoint {key!r} of collection {descriptor.name!r} has an invalid pattern: {exc}"
                raise RoutingError(msg) from exc
            routes.append(route)
        return routes

    def compile(self, collections: Mapping[str, Collection]) -> list[Route]:
        """Routes for every collection.

        Routing-table collections come first in table order, then the
        remaining ones by name. A collection whose endpoints fail to
        compile is reported and left out.
        """
        routes: list[Route] = []
        for name in self._order(collections):
            try:
                routes.extend(self.compile_collection(collections[name]))
            except RoutingError as exc:
                self._events.error(f"Routes of collection {name!r} were not compiled: {exc}", exc)
        return routes

    def _order(self, collections: Mapping[str, Collection]) -> Iterable[str]:
        ordered = [name for name in self._routes if name in collections]
        ordered.extend(sorted(name for name in collections if name not in self._routes))
        return ordered
