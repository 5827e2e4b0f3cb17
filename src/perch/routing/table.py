"""Immutable route table — method index plus forward index.

Built fresh from the compiled route list on every reload and swapped in
with one attribute assignment, so a request sees either the old table
or the new one, never a mix.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from perch.events import EventBus
from perch.routing.route import Params, Route


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of a successful route match."""

    route: Route
    params: Params


class RouteTable:
    """First-match route lookup.

    ``by_method`` keeps registration order per method; ``by_handle``
    resolves forwards by ``(collection, handle)`` regardless of path.
    Duplicate ``(method, path)`` pairs keep the first route and report
    the rest.
    """

    __slots__ = ("by_handle", "by_method", "collections", "routes")

    def __init__(self, routes: Iterable[Route] = (), *, events: EventBus | None = None) -> None:
        accepted: list[Route] = []
        by_method: dict[str, list[Route]] = {}
        by_handle: dict[tuple[str, str], Route] = {}
        seen: dict[tuple[str, str], Route] = {}

        for route in routes:
            key = (route.method, route.path.lower())
            existing = seen.get(key)
            if existing is not None:
                if events is not None:
                    events.warn(f"Route {route} duplicates {existing}, skipping...")
                continue
            seen[key] = route
            accepted.append(route)
            by_method.setdefault(route.method, []).append(route)
            by_handle.setdefault((route.collection_name, route.handle_name), route)

        self.routes: tuple[Route, ...] = tuple(accepted)
        self.by_method: Mapping[str, tuple[Route, ...]] = MappingProxyType(
            {method: tuple(items) for method, items in by_method.items()}
        )
        self.by_handle: Mapping[tuple[str, str], Route] = MappingProxyType(by_handle)
        self.collections: frozenset[str] = frozenset(name for name, _ in by_handle)

    def find(self, method: str, path: str) -> RouteMatch | None:
        """Match *method* and *path*; ``HEAD`` falls back to ``GET`` routes.

        Raises:
            BadRequest: If the matching route's parameters cannot be decoded.
        """
        method = method.lower()
        for candidate in self._methods(method):
            for route in self.by_method.get(candidate, ()):
                params = route.match(path)
                if params is not None:
                    return RouteMatch(route=route, params=params)
        return None

    def find_handle(self, collection_name: str, handle_name: str) -> Route | None:
        return self.by_handle.get((collection_name, handle_name))

    def __iter__(self) -> Iterator[Route]:
        return iter(self.routes)

    def __len__(self) -> int:
        return len(self.routes)

    @staticmethod
    def _methods(method: str) -> tuple[str, ...]:
        if method == "head":
            return ("head", "get")
        return (method,)
