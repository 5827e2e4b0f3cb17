"""Invoke helpers — call sync or async user code uniformly.

Handlers, middleware, formatters, and the not-implemented hook can all
be ``def`` or ``async def``; the sync/async check lives here only.

Usage::

    from perch._internal.invoke import invoke

    result = await invoke(instance.list)
"""

import inspect
from typing import Any


async def invoke(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Call *func* and await the result if it is awaitable::

        class Collection:
            def one(self):                 # returned as-is
                return {"id": self.context.params["id"]}

            async def list(self):          # awaited
                return await self.store.all()
    """
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
